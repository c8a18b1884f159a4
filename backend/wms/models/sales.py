from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z, utcnow


PAYMENT_METHODS = ("cash", "card", "transfer", "check", "credit")


class Sale(db.Model):
    """
    Sales order.

    LIFECYCLE:
    1. draft: lines editable, no stock effect
    2. completed: Product.quantity decremented, one "sale" movement per line
    3. cancelled: from draft (no stock effect) or from completed (quantities
       restored with "sale_cancellation" movements)

    PAYMENT STATUS (derived from completed payments, recomputed on every
    payment change):
    - pending: nothing paid
    - partial: 0 < paid < total
    - paid: paid >= total
    - overdue: completed, past due_date and not fully paid
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_number"),
        db.UniqueConstraint("invoice_number", name="uq_sales_invoice_number"),
        db.Index("ix_sales_status_date", "status", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # e.g. "VTA202401150001"
    sale_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    # draft, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    # pending, partial, paid, overdue
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_number = db.Column(db.String(32), nullable=True)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requires_electronic_invoice = db.Column(db.Boolean, nullable=False, default=False)
    electronic_invoice_sent = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    warehouse = db.relationship("Warehouse")
    user = db.relationship("User")
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )
    payments = db.relationship("Payment", back_populates="sale", order_by="Payment.id")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.sale_number!r} status={self.status}>"

    @property
    def total_paid_cents(self) -> int:
        return sum(p.amount_cents for p in self.payments if p.status == "completed")

    @property
    def pending_balance_cents(self) -> int:
        return max(0, (self.total_cents or 0) - self.total_paid_cents)

    @property
    def is_overdue(self) -> bool:
        return (
            self.status == "completed"
            and self.due_date is not None
            and self.due_date < utcnow()
            and self.total_paid_cents < (self.total_cents or 0)
        )

    def recalculate_totals(self) -> None:
        """Header discount comes off the sum of line totals (already taxed)."""
        self.subtotal_cents = sum(item.subtotal_cents for item in self.items)
        self.tax_cents = sum(item.tax_cents or 0 for item in self.items)
        line_totals = sum(item.total_cents or 0 for item in self.items)
        self.total_cents = max(0, line_totals - (self.discount_cents or 0))

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "warehouse_id": self.warehouse_id,
            "user_id": self.user_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "total_paid_cents": self.total_paid_cents,
            "pending_balance_cents": self.pending_balance_cents,
            "sale_date": to_utc_z(self.sale_date),
            "invoice_number": self.invoice_number,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "is_overdue": self.is_overdue,
            "requires_electronic_invoice": self.requires_electronic_invoice,
            "electronic_invoice_sent": self.electronic_invoice_sent,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Sale line.

    PRICING (integer cents, basis-point tax):
    subtotal = quantity * unit_price
    taxable  = subtotal - discount
    tax      = round_half_up(taxable * tax_rate_bps / 10000)
    total    = taxable + tax
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def recalculate(self) -> None:
        taxable = max(0, self.subtotal_cents - (self.discount_cents or 0))
        self.tax_cents = (taxable * (self.tax_rate_bps or 0) + 5000) // 10000
        self.total_cents = taxable + self.tax_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    Payment recorded against a sale.

    Only completed payments count towards the sale's paid amount.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_sale_status", "sale_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    payment_method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # pending, completed, failed, cancelled
    status = db.Column(db.String(16), nullable=False, default="completed", index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment id={self.id} sale_id={self.sale_id} amount_cents={self.amount_cents} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "payment_date": to_utc_z(self.payment_date),
            "reference_number": self.reference_number,
            "notes": self.notes,
            "status": self.status,
            "user_id": self.user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleTemplate(db.Model):
    """
    Reusable sale: a named set of lines plus header defaults.

    items is a JSON list of {"product_id", "quantity"}; prices are read from
    the products when a sale is created from the template, so a template
    never goes stale on price changes. discount_bps applies to every line;
    tax_rate_bps, when set, overrides the products' own rates.
    """
    __tablename__ = "sale_templates"
    __table_args__ = (
        db.CheckConstraint("discount_bps >= 0 AND discount_bps <= 10000", name="ck_sale_templates_discount_bps"),
        db.Index("ix_sale_templates_active_usage", "is_active", "usage_count"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    items = db.Column(db.JSON, nullable=False, default=list)
    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    discount_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    user = db.relationship("User")
    customer = db.relationship("Customer")

    def __repr__(self) -> str:
        return f"<SaleTemplate id={self.id} name={self.name!r} usage_count={self.usage_count}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "user_id": self.user_id,
            "customer_id": self.customer_id,
            "items": [dict(item) for item in (self.items or [])],
            "payment_method": self.payment_method,
            "discount_bps": self.discount_bps,
            "tax_rate_bps": self.tax_rate_bps,
            "notes": self.notes,
            "is_active": self.is_active,
            "usage_count": self.usage_count,
            "last_used_at": to_utc_z(self.last_used_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
