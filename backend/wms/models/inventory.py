from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z


MOVEMENT_TYPES = (
    "initial",
    "manual",
    "adjustment",
    "sale",
    "sale_cancellation",
    "transfer_out",
    "transfer_in",
)


class Product(db.Model):
    """
    Product master data.

    QUANTITY: Product.quantity is the single on-hand figure. It is never
    written directly by CRUD; only the stock services change it, and each
    change is paired with exactly one StockMovement carrying the same delta.
    quantity >= 0 is enforced both in the services and by a CHECK constraint.

    version_id guards against two requests decrementing the same row from a
    stale read (StaleDataError -> retried by run_with_retry).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # Authoritative storage in cents
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    # Basis points; NULL falls back to DEFAULT_TAX_RATE_BPS
    tax_rate_bps = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)
    max_stock_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    brand = db.relationship("Brand", backref=db.backref("products", lazy=True))
    location = db.relationship("Location", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} quantity={self.quantity}>"

    @property
    def is_out_of_stock(self) -> bool:
        return (self.quantity or 0) <= 0

    @property
    def is_low_stock(self) -> bool:
        return not self.is_out_of_stock and (self.quantity or 0) <= (self.min_stock_level or 0)

    @property
    def is_overstock(self) -> bool:
        return self.max_stock_level is not None and (self.quantity or 0) > self.max_stock_level

    @property
    def stock_status(self) -> str:
        if self.is_out_of_stock:
            return "out_of_stock"
        if self.is_low_stock:
            return "low_stock"
        if self.is_overstock:
            return "overstock"
        return "normal"

    @property
    def stock_value_cents(self) -> int:
        return (self.quantity or 0) * (self.cost_cents or 0)

    @property
    def profit_margin_bps(self) -> int | None:
        """Margin over price in basis points; None when there is no price."""
        if not self.unit_price_cents:
            return None
        return ((self.unit_price_cents - (self.cost_cents or 0)) * 10000) // self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "category_id": self.category_id,
            "brand_id": self.brand_id,
            "location_id": self.location_id,
            "unit_price_cents": self.unit_price_cents,
            "cost_cents": self.cost_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "quantity": self.quantity,
            "min_stock_level": self.min_stock_level,
            "max_stock_level": self.max_stock_level,
            "stock_status": self.stock_status,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "stock_value_cents": self.stock_value_cents,
            "profit_margin_bps": self.profit_margin_bps,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    INVARIANTS:
    - new_quantity - previous_quantity == quantity_delta
    - one row per change of Product.quantity, written in the same transaction
    - rows are never updated or deleted

    reference_type/reference_id point at the document that caused the change
    ("stock_adjustment", "stock_transfer", "sale", "product").
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        db.CheckConstraint(
            "new_quantity - previous_quantity = quantity_delta",
            name="ck_stock_movements_delta_matches",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} product_id={self.product_id} type={self.type} delta={self.quantity_delta}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "warehouse_id": self.warehouse_id,
            "location_id": self.location_id,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "user_id": self.user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
