from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z


CUSTOMER_TYPES = ("individual", "business", "wholesale", "retail")
PAYMENT_TERMS = ("cash", "credit", "net_15", "net_30", "net_60")
DOCUMENT_TYPES = ("CC", "CE", "NIT", "TI", "PP", "RC", "TE")

# Days until due for credit terms; cash/credit sales are due immediately
PAYMENT_TERM_DAYS = {"net_15": 15, "net_30": 30, "net_60": 60}


class Customer(db.Model):
    """
    Customer master data.

    CREDIT: available_credit_cents = credit_limit_cents minus the unpaid
    balance of the customer's completed sales.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    state = db.Column(db.String(120), nullable=True)
    country = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(32), nullable=True)

    tax_id = db.Column(db.String(64), nullable=True, index=True)
    document_type = db.Column(db.String(8), nullable=True)
    customer_type = db.Column(db.String(16), nullable=False, default="individual")

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    discount_bps = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Customer id={self.id} name={self.name!r}>"

    @property
    def outstanding_balance_cents(self) -> int:
        return sum(
            sale.pending_balance_cents
            for sale in self.sales
            if sale.status == "completed"
        )

    @property
    def available_credit_cents(self) -> int:
        return max(0, (self.credit_limit_cents or 0) - self.outstanding_balance_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postal_code": self.postal_code,
            "tax_id": self.tax_id,
            "document_type": self.document_type,
            "customer_type": self.customer_type,
            "credit_limit_cents": self.credit_limit_cents,
            "available_credit_cents": self.available_credit_cents,
            "payment_terms": self.payment_terms,
            "discount_bps": self.discount_bps,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
