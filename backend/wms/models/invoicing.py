from __future__ import annotations

from ..extensions import db
from wms.time_utils import to_utc_z


class ElectronicInvoice(db.Model):
    """
    Electronic invoice issued for a completed sale.

    Issuer and customer fields are snapshots taken at creation so later edits
    to the customer or configuration never change an issued document.

    LIFECYCLE:
    draft -> sent -> accepted | rejected
    draft | rejected -> cancelled

    cufe is the SHA-1 unique code computed from the invoice number, issue
    date/time, amounts, tax codes, issuer/customer documents, technical key
    and environment (see invoice_service.compute_cufe).
    """
    __tablename__ = "electronic_invoices"
    __table_args__ = (
        db.UniqueConstraint("sale_id", name="uq_electronic_invoices_sale"),
        db.UniqueConstraint("prefix", "consecutive_number", name="uq_electronic_invoices_prefix_consecutive"),
        db.UniqueConstraint("cufe", name="uq_electronic_invoices_cufe"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False)

    prefix = db.Column(db.String(8), nullable=False)
    consecutive_number = db.Column(db.Integer, nullable=False)
    invoice_number = db.Column(db.String(32), nullable=False, index=True)
    cufe = db.Column(db.String(96), nullable=False)

    issue_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="COP")
    environment = db.Column(db.String(1), nullable=False, default="2")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    issuer_nit = db.Column(db.String(32), nullable=True)
    issuer_name = db.Column(db.String(255), nullable=True)
    issuer_address = db.Column(db.String(255), nullable=True)
    issuer_city = db.Column(db.String(120), nullable=True)
    issuer_department = db.Column(db.String(120), nullable=True)
    issuer_phone = db.Column(db.String(64), nullable=True)
    issuer_email = db.Column(db.String(255), nullable=True)

    customer_document_type = db.Column(db.String(8), nullable=True)
    customer_document_number = db.Column(db.String(64), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)
    customer_city = db.Column(db.String(120), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    # draft, sent, accepted, rejected, cancelled
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    response_code = db.Column(db.String(32), nullable=True)
    response_message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    sale = db.relationship("Sale", backref=db.backref("electronic_invoice", uselist=False))

    def __repr__(self) -> str:
        return f"<ElectronicInvoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "prefix": self.prefix,
            "consecutive_number": self.consecutive_number,
            "invoice_number": self.invoice_number,
            "cufe": self.cufe,
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "currency": self.currency,
            "environment": self.environment,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "issuer": {
                "nit": self.issuer_nit,
                "name": self.issuer_name,
                "address": self.issuer_address,
                "city": self.issuer_city,
                "department": self.issuer_department,
                "phone": self.issuer_phone,
                "email": self.issuer_email,
            },
            "customer": {
                "document_type": self.customer_document_type,
                "document_number": self.customer_document_number,
                "name": self.customer_name,
                "address": self.customer_address,
                "city": self.customer_city,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "status": self.status,
            "response_code": self.response_code,
            "response_message": self.response_message,
            "sent_at": to_utc_z(self.sent_at),
            "responded_at": to_utc_z(self.responded_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
