"""
Electronic invoice service.

WHY: A completed sale can be issued as an electronic invoice. The invoice
snapshots issuer and customer data, carries a per-prefix consecutive number
and a CUFE (unique invoice code), and tracks its submission state.

LIFECYCLE:
- draft -> sent (send_invoice, only when validate_invoice finds no errors)
- sent -> accepted | rejected (record_invoice_response)
- draft | rejected -> cancelled (cancel_invoice)

No network submission happens here; the response is recorded by the caller.
"""
from __future__ import annotations

import hashlib
import logging

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import ElectronicInvoice, Sale
from ..models.customers import DOCUMENT_TYPES
from ..time_utils import utcnow
from ..validation import NotFoundError, require_choice
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_sequence_value
from .query_utils import paginate, get_or_raise

logger = logging.getLogger(__name__)


INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_ACCEPTED = "accepted"
INVOICE_STATUS_REJECTED = "rejected"
INVOICE_STATUS_CANCELLED = "cancelled"

INVOICE_RESPONSES = (INVOICE_STATUS_ACCEPTED, INVOICE_STATUS_REJECTED)

# Tax scheme codes in the CUFE string: IVA, INC, ICA
TAX_CODE_IVA = "01"
TAX_CODE_INC = "04"
TAX_CODE_ICA = "03"

CONSECUTIVE_PAD = 8


class InvoiceError(Exception):
    """Raised for electronic invoice operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _money(cents: int) -> str:
    return f"{(cents or 0) // 100}.{(cents or 0) % 100:02d}"


def compute_cufe(invoice: ElectronicInvoice, *, technical_key: str, environment: str) -> str:
    """
    SHA-1 over the concatenation of:
    invoice number, issue date, issue time, total, IVA code + amount,
    INC code + 0.00, ICA code + 0.00, customer document number,
    technical key, environment.
    """
    parts = [
        invoice.invoice_number,
        invoice.issue_date.strftime("%Y-%m-%d"),
        invoice.issue_date.strftime("%H:%M:%S"),
        _money(invoice.total_cents),
        TAX_CODE_IVA,
        _money(invoice.tax_cents),
        TAX_CODE_INC,
        "0.00",
        TAX_CODE_ICA,
        "0.00",
        invoice.customer_document_number or "",
        technical_key or "",
        environment or "",
    ]
    return hashlib.sha1("".join(parts).encode("utf-8")).hexdigest()


def validate_invoice(invoice: ElectronicInvoice) -> list[str]:
    """Return the list of missing or invalid fields; empty means sendable."""
    errors = []
    if not invoice.issuer_nit:
        errors.append("issuer_nit is required")
    if not invoice.issuer_name:
        errors.append("issuer_name is required")
    if not invoice.issuer_address:
        errors.append("issuer_address is required")
    if not invoice.issuer_city:
        errors.append("issuer_city is required")
    if not invoice.issuer_department:
        errors.append("issuer_department is required")

    if not invoice.customer_document_type:
        errors.append("customer_document_type is required")
    elif invoice.customer_document_type not in DOCUMENT_TYPES:
        errors.append("customer_document_type is not valid")
    if not invoice.customer_document_number:
        errors.append("customer_document_number is required")
    if not invoice.customer_name:
        errors.append("customer_name is required")

    if invoice.issue_date is None:
        errors.append("issue_date is required")
    if (invoice.subtotal_cents or 0) <= 0:
        errors.append("subtotal_cents must be greater than zero")
    if (invoice.total_cents or 0) <= 0:
        errors.append("total_cents must be greater than zero")
    return errors


def _lock_invoice(invoice_id: int) -> ElectronicInvoice:
    invoice = lock_for_update(db.session.query(ElectronicInvoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError(f"Electronic invoice {invoice_id} not found")
    return invoice


def get_invoice(invoice_id: int) -> ElectronicInvoice:
    return get_or_raise(ElectronicInvoice, invoice_id, "Electronic invoice")


def list_invoices(
    *,
    status: str | None = None,
    sale_id: int | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(ElectronicInvoice)
    if status:
        query = query.filter(ElectronicInvoice.status == status)
    if sale_id is not None:
        query = query.filter(ElectronicInvoice.sale_id == sale_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                ElectronicInvoice.invoice_number.ilike(like),
                ElectronicInvoice.cufe.ilike(like),
                ElectronicInvoice.customer_name.ilike(like),
                ElectronicInvoice.customer_document_number.ilike(like),
            )
        )
    query = query.order_by(ElectronicInvoice.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda i: i.to_dict())


def create_invoice_for_sale(sale_id: int) -> ElectronicInvoice:
    """
    Issue the electronic invoice of a completed sale.

    Idempotent: a sale that already has an invoice gets that invoice back.

    Raises:
        InvoiceError: Sale is not completed
    """
    def _op():
        existing = db.session.query(ElectronicInvoice).filter_by(sale_id=sale_id).first()
        if existing is not None:
            return existing

        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if sale is None:
            raise NotFoundError(f"Sale {sale_id} not found")
        if sale.status != "completed":
            raise InvoiceError(f"Cannot invoice sale in {sale.status} status")

        cfg = current_app.config
        prefix = cfg.get("EINVOICE_PREFIX", "")
        consecutive = next_sequence_value(document_type="EINVOICE", period=prefix)

        invoice = ElectronicInvoice(
            sale_id=sale.id,
            prefix=prefix,
            consecutive_number=consecutive,
            invoice_number=f"{prefix}{consecutive:0{CONSECUTIVE_PAD}d}",
            issue_date=utcnow(),
            due_date=sale.due_date,
            currency=cfg.get("EINVOICE_CURRENCY", "COP"),
            environment=cfg.get("EINVOICE_ENVIRONMENT", "2"),
            subtotal_cents=sale.subtotal_cents,
            tax_cents=sale.tax_cents,
            total_cents=sale.total_cents,
            issuer_nit=cfg.get("EINVOICE_ISSUER_NIT"),
            issuer_name=cfg.get("EINVOICE_ISSUER_NAME"),
            issuer_address=cfg.get("EINVOICE_ISSUER_ADDRESS"),
            issuer_city=cfg.get("EINVOICE_ISSUER_CITY"),
            issuer_department=cfg.get("EINVOICE_ISSUER_DEPARTMENT"),
            issuer_phone=cfg.get("EINVOICE_ISSUER_PHONE"),
            issuer_email=cfg.get("EINVOICE_ISSUER_EMAIL"),
            status=INVOICE_STATUS_DRAFT,
        )
        customer = sale.customer
        if customer is not None:
            invoice.customer_document_type = customer.document_type
            invoice.customer_document_number = customer.tax_id
            invoice.customer_name = customer.name
            invoice.customer_address = customer.address
            invoice.customer_city = customer.city
            invoice.customer_email = customer.email
            invoice.customer_phone = customer.phone

        invoice.cufe = compute_cufe(
            invoice,
            technical_key=cfg.get("EINVOICE_TECHNICAL_KEY", ""),
            environment=invoice.environment,
        )
        db.session.add(invoice)
        db.session.flush()

        logger.info("Issued electronic invoice %s for sale %s", invoice.invoice_number, sale.sale_number)
        return invoice

    return run_with_retry(_op)


def send_invoice(invoice_id: int) -> ElectronicInvoice:
    """
    Mark a draft invoice as sent.

    Raises:
        InvoiceError: Not in draft, or required fields are missing
            (details["errors"] lists them)
    """
    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_DRAFT:
            raise InvoiceError(f"Cannot send invoice in {invoice.status} status")

        errors = validate_invoice(invoice)
        if errors:
            raise InvoiceError("Invoice is missing required fields", details={"errors": errors})

        invoice.status = INVOICE_STATUS_SENT
        invoice.sent_at = utcnow()
        invoice.sale.electronic_invoice_sent = True
        db.session.flush()
        return invoice

    return run_with_retry(_op)


def record_invoice_response(
    invoice_id: int,
    *,
    outcome: str,
    response_code: str | None = None,
    response_message: str | None = None,
) -> ElectronicInvoice:
    """sent -> accepted | rejected, storing the authority's code and message."""
    def _op():
        require_choice(outcome, "outcome", INVOICE_RESPONSES)
        invoice = _lock_invoice(invoice_id)
        if invoice.status != INVOICE_STATUS_SENT:
            raise InvoiceError(f"Cannot record a response for invoice in {invoice.status} status")

        invoice.status = outcome
        invoice.response_code = response_code
        invoice.response_message = response_message
        invoice.responded_at = utcnow()
        db.session.flush()
        return invoice

    return run_with_retry(_op)


def cancel_invoice(invoice_id: int) -> ElectronicInvoice:
    def _op():
        invoice = _lock_invoice(invoice_id)
        if invoice.status not in (INVOICE_STATUS_DRAFT, INVOICE_STATUS_REJECTED):
            raise InvoiceError(f"Cannot cancel invoice in {invoice.status} status")

        invoice.status = INVOICE_STATUS_CANCELLED
        invoice.cancelled_at = utcnow()
        db.session.flush()
        return invoice

    return run_with_retry(_op)
