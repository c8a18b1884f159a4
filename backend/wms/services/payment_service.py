# backend/wms/services/payment_service.py
"""
Payment service.

WHY: Record money received against a sale and keep Sale.payment_status in
step with it. Only completed payments count towards the paid amount.

PAYMENT STATUS (recomputed after every change):
- pending: nothing paid
- partial: 0 < paid < total
- paid: paid >= total
- overdue: not fully paid and the completed sale is past its due date

PAYMENT LIFECYCLE:
- pending -> completed (complete_payment) | cancelled (cancel_payment)
- completed payments are final here; reversing one means cancelling the sale
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import Payment, Sale
from ..models.sales import PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import NotFoundError, require_choice
from .concurrency import lock_for_update, run_with_retry
from .query_utils import paginate, get_or_raise

logger = logging.getLogger(__name__)


PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_COMPLETED = "completed"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"

SALE_PAYMENT_PENDING = "pending"
SALE_PAYMENT_PARTIAL = "partial"
SALE_PAYMENT_PAID = "paid"
SALE_PAYMENT_OVERDUE = "overdue"


class PaymentError(Exception):
    """Raised when payment operations fail."""
    pass


def compute_payment_status(sale: Sale) -> str:
    paid = sale.total_paid_cents
    total = sale.total_cents or 0

    if paid <= 0:
        status = SALE_PAYMENT_PENDING
    elif paid < total:
        status = SALE_PAYMENT_PARTIAL
    else:
        status = SALE_PAYMENT_PAID

    if status != SALE_PAYMENT_PAID and sale.is_overdue:
        status = SALE_PAYMENT_OVERDUE
    return status


def update_sale_payment_status(sale: Sale) -> str:
    """Recompute and store the sale's payment_status."""
    db.session.flush()
    db.session.expire(sale, ["payments"])
    sale.payment_status = compute_payment_status(sale)
    db.session.flush()
    return sale.payment_status


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def _lock_payment(payment_id: int) -> Payment:
    payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _check_amount(sale: Sale, amount_cents: int) -> None:
    if amount_cents <= 0:
        raise PaymentError("Payment amount must be greater than zero")
    balance = sale.pending_balance_cents
    if amount_cents > balance:
        raise PaymentError(
            f"Payment amount {amount_cents} exceeds pending balance {balance}"
        )


def get_payment(payment_id: int) -> Payment:
    return get_or_raise(Payment, payment_id, "Payment")


def list_payments(
    *,
    sale_id: int | None = None,
    status: str | None = None,
    payment_method: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Payment)
    if sale_id is not None:
        query = query.filter(Payment.sale_id == sale_id)
    if status:
        query = query.filter(Payment.status == status)
    if payment_method:
        query = query.filter(Payment.payment_method == payment_method)
    if date_from is not None:
        query = query.filter(Payment.payment_date >= date_from)
    if date_to is not None:
        query = query.filter(Payment.payment_date <= date_to)
    if search:
        like = f"%{search.strip()}%"
        query = query.join(Sale, Sale.id == Payment.sale_id).filter(
            or_(Payment.reference_number.ilike(like), Sale.sale_number.ilike(like))
        )
    query = query.order_by(Payment.payment_date.desc(), Payment.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda p: p.to_dict())


def create_payment(
    *,
    sale_id: int,
    payment_method: str,
    amount_cents: int,
    user_id: int | None = None,
    status: str = PAYMENT_STATUS_COMPLETED,
    reference_number: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> Payment:
    """
    Record a payment against a sale.

    Args:
        sale_id: Sale being paid
        payment_method: One of PAYMENT_METHODS
        amount_cents: > 0 and <= the sale's pending balance
        status: "completed" (default) or "pending"

    Returns:
        Payment: The recorded payment

    Raises:
        PaymentError: Cancelled sale or amount out of range
    """
    def _op():
        return record_payment(
            _lock_sale(sale_id),
            payment_method=payment_method,
            amount_cents=amount_cents,
            user_id=user_id,
            status=status,
            reference_number=reference_number,
            notes=notes,
            payment_date=payment_date,
        )

    return run_with_retry(_op)


def record_payment(
    sale: Sale,
    *,
    payment_method: str,
    amount_cents: int,
    user_id: int | None = None,
    status: str = PAYMENT_STATUS_COMPLETED,
    reference_number: str | None = None,
    notes: str | None = None,
    payment_date: datetime | None = None,
) -> Payment:
    """Add a payment to an already locked sale. Runs inside the caller's unit of work."""
    if sale.status == "cancelled":
        raise PaymentError("Cannot add payments to a cancelled sale")

    require_choice(payment_method, "payment_method", PAYMENT_METHODS)
    require_choice(status, "status", (PAYMENT_STATUS_COMPLETED, PAYMENT_STATUS_PENDING))
    _check_amount(sale, amount_cents)

    payment = Payment(
        sale_id=sale.id,
        payment_method=payment_method,
        amount_cents=amount_cents,
        payment_date=payment_date or utcnow(),
        reference_number=reference_number,
        notes=notes,
        status=status,
        user_id=user_id,
    )
    db.session.add(payment)
    db.session.flush()

    update_sale_payment_status(sale)
    logger.info("Recorded %s payment %s of %s on sale %s", status, payment.id, amount_cents, sale.sale_number)
    return payment


def update_payment(payment_id: int, patch: dict) -> Payment:
    """
    Edit a pending payment (method, amount, reference, notes, date).

    Raises:
        PaymentError: Payment is not pending or the new amount is out of range
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != PAYMENT_STATUS_PENDING:
            raise PaymentError(f"Cannot edit payment in {payment.status} status")

        sale = _lock_sale(payment.sale_id)
        if "payment_method" in patch:
            require_choice(patch["payment_method"], "payment_method", PAYMENT_METHODS)
        if "amount_cents" in patch:
            _check_amount(sale, patch["amount_cents"])

        for field in ("payment_method", "amount_cents", "reference_number", "notes", "payment_date"):
            if field in patch and patch[field] is not None:
                setattr(payment, field, patch[field])
        db.session.flush()

        update_sale_payment_status(sale)
        return payment

    return run_with_retry(_op)


def complete_payment(payment_id: int) -> Payment:
    """pending -> completed; the amount must still fit in the pending balance."""
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status != PAYMENT_STATUS_PENDING:
            raise PaymentError(f"Cannot complete payment in {payment.status} status")

        sale = _lock_sale(payment.sale_id)
        if sale.status == "cancelled":
            raise PaymentError("Cannot complete a payment on a cancelled sale")
        _check_amount(sale, payment.amount_cents)

        payment.status = PAYMENT_STATUS_COMPLETED
        db.session.flush()

        update_sale_payment_status(sale)
        return payment

    return run_with_retry(_op)


def cancel_payment(payment_id: int) -> Payment:
    """
    Cancel a payment that has not been completed.

    Raises:
        PaymentError: Payment is completed or already cancelled
    """
    def _op():
        payment = _lock_payment(payment_id)
        if payment.status == PAYMENT_STATUS_COMPLETED:
            raise PaymentError("Cannot cancel a completed payment")
        if payment.status == PAYMENT_STATUS_CANCELLED:
            raise PaymentError("Payment is already cancelled")

        payment.status = PAYMENT_STATUS_CANCELLED
        payment.cancelled_at = utcnow()
        db.session.flush()

        update_sale_payment_status(_lock_sale(payment.sale_id))
        return payment

    return run_with_retry(_op)


def delete_payment(payment_id: int) -> None:
    payment = _lock_payment(payment_id)
    if payment.status == PAYMENT_STATUS_COMPLETED:
        raise PaymentError("Cannot delete a completed payment")
    sale = _lock_sale(payment.sale_id)
    db.session.delete(payment)
    db.session.flush()
    update_sale_payment_status(sale)


def cancel_sale_payments(sale: Sale) -> int:
    """Cancel every non-cancelled payment of a sale. Used when the sale is cancelled."""
    count = 0
    now = utcnow()
    for payment in sale.payments:
        if payment.status != PAYMENT_STATUS_CANCELLED:
            payment.status = PAYMENT_STATUS_CANCELLED
            payment.cancelled_at = now
            count += 1
    db.session.flush()
    update_sale_payment_status(sale)
    return count


def get_payment_summary(sale_id: int) -> dict:
    sale = get_or_raise(Sale, sale_id, "Sale")
    by_method: dict[str, int] = {}
    for payment in sale.payments:
        if payment.status == PAYMENT_STATUS_COMPLETED:
            by_method[payment.payment_method] = by_method.get(payment.payment_method, 0) + payment.amount_cents
    return {
        "sale_id": sale.id,
        "total_cents": sale.total_cents,
        "total_paid_cents": sale.total_paid_cents,
        "pending_balance_cents": sale.pending_balance_cents,
        "payment_status": sale.payment_status,
        "by_method": by_method,
        "payments": [p.to_dict() for p in sale.payments],
    }


def refresh_overdue_sales() -> int:
    """Re-evaluate payment_status of completed, unpaid sales whose due date passed."""
    sales = (
        db.session.query(Sale)
        .filter(
            Sale.status == "completed",
            Sale.payment_status.in_((SALE_PAYMENT_PENDING, SALE_PAYMENT_PARTIAL)),
            Sale.due_date.isnot(None),
            Sale.due_date < utcnow(),
        )
        .all()
    )
    changed = 0
    for sale in sales:
        before = sale.payment_status
        if update_sale_payment_status(sale) != before:
            changed += 1
    return changed
