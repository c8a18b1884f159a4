# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

# backend/wms/routes/payments.py
"""
Payment API Routes

WHY: Record money received against sales.

DESIGN:
- Split payments: any number of payments per sale
- Amount must fit in the sale's pending balance
- Sale payment_status recomputed after every change
"""
from flask import Blueprint, request, g

from ..models import Payment
from ..models.sales import PAYMENT_METHODS
from ..responses import success
from ..request_args import arg_datetime, json_body
from ..services import payment_service
from ..services.concurrency import run_in_transaction
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    validate_payload,
    enforce_amount_cents,
)
from ..decorators import require_actor, api_errors

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"sale_id", "payment_method", "amount_cents", "payment_date", "reference_number", "notes", "status"},
    required_on_create={"sale_id", "payment_method", "amount_cents"},
    choices={
        "payment_method": PAYMENT_METHODS,
        "status": (payment_service.PAYMENT_STATUS_COMPLETED, payment_service.PAYMENT_STATUS_PENDING),
    },
)


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.get("")
@api_errors("list payments")
def list_payments_route():
    """
    Query params: sale_id, status, payment_method, date_from, date_to,
    search (reference or sale number), page, per_page.
    """
    result = payment_service.list_payments(
        sale_id=request.args.get("sale_id", type=int),
        status=request.args.get("status"),
        payment_method=request.args.get("payment_method"),
        date_from=arg_datetime("date_from"),
        date_to=arg_datetime("date_to"),
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@payments_bp.get("/<int:payment_id>")
@api_errors("get payment")
def get_payment_route(payment_id: int):
    return success(payment_service.get_payment(payment_id).to_dict())


@payments_bp.post("")
@require_actor
@api_errors("add payment")
def add_payment_route():
    """
    Add a payment to a sale.

    Request body:
    {
        "sale_id": 123,
        "payment_method": "card",
        "amount_cents": 10000,
        "reference_number": "AUTH-12345",  (optional)
        "status": "completed"  (optional, or "pending")
    }

    Returns:
        201: Payment created, with the sale's payment summary
        422: Invalid input, cancelled sale or amount above the pending balance
    """
    patch = validate_payload(model=Payment, payload=json_body(), policy=PAYMENT_POLICY, partial=False)
    enforce_amount_cents(patch, "amount_cents")

    payment = run_in_transaction(lambda: payment_service.create_payment(
        sale_id=patch["sale_id"],
        payment_method=patch["payment_method"],
        amount_cents=patch["amount_cents"],
        user_id=g.current_user.id,
        status=patch.get("status") or payment_service.PAYMENT_STATUS_COMPLETED,
        reference_number=patch.get("reference_number"),
        notes=patch.get("notes"),
        payment_date=patch.get("payment_date"),
    ))
    summary = payment_service.get_payment_summary(payment.sale_id)
    return success({"payment": payment.to_dict(), "summary": summary}, "Payment recorded", 201)


@payments_bp.put("/<int:payment_id>")
@require_actor
@api_errors("update payment")
def update_payment_route(payment_id: int):
    payload = json_body()
    if "sale_id" in payload or "status" in payload:
        raise ValidationError("sale_id and status cannot be edited", {"sale_id": "not allowed", "status": "not allowed"})
    patch = validate_payload(model=Payment, payload=payload, policy=PAYMENT_POLICY, partial=True)
    enforce_amount_cents(patch, "amount_cents")

    payment = run_in_transaction(lambda: payment_service.update_payment(payment_id, patch))
    return success(payment.to_dict(), "Payment updated")


@payments_bp.delete("/<int:payment_id>")
@require_actor
@api_errors("delete payment")
def delete_payment_route(payment_id: int):
    run_in_transaction(lambda: payment_service.delete_payment(payment_id))
    return success(None, "Payment deleted")


@payments_bp.post("/<int:payment_id>/complete")
@require_actor
@api_errors("complete payment")
def complete_payment_route(payment_id: int):
    payment = run_in_transaction(lambda: payment_service.complete_payment(payment_id))
    return success(payment.to_dict(), "Payment completed")


@payments_bp.post("/<int:payment_id>/cancel")
@require_actor
@api_errors("cancel payment")
def cancel_payment_route(payment_id: int):
    payment = run_in_transaction(lambda: payment_service.cancel_payment(payment_id))
    return success(payment.to_dict(), "Payment cancelled")


@payments_bp.get("/sales/<int:sale_id>")
@api_errors("get sale payments")
def sale_payment_summary_route(sale_id: int):
    """Totals, pending balance and per-method breakdown for one sale."""
    return success(payment_service.get_payment_summary(sale_id))
