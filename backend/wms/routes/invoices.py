# Overview: Flask API routes for electronic invoices.

from flask import Blueprint, request

from ..responses import success
from ..request_args import json_body
from ..services import invoice_service
from ..services.concurrency import run_in_transaction
from ..validation import ValidationError, coerce_int
from ..decorators import require_actor, api_errors


invoices_bp = Blueprint("electronic_invoices", __name__, url_prefix="/api/electronic-invoices")


@invoices_bp.get("")
@api_errors("list electronic invoices")
def list_invoices_route():
    result = invoice_service.list_invoices(
        status=request.args.get("status"),
        sale_id=request.args.get("sale_id", type=int),
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@invoices_bp.get("/<int:invoice_id>")
@api_errors("get electronic invoice")
def get_invoice_route(invoice_id: int):
    invoice = invoice_service.get_invoice(invoice_id)
    data = invoice.to_dict()
    data["validation_errors"] = invoice_service.validate_invoice(invoice)
    return success(data)


@invoices_bp.post("")
@require_actor
@api_errors("issue electronic invoice")
def create_invoice_route():
    """Body: {"sale_id": 12}. Returns the existing invoice if the sale already has one."""
    payload = json_body()
    if payload.get("sale_id") is None:
        raise ValidationError("sale_id is required", {"sale_id": "is required"})
    sale_id = coerce_int(payload["sale_id"], "sale_id")

    invoice = run_in_transaction(lambda: invoice_service.create_invoice_for_sale(sale_id))
    return success(invoice.to_dict(), "Electronic invoice issued", 201)


@invoices_bp.post("/<int:invoice_id>/send")
@require_actor
@api_errors("send electronic invoice")
def send_invoice_route(invoice_id: int):
    invoice = run_in_transaction(lambda: invoice_service.send_invoice(invoice_id))
    return success(invoice.to_dict(), "Electronic invoice sent")


@invoices_bp.post("/<int:invoice_id>/response")
@require_actor
@api_errors("record electronic invoice response")
def record_response_route(invoice_id: int):
    """
    Request body:
    {
        "outcome": "accepted" | "rejected",
        "response_code": "00",  (optional)
        "response_message": "Procesado correctamente"  (optional)
    }
    """
    payload = json_body()
    invoice = run_in_transaction(lambda: invoice_service.record_invoice_response(
        invoice_id,
        outcome=payload.get("outcome"),
        response_code=payload.get("response_code"),
        response_message=payload.get("response_message"),
    ))
    return success(invoice.to_dict(), f"Electronic invoice {invoice.status}")


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_actor
@api_errors("cancel electronic invoice")
def cancel_invoice_route(invoice_id: int):
    invoice = run_in_transaction(lambda: invoice_service.cancel_invoice(invoice_id))
    return success(invoice.to_dict(), "Electronic invoice cancelled")
