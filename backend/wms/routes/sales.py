# Overview: Flask API routes for sales; parses input and returns JSON responses.

# backend/wms/routes/sales.py
"""
Sales API Routes

LIFECYCLE:
- POST /                 create draft (lines checked against current stock)
- PUT  /<id>             edit draft
- POST /<id>/complete    draft -> completed (stock decremented)
- POST /<id>/cancel      draft|completed -> cancelled (completed sales restore stock)
- POST /<id>/electronic-invoice  issue the electronic invoice of a completed sale
"""
from flask import Blueprint, request, g

from ..models.sales import PAYMENT_METHODS
from ..responses import success
from ..request_args import arg_datetime, json_body
from ..services import sales_service, invoice_service
from ..services.concurrency import run_in_transaction
from ..services.payment_service import get_payment_summary
from ..validation import ValidationError, coerce_bool, coerce_int, require_items, require_choice
from ..decorators import require_actor, api_errors


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _parse_header(payload: dict) -> dict:
    header = {}
    for key in ("customer_id", "warehouse_id", "discount_cents"):
        if key in payload:
            header[key] = coerce_int(payload[key], key) if payload[key] is not None else None
    if payload.get("payment_method") is not None:
        header["payment_method"] = require_choice(payload["payment_method"], "payment_method", PAYMENT_METHODS)
    if "notes" in payload:
        header["notes"] = payload["notes"]
    if "requires_electronic_invoice" in payload:
        header["requires_electronic_invoice"] = coerce_bool(payload["requires_electronic_invoice"])
    if header.get("discount_cents") is not None and header["discount_cents"] < 0:
        raise ValidationError("discount_cents must be >= 0", {"discount_cents": "must be >= 0"})
    return header


@sales_bp.get("")
@api_errors("list sales")
def list_sales_route():
    """
    Query params: status, payment_status, payment_method, customer_id,
    date_from, date_to, search (sale/invoice number or customer name),
    page, per_page.
    """
    result = sales_service.list_sales(
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
        payment_method=request.args.get("payment_method"),
        customer_id=request.args.get("customer_id", type=int),
        date_from=arg_datetime("date_from"),
        date_to=arg_datetime("date_to"),
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@sales_bp.get("/<int:sale_id>")
@api_errors("get sale")
def get_sale_route(sale_id: int):
    return success(sales_service.get_sale(sale_id).to_dict())


@sales_bp.post("")
@require_actor
@api_errors("create sale")
def create_sale_route():
    """
    Request body:
    {
        "customer_id": 3,  (optional)
        "warehouse_id": 1,  (optional)
        "payment_method": "cash",
        "discount_cents": 0,  (optional, off the total)
        "items": [
            {"product_id": 7, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 0, "tax_rate_bps": 1900}
        ]
    }

    unit_price_cents and tax_rate_bps default to the product's values.
    """
    payload = json_body()
    header = _parse_header(payload)
    items = require_items(payload)

    sale = run_in_transaction(lambda: sales_service.create_sale(
        header=header,
        items=items,
        user_id=g.current_user.id,
    ))
    return success(sale.to_dict(), "Sale created", 201)


@sales_bp.put("/<int:sale_id>")
@require_actor
@api_errors("update sale")
def update_sale_route(sale_id: int):
    payload = json_body()
    header = _parse_header(payload)
    items = require_items(payload) if "items" in payload else None

    sale = run_in_transaction(lambda: sales_service.update_sale(sale_id, header=header, items=items))
    return success(sale.to_dict(), "Sale updated")


@sales_bp.delete("/<int:sale_id>")
@require_actor
@api_errors("delete sale")
def delete_sale_route(sale_id: int):
    run_in_transaction(lambda: sales_service.delete_sale(sale_id))
    return success(None, "Sale deleted")


@sales_bp.post("/<int:sale_id>/complete")
@require_actor
@api_errors("complete sale")
def complete_sale_route(sale_id: int):
    sale = run_in_transaction(lambda: sales_service.complete_sale(sale_id, g.current_user.id))
    return success(sale.to_dict(), "Sale completed")


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
@api_errors("cancel sale")
def cancel_sale_route(sale_id: int):
    payload = json_body()
    sale = run_in_transaction(lambda: sales_service.cancel_sale(
        sale_id,
        g.current_user.id,
        reason=payload.get("reason"),
    ))
    return success(sale.to_dict(), "Sale cancelled")


@sales_bp.get("/<int:sale_id>/payments")
@api_errors("get sale payments")
def sale_payments_route(sale_id: int):
    return success(get_payment_summary(sale_id))


@sales_bp.post("/<int:sale_id>/electronic-invoice")
@require_actor
@api_errors("issue electronic invoice")
def issue_invoice_route(sale_id: int):
    invoice = run_in_transaction(lambda: invoice_service.create_invoice_for_sale(sale_id))
    return success(invoice.to_dict(), "Electronic invoice issued", 201)
