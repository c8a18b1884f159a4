# Overview: Flask API routes for stock adjustments; parses input and returns JSON responses.

# backend/wms/routes/adjustments.py
"""
Stock Adjustment API Routes

WHY: Reconcile recorded quantities with reality (counts, damage, loss).

LIFECYCLE:
- POST /                       create draft
- POST /<id>/submit            draft -> pending
- POST /<id>/approve           pending -> approved (approver != creator)
- POST /<id>/apply             approved -> applied (writes stock movements)
- POST /<id>/cancel            draft/pending/approved -> cancelled
- POST /generate-from-count    draft recount built from counted quantities
"""
from flask import Blueprint, request, g

from ..models.documents import ADJUSTMENT_TYPES, ADJUSTMENT_REASONS
from ..responses import success
from ..request_args import arg_datetime, json_body
from ..services import adjustment_service
from ..services.concurrency import run_in_transaction
from ..services.products_service import current_stock
from ..validation import ValidationError, coerce_int, coerce_datetime, require_items, require_choice
from ..decorators import require_actor, api_errors


adjustments_bp = Blueprint("stock_adjustments", __name__, url_prefix="/api/stock-adjustments")


def _optional_int(payload: dict, key: str):
    value = payload.get(key)
    return coerce_int(value, key) if value is not None else None


def _parse_header(payload: dict, *, partial: bool) -> dict:
    header = {}
    for key in ("warehouse_id", "location_id"):
        if key in payload:
            header[key] = _optional_int(payload, key)
    if "type" in payload:
        header["type"] = require_choice(payload["type"], "type", ADJUSTMENT_TYPES)
    if "reason" in payload:
        header["reason"] = require_choice(payload["reason"], "reason", ADJUSTMENT_REASONS)
    if payload.get("adjustment_date") is not None:
        header["adjustment_date"] = coerce_datetime(payload["adjustment_date"], "adjustment_date")
    if "notes" in payload:
        header["notes"] = payload["notes"]

    if not partial:
        missing = sorted(k for k in ("warehouse_id", "type", "reason") if header.get(k) is None)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {k: "is required" for k in missing},
            )
    return header


@adjustments_bp.get("")
@api_errors("list stock adjustments")
def list_adjustments_route():
    """
    Query params: status, type, reason, warehouse_id, date_from, date_to,
    search (number or notes), page, per_page.
    """
    result = adjustment_service.list_adjustments(
        status=request.args.get("status"),
        adjustment_type=request.args.get("type"),
        reason=request.args.get("reason"),
        warehouse_id=request.args.get("warehouse_id", type=int),
        date_from=arg_datetime("date_from"),
        date_to=arg_datetime("date_to"),
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@adjustments_bp.get("/current-stock")
@api_errors("read current stock")
def current_stock_route():
    """?product_ids=1,2,3 -> on-hand quantities for pre-filling adjustment lines."""
    raw = request.args.get("product_ids", "")
    ids = [coerce_int(part, "product_ids") for part in raw.split(",") if part.strip()]
    return success(current_stock(ids))


@adjustments_bp.get("/<int:adjustment_id>")
@api_errors("get stock adjustment")
def get_adjustment_route(adjustment_id: int):
    return success(adjustment_service.get_adjustment(adjustment_id).to_dict())


@adjustments_bp.post("")
@require_actor
@api_errors("create stock adjustment")
def create_adjustment_route():
    """
    Request body:
    {
        "warehouse_id": 1,
        "location_id": 4,  (optional)
        "type": "decrease",
        "reason": "damaged_goods",
        "adjustment_date": "2024-01-15T10:00:00Z",  (optional)
        "notes": "...",  (optional)
        "items": [{"product_id": 7, "adjusted_quantity": 3, "current_quantity": 5, "unit_cost_cents": 1200}]
    }
    """
    payload = json_body()
    header = _parse_header(payload, partial=False)
    items = require_items(payload)

    adjustment = run_in_transaction(lambda: adjustment_service.create_adjustment(
        warehouse_id=header["warehouse_id"],
        location_id=header.get("location_id"),
        adjustment_type=header["type"],
        reason=header["reason"],
        adjustment_date=header.get("adjustment_date"),
        notes=header.get("notes"),
        items=items,
        user_id=g.current_user.id,
    ))
    return success(adjustment.to_dict(), "Stock adjustment created", 201)


@adjustments_bp.put("/<int:adjustment_id>")
@require_actor
@api_errors("update stock adjustment")
def update_adjustment_route(adjustment_id: int):
    payload = json_body()
    header = _parse_header(payload, partial=True)
    items = require_items(payload) if "items" in payload else None

    adjustment = run_in_transaction(
        lambda: adjustment_service.update_adjustment(adjustment_id, header=header, items=items)
    )
    return success(adjustment.to_dict(), "Stock adjustment updated")


@adjustments_bp.delete("/<int:adjustment_id>")
@require_actor
@api_errors("delete stock adjustment")
def delete_adjustment_route(adjustment_id: int):
    run_in_transaction(lambda: adjustment_service.delete_adjustment(adjustment_id))
    return success(None, "Stock adjustment deleted")


@adjustments_bp.post("/<int:adjustment_id>/submit")
@require_actor
@api_errors("submit stock adjustment")
def submit_adjustment_route(adjustment_id: int):
    adjustment = run_in_transaction(
        lambda: adjustment_service.submit_adjustment(adjustment_id, g.current_user.id)
    )
    return success(adjustment.to_dict(), "Stock adjustment submitted for approval")


@adjustments_bp.post("/<int:adjustment_id>/approve")
@require_actor
@api_errors("approve stock adjustment")
def approve_adjustment_route(adjustment_id: int):
    adjustment = run_in_transaction(
        lambda: adjustment_service.approve_adjustment(adjustment_id, g.current_user.id)
    )
    return success(adjustment.to_dict(), "Stock adjustment approved")


@adjustments_bp.post("/<int:adjustment_id>/apply")
@require_actor
@api_errors("apply stock adjustment")
def apply_adjustment_route(adjustment_id: int):
    """
    Apply an approved adjustment.

    Every item's product quantity becomes its adjusted quantity and one
    "adjustment" movement is written per changed item. Nothing is written if
    any product would go negative.
    """
    adjustment = run_in_transaction(
        lambda: adjustment_service.apply_adjustment(adjustment_id, g.current_user.id)
    )
    return success(adjustment.to_dict(), "Stock adjustment applied")


@adjustments_bp.post("/<int:adjustment_id>/cancel")
@require_actor
@api_errors("cancel stock adjustment")
def cancel_adjustment_route(adjustment_id: int):
    adjustment = run_in_transaction(
        lambda: adjustment_service.cancel_adjustment(adjustment_id, g.current_user.id)
    )
    return success(adjustment.to_dict(), "Stock adjustment cancelled")


@adjustments_bp.post("/generate-from-count")
@require_actor
@api_errors("generate adjustment from count")
def generate_from_count_route():
    """
    Request body:
    {
        "warehouse_id": 1,
        "location_id": 4,  (optional)
        "counts": [{"product_id": 7, "counted_quantity": 9}],
        "notes": "Cycle count aisle A"  (optional)
    }
    """
    payload = json_body()
    warehouse_id = _optional_int(payload, "warehouse_id")
    if warehouse_id is None:
        raise ValidationError("warehouse_id is required", {"warehouse_id": "is required"})
    counts = require_items(payload, key="counts")

    adjustment = run_in_transaction(lambda: adjustment_service.generate_from_count(
        warehouse_id=warehouse_id,
        location_id=_optional_int(payload, "location_id"),
        counts=counts,
        user_id=g.current_user.id,
        notes=payload.get("notes"),
    ))
    return success(adjustment.to_dict(), "Stock adjustment generated from count", 201)


@adjustments_bp.get("/types")
@api_errors("list adjustment types")
def adjustment_types_route():
    return success(list(ADJUSTMENT_TYPES))


@adjustments_bp.get("/reasons")
@api_errors("list adjustment reasons")
def adjustment_reasons_route():
    return success(list(ADJUSTMENT_REASONS))


@adjustments_bp.get("/statuses")
@api_errors("list adjustment statuses")
def adjustment_statuses_route():
    return success(list(adjustment_service.ADJUSTMENT_STATUSES))
