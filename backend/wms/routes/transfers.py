# Overview: Flask API routes for inter-warehouse transfers; parses input and returns JSON responses.

# backend/wms/routes/transfers.py
"""
Stock Transfer API Routes

WHY: Move stock between warehouses (or locations) with a document trail.

LIFECYCLE:
- POST /                 create draft
- POST /<id>/approve     draft -> pending
- POST /<id>/start       pending -> in_transit (availability checked)
- POST /<id>/complete    in_transit -> completed (transfer_out + transfer_in movements)
- POST /<id>/cancel      any state before completed -> cancelled
"""
from flask import Blueprint, request, g

from ..models.documents import TRANSFER_TYPES, TRANSFER_PRIORITIES
from ..responses import success
from ..request_args import arg_datetime, json_body
from ..services import transfer_service
from ..services.concurrency import run_in_transaction
from ..validation import ValidationError, coerce_int, coerce_datetime, require_items, require_choice
from ..decorators import require_actor, api_errors


transfers_bp = Blueprint("stock_transfers", __name__, url_prefix="/api/stock-transfers")

ID_FIELDS = ("from_warehouse_id", "from_location_id", "to_warehouse_id", "to_location_id")
TEXT_FIELDS = ("carrier", "reason", "notes")


def _parse_header(payload: dict, *, partial: bool) -> dict:
    header = {}
    for key in ID_FIELDS:
        if key in payload:
            header[key] = coerce_int(payload[key], key) if payload[key] is not None else None
    if payload.get("type") is not None:
        header["type"] = require_choice(payload["type"], "type", TRANSFER_TYPES)
    if payload.get("priority") is not None:
        header["priority"] = require_choice(payload["priority"], "priority", TRANSFER_PRIORITIES)
    if "expected_date" in payload:
        raw = payload["expected_date"]
        header["expected_date"] = coerce_datetime(raw, "expected_date") if raw is not None else None
    for key in TEXT_FIELDS:
        if key in payload:
            header[key] = payload[key]

    if not partial:
        missing = sorted(k for k in ("from_warehouse_id", "to_warehouse_id") if header.get(k) is None)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {k: "is required" for k in missing},
            )
    return header


@transfers_bp.get("")
@api_errors("list stock transfers")
def list_transfers_route():
    """
    Query params: status, type, priority, warehouse_id (either side),
    date_from, date_to, search (number or tracking), page, per_page.
    """
    result = transfer_service.list_transfers(
        status=request.args.get("status"),
        transfer_type=request.args.get("type"),
        priority=request.args.get("priority"),
        warehouse_id=request.args.get("warehouse_id", type=int),
        date_from=arg_datetime("date_from"),
        date_to=arg_datetime("date_to"),
        search=request.args.get("search"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@transfers_bp.get("/<int:transfer_id>")
@api_errors("get stock transfer")
def get_transfer_route(transfer_id: int):
    return success(transfer_service.get_transfer(transfer_id).to_dict())


@transfers_bp.post("")
@require_actor
@api_errors("create stock transfer")
def create_transfer_route():
    """
    Request body:
    {
        "from_warehouse_id": 1,
        "to_warehouse_id": 2,
        "from_location_id": 3,  (optional)
        "to_location_id": 8,  (optional)
        "type": "internal",  (optional)
        "priority": "normal",  (optional)
        "expected_date": "2024-01-20T00:00:00Z",  (optional)
        "items": [{"product_id": 7, "quantity": 4}]
    }
    """
    payload = json_body()
    header = _parse_header(payload, partial=False)
    items = require_items(payload)

    transfer = run_in_transaction(lambda: transfer_service.create_transfer(
        header=header,
        items=items,
        user_id=g.current_user.id,
    ))
    return success(transfer.to_dict(), "Stock transfer created", 201)


@transfers_bp.put("/<int:transfer_id>")
@require_actor
@api_errors("update stock transfer")
def update_transfer_route(transfer_id: int):
    payload = json_body()
    header = _parse_header(payload, partial=True)
    items = require_items(payload) if "items" in payload else None

    transfer = run_in_transaction(
        lambda: transfer_service.update_transfer(transfer_id, header=header, items=items)
    )
    return success(transfer.to_dict(), "Stock transfer updated")


@transfers_bp.delete("/<int:transfer_id>")
@require_actor
@api_errors("delete stock transfer")
def delete_transfer_route(transfer_id: int):
    run_in_transaction(lambda: transfer_service.delete_transfer(transfer_id))
    return success(None, "Stock transfer deleted")


@transfers_bp.post("/<int:transfer_id>/approve")
@require_actor
@api_errors("approve stock transfer")
def approve_transfer_route(transfer_id: int):
    transfer = run_in_transaction(lambda: transfer_service.approve_transfer(transfer_id, g.current_user.id))
    return success(transfer.to_dict(), "Stock transfer approved")


@transfers_bp.post("/<int:transfer_id>/start")
@require_actor
@api_errors("start stock transfer")
def start_transfer_route(transfer_id: int):
    """Optional body: {"tracking_number": "TRK-123"}."""
    payload = json_body()
    transfer = run_in_transaction(lambda: transfer_service.start_transfer(
        transfer_id,
        g.current_user.id,
        tracking_number=payload.get("tracking_number"),
    ))
    return success(transfer.to_dict(), "Stock transfer in transit")


@transfers_bp.post("/<int:transfer_id>/complete")
@require_actor
@api_errors("complete stock transfer")
def complete_transfer_route(transfer_id: int):
    """
    Receive a transfer.

    Optional body:
    {
        "received": {"<item_id>": 3},  (defaults to the shipped quantity)
        "receiving_notes": "One unit damaged"
    }
    """
    payload = json_body()
    received = payload.get("received") or {}
    if not isinstance(received, dict):
        raise ValidationError("received must be an object", {"received": "must be an object"})

    transfer = run_in_transaction(lambda: transfer_service.complete_transfer(
        transfer_id,
        g.current_user.id,
        received=received,
        receiving_notes=payload.get("receiving_notes"),
    ))
    return success(transfer.to_dict(), "Stock transfer completed")


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_actor
@api_errors("cancel stock transfer")
def cancel_transfer_route(transfer_id: int):
    payload = json_body()
    transfer = run_in_transaction(lambda: transfer_service.cancel_transfer(
        transfer_id,
        g.current_user.id,
        reason=payload.get("reason"),
    ))
    return success(transfer.to_dict(), "Stock transfer cancelled")


@transfers_bp.get("/statuses")
@api_errors("list transfer statuses")
def transfer_statuses_route():
    return success(list(transfer_service.TRANSFER_STATUSES))


@transfers_bp.get("/types")
@api_errors("list transfer types")
def transfer_types_route():
    return success(list(TRANSFER_TYPES))


@transfers_bp.get("/priorities")
@api_errors("list transfer priorities")
def transfer_priorities_route():
    return success(list(TRANSFER_PRIORITIES))
