# Overview: Read-only API over the stock movement ledger.

from flask import Blueprint, request

from ..models import StockMovement
from ..models.inventory import MOVEMENT_TYPES
from ..responses import success
from ..request_args import arg_datetime
from ..services.movement_service import list_movements
from ..services.query_utils import paginate, get_or_raise
from ..validation import require_choice
from ..decorators import api_errors


movements_bp = Blueprint("stock_movements", __name__, url_prefix="/api/stock-movements")


@movements_bp.get("")
@api_errors("list stock movements")
def list_movements_route():
    """
    Query params: product_id, type, reference_type, reference_id,
    warehouse_id, date_from, date_to, page, per_page. Newest first.
    """
    movement_type = request.args.get("type")
    if movement_type:
        require_choice(movement_type, "type", MOVEMENT_TYPES)

    query = list_movements(
        product_id=request.args.get("product_id", type=int),
        movement_type=movement_type,
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
    )
    date_from = arg_datetime("date_from")
    date_to = arg_datetime("date_to")
    if date_from is not None:
        query = query.filter(StockMovement.created_at >= date_from)
    if date_to is not None:
        query = query.filter(StockMovement.created_at <= date_to)

    result = paginate(
        query,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        serialize=lambda m: m.to_dict(),
    )
    return success(result)


@movements_bp.get("/<int:movement_id>")
@api_errors("get stock movement")
def get_movement_route(movement_id: int):
    return success(get_or_raise(StockMovement, movement_id, "Stock movement").to_dict())
