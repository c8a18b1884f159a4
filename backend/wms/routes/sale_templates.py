# Overview: Flask API routes for sale templates.

from flask import Blueprint, request, g

from ..models import SaleTemplate
from ..models.sales import PAYMENT_METHODS
from ..responses import success
from ..request_args import arg_bool, json_body
from ..services import sale_template_service
from ..services.concurrency import run_in_transaction
from ..validation import ModelValidationPolicy, coerce_int, require_items, validate_payload
from ..decorators import require_actor, api_errors

TEMPLATE_POLICY = ModelValidationPolicy(
    writable_fields=set(sale_template_service.TEMPLATE_MUTABLE_FIELDS),
    required_on_create={"name"},
    non_negative_fields={"discount_bps", "tax_rate_bps"},
    choices={"payment_method": PAYMENT_METHODS},
)

sale_templates_bp = Blueprint("sale_templates", __name__, url_prefix="/api/sale-templates")


def _split_items(payload: dict, *, required: bool):
    """Lines travel next to the header fields but are validated on their own."""
    if "items" not in payload and not required:
        return payload, None
    items = require_items(payload)
    header = {k: v for k, v in payload.items() if k != "items"}
    return header, items


@sale_templates_bp.get("")
@api_errors("list sale templates")
def list_templates_route():
    """
    Query params: search (name/description), customer_id, user_id, is_active,
    sort_by (usage_count, name, created_at, last_used_at), sort_order
    (asc/desc), page, per_page.
    """
    result = sale_template_service.list_templates(
        search=request.args.get("search"),
        customer_id=request.args.get("customer_id", type=int),
        user_id=request.args.get("user_id", type=int),
        is_active=arg_bool("is_active"),
        sort_by=request.args.get("sort_by"),
        sort_order=request.args.get("sort_order"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@sale_templates_bp.get("/most-used")
@api_errors("list most used sale templates")
def most_used_templates_route():
    limit = min(request.args.get("limit", 10, type=int), 50)
    templates = sale_template_service.most_used_templates(
        limit=limit,
        user_id=request.args.get("user_id", type=int),
    )
    return success([sale_template_service.serialize_template(t) for t in templates])


@sale_templates_bp.get("/<int:template_id>")
@api_errors("get sale template")
def get_template_route(template_id: int):
    template = sale_template_service.get_template(template_id)
    return success(sale_template_service.serialize_template(template))


@sale_templates_bp.post("")
@require_actor
@api_errors("create sale template")
def create_template_route():
    """
    Request body:
    {
        "name": "Weekly office restock",
        "customer_id": 3,  (optional)
        "payment_method": "credit",
        "discount_bps": 500,  (optional, every line)
        "tax_rate_bps": 1900,  (optional, overrides product rates)
        "items": [{"product_id": 7, "quantity": 2}]
    }
    """
    header, items = _split_items(json_body(), required=True)
    patch = validate_payload(model=SaleTemplate, payload=header, policy=TEMPLATE_POLICY, partial=False)
    template = run_in_transaction(lambda: sale_template_service.create_template(
        patch, items=items, user_id=g.current_user.id,
    ))
    return success(sale_template_service.serialize_template(template), "Sale template created", 201)


@sale_templates_bp.put("/<int:template_id>")
@require_actor
@api_errors("update sale template")
def update_template_route(template_id: int):
    header, items = _split_items(json_body(), required=False)
    patch = validate_payload(model=SaleTemplate, payload=header, policy=TEMPLATE_POLICY, partial=True)
    template = run_in_transaction(lambda: sale_template_service.update_template(
        template_id, patch, items=items,
    ))
    return success(sale_template_service.serialize_template(template), "Sale template updated")


@sale_templates_bp.delete("/<int:template_id>")
@require_actor
@api_errors("delete sale template")
def delete_template_route(template_id: int):
    run_in_transaction(lambda: sale_template_service.delete_template(template_id))
    return success(None, "Sale template deleted")


@sale_templates_bp.post("/<int:template_id>/toggle-active")
@require_actor
@api_errors("toggle sale template")
def toggle_template_route(template_id: int):
    template = run_in_transaction(lambda: sale_template_service.toggle_template_status(template_id))
    state = "activated" if template.is_active else "deactivated"
    return success(template.to_dict(), f"Sale template {state}")


@sale_templates_bp.post("/<int:template_id>/duplicate")
@require_actor
@api_errors("duplicate sale template")
def duplicate_template_route(template_id: int):
    template = run_in_transaction(lambda: sale_template_service.duplicate_template(
        template_id, g.current_user.id,
    ))
    return success(sale_template_service.serialize_template(template), "Sale template duplicated", 201)


@sale_templates_bp.post("/<int:template_id>/create-sale")
@require_actor
@api_errors("create sale from template")
def create_sale_from_template_route(template_id: int):
    """
    Request body (all optional): customer_id, warehouse_id, notes.
    The new sale is a draft; complete it through /api/sales/<id>/complete.
    """
    payload = json_body()
    overrides = {
        key: coerce_int(payload[key], key)
        for key in ("customer_id", "warehouse_id")
        if payload.get(key) is not None
    }
    sale = run_in_transaction(lambda: sale_template_service.create_sale_from_template(
        template_id,
        user_id=g.current_user.id,
        customer_id=overrides.get("customer_id"),
        warehouse_id=overrides.get("warehouse_id"),
        notes=payload.get("notes"),
    ))
    return success(sale.to_dict(), "Sale created from template", 201)
