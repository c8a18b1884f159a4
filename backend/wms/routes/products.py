# Overview: Flask API routes for products; parses input and returns the JSON envelope.

# backend/wms/routes/products.py
"""
Product management routes.

Product master data is edited through POST/PUT/DELETE; quantity is never
part of an edit. Opening stock is given at creation and later corrections go
through /<id>/adjust-stock, which writes a "manual" ledger row.
"""
from flask import Blueprint, request, g

from ..models import Product
from ..responses import success
from ..request_args import arg_bool, json_body
from ..services import products_service
from ..services.concurrency import run_in_transaction
from ..services.movement_service import list_movements
from ..services.query_utils import paginate
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_amount_cents,
    coerce_int,
)
from ..decorators import require_actor, api_errors

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=set(products_service.PRODUCT_MUTABLE_FIELDS),
    required_on_create={"sku", "name"},
    non_negative_fields={"unit_price_cents", "cost_cents", "tax_rate_bps", "min_stock_level", "max_stock_level"},
)

# Accepted on create but not stored on Product itself
CREATE_EXTRA_FIELDS = ("quantity", "warehouse_id")

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@api_errors("list products")
def list_products_route():
    """
    List products.

    Query params:
    - search: matches name, SKU or barcode
    - category_id, brand_id: int
    - is_active: true/false
    - stock_status: out_of_stock, low_stock, overstock, normal
    - page, per_page: pagination (omit page for all rows)
    """
    result = products_service.list_products(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        brand_id=request.args.get("brand_id", type=int),
        is_active=arg_bool("is_active"),
        stock_status=request.args.get("stock_status"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@products_bp.get("/low-stock")
@api_errors("list low stock products")
def low_stock_route():
    products = products_service.low_stock_products()
    return success([p.to_dict() for p in products])


@products_bp.get("/out-of-stock")
@api_errors("list out of stock products")
def out_of_stock_route():
    products = products_service.out_of_stock_products()
    return success([p.to_dict() for p in products])


@products_bp.get("/<int:product_id>")
@api_errors("get product")
def get_product_route(product_id: int):
    product = products_service.get_product(product_id)
    return success(product.to_dict())


@products_bp.post("")
@require_actor
@api_errors("create product")
def create_product_route():
    """
    Create a product.

    Request body: product fields plus optional
    - quantity: opening stock (written as an "initial" movement)
    - warehouse_id: warehouse recorded on that movement
    """
    payload = json_body()
    extras = {k: payload.pop(k) for k in CREATE_EXTRA_FIELDS if k in payload}

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_amount_cents(patch, "unit_price_cents", "cost_cents")

    initial_quantity = coerce_int(extras["quantity"], "quantity") if extras.get("quantity") is not None else 0
    warehouse_id = coerce_int(extras["warehouse_id"], "warehouse_id") if extras.get("warehouse_id") is not None else None

    product = run_in_transaction(lambda: products_service.create_product(
        patch=patch,
        initial_quantity=initial_quantity,
        user_id=g.current_user.id,
        warehouse_id=warehouse_id,
    ))
    return success(product.to_dict(), "Product created", 201)


@products_bp.put("/<int:product_id>")
@require_actor
@api_errors("update product")
def update_product_route(product_id: int):
    patch = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_POLICY, partial=True)
    enforce_amount_cents(patch, "unit_price_cents", "cost_cents")

    product = run_in_transaction(lambda: products_service.update_product(product_id, patch))
    return success(product.to_dict(), "Product updated")


@products_bp.delete("/<int:product_id>")
@require_actor
@api_errors("delete product")
def delete_product_route(product_id: int):
    run_in_transaction(lambda: products_service.delete_product(product_id))
    return success(None, "Product deleted")


@products_bp.post("/<int:product_id>/adjust-stock")
@require_actor
@api_errors("adjust product stock")
def adjust_stock_route(product_id: int):
    """
    Direct stock correction.

    Request body:
    {
        "mode": "set" | "add" | "subtract",
        "quantity": 5,
        "warehouse_id": 1,  (optional)
        "location_id": 3,   (optional)
        "notes": "Damaged on shelf"  (optional)
    }
    """
    payload = json_body()
    quantity = coerce_int(payload.get("quantity"), "quantity")
    warehouse_id = payload.get("warehouse_id")
    location_id = payload.get("location_id")

    movement = run_in_transaction(lambda: products_service.adjust_stock(
        product_id,
        mode=payload.get("mode", "set"),
        quantity=quantity,
        user_id=g.current_user.id,
        warehouse_id=coerce_int(warehouse_id, "warehouse_id") if warehouse_id is not None else None,
        location_id=coerce_int(location_id, "location_id") if location_id is not None else None,
        notes=payload.get("notes"),
    ))
    product = products_service.get_product(product_id)
    return success({"product": product.to_dict(), "movement": movement.to_dict()}, "Stock updated")


@products_bp.get("/<int:product_id>/movements")
@api_errors("list product movements")
def product_movements_route(product_id: int):
    products_service.get_product(product_id)
    query = list_movements(product_id=product_id, movement_type=request.args.get("type"))
    result = paginate(
        query,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        serialize=lambda m: m.to_dict(),
    )
    return success(result)
