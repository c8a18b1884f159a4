# Overview: Flask API routes for categories and brands.

from flask import Blueprint, request

from ..models import Category, Brand
from ..responses import success
from ..request_args import arg_bool, json_body
from ..services import catalog_service
from ..services.concurrency import run_in_transaction
from ..validation import ModelValidationPolicy, validate_payload
from ..decorators import require_actor, api_errors

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields=set(catalog_service.CATEGORY_MUTABLE_FIELDS),
    required_on_create={"name"},
    non_negative_fields={"sort_order"},
)
BRAND_POLICY = ModelValidationPolicy(
    writable_fields=set(catalog_service.BRAND_MUTABLE_FIELDS),
    required_on_create={"name"},
)

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")
brands_bp = Blueprint("brands", __name__, url_prefix="/api/brands")


# =============================================================================
# CATEGORIES
# =============================================================================

@categories_bp.get("")
@api_errors("list categories")
def list_categories_route():
    """
    Query params:
    - search, parent_id, is_active
    - roots_only: true to list top-level categories only
    - page, per_page
    """
    result = catalog_service.list_categories(
        search=request.args.get("search"),
        parent_id=request.args.get("parent_id", type=int),
        roots_only=bool(arg_bool("roots_only")),
        is_active=arg_bool("is_active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@categories_bp.get("/tree")
@api_errors("build category tree")
def category_tree_route():
    active_only = arg_bool("active_only")
    return success(catalog_service.category_tree(active_only=active_only is not False))


@categories_bp.get("/select")
@api_errors("list category options")
def category_options_route():
    return success(catalog_service.category_options())


@categories_bp.get("/<int:category_id>")
@api_errors("get category")
def get_category_route(category_id: int):
    category = catalog_service.get_category(category_id)
    return success(category.to_dict(include_children=True))


@categories_bp.post("")
@require_actor
@api_errors("create category")
def create_category_route():
    patch = validate_payload(model=Category, payload=json_body(), policy=CATEGORY_POLICY, partial=False)
    category = run_in_transaction(lambda: catalog_service.create_category(patch))
    return success(category.to_dict(), "Category created", 201)


@categories_bp.put("/<int:category_id>")
@require_actor
@api_errors("update category")
def update_category_route(category_id: int):
    patch = validate_payload(model=Category, payload=json_body(), policy=CATEGORY_POLICY, partial=True)
    category = run_in_transaction(lambda: catalog_service.update_category(category_id, patch))
    return success(category.to_dict(), "Category updated")


@categories_bp.delete("/<int:category_id>")
@require_actor
@api_errors("delete category")
def delete_category_route(category_id: int):
    run_in_transaction(lambda: catalog_service.delete_category(category_id))
    return success(None, "Category deleted")


# =============================================================================
# BRANDS
# =============================================================================

@brands_bp.get("")
@api_errors("list brands")
def list_brands_route():
    result = catalog_service.list_brands(
        search=request.args.get("search"),
        is_active=arg_bool("is_active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@brands_bp.get("/select")
@api_errors("list brand options")
def brand_options_route():
    return success(catalog_service.brand_options())


@brands_bp.get("/<int:brand_id>")
@api_errors("get brand")
def get_brand_route(brand_id: int):
    return success(catalog_service.get_brand(brand_id).to_dict())


@brands_bp.post("")
@require_actor
@api_errors("create brand")
def create_brand_route():
    patch = validate_payload(model=Brand, payload=json_body(), policy=BRAND_POLICY, partial=False)
    brand = run_in_transaction(lambda: catalog_service.create_brand(patch))
    return success(brand.to_dict(), "Brand created", 201)


@brands_bp.put("/<int:brand_id>")
@require_actor
@api_errors("update brand")
def update_brand_route(brand_id: int):
    patch = validate_payload(model=Brand, payload=json_body(), policy=BRAND_POLICY, partial=True)
    brand = run_in_transaction(lambda: catalog_service.update_brand(brand_id, patch))
    return success(brand.to_dict(), "Brand updated")


@brands_bp.delete("/<int:brand_id>")
@require_actor
@api_errors("delete brand")
def delete_brand_route(brand_id: int):
    run_in_transaction(lambda: catalog_service.delete_brand(brand_id))
    return success(None, "Brand deleted")
