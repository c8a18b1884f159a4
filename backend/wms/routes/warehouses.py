# Overview: Flask API routes for warehouses and their locations.

# backend/wms/routes/warehouses.py
"""
Warehouse and location routes.

Exactly one warehouse is main at any time; the first one created takes the
role and /<id>/set-main moves it. Locations form a tree inside one warehouse.
"""
from flask import Blueprint, request

from ..models import Warehouse, Location
from ..models.catalog import LOCATION_TYPES
from ..responses import success
from ..request_args import arg_bool, json_body
from ..services import warehouse_service
from ..services.concurrency import run_in_transaction
from ..validation import ModelValidationPolicy, coerce_bool, validate_payload
from ..decorators import require_actor, api_errors

WAREHOUSE_POLICY = ModelValidationPolicy(
    writable_fields=set(warehouse_service.WAREHOUSE_MUTABLE_FIELDS),
    required_on_create={"name"},
    non_negative_fields={"capacity"},
)
LOCATION_POLICY = ModelValidationPolicy(
    writable_fields=set(warehouse_service.LOCATION_MUTABLE_FIELDS),
    required_on_create={"warehouse_id", "name", "code"},
    non_negative_fields={"capacity"},
    choices={"type": LOCATION_TYPES},
)

warehouses_bp = Blueprint("warehouses", __name__, url_prefix="/api/warehouses")
locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


# =============================================================================
# WAREHOUSES
# =============================================================================

@warehouses_bp.get("")
@api_errors("list warehouses")
def list_warehouses_route():
    result = warehouse_service.list_warehouses(
        search=request.args.get("search"),
        is_active=arg_bool("is_active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@warehouses_bp.get("/<int:warehouse_id>")
@api_errors("get warehouse")
def get_warehouse_route(warehouse_id: int):
    warehouse = warehouse_service.get_warehouse(warehouse_id)
    data = warehouse.to_dict()
    data["locations"] = warehouse_service.location_tree(warehouse_id=warehouse.id)
    return success(data)


@warehouses_bp.post("")
@require_actor
@api_errors("create warehouse")
def create_warehouse_route():
    """
    Create a warehouse.

    Request body: warehouse fields; "code" is generated (WH001, ...) when
    omitted and "is_main": true makes it the main warehouse.
    """
    payload = json_body()
    is_main = coerce_bool(payload.pop("is_main", False))
    patch = validate_payload(model=Warehouse, payload=payload, policy=WAREHOUSE_POLICY, partial=False)
    warehouse = run_in_transaction(lambda: warehouse_service.create_warehouse(patch, is_main=is_main))
    return success(warehouse.to_dict(), "Warehouse created", 201)


@warehouses_bp.put("/<int:warehouse_id>")
@require_actor
@api_errors("update warehouse")
def update_warehouse_route(warehouse_id: int):
    patch = validate_payload(model=Warehouse, payload=json_body(), policy=WAREHOUSE_POLICY, partial=True)
    warehouse = run_in_transaction(lambda: warehouse_service.update_warehouse(warehouse_id, patch))
    return success(warehouse.to_dict(), "Warehouse updated")


@warehouses_bp.delete("/<int:warehouse_id>")
@require_actor
@api_errors("delete warehouse")
def delete_warehouse_route(warehouse_id: int):
    run_in_transaction(lambda: warehouse_service.delete_warehouse(warehouse_id))
    return success(None, "Warehouse deleted")


@warehouses_bp.post("/<int:warehouse_id>/toggle-status")
@require_actor
@api_errors("toggle warehouse status")
def toggle_warehouse_route(warehouse_id: int):
    warehouse = run_in_transaction(lambda: warehouse_service.toggle_warehouse_status(warehouse_id))
    state = "activated" if warehouse.is_active else "deactivated"
    return success(warehouse.to_dict(), f"Warehouse {state}")


@warehouses_bp.post("/<int:warehouse_id>/set-main")
@require_actor
@api_errors("set main warehouse")
def set_main_warehouse_route(warehouse_id: int):
    warehouse = run_in_transaction(lambda: warehouse_service.set_main_warehouse(warehouse_id))
    return success(warehouse.to_dict(), "Main warehouse updated")


@warehouses_bp.get("/<int:warehouse_id>/locations")
@api_errors("list warehouse locations")
def warehouse_locations_route(warehouse_id: int):
    warehouse_service.get_warehouse(warehouse_id)
    result = warehouse_service.list_locations(
        warehouse_id=warehouse_id,
        is_active=arg_bool("is_active"),
    )
    return success(result)


# =============================================================================
# LOCATIONS
# =============================================================================

@locations_bp.get("")
@api_errors("list locations")
def list_locations_route():
    result = warehouse_service.list_locations(
        warehouse_id=request.args.get("warehouse_id", type=int),
        parent_id=request.args.get("parent_id", type=int),
        location_type=request.args.get("type"),
        search=request.args.get("search"),
        is_active=arg_bool("is_active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@locations_bp.get("/tree")
@api_errors("build location tree")
def location_tree_route():
    return success(warehouse_service.location_tree(warehouse_id=request.args.get("warehouse_id", type=int)))


@locations_bp.get("/types")
@api_errors("list location types")
def location_types_route():
    return success(warehouse_service.location_types())


@locations_bp.get("/<int:location_id>")
@api_errors("get location")
def get_location_route(location_id: int):
    return success(warehouse_service.get_location(location_id).to_dict(include_children=True))


@locations_bp.post("")
@require_actor
@api_errors("create location")
def create_location_route():
    patch = validate_payload(model=Location, payload=json_body(), policy=LOCATION_POLICY, partial=False)
    location = run_in_transaction(lambda: warehouse_service.create_location(patch))
    return success(location.to_dict(), "Location created", 201)


@locations_bp.put("/<int:location_id>")
@require_actor
@api_errors("update location")
def update_location_route(location_id: int):
    patch = validate_payload(model=Location, payload=json_body(), policy=LOCATION_POLICY, partial=True)
    location = run_in_transaction(lambda: warehouse_service.update_location(location_id, patch))
    return success(location.to_dict(), "Location updated")


@locations_bp.delete("/<int:location_id>")
@require_actor
@api_errors("delete location")
def delete_location_route(location_id: int):
    run_in_transaction(lambda: warehouse_service.delete_location(location_id))
    return success(None, "Location deleted")
