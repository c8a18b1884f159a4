# Overview: Warehouses and the location hierarchy inside them.

from __future__ import annotations

import logging
import re

from sqlalchemy import or_

from ..extensions import db
from ..models import Warehouse, Location, Product, StockTransfer, StockAdjustment
from ..models.catalog import LOCATION_TYPES
from ..validation import ConflictError, ValidationError
from .query_utils import paginate, get_or_raise

logger = logging.getLogger(__name__)

WAREHOUSE_MUTABLE_FIELDS = {
    "name",
    "code",
    "description",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
    "phone",
    "email",
    "manager_name",
    "capacity",
    "is_active",
}
LOCATION_MUTABLE_FIELDS = {
    "warehouse_id",
    "parent_id",
    "name",
    "code",
    "type",
    "description",
    "aisle",
    "rack",
    "shelf",
    "bin",
    "capacity",
    "is_active",
}

OPEN_TRANSFER_STATUSES = ("draft", "pending", "in_transit")


def _apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k in allowed:
            setattr(obj, k, v)


# =============================================================================
# Warehouses
# =============================================================================

def get_warehouse(warehouse_id: int) -> Warehouse:
    return get_or_raise(Warehouse, warehouse_id, "Warehouse")


def _generate_warehouse_code() -> str:
    """Next free WH### code, one past the highest numeric code in use."""
    highest = 0
    for (code,) in db.session.query(Warehouse.code).filter(Warehouse.code.like("WH%")).all():
        match = re.fullmatch(r"WH(\d+)", code or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"WH{highest + 1:03d}"


def _check_warehouse_code(code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Warehouse.id).filter(Warehouse.code == code)
    if exclude_id is not None:
        query = query.filter(Warehouse.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Warehouse code {code!r} already exists")


def list_warehouses(
    *,
    search: str | None = None,
    is_active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Warehouse)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Warehouse.name.ilike(like), Warehouse.code.ilike(like), Warehouse.city.ilike(like)))
    if is_active is not None:
        query = query.filter(Warehouse.is_active.is_(is_active))
    query = query.order_by(Warehouse.is_main.desc(), Warehouse.name.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda w: w.to_dict())


def create_warehouse(patch: dict, *, is_main: bool = False) -> Warehouse:
    """
    Create a warehouse; code is generated (WH001, WH002, ...) when omitted.

    The first warehouse ever created becomes the main one.
    """
    code = patch.get("code") or _generate_warehouse_code()
    _check_warehouse_code(code)

    warehouse = Warehouse()
    _apply_patch(warehouse, patch, WAREHOUSE_MUTABLE_FIELDS)
    warehouse.code = code

    has_main = db.session.query(Warehouse.id).filter(Warehouse.is_main.is_(True)).first() is not None
    db.session.add(warehouse)
    db.session.flush()

    if is_main or not has_main:
        set_main_warehouse(warehouse.id)
    return warehouse


def update_warehouse(warehouse_id: int, patch: dict) -> Warehouse:
    warehouse = get_warehouse(warehouse_id)
    if "code" in patch and patch["code"] != warehouse.code:
        _check_warehouse_code(patch["code"], exclude_id=warehouse.id)
    if patch.get("is_active") is False and warehouse.is_main:
        raise ConflictError("The main warehouse cannot be deactivated")
    _apply_patch(warehouse, patch, WAREHOUSE_MUTABLE_FIELDS)
    db.session.flush()
    return warehouse


def _has_open_transfers(warehouse_id: int) -> bool:
    return (
        db.session.query(StockTransfer.id)
        .filter(
            or_(StockTransfer.from_warehouse_id == warehouse_id, StockTransfer.to_warehouse_id == warehouse_id),
            StockTransfer.status.in_(OPEN_TRANSFER_STATUSES),
        )
        .first()
        is not None
    )


def delete_warehouse(warehouse_id: int) -> None:
    """
    Raises:
        ConflictError: Main warehouse, open transfers, or any document/location references
    """
    warehouse = get_warehouse(warehouse_id)
    if warehouse.is_main:
        raise ConflictError("Cannot delete the main warehouse")
    if _has_open_transfers(warehouse.id):
        raise ConflictError("Cannot delete a warehouse with pending or in-transit transfers")
    if warehouse.locations:
        raise ConflictError("Cannot delete a warehouse that has locations")
    referenced = (
        db.session.query(StockTransfer.id)
        .filter(or_(StockTransfer.from_warehouse_id == warehouse.id, StockTransfer.to_warehouse_id == warehouse.id))
        .first()
        or db.session.query(StockAdjustment.id).filter_by(warehouse_id=warehouse.id).first()
    )
    if referenced:
        raise ConflictError("Cannot delete a warehouse referenced by stock documents; deactivate it instead")
    db.session.delete(warehouse)
    db.session.flush()


def toggle_warehouse_status(warehouse_id: int) -> Warehouse:
    warehouse = get_warehouse(warehouse_id)
    if warehouse.is_active and warehouse.is_main:
        raise ConflictError("The main warehouse cannot be deactivated")
    warehouse.is_active = not warehouse.is_active
    db.session.flush()
    return warehouse


def set_main_warehouse(warehouse_id: int) -> Warehouse:
    """Make this the only main warehouse (also reactivates it)."""
    warehouse = get_warehouse(warehouse_id)
    (
        db.session.query(Warehouse)
        .filter(Warehouse.id != warehouse.id, Warehouse.is_main.is_(True))
        .update({Warehouse.is_main: False}, synchronize_session="fetch")
    )
    warehouse.is_main = True
    warehouse.is_active = True
    db.session.flush()
    logger.info("Warehouse %s (%s) set as main", warehouse.id, warehouse.code)
    return warehouse


# =============================================================================
# Locations
# =============================================================================

def get_location(location_id: int) -> Location:
    return get_or_raise(Location, location_id, "Location")


def _check_location(location_id: int | None, warehouse_id: int, parent_id: int | None, code: str) -> None:
    if db.session.get(Warehouse, warehouse_id) is None:
        raise ValidationError(f"warehouse_id {warehouse_id} does not exist", {"warehouse_id": "does not exist"})

    if parent_id is not None:
        parent = db.session.get(Location, parent_id)
        if parent is None:
            raise ValidationError(f"parent_id {parent_id} does not exist", {"parent_id": "does not exist"})
        if parent.warehouse_id != warehouse_id:
            raise ValidationError("Parent location belongs to another warehouse", {"parent_id": "wrong warehouse"})
        node = parent
        while node is not None:
            if location_id is not None and node.id == location_id:
                raise ValidationError("A location cannot be nested under itself", {"parent_id": "creates a cycle"})
            node = node.parent

    query = db.session.query(Location.id).filter(Location.warehouse_id == warehouse_id, Location.code == code)
    if location_id is not None:
        query = query.filter(Location.id != location_id)
    if query.first() is not None:
        raise ConflictError(f"Location code {code!r} already exists in this warehouse")


def list_locations(
    *,
    warehouse_id: int | None = None,
    parent_id: int | None = None,
    location_type: str | None = None,
    search: str | None = None,
    is_active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Location)
    if warehouse_id is not None:
        query = query.filter(Location.warehouse_id == warehouse_id)
    if parent_id is not None:
        query = query.filter(Location.parent_id == parent_id)
    if location_type:
        query = query.filter(Location.type == location_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Location.name.ilike(like), Location.code.ilike(like)))
    if is_active is not None:
        query = query.filter(Location.is_active.is_(is_active))
    query = query.order_by(Location.warehouse_id.asc(), Location.code.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda loc: loc.to_dict())


def create_location(patch: dict) -> Location:
    _check_location(None, patch["warehouse_id"], patch.get("parent_id"), patch["code"])
    location = Location()
    _apply_patch(location, patch, LOCATION_MUTABLE_FIELDS)
    db.session.add(location)
    db.session.flush()
    return location


def update_location(location_id: int, patch: dict) -> Location:
    location = get_location(location_id)
    warehouse_id = patch.get("warehouse_id", location.warehouse_id)
    parent_id = patch.get("parent_id", location.parent_id)
    code = patch.get("code", location.code)
    if warehouse_id != location.warehouse_id and location.children:
        raise ConflictError("Cannot move a location that has children to another warehouse")
    _check_location(location.id, warehouse_id, parent_id, code)
    _apply_patch(location, patch, LOCATION_MUTABLE_FIELDS)
    db.session.flush()
    return location


def delete_location(location_id: int) -> None:
    location = get_location(location_id)
    if location.children:
        raise ConflictError("Cannot delete a location that has child locations")
    if db.session.query(Product.id).filter_by(location_id=location.id).first():
        raise ConflictError("Cannot delete a location assigned to products")
    db.session.delete(location)
    db.session.flush()


def location_tree(warehouse_id: int | None = None) -> list[dict]:
    query = db.session.query(Location).filter(Location.parent_id.is_(None))
    if warehouse_id is not None:
        query = query.filter(Location.warehouse_id == warehouse_id)
    roots = query.order_by(Location.code.asc()).all()
    return [loc.to_dict(include_children=True) for loc in roots]


def location_types() -> list[str]:
    return list(LOCATION_TYPES)


def location_in_warehouse(location_id: int | None, warehouse_id: int) -> Location | None:
    """
    Resolve an optional location and require it to sit in `warehouse_id`.

    Raises:
        ValidationError: Missing location or location in another warehouse
    """
    if location_id is None:
        return None
    location = db.session.get(Location, location_id)
    if location is None:
        raise ValidationError(f"Location {location_id} does not exist", {"location_id": "does not exist"})
    if location.warehouse_id != warehouse_id:
        raise ValidationError(
            f"Location {location.code} does not belong to warehouse {warehouse_id}",
            {"location_id": "does not belong to the warehouse"},
        )
    return location
