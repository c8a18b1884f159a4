# backend/wms/services/transfer_service.py
"""
Stock transfer service.

WHY: Move stock between two warehouse/location pairs with an approval step
and a receiving step. Stock only changes on completion, where every item
writes a transfer_out movement at the source and a transfer_in movement at
the destination.

LIFECYCLE:
1. draft: created, lines editable; availability checked per line
2. pending: approved for shipping, lines still editable
3. in_transit: shipped; availability re-checked for every line
4. completed: received; quantities moved (terminal)
5. cancelled: abandoned before completion (terminal)

The source decrement at completion re-reads the product under a row lock and
fails the whole completion if it would go negative, so a sale or adjustment
that consumed the stock between start and complete cannot be overdrawn.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import StockTransfer, StockTransferItem, Product, Warehouse
from ..models.documents import TRANSFER_TYPES, TRANSFER_PRIORITIES
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, coerce_int, item_int, require_choice
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_transfer_number
from .movement_service import apply_stock_change, lock_product
from .query_utils import paginate, get_or_raise
from .warehouse_service import location_in_warehouse

logger = logging.getLogger(__name__)


# Transfer status constants
TRANSFER_STATUS_DRAFT = "draft"
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_STATUSES = (
    TRANSFER_STATUS_DRAFT,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_IN_TRANSIT,
    TRANSFER_STATUS_COMPLETED,
    TRANSFER_STATUS_CANCELLED,
)

EDITABLE_STATUSES = (TRANSFER_STATUS_DRAFT, TRANSFER_STATUS_PENDING)

HEADER_FIELDS = (
    "from_warehouse_id",
    "from_location_id",
    "to_warehouse_id",
    "to_location_id",
    "type",
    "priority",
    "expected_date",
    "carrier",
    "reason",
    "notes",
)


class StockTransferError(Exception):
    """Raised when transfer operations fail."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _lock_transfer(transfer_id: int) -> StockTransfer:
    transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFoundError(f"Stock transfer {transfer_id} not found")
    return transfer


def _validate_route(header: dict) -> None:
    """
    Source and destination must exist, locations must sit in their
    warehouse, and the two (warehouse, location) pairs must differ.
    """
    for side in ("from", "to"):
        warehouse_id = header.get(f"{side}_warehouse_id")
        if warehouse_id is None:
            raise ValidationError(f"{side}_warehouse_id is required", {f"{side}_warehouse_id": "is required"})
        warehouse = db.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise ValidationError(
                f"{side}_warehouse_id {warehouse_id} does not exist",
                {f"{side}_warehouse_id": "does not exist"},
            )
        if not warehouse.is_active:
            raise StockTransferError(f"Warehouse {warehouse.code} is inactive")
        location_in_warehouse(header.get(f"{side}_location_id"), warehouse_id)

    source = (header["from_warehouse_id"], header.get("from_location_id"))
    destination = (header["to_warehouse_id"], header.get("to_location_id"))
    if source == destination:
        raise StockTransferError("Source and destination must be different")

    require_choice(header.get("type") or "internal", "type", TRANSFER_TYPES)
    require_choice(header.get("priority") or "normal", "priority", TRANSFER_PRIORITIES)


def _check_availability(items, *, lock: bool = False) -> None:
    """Every line must fit in the product's current quantity."""
    shortages = []
    for item in items:
        product = lock_product(item.product_id) if lock else db.session.get(Product, item.product_id)
        if product.quantity < item.quantity:
            shortages.append({
                "product_id": product.id,
                "sku": product.sku,
                "available": product.quantity,
                "requested": item.quantity,
            })
    if shortages:
        first = shortages[0]
        raise StockTransferError(
            f"Insufficient stock for product {first['sku']}. "
            f"Available: {first['available']}, requested: {first['requested']}",
            details={"items": shortages},
        )


def _build_items(items: list[dict]) -> list[StockTransferItem]:
    if not items:
        raise ValidationError("items must be a non-empty list", {"items": "must be a non-empty list"})

    built = []
    seen: set[int] = set()
    for idx, raw in enumerate(items):
        product_id = item_int(raw, "product_id", index=idx)
        quantity = item_int(raw, "quantity", index=idx, minimum=1)
        if product_id in seen:
            raise StockTransferError(f"Product {product_id} already on this transfer")
        seen.add(product_id)

        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                {f"items.{idx}.product_id": "does not exist"},
            )

        built.append(StockTransferItem(
            product_id=product.id,
            quantity=quantity,
            unit_cost_cents=product.cost_cents or 0,
            notes=raw.get("notes"),
        ))

    _check_availability(built)
    return built


def get_transfer(transfer_id: int) -> StockTransfer:
    return get_or_raise(StockTransfer, transfer_id, "Stock transfer")


def list_transfers(
    *,
    status: str | None = None,
    transfer_type: str | None = None,
    priority: str | None = None,
    warehouse_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(StockTransfer)
    if status:
        query = query.filter(StockTransfer.status == status)
    if transfer_type:
        query = query.filter(StockTransfer.type == transfer_type)
    if priority:
        query = query.filter(StockTransfer.priority == priority)
    if warehouse_id is not None:
        query = query.filter(
            or_(StockTransfer.from_warehouse_id == warehouse_id, StockTransfer.to_warehouse_id == warehouse_id)
        )
    if date_from is not None:
        query = query.filter(StockTransfer.created_at >= date_from)
    if date_to is not None:
        query = query.filter(StockTransfer.created_at <= date_to)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(StockTransfer.transfer_number.ilike(like), StockTransfer.tracking_number.ilike(like))
        )
    query = query.order_by(StockTransfer.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda t: t.to_dict(include_items=False))


def create_transfer(*, header: dict, items: list[dict], user_id: int) -> StockTransfer:
    """
    Create a draft transfer document with its lines.

    Args:
        header: from/to warehouse and location ids, type, priority,
            expected_date, carrier, reason, notes
        items: [{product_id, quantity, notes?}]
        user_id: User creating the transfer

    Returns:
        StockTransfer: The created transfer

    Raises:
        ValidationError: Malformed input
        StockTransferError: Same source and destination, or not enough stock
    """
    def _op():
        _validate_route(header)
        lines = _build_items(items)

        transfer = StockTransfer(
            transfer_number=next_transfer_number(),
            status=TRANSFER_STATUS_DRAFT,
            created_by_user_id=user_id,
        )
        for field in HEADER_FIELDS:
            if header.get(field) is not None:
                setattr(transfer, field, header[field])
        transfer.items.extend(lines)
        transfer.recalculate_totals()

        db.session.add(transfer)
        db.session.flush()

        logger.info("Created stock transfer %s with %s items", transfer.transfer_number, len(lines))
        return transfer

    return run_with_retry(_op)


def update_transfer(transfer_id: int, *, header: dict, items: list[dict] | None = None) -> StockTransfer:
    """Edit a draft or pending transfer; `items`, when given, replaces all lines."""
    def _op():
        transfer = _lock_transfer(transfer_id)
        if transfer.status not in EDITABLE_STATUSES:
            raise StockTransferError(f"Cannot edit transfer in {transfer.status} status")

        merged = {field: getattr(transfer, field) for field in HEADER_FIELDS}
        merged.update({k: v for k, v in header.items() if k in HEADER_FIELDS})
        _validate_route(merged)
        for field in HEADER_FIELDS:
            setattr(transfer, field, merged[field])

        if items is not None:
            lines = _build_items(items)
            transfer.items.clear()
            db.session.flush()
            transfer.items.extend(lines)
        transfer.recalculate_totals()

        db.session.flush()
        return transfer

    return run_with_retry(_op)


def delete_transfer(transfer_id: int) -> None:
    transfer = _lock_transfer(transfer_id)
    if transfer.status != TRANSFER_STATUS_DRAFT:
        raise StockTransferError(f"Cannot delete transfer in {transfer.status} status")
    db.session.delete(transfer)
    db.session.flush()


def approve_transfer(transfer_id: int, user_id: int) -> StockTransfer:
    """
    Approve a transfer: draft -> pending.

    Raises:
        StockTransferError: Wrong status or no lines
    """
    def _op():
        transfer = _lock_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_DRAFT:
            raise StockTransferError(f"Cannot approve transfer in {transfer.status} status")
        if not transfer.items:
            raise StockTransferError("Cannot approve transfer with no items")

        transfer.status = TRANSFER_STATUS_PENDING
        transfer.approved_by_user_id = user_id
        transfer.transfer_date = utcnow()
        db.session.flush()

        logger.info("Stock transfer %s approved by user %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def start_transfer(transfer_id: int, user_id: int, tracking_number: str | None = None) -> StockTransfer:
    """
    Ship a transfer: pending -> in_transit.

    Availability is verified for every line; stock itself is untouched
    until completion.
    """
    def _op():
        transfer = _lock_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise StockTransferError(f"Cannot start transfer in {transfer.status} status")

        _check_availability(transfer.items, lock=True)

        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        transfer.shipped_by_user_id = user_id
        transfer.shipped_at = utcnow()
        if tracking_number:
            transfer.tracking_number = tracking_number
        db.session.flush()

        logger.info("Stock transfer %s in transit", transfer.transfer_number)
        return transfer

    return run_with_retry(_op)


def complete_transfer(
    transfer_id: int,
    user_id: int,
    received: dict | None = None,
    receiving_notes: str | None = None,
) -> StockTransfer:
    """
    Receive a transfer: in_transit -> completed.

    Args:
        received: {item_id: quantity_received}; missing items default to the
            shipped quantity. 0 <= quantity_received <= quantity.

    Per item, one transfer_out movement (-quantity) at the source and one
    transfer_in movement (+quantity_received) at the destination, so every
    line leaves exactly two ledger rows even when nothing arrived.

    Raises:
        StockTransferError: Wrong status, bad received quantity, or the
            source no longer holds the shipped quantity
    """
    received = {coerce_int(k, "received"): v for k, v in (received or {}).items()}

    def _op():
        transfer = _lock_transfer(transfer_id)
        if transfer.status != TRANSFER_STATUS_IN_TRANSIT:
            raise StockTransferError(f"Cannot complete transfer in {transfer.status} status")

        item_ids = {item.id for item in transfer.items}
        unknown = sorted(set(received) - item_ids)
        if unknown:
            raise StockTransferError(f"Items {unknown} do not belong to this transfer")

        for item in transfer.items:
            qty_received = coerce_int(received.get(item.id, item.quantity), f"received.{item.id}")
            if qty_received < 0 or qty_received > item.quantity:
                raise StockTransferError(
                    f"Received quantity for item {item.id} must be between 0 and {item.quantity}"
                )

            product = lock_product(item.product_id)
            if product.quantity < item.quantity:
                raise StockTransferError(
                    f"Insufficient stock for product {product.sku}. "
                    f"Available: {product.quantity}, requested: {item.quantity}",
                    details={"product_id": product.id, "available": product.quantity, "requested": item.quantity},
                )

            apply_stock_change(
                product=product,
                quantity_delta=-item.quantity,
                movement_type="transfer_out",
                reference_type="stock_transfer",
                reference_id=transfer.id,
                warehouse_id=transfer.from_warehouse_id,
                location_id=transfer.from_location_id,
                user_id=user_id,
                notes=f"{transfer.transfer_number} out",
            )
            apply_stock_change(
                product=product,
                quantity_delta=qty_received,
                movement_type="transfer_in",
                reference_type="stock_transfer",
                reference_id=transfer.id,
                warehouse_id=transfer.to_warehouse_id,
                location_id=transfer.to_location_id,
                user_id=user_id,
                notes=f"{transfer.transfer_number} in",
            )
            item.quantity_received = qty_received

        transfer.status = TRANSFER_STATUS_COMPLETED
        transfer.received_by_user_id = user_id
        transfer.completed_date = utcnow()
        transfer.receiving_notes = receiving_notes
        db.session.flush()

        logger.info("Stock transfer %s completed by user %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)


def cancel_transfer(transfer_id: int, user_id: int, reason: str | None = None) -> StockTransfer:
    """Any status before completed -> cancelled. No stock has moved yet."""
    def _op():
        transfer = _lock_transfer(transfer_id)
        if transfer.status in (TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED):
            raise StockTransferError(f"Cannot cancel transfer in {transfer.status} status")

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_by_user_id = user_id
        transfer.cancelled_at = utcnow()
        transfer.cancellation_reason = reason
        db.session.flush()

        logger.info("Stock transfer %s cancelled by user %s", transfer.transfer_number, user_id)
        return transfer

    return run_with_retry(_op)
