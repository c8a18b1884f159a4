# backend/wms/services/adjustment_service.py
"""
Stock adjustment service.

WHY: Reconcile counted quantities with Product.quantity through a reviewed
document instead of editing stock in place. Applying an adjustment is the
only moment stock changes; every non-zero line writes one "adjustment"
StockMovement.

LIFECYCLE:
1. draft: created, header and items editable, deletable
2. pending: submitted, header and items still editable
3. approved: approved by a user other than the creator
4. applied: deltas written to stock (terminal)
5. cancelled: abandoned before applied (terminal)

All functions flush only; the caller commits (routes use run_in_transaction)
so a failing apply leaves no partial stock changes behind.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_

from ..extensions import db
from ..models import StockAdjustment, StockAdjustmentItem, Product, Warehouse
from ..models.documents import ADJUSTMENT_TYPES, ADJUSTMENT_REASONS
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, item_int, require_choice
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_adjustment_number
from .movement_service import apply_stock_change, lock_product
from .query_utils import paginate, get_or_raise
from .warehouse_service import location_in_warehouse

logger = logging.getLogger(__name__)


# Adjustment status constants
ADJUSTMENT_STATUS_DRAFT = "draft"
ADJUSTMENT_STATUS_PENDING = "pending"
ADJUSTMENT_STATUS_APPROVED = "approved"
ADJUSTMENT_STATUS_APPLIED = "applied"
ADJUSTMENT_STATUS_CANCELLED = "cancelled"

ADJUSTMENT_STATUSES = (
    ADJUSTMENT_STATUS_DRAFT,
    ADJUSTMENT_STATUS_PENDING,
    ADJUSTMENT_STATUS_APPROVED,
    ADJUSTMENT_STATUS_APPLIED,
    ADJUSTMENT_STATUS_CANCELLED,
)
EDITABLE_STATUSES = (ADJUSTMENT_STATUS_DRAFT, ADJUSTMENT_STATUS_PENDING)
CANCELLABLE_STATUSES = (ADJUSTMENT_STATUS_DRAFT, ADJUSTMENT_STATUS_PENDING, ADJUSTMENT_STATUS_APPROVED)


class StockAdjustmentError(Exception):
    """Raised when an adjustment operation violates the workflow or stock rules."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _lock_adjustment(adjustment_id: int) -> StockAdjustment:
    adjustment = lock_for_update(db.session.query(StockAdjustment).filter_by(id=adjustment_id)).first()
    if adjustment is None:
        raise NotFoundError(f"Stock adjustment {adjustment_id} not found")
    return adjustment


def _validate_header(warehouse_id: int, location_id: int | None, adjustment_type: str, reason: str) -> None:
    if db.session.get(Warehouse, warehouse_id) is None:
        raise ValidationError(f"warehouse_id {warehouse_id} does not exist", {"warehouse_id": "does not exist"})
    location_in_warehouse(location_id, warehouse_id)
    require_choice(adjustment_type, "type", ADJUSTMENT_TYPES)
    require_choice(reason, "reason", ADJUSTMENT_REASONS)


def _build_items(items: list[dict]) -> list[StockAdjustmentItem]:
    """
    Turn item payloads into unsaved lines.

    current_quantity defaults to the product's quantity right now and
    unit_cost_cents to the product's cost.
    """
    if not items:
        raise ValidationError("items must be a non-empty list", {"items": "must be a non-empty list"})

    built = []
    seen: set[int] = set()
    for idx, raw in enumerate(items):
        product_id = item_int(raw, "product_id", index=idx)
        if product_id in seen:
            raise ValidationError(
                f"Product {product_id} appears more than once",
                {f"items.{idx}.product_id": "duplicate product"},
            )
        seen.add(product_id)

        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                {f"items.{idx}.product_id": "does not exist"},
            )

        line = StockAdjustmentItem(
            product_id=product.id,
            current_quantity=item_int(raw, "current_quantity", index=idx, required=False,
                                      default=product.quantity, minimum=0),
            adjusted_quantity=item_int(raw, "adjusted_quantity", index=idx, minimum=0),
            unit_cost_cents=item_int(raw, "unit_cost_cents", index=idx, required=False,
                                     default=product.cost_cents or 0, minimum=0),
            reason=raw.get("reason"),
            notes=raw.get("notes"),
        )
        line.recalculate()
        built.append(line)
    return built


def _replace_items(adjustment: StockAdjustment, items: list[dict]) -> None:
    new_items = _build_items(items)
    adjustment.items.clear()
    db.session.flush()
    adjustment.items.extend(new_items)
    adjustment.recalculate_totals()


def get_adjustment(adjustment_id: int) -> StockAdjustment:
    return get_or_raise(StockAdjustment, adjustment_id, "Stock adjustment")


def list_adjustments(
    *,
    status: str | None = None,
    adjustment_type: str | None = None,
    reason: str | None = None,
    warehouse_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(StockAdjustment)
    if status:
        query = query.filter(StockAdjustment.status == status)
    if adjustment_type:
        query = query.filter(StockAdjustment.type == adjustment_type)
    if reason:
        query = query.filter(StockAdjustment.reason == reason)
    if warehouse_id is not None:
        query = query.filter(StockAdjustment.warehouse_id == warehouse_id)
    if date_from is not None:
        query = query.filter(StockAdjustment.adjustment_date >= date_from)
    if date_to is not None:
        query = query.filter(StockAdjustment.adjustment_date <= date_to)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(StockAdjustment.adjustment_number.ilike(like), StockAdjustment.notes.ilike(like)))
    query = query.order_by(StockAdjustment.adjustment_date.desc(), StockAdjustment.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda a: a.to_dict(include_items=False))


def create_adjustment(
    *,
    warehouse_id: int,
    adjustment_type: str,
    reason: str,
    items: list[dict],
    user_id: int,
    location_id: int | None = None,
    adjustment_date: datetime | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Create a draft adjustment with its items.

    Args:
        warehouse_id: Warehouse being reconciled
        adjustment_type: One of ADJUSTMENT_TYPES
        reason: One of ADJUSTMENT_REASONS
        items: [{product_id, adjusted_quantity, current_quantity?, unit_cost_cents?, reason?, notes?}]
        user_id: Creator (cannot approve it later)

    Returns:
        StockAdjustment: The draft document

    Raises:
        ValidationError: Bad header or items
    """
    def _op():
        _validate_header(warehouse_id, location_id, adjustment_type, reason)
        lines = _build_items(items)

        adjustment = StockAdjustment(
            adjustment_number=next_adjustment_number(),
            warehouse_id=warehouse_id,
            location_id=location_id,
            type=adjustment_type,
            reason=reason,
            status=ADJUSTMENT_STATUS_DRAFT,
            adjustment_date=adjustment_date or utcnow(),
            notes=notes,
            created_by_user_id=user_id,
        )
        adjustment.items.extend(lines)
        adjustment.recalculate_totals()

        db.session.add(adjustment)
        db.session.flush()

        logger.info("Created stock adjustment %s with %s items", adjustment.adjustment_number, len(lines))
        return adjustment

    return run_with_retry(_op)


def update_adjustment(
    adjustment_id: int,
    *,
    header: dict,
    items: list[dict] | None = None,
) -> StockAdjustment:
    """
    Edit a draft or pending adjustment; `items`, when given, replaces all lines.

    header keys: warehouse_id, location_id, type, reason, adjustment_date, notes

    Raises:
        StockAdjustmentError: Not editable in its current status
    """
    def _op():
        adjustment = _lock_adjustment(adjustment_id)
        if adjustment.status not in EDITABLE_STATUSES:
            raise StockAdjustmentError(f"Cannot edit adjustment in {adjustment.status} status")

        warehouse_id = header.get("warehouse_id", adjustment.warehouse_id)
        location_id = header.get("location_id", adjustment.location_id)
        adjustment_type = header.get("type", adjustment.type)
        reason = header.get("reason", adjustment.reason)
        _validate_header(warehouse_id, location_id, adjustment_type, reason)

        adjustment.warehouse_id = warehouse_id
        adjustment.location_id = location_id
        adjustment.type = adjustment_type
        adjustment.reason = reason
        if "adjustment_date" in header and header["adjustment_date"] is not None:
            adjustment.adjustment_date = header["adjustment_date"]
        if "notes" in header:
            adjustment.notes = header["notes"]

        if items is not None:
            _replace_items(adjustment, items)

        db.session.flush()
        return adjustment

    return run_with_retry(_op)


def delete_adjustment(adjustment_id: int) -> None:
    adjustment = _lock_adjustment(adjustment_id)
    if adjustment.status != ADJUSTMENT_STATUS_DRAFT:
        raise StockAdjustmentError(f"Cannot delete adjustment in {adjustment.status} status")
    db.session.delete(adjustment)
    db.session.flush()


def submit_adjustment(adjustment_id: int, user_id: int) -> StockAdjustment:
    """draft -> pending. Requires at least one item."""
    def _op():
        adjustment = _lock_adjustment(adjustment_id)
        if adjustment.status != ADJUSTMENT_STATUS_DRAFT:
            raise StockAdjustmentError(f"Cannot submit adjustment in {adjustment.status} status")
        if not adjustment.items:
            raise StockAdjustmentError("Cannot submit adjustment with no items")

        adjustment.status = ADJUSTMENT_STATUS_PENDING
        adjustment.submitted_at = utcnow()
        db.session.flush()

        logger.info("Stock adjustment %s submitted by user %s", adjustment.adjustment_number, user_id)
        return adjustment

    return run_with_retry(_op)


def approve_adjustment(adjustment_id: int, user_id: int) -> StockAdjustment:
    """
    pending -> approved.

    Raises:
        StockAdjustmentError: Wrong status, or approver is the creator
    """
    def _op():
        adjustment = _lock_adjustment(adjustment_id)
        if adjustment.status != ADJUSTMENT_STATUS_PENDING:
            raise StockAdjustmentError(f"Cannot approve adjustment in {adjustment.status} status")
        if adjustment.created_by_user_id == user_id:
            raise StockAdjustmentError("An adjustment cannot be approved by the user who created it")

        adjustment.status = ADJUSTMENT_STATUS_APPROVED
        adjustment.approved_by_user_id = user_id
        adjustment.approved_at = utcnow()
        db.session.flush()

        logger.info("Stock adjustment %s approved by user %s", adjustment.adjustment_number, user_id)
        return adjustment

    return run_with_retry(_op)


def apply_adjustment(adjustment_id: int, user_id: int) -> StockAdjustment:
    """
    approved -> applied. Writes every line's delta to stock.

    For each item: new = product.quantity + quantity_adjustment. If any new
    quantity would be negative the whole apply fails and nothing is written
    (the caller rolls back). Lines with a zero delta write no movement.

    Raises:
        StockAdjustmentError: Wrong status or negative resulting stock
    """
    def _op():
        adjustment = _lock_adjustment(adjustment_id)
        if adjustment.status != ADJUSTMENT_STATUS_APPROVED:
            raise StockAdjustmentError(f"Cannot apply adjustment in {adjustment.status} status")

        for item in adjustment.items:
            item.recalculate()
            if item.quantity_adjustment == 0:
                continue

            product = lock_product(item.product_id)
            resulting = product.quantity + item.quantity_adjustment
            if resulting < 0:
                raise StockAdjustmentError(
                    f"Adjustment would leave product {product.sku} with negative stock",
                    details={
                        "product_id": product.id,
                        "quantity": product.quantity,
                        "quantity_adjustment": item.quantity_adjustment,
                    },
                )

            apply_stock_change(
                product=product,
                quantity_delta=item.quantity_adjustment,
                movement_type="adjustment",
                reference_type="stock_adjustment",
                reference_id=adjustment.id,
                warehouse_id=adjustment.warehouse_id,
                location_id=adjustment.location_id,
                user_id=user_id,
                notes=f"{adjustment.adjustment_number}: {item.reason or adjustment.reason}",
            )

        adjustment.status = ADJUSTMENT_STATUS_APPLIED
        adjustment.applied_by_user_id = user_id
        adjustment.applied_at = utcnow()
        db.session.flush()

        logger.info("Stock adjustment %s applied by user %s", adjustment.adjustment_number, user_id)
        return adjustment

    return run_with_retry(_op)


def cancel_adjustment(adjustment_id: int, user_id: int) -> StockAdjustment:
    """Any status before applied -> cancelled."""
    def _op():
        adjustment = _lock_adjustment(adjustment_id)
        if adjustment.status not in CANCELLABLE_STATUSES:
            raise StockAdjustmentError(f"Cannot cancel adjustment in {adjustment.status} status")

        adjustment.status = ADJUSTMENT_STATUS_CANCELLED
        adjustment.cancelled_at = utcnow()
        db.session.flush()

        logger.info("Stock adjustment %s cancelled by user %s", adjustment.adjustment_number, user_id)
        return adjustment

    return run_with_retry(_op)


def generate_from_count(
    *,
    warehouse_id: int,
    counts: list[dict],
    user_id: int,
    location_id: int | None = None,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Build a draft recount adjustment from physical count results.

    counts: [{product_id, counted_quantity}]. Products whose count equals the
    system quantity are skipped.

    Raises:
        StockAdjustmentError: No product differs from its system quantity
    """
    if not counts:
        raise ValidationError("counts must be a non-empty list", {"counts": "must be a non-empty list"})

    items = []
    for idx, raw in enumerate(counts):
        product_id = item_int(raw, "product_id", index=idx, prefix="counts")
        counted = item_int(raw, "counted_quantity", index=idx, minimum=0, prefix="counts")
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                {f"counts.{idx}.product_id": "does not exist"},
            )
        if counted == product.quantity:
            continue
        items.append({
            "product_id": product.id,
            "current_quantity": product.quantity,
            "adjusted_quantity": counted,
            "reason": "Physical count variance",
        })

    if not items:
        raise StockAdjustmentError("Counted quantities match system stock; nothing to adjust")

    return create_adjustment(
        warehouse_id=warehouse_id,
        location_id=location_id,
        adjustment_type="recount",
        reason="physical_count",
        items=items,
        user_id=user_id,
        notes=notes or "Generated from physical count",
    )
