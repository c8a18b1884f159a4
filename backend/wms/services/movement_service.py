# Overview: Stock ledger writes; the only code path that changes Product.quantity.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Product, StockMovement
from .concurrency import lock_for_update

"""
Stock Ledger Invariants (authoritative)

- Append-only: StockMovement rows are never updated or deleted.
- Every change of Product.quantity writes exactly one movement with the same
  signed delta, in the same DB transaction, via apply_stock_change().
- Product.quantity never goes below zero; a change that would do so raises
  InsufficientStockError before anything is written.
- previous_quantity/new_quantity snapshot the product row as locked.
"""

logger = logging.getLogger(__name__)


class InsufficientStockError(Exception):
    """Raised when a decrement would take a product below zero."""

    def __init__(self, product: Product, requested: int):
        super().__init__(
            f"Insufficient stock for product {product.sku}. "
            f"Available: {product.quantity}, requested: {requested}"
        )
        self.product_id = product.id
        self.available = product.quantity
        self.requested = requested


def lock_product(product_id: int) -> Product | None:
    return lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()


def apply_stock_change(
    *,
    product: Product,
    quantity_delta: int,
    movement_type: str,
    reference_type: str | None = None,
    reference_id: int | None = None,
    warehouse_id: int | None = None,
    location_id: int | None = None,
    user_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Change a product's quantity and append the matching ledger row.

    The caller is expected to hold the product row lock (lock_product) and to
    commit or roll back the surrounding transaction.

    Raises:
        InsufficientStockError: If the result would be negative
    """
    previous = product.quantity or 0
    new_quantity = previous + quantity_delta
    if new_quantity < 0:
        raise InsufficientStockError(product, -quantity_delta)

    product.quantity = new_quantity

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity_delta=quantity_delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        warehouse_id=warehouse_id,
        location_id=location_id,
        reference_type=reference_type,
        reference_id=reference_id,
        user_id=user_id,
        notes=notes[:255] if notes else None,
    )
    db.session.add(movement)
    db.session.flush()

    logger.debug(
        "stock %s product=%s delta=%s %s->%s ref=%s:%s",
        movement_type, product.id, quantity_delta, previous, new_quantity, reference_type, reference_id,
    )
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    warehouse_id: int | None = None,
):
    """Movement query, newest first."""
    query = db.session.query(StockMovement)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    if reference_type:
        query = query.filter(StockMovement.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(StockMovement.reference_id == reference_id)
    if warehouse_id is not None:
        query = query.filter(StockMovement.warehouse_id == warehouse_id)
    return query.order_by(StockMovement.id.desc())


def verify_product_ledger(product: Product) -> list[str]:
    """
    Check a product's quantity against its movements.

    Returns a list of human-readable problems (empty when consistent):
    - the sum of deltas must equal the current quantity
    - the newest movement's new_quantity must equal the current quantity
    - every row must satisfy new - previous == delta
    """
    problems = []
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product.id)
        .order_by(StockMovement.id.asc())
        .all()
    )
    if not movements:
        if product.quantity:
            problems.append(f"{product.sku}: quantity {product.quantity} with no movements")
        return problems

    total = 0
    for m in movements:
        total += m.quantity_delta
        if m.new_quantity - m.previous_quantity != m.quantity_delta:
            problems.append(f"{product.sku}: movement {m.id} snapshot does not match delta")

    if total != product.quantity:
        problems.append(f"{product.sku}: deltas sum to {total}, quantity is {product.quantity}")
    if movements[-1].new_quantity != product.quantity:
        problems.append(
            f"{product.sku}: last movement leaves {movements[-1].new_quantity}, quantity is {product.quantity}"
        )
    return problems
