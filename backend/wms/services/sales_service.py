"""
Sales Service - order capture, stock decrement and cancellation.

WHY: A sale is built as a draft (lines editable, no stock effect) and only
touches stock when completed. Completion and cancellation run inside one
transaction together with their StockMovement rows and payment updates.

LIFECYCLE:
1. draft -> completed: stock checked and decremented ("sale" movements)
2. draft -> cancelled: no stock to restore; payments cancelled
3. completed -> cancelled: stock restored ("sale_cancellation" movements),
   payments cancelled, payment_status recomputed
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Sale, SaleItem, Product, Customer, Warehouse
from ..models.customers import PAYMENT_TERM_DAYS
from ..models.sales import PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, item_int, require_choice
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_sale_number, next_invoice_number
from .movement_service import apply_stock_change, lock_product
from .payment_service import record_payment, cancel_sale_payments, update_sale_payment_status
from .query_utils import paginate, get_or_raise

logger = logging.getLogger(__name__)


SALE_STATUS_DRAFT = "draft"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"

# Settled at the counter: completion records a full payment
IMMEDIATE_PAYMENT_METHODS = ("cash", "card")
# Due date for credit sales when the customer has no net_* terms
DEFAULT_CREDIT_DAYS = 30


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def default_tax_rate_bps(product: Product) -> int:
    if product.tax_rate_bps is not None:
        return product.tax_rate_bps
    return current_app.config.get("DEFAULT_TAX_RATE_BPS", 0)


def _validate_on_hand(lines, *, lock: bool = False) -> None:
    """Aggregate quantities per product and compare against Product.quantity."""
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line.product_id] = product_totals.get(line.product_id, 0) + line.quantity

    insufficient = []
    for product_id, qty in product_totals.items():
        product = lock_product(product_id) if lock else db.session.get(Product, product_id)
        if product.quantity < qty:
            insufficient.append({
                "product_id": product_id,
                "sku": product.sku,
                "requested_quantity": qty,
                "on_hand": product.quantity,
            })

    if insufficient:
        raise SaleError(
            "Insufficient stock to complete sale",
            details={"items": insufficient},
        )


def _build_items(items: list[dict]) -> list[SaleItem]:
    if not items:
        raise ValidationError("items must be a non-empty list", {"items": "must be a non-empty list"})

    built = []
    for idx, raw in enumerate(items):
        product_id = item_int(raw, "product_id", index=idx)
        product = db.session.get(Product, product_id)
        if product is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                {f"items.{idx}.product_id": "does not exist"},
            )
        if not product.is_active:
            raise SaleError(f"Product {product.sku} is inactive")

        line = SaleItem(
            product_id=product.id,
            quantity=item_int(raw, "quantity", index=idx, minimum=1),
            unit_price_cents=item_int(raw, "unit_price_cents", index=idx, required=False,
                                      default=product.unit_price_cents or 0, minimum=0),
            discount_cents=item_int(raw, "discount_cents", index=idx, required=False, default=0, minimum=0),
            tax_rate_bps=item_int(raw, "tax_rate_bps", index=idx, required=False,
                                  default=default_tax_rate_bps(product), minimum=0),
        )
        if line.discount_cents > line.subtotal_cents:
            raise ValidationError(
                f"items.{idx}.discount_cents exceeds the line subtotal",
                {f"items.{idx}.discount_cents": "exceeds the line subtotal"},
            )
        line.recalculate()
        built.append(line)

    _validate_on_hand(built)
    return built


def _validate_header(header: dict) -> None:
    customer_id = header.get("customer_id")
    if customer_id is not None:
        customer = db.session.get(Customer, customer_id)
        if customer is None:
            raise ValidationError(f"customer_id {customer_id} does not exist", {"customer_id": "does not exist"})
        if not customer.is_active:
            raise SaleError(f"Customer {customer.name} is inactive")
    warehouse_id = header.get("warehouse_id")
    if warehouse_id is not None and db.session.get(Warehouse, warehouse_id) is None:
        raise ValidationError(f"warehouse_id {warehouse_id} does not exist", {"warehouse_id": "does not exist"})
    if header.get("payment_method") is not None:
        require_choice(header["payment_method"], "payment_method", PAYMENT_METHODS)
    if (header.get("discount_cents") or 0) < 0:
        raise ValidationError("discount_cents must be >= 0", {"discount_cents": "must be >= 0"})


def _finalize_totals(sale: Sale) -> None:
    sale.recalculate_totals()
    line_totals = sum(item.total_cents for item in sale.items)
    if (sale.discount_cents or 0) > line_totals:
        raise ValidationError("discount_cents exceeds the sale total", {"discount_cents": "exceeds the sale total"})
    threshold = current_app.config.get("EINVOICE_THRESHOLD_CENTS")
    if threshold is not None and sale.total_cents >= threshold:
        sale.requires_electronic_invoice = True


def get_sale(sale_id: int) -> Sale:
    return get_or_raise(Sale, sale_id, "Sale")


def list_sales(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    payment_method: str | None = None,
    customer_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if payment_status:
        query = query.filter(Sale.payment_status == payment_status)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    if date_from is not None:
        query = query.filter(Sale.created_at >= date_from)
    if date_to is not None:
        query = query.filter(Sale.created_at <= date_to)
    if search:
        like = f"%{search.strip()}%"
        query = query.outerjoin(Customer, Customer.id == Sale.customer_id).filter(
            or_(Sale.sale_number.ilike(like), Sale.invoice_number.ilike(like), Customer.name.ilike(like))
        )
    query = query.order_by(Sale.id.desc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda s: s.to_dict(include_items=False))


def create_sale(*, header: dict, items: list[dict], user_id: int) -> Sale:
    """
    Create a draft sale with its lines.

    header: customer_id, warehouse_id, payment_method, discount_cents, notes,
    requires_electronic_invoice. Lines whose quantity exceeds the product's
    current quantity are rejected up front.

    Raises:
        ValidationError: Malformed input
        SaleError: Insufficient stock or inactive product/customer
    """
    def _op():
        _validate_header(header)
        lines = _build_items(items)

        sale = Sale(
            sale_number=next_sale_number(),
            status=SALE_STATUS_DRAFT,
            payment_status="pending",
            user_id=user_id,
            customer_id=header.get("customer_id"),
            warehouse_id=header.get("warehouse_id"),
            payment_method=header.get("payment_method") or "cash",
            discount_cents=header.get("discount_cents") or 0,
            notes=header.get("notes"),
            requires_electronic_invoice=bool(header.get("requires_electronic_invoice")),
        )
        sale.items.extend(lines)
        _finalize_totals(sale)

        db.session.add(sale)
        db.session.flush()

        logger.info("Created draft sale %s total=%s", sale.sale_number, sale.total_cents)
        return sale

    return run_with_retry(_op)


def update_sale(sale_id: int, *, header: dict, items: list[dict] | None = None) -> Sale:
    """Edit a draft sale; `items`, when given, replaces all lines."""
    def _op():
        sale = _lock_sale(sale_id)
        if sale.status != SALE_STATUS_DRAFT:
            raise SaleError(f"Cannot edit sale in {sale.status} status")

        _validate_header(header)
        for field in ("customer_id", "warehouse_id", "payment_method", "discount_cents", "notes"):
            if field in header:
                setattr(sale, field, header[field])
        if "requires_electronic_invoice" in header:
            sale.requires_electronic_invoice = bool(header["requires_electronic_invoice"])

        if items is not None:
            lines = _build_items(items)
            sale.items.clear()
            db.session.flush()
            sale.items.extend(lines)
        _finalize_totals(sale)

        db.session.flush()
        return sale

    return run_with_retry(_op)


def delete_sale(sale_id: int) -> None:
    sale = _lock_sale(sale_id)
    if sale.status != SALE_STATUS_DRAFT:
        raise SaleError(f"Cannot delete sale in {sale.status} status")
    if sale.payments:
        raise SaleError("Cannot delete a sale that has payments; cancel it instead")
    db.session.delete(sale)
    db.session.flush()


def _due_date_for(sale: Sale, start: datetime) -> datetime:
    days = None
    if sale.customer is not None:
        days = PAYMENT_TERM_DAYS.get(sale.customer.payment_terms)
    if days is None and sale.payment_method == "credit":
        days = DEFAULT_CREDIT_DAYS
    return start + timedelta(days=days or 0)


def complete_sale(sale_id: int, user_id: int) -> Sale:
    """
    Complete a draft sale: decrement stock and settle invoice data.

    - Re-validates stock for every product under row locks
    - One "sale" movement per line
    - Non-cash sales get an invoice number, invoice date and a due date
      from the customer's payment terms
    - Credit sales need a customer with enough available credit
    - Cash and card sales record a completed payment for the full total

    Raises:
        SaleError: Wrong status, insufficient stock or insufficient credit
    """
    def _op():
        sale = _lock_sale(sale_id)
        if sale.status != SALE_STATUS_DRAFT:
            raise SaleError(f"Cannot complete sale in {sale.status} status")
        if not sale.items:
            raise SaleError("Cannot complete sale with no items")

        if sale.payment_method == "credit":
            if sale.customer is None:
                raise SaleError("Credit sales require a customer")
            available = sale.customer.available_credit_cents
            if sale.total_cents > available:
                raise SaleError(
                    "Customer credit limit exceeded",
                    details={"available_credit_cents": available, "total_cents": sale.total_cents},
                )

        # Allocate before any stock write
        invoice_number = next_invoice_number() if sale.payment_method != "cash" else None

        _validate_on_hand(sale.items, lock=True)

        for item in sale.items:
            product = lock_product(item.product_id)
            apply_stock_change(
                product=product,
                quantity_delta=-item.quantity,
                movement_type="sale",
                reference_type="sale",
                reference_id=sale.id,
                warehouse_id=sale.warehouse_id,
                location_id=product.location_id,
                user_id=user_id,
                notes=sale.sale_number,
            )

        now = utcnow()
        sale.status = SALE_STATUS_COMPLETED
        sale.sale_date = now
        if invoice_number is not None:
            sale.invoice_number = invoice_number
            sale.invoice_date = now
            sale.due_date = _due_date_for(sale, now)
        db.session.flush()

        if sale.payment_method in IMMEDIATE_PAYMENT_METHODS and sale.pending_balance_cents > 0:
            record_payment(
                sale,
                payment_method=sale.payment_method,
                amount_cents=sale.pending_balance_cents,
                user_id=user_id,
                notes="Recorded at sale completion",
            )
        update_sale_payment_status(sale)

        logger.info("Completed sale %s total=%s", sale.sale_number, sale.total_cents)
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, user_id: int, reason: str | None = None) -> Sale:
    """
    Cancel a draft or completed sale.

    Completed sales get every line's quantity back through a
    "sale_cancellation" movement. Payments are cancelled in either case,
    including ones recorded against a draft.

    Raises:
        SaleError: Sale already cancelled
    """
    def _op():
        sale = _lock_sale(sale_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise SaleError("Sale is already cancelled")

        if sale.status == SALE_STATUS_COMPLETED:
            for item in sale.items:
                product = lock_product(item.product_id)
                apply_stock_change(
                    product=product,
                    quantity_delta=item.quantity,
                    movement_type="sale_cancellation",
                    reference_type="sale",
                    reference_id=sale.id,
                    warehouse_id=sale.warehouse_id,
                    location_id=product.location_id,
                    user_id=user_id,
                    notes=f"{sale.sale_number} cancelled",
                )

        cancel_sale_payments(sale)
        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        if reason:
            sale.notes = f"{sale.notes}\n{reason}" if sale.notes else reason
        db.session.flush()

        logger.info("Cancelled sale %s", sale.sale_number)
        return sale

    return run_with_retry(_op)
