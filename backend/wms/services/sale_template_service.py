# backend/wms/services/sale_template_service.py
"""
Sale template service.

WHY: Counter staff repeat the same orders (a weekly restock for a customer, a
standard kit). A template stores the lines and header defaults once;
create_sale_from_template turns it into an ordinary draft sale.

PRICING:
- Prices are read from the products at use time, never stored
- discount_bps applies to every line: round_half_up(subtotal * bps / 10000)
- tax_rate_bps overrides the product rate when set
- Products deleted since the template was saved are skipped
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem, SaleTemplate
from ..models.sales import PAYMENT_METHODS
from ..time_utils import utcnow
from ..validation import NotFoundError, ValidationError, item_int, require_choice
from .concurrency import lock_for_update, run_with_retry
from .query_utils import paginate, get_or_raise
from .sales_service import create_sale, default_tax_rate_bps

logger = logging.getLogger(__name__)


TEMPLATE_MUTABLE_FIELDS = {
    "name",
    "description",
    "customer_id",
    "payment_method",
    "discount_bps",
    "tax_rate_bps",
    "notes",
    "is_active",
}

SORTABLE_FIELDS = ("usage_count", "name", "created_at", "last_used_at")

MAX_BPS = 10_000
COPY_SUFFIX = " (Copy)"


class SaleTemplateError(Exception):
    """Raised when a template cannot be used."""
    pass


def _lock_template(template_id: int) -> SaleTemplate:
    template = lock_for_update(db.session.query(SaleTemplate).filter_by(id=template_id)).first()
    if template is None:
        raise NotFoundError(f"Sale template {template_id} not found")
    return template


def _normalize_items(items: list[dict]) -> list[dict]:
    """Validate template lines and keep only product_id and quantity."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", {"items": "must be a non-empty list"})

    normalized = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{idx}] must be an object", {f"items.{idx}": "must be an object"})
        product_id = item_int(raw, "product_id", index=idx)
        if db.session.get(Product, product_id) is None:
            raise ValidationError(
                f"Product {product_id} does not exist",
                {f"items.{idx}.product_id": "does not exist"},
            )
        normalized.append({
            "product_id": product_id,
            "quantity": item_int(raw, "quantity", index=idx, minimum=1),
        })
    return normalized


def _validate_fields(patch: dict) -> None:
    customer_id = patch.get("customer_id")
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise ValidationError(f"customer_id {customer_id} does not exist", {"customer_id": "does not exist"})
    if patch.get("payment_method") is not None:
        require_choice(patch["payment_method"], "payment_method", PAYMENT_METHODS)
    for field in ("discount_bps", "tax_rate_bps"):
        value = patch.get(field)
        if value is not None and not 0 <= value <= MAX_BPS:
            raise ValidationError(
                f"{field} must be between 0 and {MAX_BPS}",
                {field: f"must be between 0 and {MAX_BPS}"},
            )


def _apply_patch(template: SaleTemplate, patch: dict) -> None:
    for k, v in patch.items():
        if k in TEMPLATE_MUTABLE_FIELDS:
            setattr(template, k, v)


def _line_discount_cents(subtotal_cents: int, discount_bps: int) -> int:
    return (subtotal_cents * (discount_bps or 0) + 5000) // 10000


def template_sale_lines(template: SaleTemplate) -> list[dict]:
    """Sale line payloads for create_sale, priced from the current products."""
    lines = []
    for entry in template.items or []:
        product = db.session.get(Product, entry["product_id"])
        if product is None:
            continue
        unit_price = product.unit_price_cents or 0
        quantity = entry["quantity"]
        line = {
            "product_id": product.id,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "discount_cents": _line_discount_cents(unit_price * quantity, template.discount_bps),
        }
        if template.tax_rate_bps is not None:
            line["tax_rate_bps"] = template.tax_rate_bps
        lines.append(line)
    return lines


def serialize_template(template: SaleTemplate) -> dict:
    """
    Template plus its priced lines and the estimated sale total.

    The estimate uses the same line pricing as a real sale, so it matches the
    draft created from the template as long as prices do not change.
    """
    data = template.to_dict()
    priced = []
    estimated_total = 0
    for line in template_sale_lines(template):
        product = db.session.get(Product, line["product_id"])
        item = SaleItem(
            quantity=line["quantity"],
            unit_price_cents=line["unit_price_cents"],
            discount_cents=line["discount_cents"],
            tax_rate_bps=line.get("tax_rate_bps", default_tax_rate_bps(product)),
        )
        item.recalculate()
        estimated_total += item.total_cents
        priced.append({
            "product_id": product.id,
            "sku": product.sku,
            "name": product.name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "subtotal_cents": item.subtotal_cents,
            "discount_cents": item.discount_cents,
            "tax_rate_bps": item.tax_rate_bps,
            "tax_cents": item.tax_cents,
            "total_cents": item.total_cents,
        })
    data["lines"] = priced
    data["estimated_total_cents"] = estimated_total
    return data


def get_template(template_id: int) -> SaleTemplate:
    return get_or_raise(SaleTemplate, template_id, "Sale template")


def list_templates(
    *,
    search: str | None = None,
    customer_id: int | None = None,
    user_id: int | None = None,
    is_active: bool | None = None,
    sort_by: str | None = None,
    sort_order: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Templates sorted by usage_count (most used first) unless sort_by says otherwise."""
    sort_by = sort_by or "usage_count"
    sort_order = (sort_order or "desc").lower()
    require_choice(sort_by, "sort_by", SORTABLE_FIELDS)
    require_choice(sort_order, "sort_order", ("asc", "desc"))

    query = db.session.query(SaleTemplate)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(SaleTemplate.name.ilike(like), SaleTemplate.description.ilike(like)))
    if customer_id is not None:
        query = query.filter(SaleTemplate.customer_id == customer_id)
    if user_id is not None:
        query = query.filter(SaleTemplate.user_id == user_id)
    if is_active is not None:
        query = query.filter(SaleTemplate.is_active.is_(is_active))

    column = getattr(SaleTemplate, sort_by)
    query = query.order_by(column.desc() if sort_order == "desc" else column.asc(), SaleTemplate.id.asc())
    return paginate(query, page=page, per_page=per_page, serialize=serialize_template)


def most_used_templates(*, limit: int = 10, user_id: int | None = None) -> list[SaleTemplate]:
    query = db.session.query(SaleTemplate).filter(SaleTemplate.is_active.is_(True))
    if user_id is not None:
        query = query.filter(SaleTemplate.user_id == user_id)
    return query.order_by(SaleTemplate.usage_count.desc(), SaleTemplate.id.asc()).limit(limit).all()


def create_template(patch: dict, *, items: list[dict], user_id: int) -> SaleTemplate:
    """
    Save a new template.

    Raises:
        ValidationError: Missing name, bad lines, unknown customer or bps out of range
    """
    if not patch.get("name"):
        raise ValidationError("name is required", {"name": "is required"})
    _validate_fields(patch)

    template = SaleTemplate(
        user_id=user_id,
        items=_normalize_items(items),
        payment_method="cash",
        discount_bps=0,
        is_active=True,
        usage_count=0,
    )
    _apply_patch(template, patch)
    db.session.add(template)
    db.session.flush()

    logger.info("Created sale template %s (%s)", template.id, template.name)
    return template


def update_template(template_id: int, patch: dict, *, items: list[dict] | None = None) -> SaleTemplate:
    """Edit header fields; `items`, when given, replaces every line."""
    def _op():
        template = _lock_template(template_id)
        _validate_fields(patch)
        _apply_patch(template, patch)
        if items is not None:
            template.items = _normalize_items(items)
        db.session.flush()
        return template

    return run_with_retry(_op)


def delete_template(template_id: int) -> None:
    template = get_template(template_id)
    db.session.delete(template)
    db.session.flush()


def toggle_template_status(template_id: int) -> SaleTemplate:
    template = get_template(template_id)
    template.is_active = not template.is_active
    db.session.flush()
    return template


def duplicate_template(template_id: int, user_id: int) -> SaleTemplate:
    """Copy a template under "<name> (Copy)" with fresh usage counters."""
    source = get_template(template_id)
    name = source.name[: 255 - len(COPY_SUFFIX)] + COPY_SUFFIX

    copy = SaleTemplate(
        name=name,
        description=source.description,
        user_id=user_id,
        customer_id=source.customer_id,
        items=[dict(item) for item in (source.items or [])],
        payment_method=source.payment_method,
        discount_bps=source.discount_bps,
        tax_rate_bps=source.tax_rate_bps,
        notes=source.notes,
        is_active=source.is_active,
        usage_count=0,
        last_used_at=None,
    )
    db.session.add(copy)
    db.session.flush()
    return copy


def create_sale_from_template(
    template_id: int,
    *,
    user_id: int,
    customer_id: int | None = None,
    warehouse_id: int | None = None,
    notes: str | None = None,
) -> Sale:
    """
    Create a draft sale from an active template and count the use.

    customer_id and notes default to the template's; the sale goes through
    sales_service.create_sale, so stock and customer checks are the same as
    for a sale entered by hand.

    Raises:
        SaleTemplateError: Template inactive or none of its products exist
        SaleError: Insufficient stock or inactive product/customer
    """
    def _op():
        template = _lock_template(template_id)
        if not template.is_active:
            raise SaleTemplateError(f"Sale template {template.name!r} is not active")

        lines = template_sale_lines(template)
        if not lines:
            raise SaleTemplateError(f"Sale template {template.name!r} has no existing products")

        sale = create_sale(
            header={
                "customer_id": customer_id if customer_id is not None else template.customer_id,
                "warehouse_id": warehouse_id,
                "payment_method": template.payment_method,
                "notes": notes if notes is not None else template.notes,
            },
            items=lines,
            user_id=user_id,
        )

        template.usage_count = (template.usage_count or 0) + 1
        template.last_used_at = utcnow()
        db.session.flush()

        logger.info("Created sale %s from template %s", sale.sale_number, template.id)
        return sale

    return run_with_retry(_op)
