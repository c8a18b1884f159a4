# backend/wms/services/products_service.py
"""
Products Service

Product master data plus the stock views built on Product.quantity.

QUANTITY: create_product may seed an opening quantity and adjust_stock may
set/add/subtract directly; both go through movement_service so every change
leaves a ledger row. update_product never touches quantity.
"""
from __future__ import annotations

import logging

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Product,
    Category,
    Brand,
    Location,
    Warehouse,
    SaleItem,
    StockAdjustmentItem,
    StockTransferItem,
    StockMovement,
)
from ..validation import ConflictError, NotFoundError, ValidationError
from .movement_service import apply_stock_change, lock_product
from .query_utils import paginate, get_or_raise

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "barcode",
    "name",
    "description",
    "category_id",
    "brand_id",
    "location_id",
    "unit_price_cents",
    "cost_cents",
    "tax_rate_bps",
    "min_stock_level",
    "max_stock_level",
    "is_active",
}

STOCK_ADJUST_MODES = ("set", "add", "subtract")


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def get_product(product_id: int) -> Product:
    return get_or_raise(Product, product_id, "Product")


def _check_references(patch: dict) -> None:
    refs = (("category_id", Category), ("brand_id", Brand), ("location_id", Location))
    for field, model in refs:
        value = patch.get(field)
        if value is not None and db.session.get(model, value) is None:
            raise ValidationError(f"{field} {value} does not exist", {field: "does not exist"})

    min_level = patch.get("min_stock_level")
    max_level = patch.get("max_stock_level")
    if min_level is not None and max_level is not None and max_level < min_level:
        raise ValidationError(
            "max_stock_level must be >= min_stock_level",
            {"max_stock_level": "must be >= min_stock_level"},
        )


def _check_sku_available(sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"SKU {sku!r} already exists")


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    brand_id: int | None = None,
    is_active: bool | None = None,
    stock_status: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional filters and pagination.

    stock_status filters on the derived status (out_of_stock, low_stock,
    overstock, normal).
    """
    query = db.session.query(Product)

    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if brand_id is not None:
        query = query.filter(Product.brand_id == brand_id)
    if is_active is not None:
        query = query.filter(Product.is_active.is_(is_active))

    if stock_status == "out_of_stock":
        query = query.filter(Product.quantity <= 0)
    elif stock_status == "low_stock":
        query = query.filter(Product.quantity > 0, Product.quantity <= Product.min_stock_level)
    elif stock_status == "overstock":
        query = query.filter(
            Product.max_stock_level.isnot(None),
            Product.quantity > Product.max_stock_level,
        )
    elif stock_status == "normal":
        query = query.filter(
            Product.quantity > Product.min_stock_level,
            or_(Product.max_stock_level.is_(None), Product.quantity <= Product.max_stock_level),
        )
    elif stock_status:
        raise ValidationError(f"Unknown stock_status: {stock_status}", {"stock_status": "unknown"})

    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda p: p.to_dict())


def create_product(
    *,
    patch: dict,
    initial_quantity: int = 0,
    user_id: int | None = None,
    warehouse_id: int | None = None,
) -> Product:
    """
    Create product using a validated patch dict.

    An opening quantity is written as an "initial" movement so the ledger
    starts from zero like every other product.

    Raises:
        ConflictError: Duplicate SKU
        ValidationError: Broken references or negative opening quantity
    """
    if initial_quantity < 0:
        raise ValidationError("quantity must be >= 0", {"quantity": "must be >= 0"})

    _check_sku_available(patch["sku"])
    _check_references(patch)
    if warehouse_id is not None and db.session.get(Warehouse, warehouse_id) is None:
        raise ValidationError(f"warehouse_id {warehouse_id} does not exist", {"warehouse_id": "does not exist"})

    product = Product(quantity=0)
    apply_product_patch(product, patch)
    db.session.add(product)
    db.session.flush()

    if initial_quantity:
        apply_stock_change(
            product=product,
            quantity_delta=initial_quantity,
            movement_type="initial",
            reference_type="product",
            reference_id=product.id,
            warehouse_id=warehouse_id,
            location_id=product.location_id,
            user_id=user_id,
            notes="Opening stock",
        )

    logger.info("Created product %s (%s) with opening quantity %s", product.id, product.sku, initial_quantity)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    product = get_product(product_id)

    if "sku" in patch and patch["sku"] != product.sku:
        _check_sku_available(patch["sku"], exclude_id=product.id)

    merged = {
        "min_stock_level": product.min_stock_level,
        "max_stock_level": product.max_stock_level,
    }
    merged.update(patch)
    _check_references(merged)

    apply_product_patch(product, patch)
    db.session.flush()
    return product


def delete_product(product_id: int) -> None:
    """
    Delete a product that has never been used.

    Raises:
        ConflictError: If sale/adjustment/transfer lines or movements reference it
    """
    product = get_product(product_id)

    referenced = (
        db.session.query(SaleItem.id).filter_by(product_id=product.id).first()
        or db.session.query(StockAdjustmentItem.id).filter_by(product_id=product.id).first()
        or db.session.query(StockTransferItem.id).filter_by(product_id=product.id).first()
    )
    if referenced:
        raise ConflictError("Product is referenced by sales or stock documents; deactivate it instead")
    if db.session.query(StockMovement.id).filter_by(product_id=product.id).first():
        raise ConflictError("Product has stock history; deactivate it instead")

    db.session.delete(product)
    db.session.flush()


def low_stock_products() -> list[Product]:
    """Active products at or under their minimum level but not yet empty."""
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.quantity > 0,
            Product.quantity <= Product.min_stock_level,
        )
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def out_of_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.quantity <= 0)
        .order_by(Product.name.asc())
        .all()
    )


def adjust_stock(
    product_id: int,
    *,
    mode: str,
    quantity: int,
    user_id: int | None = None,
    warehouse_id: int | None = None,
    location_id: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Direct stock correction outside an adjustment document.

    mode "set" makes quantity equal to `quantity`; "add"/"subtract" apply it
    as a delta. A zero effective delta is rejected.

    Raises:
        ValidationError: Bad mode/quantity or no-op
        InsufficientStockError: Result would be negative
    """
    if mode not in STOCK_ADJUST_MODES:
        raise ValidationError(
            f"mode must be one of: {', '.join(STOCK_ADJUST_MODES)}",
            {"mode": "invalid"},
        )
    if quantity < 0:
        raise ValidationError("quantity must be >= 0", {"quantity": "must be >= 0"})

    product = lock_product(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    if mode == "set":
        delta = quantity - product.quantity
    elif mode == "add":
        delta = quantity
    else:
        delta = -quantity

    if delta == 0:
        raise ValidationError("Stock adjustment does not change the quantity", {"quantity": "no change"})

    return apply_stock_change(
        product=product,
        quantity_delta=delta,
        movement_type="manual",
        reference_type="product",
        reference_id=product.id,
        warehouse_id=warehouse_id,
        location_id=location_id if location_id is not None else product.location_id,
        user_id=user_id,
        notes=notes,
    )


def current_stock(product_ids: list[int]) -> list[dict]:
    """On-hand quantities used to pre-fill adjustment and transfer lines."""
    if not product_ids:
        return []
    products = db.session.query(Product).filter(Product.id.in_(product_ids)).order_by(Product.id).all()
    return [
        {
            "product_id": p.id,
            "sku": p.sku,
            "name": p.name,
            "quantity": p.quantity,
            "cost_cents": p.cost_cents,
            "stock_status": p.stock_status,
        }
        for p in products
    ]
