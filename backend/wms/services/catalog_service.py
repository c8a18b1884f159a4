# Overview: Category and brand master data.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Category, Brand, Product
from ..validation import ConflictError, ValidationError
from .query_utils import paginate, get_or_raise


CATEGORY_MUTABLE_FIELDS = {"name", "description", "parent_id", "image_url", "is_active", "sort_order"}
BRAND_MUTABLE_FIELDS = {
    "name",
    "description",
    "logo_url",
    "website",
    "contact_email",
    "contact_phone",
    "is_active",
}


def _apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k in allowed:
            setattr(obj, k, v)


# =============================================================================
# Categories
# =============================================================================

def get_category(category_id: int) -> Category:
    return get_or_raise(Category, category_id, "Category")


def _check_category_name(name: str, parent_id: int | None, exclude_id: int | None = None) -> None:
    query = db.session.query(Category.id).filter(Category.name == name)
    if parent_id is None:
        query = query.filter(Category.parent_id.is_(None))
    else:
        query = query.filter(Category.parent_id == parent_id)
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Category {name!r} already exists under this parent")


def _check_parent(category_id: int | None, parent_id: int | None) -> None:
    """Parent must exist and must not be the category itself or one of its descendants."""
    if parent_id is None:
        return
    parent = db.session.get(Category, parent_id)
    if parent is None:
        raise ValidationError(f"parent_id {parent_id} does not exist", {"parent_id": "does not exist"})
    node = parent
    while node is not None:
        if category_id is not None and node.id == category_id:
            raise ValidationError("A category cannot be nested under itself", {"parent_id": "creates a cycle"})
        node = node.parent


def list_categories(
    *,
    search: str | None = None,
    parent_id: int | None = None,
    roots_only: bool = False,
    is_active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Category)
    if search:
        query = query.filter(Category.name.ilike(f"%{search.strip()}%"))
    if roots_only:
        query = query.filter(Category.parent_id.is_(None))
    elif parent_id is not None:
        query = query.filter(Category.parent_id == parent_id)
    if is_active is not None:
        query = query.filter(Category.is_active.is_(is_active))
    query = query.order_by(Category.sort_order.asc(), Category.name.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda c: c.to_dict())


def create_category(patch: dict) -> Category:
    _check_parent(None, patch.get("parent_id"))
    _check_category_name(patch["name"], patch.get("parent_id"))
    category = Category()
    _apply_patch(category, patch, CATEGORY_MUTABLE_FIELDS)
    db.session.add(category)
    db.session.flush()
    return category


def update_category(category_id: int, patch: dict) -> Category:
    category = get_category(category_id)
    parent_id = patch.get("parent_id", category.parent_id)
    name = patch.get("name", category.name)
    if "parent_id" in patch:
        _check_parent(category.id, parent_id)
    if "name" in patch or "parent_id" in patch:
        _check_category_name(name, parent_id, exclude_id=category.id)
    _apply_patch(category, patch, CATEGORY_MUTABLE_FIELDS)
    db.session.flush()
    return category


def delete_category(category_id: int) -> None:
    category = get_category(category_id)
    if category.children:
        raise ConflictError("Cannot delete a category that has subcategories")
    if db.session.query(Product.id).filter_by(category_id=category.id).first():
        raise ConflictError("Cannot delete a category that has products")
    db.session.delete(category)
    db.session.flush()


def category_tree(active_only: bool = True) -> list[dict]:
    """Root categories with nested children, ordered by sort_order then name."""
    query = db.session.query(Category).filter(Category.parent_id.is_(None))
    if active_only:
        query = query.filter(Category.is_active.is_(True))
    roots = query.order_by(Category.sort_order.asc(), Category.name.asc()).all()
    return [c.to_dict(include_children=True) for c in roots]


def category_options() -> list[dict]:
    """Flat id/label pairs for pickers; labels carry the full path."""
    categories = (
        db.session.query(Category)
        .filter(Category.is_active.is_(True))
        .order_by(Category.name.asc())
        .all()
    )
    options = [{"id": c.id, "name": c.name, "label": c.full_path} for c in categories]
    return sorted(options, key=lambda o: o["label"])


# =============================================================================
# Brands
# =============================================================================

def get_brand(brand_id: int) -> Brand:
    return get_or_raise(Brand, brand_id, "Brand")


def _check_brand_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Brand.id).filter(Brand.name == name)
    if exclude_id is not None:
        query = query.filter(Brand.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Brand {name!r} already exists")


def list_brands(
    *,
    search: str | None = None,
    is_active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Brand)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Brand.name.ilike(like), Brand.description.ilike(like)))
    if is_active is not None:
        query = query.filter(Brand.is_active.is_(is_active))
    query = query.order_by(Brand.name.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda b: b.to_dict())


def create_brand(patch: dict) -> Brand:
    _check_brand_name(patch["name"])
    brand = Brand()
    _apply_patch(brand, patch, BRAND_MUTABLE_FIELDS)
    db.session.add(brand)
    db.session.flush()
    return brand


def update_brand(brand_id: int, patch: dict) -> Brand:
    brand = get_brand(brand_id)
    if "name" in patch and patch["name"] != brand.name:
        _check_brand_name(patch["name"], exclude_id=brand.id)
    _apply_patch(brand, patch, BRAND_MUTABLE_FIELDS)
    db.session.flush()
    return brand


def delete_brand(brand_id: int) -> None:
    brand = get_brand(brand_id)
    if db.session.query(Product.id).filter_by(brand_id=brand.id).first():
        raise ConflictError("Cannot delete a brand that has products")
    db.session.delete(brand)
    db.session.flush()


def brand_options() -> list[dict]:
    brands = db.session.query(Brand).filter(Brand.is_active.is_(True)).order_by(Brand.name.asc()).all()
    return [{"id": b.id, "name": b.name} for b in brands]
