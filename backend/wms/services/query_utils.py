# Overview: Shared lookup and list/pagination helpers for the services.

from __future__ import annotations

from typing import Callable

from flask import current_app

from ..extensions import db
from ..validation import NotFoundError


def paginate(query, *, page: int | None, per_page: int | None, serialize: Callable) -> dict:
    """
    Run a list query with optional pagination.

    Args:
        query: SQLAlchemy query, already filtered and ordered
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default/max from PAGE_SIZE_DEFAULT/PAGE_SIZE_MAX)
        serialize: Row -> dict

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    if page is None:
        rows = query.all()
        return {
            "items": [serialize(r) for r in rows],
            "count": len(rows),
        }

    default_size = current_app.config.get("PAGE_SIZE_DEFAULT", 15)
    max_size = current_app.config.get("PAGE_SIZE_MAX", 100)
    per_page = min(per_page or default_size, max_size)
    per_page = max(per_page, 1)
    page = max(page, 1)

    total = query.order_by(None).count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [serialize(r) for r in rows],
        "count": len(rows),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_or_raise(model, object_id: int, label: str | None = None):
    """Primary-key lookup that raises NotFoundError (-> 404) when missing."""
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFoundError(f"{label or model.__name__} {object_id} not found")
    return obj
