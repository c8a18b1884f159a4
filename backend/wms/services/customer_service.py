# Overview: Customer master data and credit lookups.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer, Sale
from ..validation import ConflictError
from .query_utils import paginate, get_or_raise


CUSTOMER_MUTABLE_FIELDS = {
    "name",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "country",
    "postal_code",
    "tax_id",
    "document_type",
    "customer_type",
    "credit_limit_cents",
    "payment_terms",
    "discount_bps",
    "is_active",
    "notes",
}


def _apply_patch(customer: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)


def _check_email(email: str | None, exclude_id: int | None = None) -> None:
    if not email:
        return
    query = db.session.query(Customer.id).filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Customer email {email!r} already exists")


def get_customer(customer_id: int) -> Customer:
    return get_or_raise(Customer, customer_id, "Customer")


def list_customers(
    *,
    search: str | None = None,
    customer_type: str | None = None,
    is_active: bool | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Customer.name.ilike(like),
                Customer.email.ilike(like),
                Customer.tax_id.ilike(like),
                Customer.phone.ilike(like),
            )
        )
    if customer_type:
        query = query.filter(Customer.customer_type == customer_type)
    if is_active is not None:
        query = query.filter(Customer.is_active.is_(is_active))
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page=page, per_page=per_page, serialize=lambda c: c.to_dict())


def search_customers(term: str, limit: int = 10) -> list[Customer]:
    """Quick lookup for the sale form: active customers by name, email, tax id or phone."""
    if not term or len(term.strip()) < 2:
        return []
    like = f"%{term.strip()}%"
    return (
        db.session.query(Customer)
        .filter(
            Customer.is_active.is_(True),
            or_(
                Customer.name.ilike(like),
                Customer.email.ilike(like),
                Customer.tax_id.ilike(like),
                Customer.phone.ilike(like),
            ),
        )
        .order_by(Customer.name.asc())
        .limit(limit)
        .all()
    )


def create_customer(patch: dict) -> Customer:
    _check_email(patch.get("email"))
    customer = Customer()
    _apply_patch(customer, patch)
    db.session.add(customer)
    db.session.flush()
    return customer


def update_customer(customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    if "email" in patch and patch["email"] != customer.email:
        _check_email(patch["email"], exclude_id=customer.id)
    _apply_patch(customer, patch)
    db.session.flush()
    return customer


def delete_customer(customer_id: int) -> None:
    customer = get_customer(customer_id)
    if db.session.query(Sale.id).filter_by(customer_id=customer.id).first():
        raise ConflictError("Cannot delete a customer with sales; deactivate it instead")
    db.session.delete(customer)
    db.session.flush()


def toggle_customer_status(customer_id: int) -> Customer:
    customer = get_customer(customer_id)
    customer.is_active = not customer.is_active
    db.session.flush()
    return customer
