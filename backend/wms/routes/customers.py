# Overview: Flask API routes for customers.

from flask import Blueprint, request

from ..models import Customer
from ..models.customers import CUSTOMER_TYPES, PAYMENT_TERMS, DOCUMENT_TYPES
from ..responses import success
from ..request_args import arg_bool, json_body
from ..services import customer_service
from ..services.concurrency import run_in_transaction
from ..validation import ModelValidationPolicy, validate_payload, enforce_amount_cents
from ..decorators import require_actor, api_errors

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=set(customer_service.CUSTOMER_MUTABLE_FIELDS),
    required_on_create={"name"},
    non_negative_fields={"credit_limit_cents", "discount_bps"},
    choices={
        "customer_type": CUSTOMER_TYPES,
        "payment_terms": PAYMENT_TERMS,
        "document_type": DOCUMENT_TYPES,
    },
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@api_errors("list customers")
def list_customers_route():
    result = customer_service.list_customers(
        search=request.args.get("search"),
        customer_type=request.args.get("customer_type"),
        is_active=arg_bool("is_active"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )
    return success(result)


@customers_bp.get("/search")
@api_errors("search customers")
def search_customers_route():
    """Quick lookup; `q` needs at least two characters."""
    limit = min(request.args.get("limit", 10, type=int), 50)
    customers = customer_service.search_customers(request.args.get("q", ""), limit=limit)
    return success([c.to_dict() for c in customers])


@customers_bp.get("/<int:customer_id>")
@api_errors("get customer")
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    data = customer.to_dict()
    data["outstanding_balance_cents"] = customer.outstanding_balance_cents
    return success(data)


@customers_bp.post("")
@require_actor
@api_errors("create customer")
def create_customer_route():
    patch = validate_payload(model=Customer, payload=json_body(), policy=CUSTOMER_POLICY, partial=False)
    enforce_amount_cents(patch, "credit_limit_cents")
    customer = run_in_transaction(lambda: customer_service.create_customer(patch))
    return success(customer.to_dict(), "Customer created", 201)


@customers_bp.put("/<int:customer_id>")
@require_actor
@api_errors("update customer")
def update_customer_route(customer_id: int):
    patch = validate_payload(model=Customer, payload=json_body(), policy=CUSTOMER_POLICY, partial=True)
    enforce_amount_cents(patch, "credit_limit_cents")
    customer = run_in_transaction(lambda: customer_service.update_customer(customer_id, patch))
    return success(customer.to_dict(), "Customer updated")


@customers_bp.delete("/<int:customer_id>")
@require_actor
@api_errors("delete customer")
def delete_customer_route(customer_id: int):
    run_in_transaction(lambda: customer_service.delete_customer(customer_id))
    return success(None, "Customer deleted")


@customers_bp.post("/<int:customer_id>/toggle-status")
@require_actor
@api_errors("toggle customer status")
def toggle_customer_route(customer_id: int):
    customer = run_in_transaction(lambda: customer_service.toggle_customer_status(customer_id))
    state = "activated" if customer.is_active else "deactivated"
    return success(customer.to_dict(), f"Customer {state}")


@customers_bp.get("/types")
@api_errors("list customer types")
def customer_types_route():
    return success(list(CUSTOMER_TYPES))


@customers_bp.get("/payment-terms")
@api_errors("list payment terms")
def payment_terms_route():
    return success(list(PAYMENT_TERMS))
