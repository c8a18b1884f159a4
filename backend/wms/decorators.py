# Overview: Request decorators shared by the API blueprints.

from functools import wraps

from flask import request, g, current_app

from .extensions import db
from .models import User
from .responses import failure
from .validation import ValidationError, ConflictError, NotFoundError
from .services.adjustment_service import StockAdjustmentError
from .services.transfer_service import StockTransferError
from .services.sales_service import SaleError
from .services.payment_service import PaymentError
from .services.invoice_service import InvoiceError
from .services.movement_service import InsufficientStockError
from .services.document_service import DocumentSequenceError
from .services.sale_template_service import SaleTemplateError


# Business-rule failures reported as 422 with their message (and details)
DOMAIN_ERRORS = (
    StockAdjustmentError,
    StockTransferError,
    SaleError,
    PaymentError,
    InvoiceError,
    InsufficientStockError,
    DocumentSequenceError,
    SaleTemplateError,
)

ACTOR_HEADER = "X-User-Id"


def require_actor(f):
    """
    Resolve the acting user from the X-User-Id header.

    Sets g.current_user. Returns 400 when the header is missing or not an
    integer and 404 when the user does not exist or is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER)
        if not raw:
            return failure(f"{ACTOR_HEADER} header is required", status=400)
        try:
            user_id = int(raw)
        except ValueError:
            return failure(f"{ACTOR_HEADER} must be an integer", status=400)

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return failure("User not found", status=404)

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def api_errors(action: str):
    """
    Translate service exceptions into the JSON error envelope.

    ValidationError -> 422 (with per-field errors), NotFoundError -> 404,
    ConflictError -> 409, business-rule errors -> 422 (with details).
    Anything else is logged and reported as a generic 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return failure(str(e), status=422, errors=e.errors)
            except NotFoundError as e:
                return failure(str(e), status=404)
            except ConflictError as e:
                return failure(str(e), status=409)
            except InsufficientStockError as e:
                return failure(str(e), status=422, details={
                    "product_id": e.product_id,
                    "available": e.available,
                    "requested": e.requested,
                })
            except DOMAIN_ERRORS as e:
                return failure(str(e), status=422, details=getattr(e, "details", None))
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return failure("Internal server error", status=500)

        return decorated_function

    return decorator
