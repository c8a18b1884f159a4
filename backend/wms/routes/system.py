# backend/wms/routes/system.py
"""
System health endpoint.

Checks database connectivity and basic warehouse configuration so
deployments can be checked without credentials.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, Warehouse, User
from ..responses import success, failure
from wms.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity with a few cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        warehouse_count = db.session.query(Warehouse).count()
        user_count = db.session.query(User).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "warehouses": warehouse_count,
                "users": user_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_warehouse_setup() -> dict:
    """A main, active warehouse must exist for stock documents to default sensibly."""
    start_time = time.time()
    try:
        main = db.session.query(Warehouse).filter(Warehouse.is_main.is_(True)).first()
        elapsed_ms = (time.time() - start_time) * 1000

        if main is None:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "No main warehouse configured",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"main_warehouse": main.code, "active": main.is_active},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Warehouse setup check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Warehouse setup error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    warehouse_health = check_warehouse_setup()

    all_checks = [database_health, warehouse_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    report = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "warehouses": warehouse_health,
        }
    }

    if overall_status == "unhealthy":
        return failure("Service unhealthy", status=503, details=report)
    return success(report, overall_status)
