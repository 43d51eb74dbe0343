# retail_pos/routes/system.py
"""
Health and version endpoints for load balancers and deploy checks.
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Product, Sale, Customer
from retail_pos.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Ping the database and count the core tables.

    The counts come from the same session the API uses, so a healthy result
    means the schema is in place, not just that the socket is open.
    """
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
        details = {
            "products": db.session.query(Product).count(),
            "low_stock_products": db.session.query(Product).filter(Product.stock <= Product.min_stock).count(),
            "sales": db.session.query(Sale).count(),
            "customers": db.session.query(Customer).count(),
        }
        status = "healthy"
    except Exception:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        details = None
        status = "unhealthy"

    result = {"status": status, "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
    if details is None:
        result["error"] = "Database error"
    else:
        result["details"] = details
    return result


@system_bp.get("/health")
def health():
    """200 when the database answers, 503 otherwise."""
    database = check_database_health()
    return {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }, 200 if database["status"] == "healthy" else 503


@system_bp.get("/version")
def version():
    return {
        "api_version": "1.0.0",
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
