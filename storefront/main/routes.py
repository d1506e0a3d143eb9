"""
storefront/main/routes.py
-------------------------
Service-level endpoints (health check for load balancers).
"""
from datetime import datetime

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from storefront import db
from storefront.main import main


@main.route("/health")
def health():
    """Health check for load balancers and monitoring."""
    status = "ok"
    failures = []

    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        status = "error"
        failures.append(f"DB: {e}")
        current_app.logger.error(f"Health check failed (DB): {e}")

    response = {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "details": {
            "db": "ok" if status == "ok" else "error",
            "tax_strategy": current_app.config.get("CART_DISCOUNT_TAX_STRATEGY", "blended"),
        },
    }
    if failures:
        response["failures"] = failures

    return response, 200 if status != "error" else 500
