# backend/repair_ledger/routes/system.py
"""
System health, version and workshop status endpoints.
"""

import sys
import time
from flask import Blueprint, current_app, jsonify, g

from ..decorators import require_workshop
from ..extensions import db
from ..models import Ticket, Payment, WorkshopApiToken
from ..services import subscription_service
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic ledger queries.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        ticket_count = db.session.query(Ticket).count()
        payment_count = db.session.query(Payment).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "tickets": ticket_count,
                "payments": payment_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_token_service_health() -> dict:
    """
    Check that workshop tokens can be resolved (token table accessible).
    """
    start_time = time.time()
    try:
        active_tokens = db.session.query(WorkshopApiToken).filter(
            WorkshopApiToken.revoked_at.is_(None)
        ).count()

        elapsed_ms = (time.time() - start_time) * 1000

        if active_tokens == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "No active workshop tokens issued",
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"active_tokens": active_tokens},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Token service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Token service error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded (still operational)
    - 503: Database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    token_health = check_token_service_health()

    all_checks = [database_health, token_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "token_service": token_health,
        }
    }, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging. Exposes nothing sensitive.
    """
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }


@system_bp.get("/api/workshop")
@require_workshop
def workshop_status():
    """
    Acting workshop and whether its subscription currently admits ledger calls.
    """
    try:
        subscription = subscription_service.get_current_subscription(g.workshop_id)
        return jsonify({
            "workshop": g.workshop_context.workshop.to_dict(),
            "subscription": subscription.to_dict() if subscription else None,
            "subscription_active": subscription_service.is_subscription_active(g.workshop_id),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load workshop status")
        return jsonify({"error": "Internal server error"}), 500
