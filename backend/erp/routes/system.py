# Overview: Health and version endpoints.

"""
System health and version endpoints.

/health checks the database and the session table and reports whether the
outbound collaborators (object storage, owner notification) are configured.
"""

import sys
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Product, SessionToken, StoreUnit, User
from erp.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")

API_VERSION = "1.0.0"


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "units": db.session.query(StoreUnit).count(),
            "products": db.session.query(Product).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False),
            SessionToken.expires_at >= now,
        ).count()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": {"active_sessions": active},
        }
    except Exception:
        current_app.logger.exception("Session service health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Session service error",
        }


def check_collaborators() -> dict:
    storage = bool(current_app.config.get("STORAGE_BASE_URL"))
    notify = bool(current_app.config.get("NOTIFY_WEBHOOK_URL"))
    return {
        "status": "healthy" if storage and notify else "degraded",
        "details": {"storage_configured": storage, "notification_configured": notify},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (collaborators not configured)
    - 503: database or session table unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "collaborators": check_collaborators(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": API_VERSION,
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
