# backend/storefront/routes/system.py
"""
System health endpoint.

Checks the database and the in-process services the order pipeline depends
on (payment gateways, notification channel).
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Tenant
from storefront.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        tenant_count = db.session.query(Tenant).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"tenants": tenant_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_services_health() -> dict:
    orchestrator = current_app.extensions.get("payment_gateways")
    notification_queue = current_app.extensions.get("notification_queue")
    worker = current_app.extensions.get("notification_worker")

    if orchestrator is None or notification_queue is None:
        return {"status": "unhealthy", "error": "Services not initialized"}

    details = {
        "payment_providers": orchestrator.providers(),
        "queued_notifications": len(notification_queue),
        "notification_worker": "running" if worker is not None and worker.is_alive() else "disabled",
    }
    if worker is not None and not worker.is_alive():
        return {"status": "degraded", "warning": "Notification worker stopped", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    services_health = check_services_health()

    all_checks = [database_health, services_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "services": services_health,
        },
    }, http_status
