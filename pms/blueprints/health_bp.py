"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       : simple 200 for load balancers
    GET /api/v1/health/live  : database round-trip and notification status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from pms.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Readiness probe: always 200 if app is running."""
    return jsonify({"status": "ok", "app": "PMS"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Notifications ────────────────────────────────────────────────
    dispatcher = current_app.extensions.get("pms_notifications")
    if dispatcher is not None:
        checks["notifications"] = {
            "status": "ok",
            "mode": "async" if dispatcher.async_mode else "inline",
            "failures": dispatcher.failures,
        }

    checks["app"] = {
        "name": "PMS",
        "workflow": current_app.config.get("REPORT_WORKFLOW"),
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
