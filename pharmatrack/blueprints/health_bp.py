"""
Health check blueprint.

Endpoints:
    GET  /api/v1/health                     — simple 200 for load balancers
    GET  /api/v1/health/live                — database + cache status
    GET  /api/v1/health/cache/metrics       — cache hit/miss counters    (ADMIN)
    POST /api/v1/health/cache/metrics/reset — zero the counters          (ADMIN)
    POST /api/v1/health/cache/warm          — run cache warming now      (ADMIN)
"""

import logging

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from pharmatrack.blueprints import register_error_handlers
from pharmatrack.middleware.permission_required import require_roles
from pharmatrack.services import cache_service, cache_warming, datastore

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")
register_error_handlers(health_bp)


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check.  The cache is optional and never fails overall health."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        checks["database"] = {"status": "ok", "latency_ms": round(datastore.ping(), 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Cache ────────────────────────────────────────────────────────
    checks["cache"] = cache_service.health_check()

    checks["app"] = {
        "name": "PharmaTrack",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code


@health_bp.route("/cache/metrics", methods=["GET"])
@require_roles("ADMIN")
def cache_metrics():
    return jsonify(cache_service.get_metrics()), 200


@health_bp.route("/cache/metrics/reset", methods=["POST"])
@require_roles("ADMIN")
def reset_cache_metrics():
    cache_service.reset_metrics()
    logger.info("Cache metrics reset")
    return jsonify({"success": True}), 200


@health_bp.route("/cache/warm", methods=["POST"])
@require_roles("ADMIN")
def warm_cache():
    return jsonify(cache_warming.manual_warm()), 200
