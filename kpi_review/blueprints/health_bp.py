"""
Health probes.

Endpoints:
    GET /api/v1/health/live   - process is up (no dependencies touched)
    GET /api/v1/health/ready  - database round-trip plus evidence store settings
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from kpi_review.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


@health_bp.route("/live", methods=["GET"])
def live():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """200 when the database answers, 503 otherwise."""
    evidence = {
        "store": current_app.config.get("EVIDENCE_STORE", "local"),
        "upload_timeout_s": current_app.config.get("EVIDENCE_UPLOAD_TIMEOUT"),
    }
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        logger.error("Readiness probe: database unavailable: %s", exc)
        body = {"status": "degraded", "database": {"status": "error", "detail": str(exc)}, "evidence": evidence}
        return jsonify(body), 503

    latency = round((time.perf_counter() - started) * 1000, 1)
    body = {"status": "ok", "database": {"status": "ok", "latency_ms": latency}, "evidence": evidence}
    return jsonify(body), 200
