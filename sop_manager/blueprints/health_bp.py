"""
Health check blueprint.

    GET /api/v1/health  — database round-trip, upload folder and mail mode
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from sop_manager.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database():
    started = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_uploads():
    folder = current_app.config.get("UPLOAD_FOLDER")
    if not folder:
        return {"status": "not_configured"}
    if not os.path.isdir(folder):
        # created lazily on first upload
        return {"status": "pending", "path": folder}
    return {"status": "ok" if os.access(folder, os.W_OK) else "read_only", "path": folder}


@health_bp.route("", methods=["GET"])
def health():
    """Only the database decides the overall status; the rest is informational."""
    checks = {}
    try:
        checks["database"] = _check_database()
        healthy = True
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        healthy = False
        logger.error("Health check: database unreachable: %s", exc)

    checks["uploads"] = _check_uploads()
    checks["mail"] = {"mode": "smtp" if current_app.config.get("MAIL_SERVER") else "log_only"}
    checks["app"] = {
        "name": "SOP Document Manager",
        "revision_interval_months": current_app.config.get("REVISION_INTERVAL_MONTHS"),
        "testing": current_app.testing,
    }
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
