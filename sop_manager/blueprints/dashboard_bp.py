"""Dashboard Blueprint — GET /api/v1/dashboard/stats."""

from flask import Blueprint, jsonify

from sop_manager.middleware.permission_required import current_actor, require_auth
from sop_manager.services.dashboard_service import dashboard_stats
from sop_manager.utils.errors import register_error_handlers

dashboard_bp = Blueprint("dashboard_bp", __name__, url_prefix="/api/v1/dashboard")
register_error_handlers(dashboard_bp)


@dashboard_bp.route("/stats", methods=["GET"])
@require_auth
def stats():
    return jsonify(dashboard_stats(current_actor())), 200
