"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login   — Email + password → access token
  GET  /api/v1/auth/me      — Current user profile + role label
"""

from flask import Blueprint, jsonify

from sop_manager.blueprints import json_body
from sop_manager.middleware.permission_required import current_actor, require_auth
from sop_manager.models import db
from sop_manager.models.user import User
from sop_manager.services.jwt_service import token_response
from sop_manager.services.user_service import authenticate
from sop_manager.utils.errors import register_error_handlers

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Body: { "email": "...", "password": "..." }
    """
    data, err = json_body(required=("email", "password"))
    if err:
        return err
    user = authenticate(data["email"], data["password"])
    return jsonify(token_response(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    actor = current_actor()
    user = db.session.get(User, actor.user_id) if actor.user_id else None
    body = user.to_dict() if user else {
        "id": actor.user_id, "name": actor.name, "email": actor.email, "role": actor.role,
        "department": actor.department, "country": actor.country,
    }
    body["role_label"] = actor.label
    return jsonify(body), 200
