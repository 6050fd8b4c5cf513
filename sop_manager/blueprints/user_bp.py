"""
User Blueprint — directory management (admin only, except listing).

  GET    /api/v1/users            — list (any signed-in user; feeds people pickers)
  POST   /api/v1/users            — create
  GET    /api/v1/users/<id>       — detail
  PUT    /api/v1/users/<id>       — update
  DELETE /api/v1/users/<id>       — deactivate
"""

from flask import Blueprint, jsonify, request

from sop_manager.blueprints import json_body, query_flag
from sop_manager.core.actor import ADMIN
from sop_manager.middleware.permission_required import current_actor, require_auth, require_role
from sop_manager.services import user_service
from sop_manager.utils.errors import register_error_handlers

user_bp = Blueprint("user_bp", __name__, url_prefix="/api/v1/users")
register_error_handlers(user_bp)


@user_bp.route("", methods=["GET"])
@require_auth
def list_users():
    users = user_service.list_users(
        role=request.args.get("role"),
        department=request.args.get("department"),
        active_only=bool(query_flag("active")),
    )
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)}), 200


@user_bp.route("", methods=["POST"])
@require_role(ADMIN)
def create_user():
    """Body: { email, name, password, role, department?, country? }"""
    data, err = json_body(required=("email", "name", "password", "role"))
    if err:
        return err
    user = user_service.create_user(
        email=data["email"],
        name=data["name"],
        password=data["password"],
        role=data["role"],
        department=data.get("department"),
        country=data.get("country"),
        created_by=current_actor().display_name,
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/<user_id>", methods=["GET"])
@require_role(ADMIN)
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200


@user_bp.route("/<user_id>", methods=["PUT"])
@require_role(ADMIN)
def update_user(user_id):
    data, err = json_body()
    if err:
        return err
    user = user_service.update_user(user_id, data, updated_by=current_actor().display_name)
    return jsonify(user.to_dict()), 200


@user_bp.route("/<user_id>", methods=["DELETE"])
@require_role(ADMIN)
def deactivate_user(user_id):
    user = user_service.deactivate_user(user_id, updated_by=current_actor().display_name)
    return jsonify(user.to_dict()), 200
