"""
Change Request Blueprint.

Routes:
  GET    /change-requests                   – list (scoped by role)
  POST   /change-requests                   – raise a new-request / change-request
  GET    /change-requests/next-version      – version preview for a document
  GET    /change-requests/<id>              – one request (same scoping as the list)
  POST   /change-requests/<id>/<action>     – approve | reject | forward | complete | cancel | query
"""

from flask import Blueprint, jsonify, request

from sop_manager.blueprints import json_body
from sop_manager.middleware.permission_required import current_actor, require_auth
from sop_manager.models.change_request import REQUEST_TYPES
from sop_manager.services import change_request_service as crs
from sop_manager.utils.errors import E, api_error, register_error_handlers
from sop_manager.utils.helpers import paginate

change_request_bp = Blueprint("change_request_bp", __name__, url_prefix="/api/v1/change-requests")
register_error_handlers(change_request_bp)


@change_request_bp.route("", methods=["GET"])
@require_auth
def list_change_requests():
    items = crs.list_change_requests(
        current_actor(),
        status=request.args.get("status"),
        document_id=request.args.get("document_id"),
    )
    page, total = paginate(items)
    return jsonify({"items": [cr.to_dict() for cr in page], "total": total}), 200


@change_request_bp.route("", methods=["POST"])
@require_auth
def create_change_request():
    """
    Body: {
        request_type: "new-request" | "change-request",
        document_id?, change_type?: "major" | "minor",
        document_name?, department?, document_type?, country?,
        description?, approvers?, attachment_name?, attachment_url?
    }
    """
    data, err = json_body()
    if err:
        return err
    cr = crs.create_change_request(data, current_actor())
    return jsonify(cr.to_dict()), 201


@change_request_bp.route("/next-version", methods=["GET"])
@require_auth
def next_version():
    """Query params: request_type, change_type, document_id"""
    request_type = request.args.get("request_type", "change-request")
    if request_type not in REQUEST_TYPES:
        return api_error(E.VALIDATION_INVALID, f"request_type must be one of {sorted(REQUEST_TYPES)}")
    preview = crs.preview_version(
        request_type, request.args.get("change_type"), request.args.get("document_id"),
    )
    return jsonify(preview), 200


@change_request_bp.route("/<cr_id>", methods=["GET"])
@require_auth
def get_change_request(cr_id):
    return jsonify(crs.get_change_request_for(cr_id, current_actor()).to_dict()), 200


@change_request_bp.route("/<cr_id>/<action>", methods=["POST"])
@require_auth
def run_action(cr_id, action):
    """Body: { "comment": "..." } — required for reject and query."""
    data, err = json_body()
    if err:
        return err
    cr = crs.transition_change_request(cr_id, action.strip().lower(), current_actor(),
                                       comment=data.get("comment"))
    return jsonify(cr.to_dict()), 200
