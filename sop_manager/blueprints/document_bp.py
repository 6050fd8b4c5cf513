"""
Document Blueprint — register, workflow actions, comments and logs.

Endpoints:
  GET    /api/v1/documents                         — visible documents (filters + limit/offset)
  POST   /api/v1/documents                         — register a document
  GET    /api/v1/documents/generate-code           — code preview for dept/type/language
  GET    /api/v1/documents/<id>                    — one document + capabilities
  PUT    /api/v1/documents/<id>                    — field update (live → live-cr)
  DELETE /api/v1/documents/<id>                    — tombstone delete
  GET    /api/v1/documents/<id>/capabilities       — resolved flags for the caller
  POST   /api/v1/documents/<id>/actions/<action>   — workflow action
  POST   /api/v1/documents/<id>/archive            — archive
  POST   /api/v1/documents/<id>/restore            — back to under-review
  GET    /api/v1/documents/<id>/comments           — comment log
  POST   /api/v1/documents/<id>/comments           — append a comment
  GET    /api/v1/documents/<id>/logs               — audit events, oldest first
  POST   /api/v1/documents/<id>/attachment         — multipart upload, stores the reference

Business logic lives in services.document_service and services.workflow;
this module only parses requests and shapes responses.
"""

import logging

from flask import Blueprint, jsonify, request

from sop_manager.blueprints import json_body, query_flag
from sop_manager.middleware.permission_required import current_actor, require_auth
from sop_manager.services import code_generator, document_service, workflow
from sop_manager.services.capabilities import capabilities_for
from sop_manager.services.file_storage import LocalFileStorage
from sop_manager.utils.errors import E, api_error, register_error_handlers
from sop_manager.utils.helpers import paginate

logger = logging.getLogger(__name__)

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1/documents")
register_error_handlers(document_bp)

# Body keys forwarded to workflow handlers
_ACTION_OPTIONS = (
    "comment", "reason", "query", "notes", "approved_by", "reviewers",
    "review_deadline", "file_url", "attachment_name", "updates", "version_number",
)


def _detail(doc, actor):
    body = doc.to_dict()
    body["capabilities"] = capabilities_for(doc, actor).to_dict()
    body["available_actions"] = workflow.available_actions(doc, actor)
    return body


# ═════════════════════════════════════════════════════════════════════════
# Register
# ═════════════════════════════════════════════════════════════════════════

@document_bp.route("", methods=["GET"])
@require_auth
def list_documents():
    """
    Query params: status, department, document_type, search, breached, limit, offset
    """
    actor = current_actor()
    docs = document_service.list_documents(
        actor,
        status=request.args.get("status"),
        department=request.args.get("department"),
        document_type=request.args.get("document_type"),
        search=request.args.get("search"),
        breached=query_flag("breached"),
    )
    page, total = paginate(docs)
    return jsonify({"items": [d.to_dict() for d in page], "total": total}), 200


@document_bp.route("", methods=["POST"])
@require_auth
def create_document():
    data, err = json_body(required=("sop_name", "department"))
    if err:
        return err
    actor = current_actor()
    doc = document_service.create_document(data, actor)
    return jsonify(_detail(doc, actor)), 201


@document_bp.route("/generate-code", methods=["GET"])
@require_auth
def generate_code():
    department = request.args.get("department", "")
    document_type = request.args.get("document_type", "")
    if not department or not document_type:
        return api_error(E.VALIDATION_REQUIRED, "department and document_type are required")
    code = code_generator.next_document_code(department, document_type, request.args.get("language"))
    return jsonify({"document_code": code}), 200


@document_bp.route("/<doc_id>", methods=["GET"])
@require_auth
def get_document(doc_id):
    actor = current_actor()
    doc = document_service.get_document_for(doc_id, actor)
    return jsonify(_detail(doc, actor)), 200


@document_bp.route("/<doc_id>", methods=["PUT"])
@require_auth
def update_document(doc_id):
    data, err = json_body()
    if err:
        return err
    result = workflow.update_document(doc_id, data, current_actor())
    return jsonify(result), 200


@document_bp.route("/<doc_id>", methods=["DELETE"])
@require_auth
def delete_document(doc_id):
    data, err = json_body()
    if err:
        return err
    result = workflow.transition_document(doc_id, "delete", current_actor(), comment=data.get("comment"))
    return jsonify(result), 200


@document_bp.route("/<doc_id>/capabilities", methods=["GET"])
@require_auth
def get_capabilities(doc_id):
    actor = current_actor()
    doc = document_service.get_document(doc_id)
    return jsonify({
        "document_id": doc.id,
        "status": doc.status,
        "pending_with": doc.pending_with,
        "role": actor.role,
        "capabilities": capabilities_for(doc, actor).to_dict(),
        "available_actions": workflow.available_actions(doc, actor),
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════

@document_bp.route("/<doc_id>/actions/<action>", methods=["POST"])
@require_auth
def run_action(doc_id, action):
    """
    Body (all optional, action-specific):
        comment, reason, query, notes, approved_by, reviewers,
        review_deadline, file_url, attachment_name, updates, version_number
    """
    data, err = json_body()
    if err:
        return err
    action = action.strip().lower().replace("-", "_")
    opts = {k: data[k] for k in _ACTION_OPTIONS if k in data}
    result = workflow.transition_document(doc_id, action, current_actor(), **opts)
    return jsonify(result), 200


@document_bp.route("/<doc_id>/archive", methods=["POST"])
@require_auth
def archive_document(doc_id):
    data, err = json_body()
    if err:
        return err
    result = workflow.transition_document(doc_id, "archive", current_actor(), comment=data.get("comment"))
    return jsonify(result), 200


@document_bp.route("/<doc_id>/restore", methods=["POST"])
@require_auth
def restore_document(doc_id):
    data, err = json_body()
    if err:
        return err
    result = workflow.transition_document(doc_id, "restore", current_actor(), comment=data.get("comment"))
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# Comments, logs, attachment
# ═════════════════════════════════════════════════════════════════════════

@document_bp.route("/<doc_id>/comments", methods=["GET"])
@require_auth
def list_comments(doc_id):
    doc = document_service.get_document_for(doc_id, current_actor())
    return jsonify({"document_id": doc.id, "comments": list(doc.comments or [])}), 200


@document_bp.route("/<doc_id>/comments", methods=["POST"])
@require_auth
def add_comment(doc_id):
    data, err = json_body(required=("comment",))
    if err:
        return err
    doc = document_service.add_comment(doc_id, data["comment"], current_actor())
    return jsonify({"document_id": doc.id, "comments": list(doc.comments or [])}), 201


@document_bp.route("/<doc_id>/logs", methods=["GET"])
@require_auth
def list_logs(doc_id):
    events = document_service.document_logs(doc_id, current_actor())
    return jsonify({"document_id": doc_id, "events": events, "total": len(events)}), 200


@document_bp.route("/<doc_id>/attachment", methods=["POST"])
@require_auth
def upload_attachment(doc_id):
    upload = request.files.get("file")
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "A 'file' part is required")
    doc = document_service.attach_file(doc_id, upload, current_actor(), LocalFileStorage())
    return jsonify({
        "document_id": doc.id,
        "attachment_name": doc.attachment_name,
        "file_url": doc.file_url,
    }), 200
