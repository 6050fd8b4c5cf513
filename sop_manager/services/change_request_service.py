"""
Change Request Service

Lifecycle of requests against the document register:

    pending ──approve──▶ approved ──complete──▶ completed
       │  └─forward──▶ pending-owner-approval ──approve/reject──▶ …
       └──reject / cancel──▶ rejected

Side effects on the target document:
  - approving a new-request registers the document (under-review)
  - approving a change-request on a live document moves it to live-cr
  - completing a change-request returns it to live with the new version
"""

import logging

from sop_manager.core.actor import ADMIN, CONTROLLER, OWNER, PENDING_CONTROLLER, REQUESTER, ActorContext
from sop_manager.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from sop_manager.models import db
from sop_manager.models.audit import write_audit
from sop_manager.models.change_request import (
    REQUEST_TYPES,
    ChangeRequest,
    validate_cr_transition,
)
from sop_manager.models.document import Document, DocumentStatus
from sop_manager.models.reference import Department
from sop_manager.models.user import User
from sop_manager.services import code_generator, notification, workflow
from sop_manager.services.document_service import coerce_people
from sop_manager.services.versioning import next_version_number

logger = logging.getLogger(__name__)

# Who may move a change request, per action
_ACTION_ROLES = {
    "approve": {ADMIN, CONTROLLER, OWNER},
    "reject": {ADMIN, CONTROLLER, OWNER},
    "forward": {ADMIN, CONTROLLER},
    "complete": {ADMIN, CONTROLLER, OWNER},
    "cancel": {ADMIN, REQUESTER},
    "query": {ADMIN, REQUESTER, CONTROLLER},
}

_ACTION_TARGET = {
    "approve": "approved",
    "reject": "rejected",
    "forward": "pending-owner-approval",
    "complete": "completed",
    "cancel": "rejected",
}


# ═══════════════════════════════════════════════════════════════
# Version preview
# ═══════════════════════════════════════════════════════════════

def preview_version(request_type: str, change_type: str | None = None, document_id: str | None = None) -> dict:
    """Version a request would produce, without creating it."""
    if request_type == "new-request":
        return {"document_id": None, "current_version": None, "version_number": next_version_number(request_type)}
    if not document_id:
        raise ValidationError("document_id is required", details={"document_id": "required"})
    doc = db.session.get(Document, document_id)
    if not doc:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return {
        "document_id": doc.id,
        "current_version": doc.version_number,
        "version_number": next_version_number(request_type, change_type, _existing_versions(doc)),
    }


def _existing_versions(doc: Document) -> list[str]:
    versions = [doc.version_number]
    if doc.document_code:
        versions += [
            row[0] for row in
            db.session.query(Document.version_number)
            .filter(Document.document_code == doc.document_code)
            .all()
        ]
    return versions


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════

def get_change_request(cr_id: str) -> ChangeRequest:
    cr = db.session.get(ChangeRequest, cr_id)
    if not cr:
        raise NotFoundError(resource="ChangeRequest", resource_id=cr_id)
    return cr


def is_approver(cr: ChangeRequest, actor: ActorContext) -> bool:
    """True when ``actor`` is the request's approver or one of its selected approvers."""
    named = {"id": None, "name": cr.approver_name or "", "email": cr.approver_email or ""}
    return actor.matches(named) or any(actor.matches(p) for p in (cr.approvers or []))


def can_view(cr: ChangeRequest, actor: ActorContext) -> bool:
    """Admins and controllers see every request; others their own, owners also those they approve."""
    if actor.role in (ADMIN, CONTROLLER):
        return True
    if actor.user_id and cr.requestor_id == actor.user_id:
        return True
    return actor.role == OWNER and is_approver(cr, actor)


def get_change_request_for(cr_id: str, actor: ActorContext) -> ChangeRequest:
    """Fetch a request the actor is allowed to open."""
    cr = get_change_request(cr_id)
    if not can_view(cr, actor):
        raise PermissionDenied(actor.role, "view", "not your request")
    return cr


def list_change_requests(actor: ActorContext, *, status=None, document_id=None) -> list[ChangeRequest]:
    q = ChangeRequest.query
    if status:
        q = q.filter(ChangeRequest.status == status)
    if document_id:
        q = q.filter(ChangeRequest.document_id == document_id)
    if actor.role not in (ADMIN, CONTROLLER, OWNER):
        q = q.filter(ChangeRequest.requestor_id == actor.user_id)
    return [cr for cr in q.order_by(ChangeRequest.created_at.desc()).all() if can_view(cr, actor)]


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

def create_change_request(data: dict, actor: ActorContext) -> ChangeRequest:
    """
    Raise a new-request or change-request.

    change-request needs a live target document and a change_type.  The
    approver is the first selected approver, else the department's
    registered approver.
    """
    if actor.role not in (ADMIN, CONTROLLER, REQUESTER, OWNER):
        raise PermissionDenied(actor.role, "create_change_request")

    request_type = data.get("request_type") or "change-request"
    if request_type not in REQUEST_TYPES:
        raise ValidationError("Invalid request type", details={"request_type": sorted(REQUEST_TYPES)})
    change_type = data.get("change_type")
    approvers = coerce_people(data.get("approvers"), "approvers")

    doc = None
    if request_type == "change-request":
        if not data.get("document_id"):
            raise ValidationError("document_id is required", details={"document_id": "required"})
        doc = db.session.get(Document, data["document_id"])
        if not doc:
            raise NotFoundError(resource="Document", resource_id=data["document_id"])
        if doc.status_enum not in (DocumentStatus.LIVE, DocumentStatus.LIVE_CR):
            raise ValidationError(
                "Change requests can only target live documents",
                details={"document_id": f"document is '{doc.status}'"},
            )
        version = next_version_number(request_type, change_type, _existing_versions(doc))
        name = doc.sop_name
        department = doc.department
    else:
        change_type = None
        name = (data.get("document_name") or "").strip()
        department = (data.get("department") or "").strip()
        missing = {f: "required" for f, v in (("document_name", name), ("department", department)) if not v}
        if missing:
            raise ValidationError("Missing required fields", details=missing)
        version = next_version_number(request_type)

    approver_name = approver_email = None
    if approvers:
        approver_name, approver_email = approvers[0]["name"], approvers[0]["email"]
    else:
        dept = Department.query.filter_by(name=department).first() if department else None
        if dept:
            approver_name, approver_email = dept.approver_name, dept.approver_email

    cr = ChangeRequest(
        document_id=doc.id if doc else None,
        document_name=name,
        document_type=doc.document_type if doc else data.get("document_type"),
        department=department,
        country=doc.country if doc else data.get("country"),
        document_code=doc.document_code if doc else None,
        version_number=version,
        request_type=request_type,
        change_type=change_type,
        description=data.get("description") or "",
        status="pending",
        requestor_id=actor.user_id,
        requestor_name=actor.display_name,
        approver_name=approver_name,
        approver_email=approver_email,
        approvers=approvers,
        attachment_name=data.get("attachment_name"),
        attachment_url=data.get("attachment_url"),
        comments=[],
    )
    cr.append_comment(f"Request raised by {actor.display_name}")
    db.session.add(cr)
    db.session.flush()
    _audit(cr, "create", actor, {"status": {"old": None, "new": "pending"}, "version_number": version})
    db.session.commit()
    logger.info("Change request created: id=%s type=%s doc=%s", cr.id, request_type, cr.document_id)
    return cr


# ═══════════════════════════════════════════════════════════════
# Transitions
# ═══════════════════════════════════════════════════════════════

def transition_change_request(cr_id: str, action: str, actor: ActorContext, *, comment: str | None = None) -> ChangeRequest:
    """
    Run approve / reject / forward / complete / cancel / query.

    Raises:
        NotFoundError, PermissionDenied, InvalidTransitionError, ValidationError
    """
    if action not in _ACTION_ROLES:
        raise ValidationError(f"Unknown action '{action}'", details={"action": sorted(_ACTION_ROLES)})
    cr = get_change_request(cr_id)

    # 1. Permission
    if actor.role not in _ACTION_ROLES[action]:
        raise PermissionDenied(actor.role, action)
    if action in ("cancel", "query") and actor.role == REQUESTER and cr.requestor_id != actor.user_id:
        raise PermissionDenied(actor.role, action, "not your request")
    if action in ("approve", "reject", "complete") and actor.role == OWNER and not is_approver(cr, actor):
        raise PermissionDenied(actor.role, action, "not the approver of this request")

    if action == "query":
        return _query(cr, actor, comment)

    # 2. Validate
    previous = cr.status
    target = _ACTION_TARGET[action]
    if action == "cancel" and previous != "pending":
        raise InvalidTransitionError(previous, target, actor.role, "only pending requests can be cancelled")
    if not validate_cr_transition(previous, target):
        raise InvalidTransitionError(previous, target, actor.role)
    if action == "reject" and not (comment or "").strip():
        raise ValidationError("A rejection reason is required", details={"comment": "required"})

    try:
        # 3. Side effects on the document
        if action == "approve":
            _on_approve(cr, actor)
        elif action == "complete":
            _on_complete(cr, actor)

        # 4. Execute
        cr.status = target
        label = {"approve": "Approved", "reject": "Rejected", "forward": "Forwarded to document owner",
                 "complete": "Completed", "cancel": "Cancelled"}[action]
        cr.append_comment(f"{label} by {actor.display_name}" + (f": {comment.strip()}" if comment else ""))
        _audit(cr, action, actor, {"status": {"old": previous, "new": target}, "comment": comment})
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Change request %s: %s %s -> %s", cr.id, action, previous, target)

    # 5. Notify after commit
    doc = db.session.get(Document, cr.document_id) if cr.document_id else None
    if doc is not None and action == "approve":
        notification.dispatch("notify_document_controller", doc, "change_request")
    elif doc is not None and action == "complete" and doc.status_enum == DocumentStatus.LIVE:
        notification.dispatch("notify_document_live", doc)
    return cr


def _query(cr, actor, text):
    text = (text or "").strip()
    if not text:
        raise ValidationError("Query text is required", details={"comment": "required"})
    cr.append_comment(f"Query: {text}")
    _audit(cr, "query", actor, {"query": text, "raised_by": actor.label})
    db.session.commit()
    return cr


def _on_approve(cr: ChangeRequest, actor: ActorContext):
    if cr.request_type == "new-request":
        doc = Document(
            sop_name=cr.document_name,
            department=cr.department or "General",
            document_type=cr.document_type or "SOP",
            country=cr.country,
            description=cr.description,
            status=DocumentStatus.UNDER_REVIEW.value,
            pending_with=PENDING_CONTROLLER,
            version_number=cr.version_number or "1.0",
            requested_by=_requester_ref(cr),
            comments=[],
        )
        doc.document_code = code_generator.next_document_code(doc.department, doc.document_type)
        doc.append_comment(f"Created from change request {cr.id}")
        db.session.add(doc)
        db.session.flush()
        write_audit(
            entity_type="document", entity_id=doc.id, kind="document.create",
            actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
            payload={"status": {"old": None, "new": doc.status}, "change_request_id": cr.id},
        )
        cr.document_id = doc.id
        cr.document_code = doc.document_code
        return

    doc = db.session.get(Document, cr.document_id) if cr.document_id else None
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=cr.document_id)
    workflow.mark_live_cr(doc, actor, f"{cr.change_type} change {cr.version_number}")


def _requester_ref(cr: ChangeRequest) -> dict:
    user = db.session.get(User, cr.requestor_id) if cr.requestor_id else None
    if user is not None:
        return user.as_person()
    return {"id": cr.requestor_id, "name": cr.requestor_name or "", "email": ""}


def _on_complete(cr: ChangeRequest, actor: ActorContext):
    if cr.request_type != "change-request" or not cr.document_id:
        return
    doc = db.session.get(Document, cr.document_id)
    if doc is None:
        raise NotFoundError(resource="Document", resource_id=cr.document_id)
    if doc.status_enum == DocumentStatus.LIVE_CR:
        previous = doc.status
        workflow.apply_transition(doc, DocumentStatus.LIVE, actor.role, action="complete_change")
        doc.version_number = cr.version_number or doc.version_number
        doc.append_comment(f"Change completed: version {doc.version_number}")
        write_audit(
            entity_type="document", entity_id=doc.id, kind="document.complete_change",
            actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
            payload={"status": {"old": previous, "new": doc.status},
                     "version_number": doc.version_number, "change_request_id": cr.id},
        )


def _audit(cr, action, actor, payload):
    write_audit(
        entity_type="change_request", entity_id=cr.id, kind=f"change_request.{action}",
        actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
        payload=payload,
    )
