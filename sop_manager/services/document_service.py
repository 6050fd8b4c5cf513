"""
Document Service — persistence-facing operations on documents.

get / list / create, field updates with revision-date rules, the comment
log, the audit log and attachment references.  Status never changes here;
every status move goes through ``services.workflow``.
"""

import logging
from datetime import datetime, timezone

from flask import current_app

from sop_manager.core.actor import ADMIN, CONTROLLER, REQUESTER, ActorContext
from sop_manager.core.exceptions import NotFoundError, PermissionDenied, ValidationError
from sop_manager.models import db
from sop_manager.models.audit import events_for, write_audit
from sop_manager.models.document import (
    DOCUMENT_LANGUAGES,
    PERSON_FIELDS,
    Document,
    DocumentStatus,
    DocumentType,
)
from sop_manager.models.user import User
from sop_manager.services import code_generator, revision_dates
from sop_manager.services.capabilities import is_user_assigned_to_document, is_visible_to
from sop_manager.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

# Roles allowed to register a new document
CREATE_ROLES = {ADMIN, CONTROLLER, REQUESTER}

_TEXT_FIELDS = ("sop_name", "document_number", "department", "country", "description",
                "attachment_name", "file_url")
_DATE_FIELDS = ("upload_date", "review_start_date", "review_deadline", "effective_date")


def _revision_months():
    return current_app.config.get("REVISION_INTERVAL_MONTHS", revision_dates.DEFAULT_INTERVAL_MONTHS)


def _today():
    return datetime.now(timezone.utc).date()


# ── Field coercion ───────────────────────────────────────────────────────────

def coerce_people(value, field):
    """Validate an ordered list of {id, name, email} references.

    Entries given by name only (a bare string, or a dict without id and
    email) are completed from the user directory when exactly one user
    carries that name.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", details={field: "expected a list of people"})
    people = []
    for idx, person in enumerate(value):
        if isinstance(person, str):
            person = {"name": person}
        if not isinstance(person, dict) or not (person.get("name") or person.get("email")):
            raise ValidationError(
                f"Invalid person in {field}",
                details={field: f"entry {idx} needs a name or email"},
            )
        entry = {
            "id": str(person["id"]) if person.get("id") is not None else None,
            "name": person.get("name") or "",
            "email": person.get("email") or "",
        }
        if entry["id"] is None and not entry["email"]:
            entry = _resolve_by_name(entry)
        people.append(entry)
    return people


def _resolve_by_name(entry: dict) -> dict:
    name = entry["name"].strip()
    users = User.query.filter(db.func.lower(User.name) == name.lower()).limit(2).all()
    if len(users) != 1:
        return entry
    return users[0].as_person()


def coerce_document_type(value):
    try:
        return DocumentType(value).value
    except ValueError:
        raise ValidationError(
            f"Unknown document type '{value}'",
            details={"document_type": f"must be one of {[t.value for t in DocumentType]}"},
        ) from None


def coerce_language(value):
    if value in (None, ""):
        return None
    lang = str(value).strip().lower()
    lang = {"english": "en", "arabic": "ar"}.get(lang, lang)
    if lang not in DOCUMENT_LANGUAGES:
        raise ValidationError("Unsupported language", details={"language": "must be en or ar"})
    return lang


def apply_field_updates(doc: Document, data: dict) -> dict:
    """
    Validate and apply editable fields from ``data``.

    Everything is validated before anything is written, so a rejected update
    leaves the document untouched.

    Returns:
        {field: {"old", "new"}} for the fields that actually changed.
    """
    if "status" in data and data["status"] not in (None, doc.status):
        raise ValidationError(
            "Status cannot be set directly",
            details={"status": "use a workflow action"},
        )
    if "comments" in data and data["comments"] != (doc.comments or []):
        raise ValidationError(
            "Comments are append-only",
            details={"comments": "use the comments endpoint"},
        )

    staged = {}
    for field in _TEXT_FIELDS:
        if field in data:
            staged[field] = data[field]
    if "sop_name" in staged and not (staged["sop_name"] or "").strip():
        raise ValidationError("Document name is required", details={"sop_name": "required"})
    if "department" in staged and not (staged["department"] or "").strip():
        raise ValidationError("Department is required", details={"department": "required"})
    if "document_type" in data:
        staged["document_type"] = coerce_document_type(data["document_type"])
    if "language" in data:
        staged["language"] = coerce_language(data["language"])
    if "document_code" in data:
        code = (data["document_code"] or "").strip() or None
        if code and code_generator.parse_document_code(code) is None:
            raise ValidationError("Malformed document code", details={"document_code": code})
        staged["document_code"] = code
    for field in _DATE_FIELDS:
        if field in data:
            staged[field] = parse_date_input(data[field], field)
    for field in PERSON_FIELDS:
        if field in data:
            staged[field] = coerce_people(data[field], field)
    if "document_owners" in staged and not staged["document_owners"]:
        raise ValidationError("At least one document owner is required",
                              details={"document_owners": "required"})

    if "last_revision_date" in data or "next_revision_date" in data or doc.next_revision_date is None:
        last, nxt = revision_dates.resolve_revision_dates(
            doc.last_revision_date,
            doc.next_revision_date,
            parse_date_input(data.get("last_revision_date"), "last_revision_date"),
            parse_date_input(data.get("next_revision_date"), "next_revision_date"),
            months=_revision_months(),
        )
        staged["last_revision_date"] = last
        staged["next_revision_date"] = nxt

    changes = {}
    for field, new in staged.items():
        old = getattr(doc, field)
        if old != new:
            changes[field] = {"old": old, "new": new}
            setattr(doc, field, new)
    return changes


# ── Queries ──────────────────────────────────────────────────────────────────

def get_document(document_id: str) -> Document:
    doc = db.session.get(Document, document_id)
    if not doc:
        raise NotFoundError(resource="Document", resource_id=document_id)
    return doc


def get_document_for(document_id: str, actor: ActorContext) -> Document:
    """Fetch a document the actor is allowed to open."""
    doc = get_document(document_id)
    if not is_user_assigned_to_document(doc, actor):
        raise PermissionDenied(actor.role, "view", "not assigned to this document")
    return doc


def list_documents(actor: ActorContext, *, status=None, department=None, document_type=None,
                   search=None, breached=None) -> list[Document]:
    """Documents visible to ``actor``, newest first, with optional filters."""
    q = Document.query
    if status:
        q = q.filter(Document.status == DocumentStatus.from_legacy(status).value)
    if department:
        q = q.filter(Document.department == department)
    if document_type:
        q = q.filter(Document.document_type == document_type)
    if search:
        like = f"%{search}%"
        q = q.filter(db.or_(Document.sop_name.ilike(like), Document.document_code.ilike(like)))
    docs = [d for d in q.order_by(Document.created_at.desc()).all() if is_visible_to(d, actor)]
    if breached is not None:
        today = _today()
        docs = [d for d in docs if d.is_breached(today) == breached]
    return docs


# ── Mutations ────────────────────────────────────────────────────────────────

def create_document(data: dict, actor: ActorContext) -> Document:
    """
    Register a new document.

    New documents start in ``under-review`` with nobody pending, whoever
    creates them.  ``status: "draft"`` is accepted so a draft can be
    parked and submitted later.  The code is generated when not supplied.
    """
    if actor.role not in CREATE_ROLES:
        raise PermissionDenied(actor.role, "create")

    missing = {f: "required" for f in ("sop_name", "department") if not (data.get(f) or "").strip()}
    if missing:
        raise ValidationError("Missing required fields", details=missing)

    status = DocumentStatus.UNDER_REVIEW
    if data.get("status") is not None:
        status = DocumentStatus.from_legacy(data["status"])
        if status not in (DocumentStatus.UNDER_REVIEW, DocumentStatus.DRAFT):
            raise ValidationError(
                "New documents start under review or as a draft",
                details={"status": "must be under-review or draft"},
            )

    doc = Document(
        sop_name=data["sop_name"].strip(),
        department=data["department"].strip(),
        document_type=coerce_document_type(data.get("document_type") or DocumentType.SOP.value),
        status=status.value,
        pending_with=None,
        version_number="1.0",
        comments=[],
    )
    if actor.role == REQUESTER:
        doc.requested_by = actor.as_person()
    elif data.get("requested_by"):
        doc.requested_by = coerce_people([data["requested_by"]], "requested_by")[0]

    fields = {k: v for k, v in data.items() if k not in ("status", "requested_by")}
    fields.setdefault("document_owners", [])
    fields.setdefault("upload_date", _today().isoformat())
    if not data.get("last_revision_date"):
        fields["last_revision_date"] = _today().isoformat()
    apply_field_updates(doc, fields)

    if not doc.document_code:
        doc.document_code = code_generator.next_document_code(doc.department, doc.document_type, doc.language)

    doc.append_comment(f"Document created by {actor.display_name}")
    db.session.add(doc)
    db.session.flush()
    write_audit(
        entity_type="document", entity_id=doc.id, kind="document.create",
        actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
        payload={"status": {"old": None, "new": doc.status}, "document_code": doc.document_code},
    )
    db.session.commit()
    logger.info("Document created: id=%s code=%s by=%s", doc.id, doc.document_code, actor.role)
    return doc


def add_comment(document_id: str, text: str, actor: ActorContext) -> Document:
    """Append one human comment."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Comment text is required", details={"comment": "required"})
    doc = get_document_for(document_id, actor)
    doc.append_comment(f"{actor.display_name}: {text}")
    write_audit(
        entity_type="document", entity_id=doc.id, kind="document.comment",
        actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
        payload={"comment": text},
    )
    db.session.commit()
    return doc


def document_logs(document_id: str, actor: ActorContext) -> list[dict]:
    doc = get_document_for(document_id, actor)
    return [e.to_dict() for e in events_for("document", doc.id)]


def attach_file(document_id: str, upload, actor: ActorContext, storage) -> Document:
    """Store an uploaded file and keep only its reference on the document."""
    doc = get_document_for(document_id, actor)
    if doc.status_enum in (DocumentStatus.ARCHIVED, DocumentStatus.DELETED):
        raise ValidationError("Cannot attach files to an archived or deleted document",
                              details={"status": doc.status})
    name, url = storage.save(upload, f"documents/{doc.id}")
    old = {"attachment_name": doc.attachment_name, "file_url": doc.file_url}
    doc.attachment_name = name
    doc.file_url = url
    write_audit(
        entity_type="document", entity_id=doc.id, kind="document.attach",
        actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
        payload={"old": old, "new": {"attachment_name": name, "file_url": url}},
    )
    db.session.commit()
    return doc
