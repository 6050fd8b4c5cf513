"""
Document Workflow Service

Moves documents through the status state machine with:
  - Transition validation (DOCUMENT_TRANSITIONS + the live → live-cr override)
  - Capability checks (services.capabilities)
  - Side effects (pendingWith routing, dates, reviewers, attachment)
  - One comment and one structured audit event per action
  - One notification hook per action, fired after commit

Actions:
  submit, take_action, approve, reject, query, upload_revision, push_live,
  start_review, edit, complete_change, archive, delete, restore

Usage:
    from sop_manager.services.workflow import transition_document

    result = transition_document(doc_id, "approve", actor, comment="LGTM")
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache

from sop_manager.core.actor import (
    CREATOR,
    PENDING_CONTROLLER,
    PENDING_CREATOR,
    PENDING_OWNER,
    PENDING_REQUESTER,
    PENDING_REVIEWER,
    REVIEWER,
    ROLES,
    ActorContext,
)
from sop_manager.core.exceptions import InvalidTransitionError, PermissionDenied, ValidationError
from sop_manager.models import db
from sop_manager.models.audit import AuditEvent, write_audit
from sop_manager.models.document import DOCUMENT_TRANSITIONS, Document, DocumentStatus
from sop_manager.services import notification
from sop_manager.services.capabilities import can_perform, is_user_assigned_to_document
from sop_manager.services.document_service import apply_field_updates, coerce_people, get_document
from sop_manager.services.versioning import normalize_version
from sop_manager.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

S = DocumentStatus

# Actions that hit the live → live-cr override
LIVE_CR_ACTIONS = {"edit", "start_review", "change_request"}

# Tombstone operations sit outside the transition table
ADMINISTRATIVE_ACTIONS = {"archive", "delete"}

# Labels a controller can route a queried document back to
_ROUTE_BACK_LABELS = {PENDING_CREATOR, PENDING_REQUESTER, PENDING_REVIEWER}

_KEEP = object()


# ═══════════════════════════════════════════════════════════════
# Pure state machine
# ═══════════════════════════════════════════════════════════════

def can_transition(current, target) -> bool:
    """Pure lookup in the transition table."""
    return S.from_legacy(target) in DOCUMENT_TRANSITIONS.get(S.from_legacy(current), ())


def resolve_target(current, requested, action: str | None = None) -> DocumentStatus:
    """Apply the override: an edit, review start or change request on a live
    document lands in ``live-cr`` whatever target was asked for."""
    current = S.from_legacy(current)
    if current == S.LIVE and action in LIVE_CR_ACTIONS:
        return S.LIVE_CR
    return S.from_legacy(requested)


def apply_transition(doc: Document, requested, role: str | None = None,
                     action: str | None = None) -> DocumentStatus:
    """Set ``doc.status`` or raise InvalidTransitionError leaving it untouched."""
    current = doc.status_enum
    target = resolve_target(current, requested, action)
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value, role)
    doc.status = target.value
    return target


@lru_cache(maxsize=None)
def _action_sources(action: str) -> frozenset:
    """Statuses from which *some* role may perform ``action``."""
    labels = (None, PENDING_CONTROLLER, PENDING_CREATOR, PENDING_REQUESTER,
              PENDING_REVIEWER, PENDING_OWNER)
    return frozenset(
        s for s in S for role in ROLES for pw in labels
        if can_perform(action, s, role, pw)
    )


# ═══════════════════════════════════════════════════════════════
# Action outcomes
# ═══════════════════════════════════════════════════════════════

@dataclass
class _Outcome:
    target: DocumentStatus | None          # None keeps the current status
    comment: str
    pending_with: object = _KEEP
    hook: str | None = None
    hook_args: tuple = ()
    payload: dict = field(default_factory=dict)


def _today():
    return datetime.now(timezone.utc).date()


def _with_note(text, note):
    note = (note or "").strip()
    return f"{text}. {note}" if note else text


def _latest_query_label(doc: Document) -> str | None:
    event = (
        AuditEvent.query
        .filter_by(entity_type="document", entity_id=doc.id, kind="document.query")
        .order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())
        .first()
    )
    return event.payload.get("raised_by") if event else None


def _route_hook(label: str, doc: Document):
    if label == PENDING_CREATOR:
        return "notify_document_creators", (doc,)
    if label == PENDING_REVIEWER:
        return "send_review_notifications", (doc, doc.current_reviewers or doc.reviewers)
    return "notify_requesters", (doc,)


def _submit(doc, actor, opts):
    return _Outcome(
        target=S.UNDER_REVIEW,
        pending_with=PENDING_CONTROLLER,
        comment=_with_note("Submitted for review", opts.get("comment")),
        hook="notify_document_controller", hook_args=(doc, "submission"),
    )


def _take_action(doc, actor, opts):
    pending = PENDING_REQUESTER
    if doc.status_enum == S.QUERIED:
        raised_by = _latest_query_label(doc)
        if raised_by in _ROUTE_BACK_LABELS:
            pending = raised_by
    changes = apply_field_updates(doc, opts.get("updates") or {})
    notes = (opts.get("notes") or opts.get("comment") or "").strip()
    hook, args = _route_hook(pending, doc)
    return _Outcome(
        target=S.UNDER_REVIEW if doc.status_enum == S.QUERIED else None,
        pending_with=pending,
        comment=f"Controller Action: Document updated and resubmitted. {notes or 'No additional notes'}",
        hook=hook, hook_args=args,
        payload={"changes": changes, "routed_to": pending},
    )


def _approve(doc, actor, opts):
    status = doc.status_enum
    name = (opts.get("approved_by") or actor.display_name).strip()
    comment = _with_note(f"Approved by: {name}", opts.get("comment"))
    payload = {"approved_by": name}

    if status == S.UNDER_REVIEW:
        if actor.role == REVIEWER:
            return _Outcome(S.PENDING_CREATOR_APPROVAL, comment, PENDING_CREATOR,
                            "notify_document_creators", (doc,), payload)
        if actor.role == CREATOR:
            return _Outcome(None, comment, PENDING_REQUESTER, "notify_requesters", (doc,), payload)
        # requester, owner, admin
        return _Outcome(S.APPROVED, comment, PENDING_CONTROLLER,
                        "notify_document_controller", (doc, "approval"), payload)
    if status == S.PENDING_CREATOR_APPROVAL:
        return _Outcome(S.PENDING_REQUESTER_APPROVAL, comment, PENDING_REQUESTER,
                        "notify_requesters", (doc,), payload)
    if status == S.PENDING_REQUESTER_APPROVAL:
        return _Outcome(S.UNDER_REVISION, comment, PENDING_OWNER,
                        "send_revision_reminder_to_owner", (doc,), payload)
    # pending-owner-approval
    return _Outcome(S.APPROVED, comment, PENDING_CONTROLLER,
                    "notify_document_controller", (doc, "approval"), payload)


_REJECT_ROUTES = {
    S.UNDER_REVIEW: (None, PENDING_CONTROLLER),
    S.PENDING_CREATOR_APPROVAL: (S.UNDER_REVIEW, PENDING_CONTROLLER),
    S.PENDING_REQUESTER_APPROVAL: (S.PENDING_CREATOR_APPROVAL, PENDING_CREATOR),
    S.PENDING_OWNER_APPROVAL: (S.UNDER_REVISION, PENDING_OWNER),
}


def _reject(doc, actor, opts):
    reason = (opts.get("reason") or opts.get("comment") or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})
    target, pending = _REJECT_ROUTES[doc.status_enum]
    return _Outcome(
        target, f"Rejected: {reason}", pending,
        "send_review_rejection_notifications", (doc, reason),
        {"reason": reason},
    )


def _query(doc, actor, opts):
    text = (opts.get("query") or opts.get("comment") or "").strip()
    if not text:
        raise ValidationError("Query text is required", details={"query": "required"})
    payload = {"query": text, "raised_by": actor.label}
    if actor.role == REVIEWER:
        return _Outcome(S.QUERIED, f"Query: {text}", PENDING_REQUESTER,
                        "notify_requesters", (doc,), payload)
    return _Outcome(S.QUERIED, f"Query: {text}", PENDING_CONTROLLER,
                    "notify_document_controller_query", (doc, text), payload)


def _upload_revision(doc, actor, opts):
    file_url = (opts.get("file_url") or "").strip()
    name = (opts.get("attachment_name") or "").strip()
    if not (file_url or name):
        raise ValidationError("A revised file is required",
                              details={"file_url": "file_url or attachment_name required"})
    old = {"attachment_name": doc.attachment_name, "file_url": doc.file_url}
    doc.attachment_name = name or doc.attachment_name
    doc.file_url = file_url or doc.file_url
    return _Outcome(
        S.PENDING_OWNER_APPROVAL, f"Revision uploaded: {name or file_url}", PENDING_OWNER,
        "notify_document_owner_for_approval", (doc,),
        {"attachment": {"old": old, "new": {"attachment_name": doc.attachment_name,
                                            "file_url": doc.file_url}}},
    )


def _push_live(doc, actor, opts):
    if not doc.effective_date:
        doc.effective_date = _today()
    return _Outcome(
        S.LIVE, _with_note("Document pushed live", opts.get("comment")), None,
        "notify_document_live", (doc,),
        {"effective_date": doc.effective_date},
    )


def _start_review(doc, actor, opts):
    reviewers = coerce_people(opts["reviewers"], "reviewers") if opts.get("reviewers") else list(doc.reviewers or [])
    if not reviewers:
        raise ValidationError("At least one reviewer is required", details={"reviewers": "required"})
    doc.current_reviewers = reviewers
    doc.review_start_date = _today()
    if opts.get("review_deadline"):
        doc.review_deadline = parse_date_input(opts["review_deadline"], "review_deadline")
    return _Outcome(
        S.UNDER_REVIEW, _with_note("Review started", opts.get("comment")),
        PENDING_REVIEWER, "send_review_notifications", (doc, reviewers),
        {"reviewers": reviewers},
    )


def _edit(doc, actor, opts):
    changes = apply_field_updates(doc, opts.get("updates") or {})
    target = S.LIVE_CR if doc.status_enum == S.LIVE else None
    return _Outcome(target, _with_note("Document updated", opts.get("comment")),
                    payload={"changes": changes})


def _complete_change(doc, actor, opts):
    if opts.get("version_number") not in (None, ""):
        doc.version_number = normalize_version(opts["version_number"])
    return _Outcome(
        S.LIVE, _with_note("Change completed", opts.get("comment")), None,
        "notify_document_live", (doc,),
        {"version_number": doc.version_number},
    )


def _archive(doc, actor, opts):
    return _Outcome(S.ARCHIVED, _with_note("Archived", opts.get("comment")))


def _delete(doc, actor, opts):
    return _Outcome(S.DELETED, _with_note("Deleted", opts.get("comment")))


def _restore(doc, actor, opts):
    return _Outcome(
        S.UNDER_REVIEW, _with_note("Restored", opts.get("comment")), PENDING_CONTROLLER,
        "notify_document_controller", (doc, "restore"),
    )


_HANDLERS = {
    "submit": _submit,
    "take_action": _take_action,
    "approve": _approve,
    "reject": _reject,
    "query": _query,
    "upload_revision": _upload_revision,
    "push_live": _push_live,
    "start_review": _start_review,
    "edit": _edit,
    "complete_change": _complete_change,
    "archive": _archive,
    "delete": _delete,
    "restore": _restore,
}

WORKFLOW_ACTIONS = frozenset(_HANDLERS)

# Nominal target per action, used for error reporting before a handler runs
_NOMINAL_TARGET = {
    "submit": S.UNDER_REVIEW,
    "take_action": S.UNDER_REVIEW,
    "approve": S.APPROVED,
    "reject": S.REJECTED,
    "query": S.QUERIED,
    "upload_revision": S.PENDING_OWNER_APPROVAL,
    "push_live": S.LIVE,
    "start_review": S.UNDER_REVIEW,
    "edit": None,
    "complete_change": S.LIVE,
    "archive": S.ARCHIVED,
    "delete": S.DELETED,
    "restore": S.UNDER_REVIEW,
}


# ═══════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════

def check_action(doc: Document, action: str, actor: ActorContext) -> None:
    """
    Raise if ``actor`` may not run ``action`` on ``doc`` right now.

    PermissionDenied:        not assigned, or the role cannot do this here
    InvalidTransitionError:  no role can do this from the current status
    """
    if action not in _HANDLERS:
        raise ValidationError(f"Unknown action '{action}'",
                              details={"action": f"must be one of {sorted(_HANDLERS)}"})
    if not is_user_assigned_to_document(doc, actor):
        raise PermissionDenied(actor.role, action, "not assigned to this document")

    status = doc.status_enum
    if can_perform(action, status, actor.role, doc.pending_with):
        return
    if status not in _action_sources(action):
        nominal = _NOMINAL_TARGET[action]
        raise InvalidTransitionError(status.value, nominal.value if nominal else status.value, actor.role)
    raise PermissionDenied(actor.role, action, f"not permitted while '{status.value}'")


def transition_document(document_id: str, action: str, actor: ActorContext, **opts) -> dict:
    """
    Execute one workflow action.

    Args:
        document_id: Document id
        action: One of WORKFLOW_ACTIONS
        actor: Who is acting
        **opts: comment, reason, query, notes, approved_by, reviewers,
                review_deadline, file_url, attachment_name, updates,
                version_number (action-specific)

    Returns:
        {"document_id", "action", "previous_status", "new_status", "pending_with", "document"}

    Raises:
        NotFoundError, PermissionDenied, InvalidTransitionError, ValidationError
    """
    doc = get_document(document_id)

    # 1. Capability
    check_action(doc, action, actor)

    previous_status = doc.status
    previous_pending = doc.pending_with
    try:
        # 2. Action-specific validation + field side effects
        outcome = _HANDLERS[action](doc, actor, opts)

        # 3. Status move
        if outcome.target is not None and outcome.target.value != doc.status:
            if action in ADMINISTRATIVE_ACTIONS:
                doc.status = outcome.target.value
            else:
                apply_transition(doc, outcome.target, actor.role, action)
        if outcome.pending_with is not _KEEP:
            doc.pending_with = outcome.pending_with

        # 4. Exactly one comment
        doc.append_comment(outcome.comment)
    except Exception:
        db.session.rollback()
        raise

    # 5. Audit (best effort)
    _record(doc, action, actor, previous_status, previous_pending, outcome)

    db.session.commit()
    logger.info(
        "Document %s: %s %s -> %s by %s",
        doc.id, action, previous_status, doc.status, actor.role,
    )

    # 6. Notify after commit; failures never undo the transition
    if outcome.hook:
        notification.dispatch(outcome.hook, *outcome.hook_args)

    return {
        "document_id": doc.id,
        "action": action,
        "previous_status": previous_status,
        "new_status": doc.status,
        "pending_with": doc.pending_with,
        "document": doc.to_dict(),
    }


def _record(doc, action, actor, previous_status, previous_pending, outcome):
    payload = {
        "status": {"old": previous_status, "new": doc.status},
        "pending_with": {"old": previous_pending, "new": doc.pending_with},
        "comment": outcome.comment,
    }
    payload.update(outcome.payload)
    try:
        with db.session.begin_nested():
            write_audit(
                entity_type="document",
                entity_id=doc.id,
                kind=f"document.{action}",
                actor=actor.display_name,
                actor_role=actor.role,
                actor_id=actor.user_id,
                payload=payload,
            )
    except Exception:
        logger.exception("Audit write failed for document %s action %s", doc.id, action)


def update_document(document_id: str, data: dict, actor: ActorContext) -> dict:
    """Field edit; a live document moves to live-cr."""
    comment = data.get("comment") if isinstance(data, dict) else None
    updates = {k: v for k, v in (data or {}).items() if k != "comment"}
    return transition_document(document_id, "edit", actor, updates=updates, comment=comment)


def available_actions(doc: Document, actor: ActorContext) -> list[str]:
    """Actions the actor could run on ``doc`` now."""
    if not is_user_assigned_to_document(doc, actor):
        return []
    return sorted(
        a for a in _HANDLERS
        if can_perform(a, doc.status, actor.role, doc.pending_with)
    )


def mark_live_cr(doc: Document, actor: ActorContext, reason: str) -> bool:
    """
    Change-request approval on a live document: force it to live-cr.

    Runs inside the caller's transaction (no commit).  Returns True when the
    status moved.
    """
    if doc.status_enum != S.LIVE:
        return False
    previous = doc.status
    apply_transition(doc, S.LIVE_CR, actor.role, action="change_request")
    doc.append_comment(f"Change request approved: {reason}")
    try:
        with db.session.begin_nested():
            write_audit(
                entity_type="document", entity_id=doc.id, kind="document.change_request",
                actor=actor.display_name, actor_role=actor.role, actor_id=actor.user_id,
                payload={"status": {"old": previous, "new": doc.status}, "reason": reason},
            )
    except Exception:
        logger.exception("Audit write failed for document %s change request", doc.id)
    return True

