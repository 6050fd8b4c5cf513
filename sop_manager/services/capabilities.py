"""
Role-Capability Resolver

Single source of truth for "may this role do X to a document in status S".
Route handlers and the workflow service call ``capabilities()``; nothing
else re-implements the role/status conditionals.

Two separate questions:
  - visibility:  does the document show up in the actor's lists
                 (``is_visible_to`` / ``is_user_assigned_to_document``)
  - capability:  which actions are enabled (``capabilities``)

Usage:
    from sop_manager.services.capabilities import capabilities

    caps = capabilities("under-review", "reviewer")
    caps.can_approve   # True
"""

from dataclasses import asdict, dataclass

from sop_manager.core.actor import (
    ADMIN,
    CONTROLLER,
    CREATOR,
    OWNER,
    PENDING_CREATOR,
    PENDING_REQUESTER,
    PENDING_REVIEWER,
    REQUESTER,
    REVIEWER,
    ActorContext,
    normalize_role,
)
from sop_manager.models.document import (
    PENDING_APPROVAL_STATUSES,
    TOMBSTONE_STATUSES,
    DocumentStatus,
)

S = DocumentStatus

# Statuses from which a new review round can be started
START_REVIEW_FROM = frozenset({S.REVIEWED, S.REJECTED, S.PENDING_WITH_REQUESTER, S.LIVE, S.LIVE_CR})
# Statuses the controller works from the "Requests" queue
TAKE_ACTION_FROM = frozenset({S.UNDER_REVIEW, S.QUERIED})
APPROVAL_STAGES = frozenset({S.UNDER_REVIEW}) | PENDING_APPROVAL_STATUSES


@dataclass(frozen=True)
class Capabilities:
    can_view: bool = False
    can_edit: bool = False
    can_submit: bool = False
    can_approve: bool = False
    can_reject: bool = False
    can_query: bool = False
    can_start_review: bool = False
    can_push_live: bool = False
    can_upload_revision: bool = False
    can_take_action: bool = False
    can_complete_change: bool = False
    can_archive: bool = False
    can_restore: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


# Workflow action → capability flag that gates it
ACTION_CAPABILITY = {
    "submit": "can_submit",
    "take_action": "can_take_action",
    "approve": "can_approve",
    "reject": "can_reject",
    "query": "can_query",
    "upload_revision": "can_upload_revision",
    "push_live": "can_push_live",
    "start_review": "can_start_review",
    "edit": "can_edit",
    "complete_change": "can_complete_change",
    "archive": "can_archive",
    "delete": "can_archive",
    "restore": "can_restore",
}


def capabilities(status, role: str, pending_with: str | None = None) -> Capabilities:
    """Resolve the enabled actions for ``role`` on a document in ``status``.

    Pure: the same (status, role, pending_with) always yields the same result.
    ``pending_with`` only matters for the creator and requester hand-offs.
    """
    status = DocumentStatus.from_legacy(status)
    role = normalize_role(role)
    tombstoned = status in TOMBSTONE_STATUSES

    if role == ADMIN:
        return Capabilities(
            can_view=True,
            can_edit=not tombstoned,
            can_submit=status == S.DRAFT,
            can_approve=status in APPROVAL_STAGES,
            can_reject=status in APPROVAL_STAGES,
            can_query=status == S.UNDER_REVIEW,
            can_start_review=status in START_REVIEW_FROM,
            can_push_live=status == S.APPROVED,
            can_upload_revision=status == S.UNDER_REVISION,
            can_take_action=status in TAKE_ACTION_FROM,
            can_complete_change=status == S.LIVE_CR,
            can_archive=not tombstoned,
            can_restore=tombstoned,
        )

    if role == CONTROLLER:
        return Capabilities(
            can_view=True,
            can_edit=not tombstoned,
            can_submit=status == S.DRAFT,
            can_start_review=status in START_REVIEW_FROM,
            can_push_live=status == S.APPROVED,
            can_take_action=status in TAKE_ACTION_FROM,
            can_complete_change=status == S.LIVE_CR,
            can_archive=not tombstoned,
            can_restore=tombstoned,
        )

    if role == OWNER:
        decides = status in (S.UNDER_REVIEW, S.PENDING_OWNER_APPROVAL)
        return Capabilities(
            can_view=not tombstoned,
            can_edit=status in (S.DRAFT, S.LIVE, S.LIVE_CR, S.UNDER_REVISION),
            can_submit=status == S.DRAFT,
            can_approve=decides,
            can_reject=decides,
            can_query=status == S.UNDER_REVIEW,
            can_start_review=status in START_REVIEW_FROM and status not in (S.LIVE, S.LIVE_CR),
            can_upload_revision=status == S.UNDER_REVISION,
            can_complete_change=status == S.LIVE_CR,
        )

    if role == REVIEWER:
        reviewing = status == S.UNDER_REVIEW
        return Capabilities(
            can_view=not tombstoned,
            can_approve=reviewing,
            can_reject=reviewing,
            can_query=reviewing,
        )

    if role == CREATOR:
        handed_over = status == S.UNDER_REVIEW and pending_with == PENDING_CREATOR
        stage = status == S.PENDING_CREATOR_APPROVAL
        return Capabilities(
            can_view=not tombstoned,
            can_edit=status == S.DRAFT,
            can_submit=status == S.DRAFT,
            can_approve=handed_over or stage,
            can_reject=handed_over or stage,
            can_query=handed_over,
        )

    # requester
    handed_over = status == S.UNDER_REVIEW and pending_with in (PENDING_REQUESTER, PENDING_REVIEWER)
    stage = status == S.PENDING_REQUESTER_APPROVAL
    return Capabilities(
        can_view=not tombstoned,
        can_edit=status == S.DRAFT,
        can_submit=status == S.DRAFT,
        can_approve=handed_over or stage,
        can_reject=handed_over or stage,
        can_query=handed_over,
    )


def can_perform(action: str, status, role: str, pending_with: str | None = None) -> bool:
    flag = ACTION_CAPABILITY.get(action)
    if flag is None:
        return False
    return getattr(capabilities(status, role, pending_with), flag)


# ── Visibility ───────────────────────────────────────────────────────────────

# Person collections that count as "this document is mine" per role
_ROLE_COLLECTIONS = {
    OWNER: ("document_owners",),
    REVIEWER: ("reviewers", "current_reviewers"),
    CREATOR: ("document_creators",),
    REQUESTER: (),
}

_ALL_COLLECTIONS = (
    "document_owners", "reviewers", "document_creators",
    "compliance_contacts", "current_reviewers",
)


def _listed(doc, actor: ActorContext, fields) -> bool:
    return any(actor.matches(p) for field in fields for p in (getattr(doc, field, None) or []))


def is_user_assigned_to_document(doc, actor: ActorContext) -> bool:
    """True for admin and controller; otherwise the actor must appear on the document."""
    if actor.role in (ADMIN, CONTROLLER):
        return True
    return _listed(doc, actor, _ALL_COLLECTIONS) or actor.matches(doc.requested_by)


def is_visible_to(doc, actor: ActorContext) -> bool:
    """Whether ``doc`` belongs in the actor's document list.

    Admin and controller see every document that is not deleted.  Other
    roles see non-tombstoned documents that list them in their own role's
    collection, or that they requested.
    """
    status = DocumentStatus.from_legacy(doc.status)
    if actor.role in (ADMIN, CONTROLLER):
        return status != S.DELETED
    if status in TOMBSTONE_STATUSES:
        return False
    return _listed(doc, actor, _ROLE_COLLECTIONS.get(actor.role, ())) or actor.matches(doc.requested_by)


def capabilities_for(doc, actor: ActorContext) -> Capabilities:
    """Capabilities for a concrete document; nothing is enabled when unassigned."""
    if not is_user_assigned_to_document(doc, actor):
        return Capabilities()
    return capabilities(doc.status, actor.role, doc.pending_with)
