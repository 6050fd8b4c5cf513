"""
SOP Document Manager
Document domain model.

Models:
    - Document: compliance document (SOP, policy, procedure, ...) moving
      through the review / approval / publish lifecycle.

Person collections (owners, reviewers, creators, compliance contacts) are
weak references stored as ordered JSON lists of ``{id, name, email}``; the
people themselves live in the user directory.
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum

from sop_manager.core.exceptions import ValidationError
from sop_manager.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Status ───────────────────────────────────────────────────────────────────

class DocumentStatus(str, Enum):
    """Every status a document can hold. Values are the wire representation."""

    DRAFT = "draft"
    UNDER_REVIEW = "under-review"
    PENDING_CREATOR_APPROVAL = "pending-creator-approval"
    PENDING_REQUESTER_APPROVAL = "pending-requester-approval"
    UNDER_REVISION = "under-revision"
    PENDING_OWNER_APPROVAL = "pending-owner-approval"
    APPROVED = "approved"
    LIVE = "live"
    LIVE_CR = "live-cr"
    QUERIED = "queried"
    REVIEWED = "reviewed"
    ARCHIVED = "archived"
    DELETED = "deleted"
    REJECTED = "rejected"
    PENDING_WITH_REQUESTER = "pending-with-requester"

    @classmethod
    def from_legacy(cls, value) -> "DocumentStatus":
        """Map any external spelling onto the canonical status.

        Accepts canonical values, enum members, underscore / space / case
        variants ("Under Review", "LIVE_CR") and the retired
        ``pending-approval`` status, which folds into ``under-review``.
        Unknown values raise ``ValidationError`` instead of being coerced.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                "Status is required", details={"status": "missing or not a string"},
            )
        key = re.sub(r"[\s_]+", "-", value.strip().lower())
        key = _LEGACY_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Unknown document status '{value}'",
                details={"status": f"must be one of {sorted(s.value for s in cls)}"},
            ) from None

    @property
    def description(self) -> str:
        return STATUS_DESCRIPTIONS[self]


_LEGACY_ALIASES = {
    "pending-approval": DocumentStatus.UNDER_REVIEW.value,
    "in-review": DocumentStatus.UNDER_REVIEW.value,
    "livecr": DocumentStatus.LIVE_CR.value,
    "live-change-request": DocumentStatus.LIVE_CR.value,
}

STATUS_DESCRIPTIONS = {
    DocumentStatus.DRAFT: "Document is in draft state",
    DocumentStatus.UNDER_REVIEW: "Document is for review",
    DocumentStatus.PENDING_CREATOR_APPROVAL: "Awaiting Document Creator approval",
    DocumentStatus.PENDING_REQUESTER_APPROVAL: "Awaiting Document Requester approval",
    DocumentStatus.UNDER_REVISION: "Document Owner needs to upload revised version",
    DocumentStatus.PENDING_OWNER_APPROVAL: "Awaiting Document Owner approval",
    DocumentStatus.APPROVED: "Document approved, awaiting Controller to push live",
    DocumentStatus.LIVE: "Document is live and published",
    DocumentStatus.LIVE_CR: "Live document with change request in progress",
    DocumentStatus.QUERIED: "Query needs to be resolved",
    DocumentStatus.REVIEWED: "Document has been reviewed",
    DocumentStatus.ARCHIVED: "Document archived",
    DocumentStatus.DELETED: "Document deleted",
    DocumentStatus.REJECTED: "Document rejected",
    DocumentStatus.PENDING_WITH_REQUESTER: "Awaiting Document Requester",
}

_S = DocumentStatus

# Legal status moves: current → allowed targets.
DOCUMENT_TRANSITIONS = {
    _S.DRAFT: {_S.UNDER_REVIEW},
    _S.UNDER_REVIEW: {_S.PENDING_CREATOR_APPROVAL, _S.QUERIED, _S.APPROVED},
    _S.PENDING_CREATOR_APPROVAL: {_S.PENDING_REQUESTER_APPROVAL, _S.UNDER_REVIEW},
    _S.PENDING_REQUESTER_APPROVAL: {_S.UNDER_REVISION, _S.PENDING_CREATOR_APPROVAL},
    _S.UNDER_REVISION: {_S.PENDING_OWNER_APPROVAL},
    _S.PENDING_OWNER_APPROVAL: {_S.APPROVED, _S.UNDER_REVISION},
    _S.APPROVED: {_S.LIVE},
    _S.LIVE: {_S.UNDER_REVIEW, _S.LIVE_CR},
    _S.LIVE_CR: {_S.LIVE, _S.UNDER_REVIEW},
    _S.QUERIED: {_S.UNDER_REVIEW},
    _S.REVIEWED: {_S.UNDER_REVIEW},
    _S.REJECTED: {_S.UNDER_REVIEW},
    _S.ARCHIVED: {_S.UNDER_REVIEW},
    _S.DELETED: {_S.UNDER_REVIEW},
    _S.PENDING_WITH_REQUESTER: {_S.UNDER_REVIEW},
}

PENDING_APPROVAL_STATUSES = frozenset({
    _S.PENDING_CREATOR_APPROVAL,
    _S.PENDING_REQUESTER_APPROVAL,
    _S.PENDING_OWNER_APPROVAL,
})

TOMBSTONE_STATUSES = frozenset({_S.ARCHIVED, _S.DELETED})


# ── Document type ────────────────────────────────────────────────────────────

class DocumentType(str, Enum):
    SOP = "SOP"
    POLICY = "Policy"
    PROCEDURE = "Procedure"
    GUIDELINE = "Guideline"
    MANUAL = "Manual"
    WORK_INSTRUCTION = "Work Instruction"
    FORM = "Form"


DOCUMENT_LANGUAGES = {"en", "ar"}

# Person collections carried on a document (column name → label used in errors)
PERSON_FIELDS = ("document_owners", "reviewers", "document_creators", "compliance_contacts")


class Document(db.Model):
    """
    A compliance document and its workflow position.

    ``status`` and ``pending_with`` only move through the workflow service;
    ``comments`` is appended to, never rewritten.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_status", "status"),
        db.Index("ix_documents_dept_type", "department", "document_type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)

    # Descriptive
    sop_name = db.Column(db.String(300), nullable=False)
    document_code = db.Column(db.String(60), nullable=True, index=True,
                              comment="SDG-<DEPT3>-<TYPE>-<seq>[-<LANG>]")
    document_number = db.Column(db.String(60), nullable=True)
    version_number = db.Column(db.String(20), nullable=False, default="1.0")
    document_type = db.Column(db.String(40), nullable=False, default=DocumentType.SOP.value)
    department = db.Column(db.String(120), nullable=False, default="General")
    country = db.Column(db.String(120), nullable=True)
    language = db.Column(db.String(5), nullable=True, comment="en | ar | NULL")
    description = db.Column(db.Text, default="")

    # Workflow
    status = db.Column(db.String(40), nullable=False, default=_S.UNDER_REVIEW.value)
    pending_with = db.Column(db.String(120), nullable=True,
                             comment="Label of the party whose action is next")

    # Dates
    upload_date = db.Column(db.Date, nullable=True)
    last_revision_date = db.Column(db.Date, nullable=True)
    next_revision_date = db.Column(db.Date, nullable=True)
    review_start_date = db.Column(db.Date, nullable=True)
    review_deadline = db.Column(db.Date, nullable=True)
    effective_date = db.Column(db.Date, nullable=True)

    # People (ordered JSON lists of {id, name, email})
    document_owners = db.Column(db.JSON, nullable=False, default=list)
    reviewers = db.Column(db.JSON, nullable=False, default=list)
    document_creators = db.Column(db.JSON, nullable=False, default=list)
    compliance_contacts = db.Column(db.JSON, nullable=False, default=list)
    current_reviewers = db.Column(db.JSON, nullable=False, default=list,
                                  comment="Reviewers picked for the active review round")
    requested_by = db.Column(db.JSON, nullable=True, comment="{id, name, email} of the requester")

    comments = db.Column(db.JSON, nullable=False, default=list)

    # Attachment reference (bytes live in file storage)
    attachment_name = db.Column(db.String(300), nullable=True)
    file_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def status_enum(self) -> DocumentStatus:
        return DocumentStatus.from_legacy(self.status)

    def append_comment(self, text: str) -> None:
        """Append one entry. A new list is assigned so the JSON column is flushed."""
        self.comments = [*(self.comments or []), text]

    def is_breached(self, today=None) -> bool:
        """True when the revision date has passed while still under review."""
        if self.status != _S.UNDER_REVIEW.value or not self.next_revision_date:
            return False
        today = today or datetime.now(timezone.utc).date()
        return today > self.next_revision_date

    def to_dict(self, today=None) -> dict:
        return {
            "id": self.id,
            "sop_name": self.sop_name,
            "document_code": self.document_code,
            "document_number": self.document_number,
            "version_number": self.version_number,
            "document_type": self.document_type,
            "department": self.department,
            "country": self.country,
            "language": self.language,
            "description": self.description,
            "status": self.status,
            "pending_with": self.pending_with,
            "is_breached": self.is_breached(today),
            "upload_date": _iso(self.upload_date),
            "last_revision_date": _iso(self.last_revision_date),
            "next_revision_date": _iso(self.next_revision_date),
            "review_start_date": _iso(self.review_start_date),
            "review_deadline": _iso(self.review_deadline),
            "effective_date": _iso(self.effective_date),
            "document_owners": list(self.document_owners or []),
            "reviewers": list(self.reviewers or []),
            "document_creators": list(self.document_creators or []),
            "compliance_contacts": list(self.compliance_contacts or []),
            "current_reviewers": list(self.current_reviewers or []),
            "requested_by": self.requested_by,
            "comments": list(self.comments or []),
            "attachment_name": self.attachment_name,
            "file_url": self.file_url,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Document {self.document_code or self.id}: {self.status}>"


def _iso(value):
    return value.isoformat() if value else None
