"""
SOP Document Manager
Change request domain model.

Models:
    - ChangeRequest: request to create a new document or amend a live one.
"""

import uuid
from datetime import datetime, timezone

from sop_manager.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_TYPES = {"new-request", "change-request"}
CHANGE_TYPES = {"major", "minor"}

CR_STATUSES = {"pending", "approved", "rejected", "completed", "pending-owner-approval"}

CR_TRANSITIONS = {
    "pending": ["approved", "rejected", "pending-owner-approval"],
    "pending-owner-approval": ["approved", "rejected"],
    "approved": ["completed"],
    "rejected": [],
    "completed": [],
}


def validate_cr_transition(old_status: str, new_status: str) -> bool:
    """Check if a change request status transition is allowed."""
    return new_status in CR_TRANSITIONS.get(old_status, [])


class ChangeRequest(db.Model):
    """
    A request against the document register.

    ``new-request`` asks for a document that does not exist yet;
    ``change-request`` targets a live document and carries a major/minor
    ``change_type`` that decides the next version number.
    """

    __tablename__ = "change_requests"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)

    # Target
    document_id = db.Column(
        db.String(36), db.ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    document_name = db.Column(db.String(300), nullable=False)
    document_type = db.Column(db.String(40), nullable=True)
    department = db.Column(db.String(120), nullable=True)
    country = db.Column(db.String(120), nullable=True)
    document_code = db.Column(db.String(60), nullable=True)
    version_number = db.Column(db.String(20), nullable=True,
                               comment="Version the document gets once the request completes")

    request_type = db.Column(db.String(20), nullable=False, default="change-request")
    change_type = db.Column(db.String(10), nullable=True, comment="major | minor")
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(30), nullable=False, default="pending", index=True)

    # Actors
    requestor_id = db.Column(db.String(36), nullable=True, index=True)
    requestor_name = db.Column(db.String(200), nullable=True)
    approver_name = db.Column(db.String(200), nullable=True)
    approver_email = db.Column(db.String(255), nullable=True)
    approvers = db.Column(db.JSON, nullable=False, default=list,
                          comment="Selected task owners, ordered")

    attachment_name = db.Column(db.String(300), nullable=True)
    attachment_url = db.Column(db.String(500), nullable=True)
    comments = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    document = db.relationship("Document", lazy="joined")

    def append_comment(self, text: str) -> None:
        self.comments = [*(self.comments or []), text]

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_name": self.document_name,
            "document_type": self.document_type,
            "department": self.department,
            "country": self.country,
            "document_code": self.document_code,
            "version_number": self.version_number,
            "request_type": self.request_type,
            "change_type": self.change_type,
            "description": self.description,
            "status": self.status,
            "requestor_id": self.requestor_id,
            "requestor_name": self.requestor_name,
            "approver_name": self.approver_name,
            "approver_email": self.approver_email,
            "approvers": list(self.approvers or []),
            "attachment_name": self.attachment_name,
            "attachment_url": self.attachment_url,
            "comments": list(self.comments or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<ChangeRequest {self.id}: {self.request_type} {self.status}>"
