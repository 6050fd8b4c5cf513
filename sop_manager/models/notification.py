"""
SOP Document Manager
Notification domain model.

Models:
    - Notification: one record per recipient per workflow hook call.
"""

from datetime import datetime, timezone

from sop_manager.models import db


NOTIFICATION_HOOKS = {
    "notify_document_live",
    "send_review_notifications",
    "notify_document_owner_for_approval",
    "notify_document_controller_query",
    "send_review_rejection_notifications",
    "notify_requesters",
    "notify_document_creators",
    "notify_document_controller",
    "send_revision_reminder_to_owner",
}


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=True, index=True)
    hook = db.Column(db.String(60), nullable=False, comment="Workflow hook that produced this row")
    recipient_email = db.Column(db.String(255), nullable=True, index=True)
    recipient_name = db.Column(db.String(200), nullable=True)
    subject = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    status = db.Column(db.String(20), default="queued", comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "document_id": self.document_id,
            "hook": self.hook,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "message": self.message,
            "status": self.status,
            "error_message": self.error_message,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }
