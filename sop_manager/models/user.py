"""
SOP Document Manager
User directory model.

The workflow never owns people: documents reference users by
``{id, name, email}``. This table backs login and the people pickers.
"""

import uuid
from datetime import datetime, timezone

from sop_manager.models import db

ROLES = (
    "admin",
    "document-controller",
    "document-creator",
    "document-owner",
    "reviewer",
    "requester",
)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(40), nullable=False, default="requester")
    department = db.Column(db.String(120), nullable=True)
    country = db.Column(db.String(120), nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def as_person(self) -> dict:
        """Weak reference used inside document person lists."""
        return {"id": self.id, "name": self.name, "email": self.email}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "department": self.department,
            "country": self.country,
            "is_active": self.is_active,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"
