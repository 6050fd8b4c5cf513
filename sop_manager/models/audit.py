"""
SOP Document Manager
Audit domain model.

Models:
    - AuditEvent: immutable, append-only record of every state-changing call.

Workflow state that later steps depend on (e.g. which role raised a query)
is read back from ``payload`` here, never from comment text.
"""

import json
from datetime import datetime, timezone

from sop_manager.models import db


AUDIT_ENTITY_TYPES = {"document", "change_request", "user"}


class AuditEvent(db.Model):
    """
    One row per action.  ``payload_json`` carries the status move and any
    action-specific details (reason, query text, raised_by, ...).
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_kind", "kind"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(db.String(30), nullable=False, comment="document | change_request | user")
    entity_id = db.Column(db.String(36), nullable=False)

    kind = db.Column(db.String(60), nullable=False, comment="document.approve | change_request.complete | …")
    actor_role = db.Column(db.String(40), nullable=True)
    actor = db.Column(db.String(200), nullable=False, default="system")
    actor_id = db.Column(db.String(36), nullable=True)

    payload_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "kind": self.kind,
            "actor_role": self.actor_role,
            "actor": self.actor,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditEvent {self.id}: {self.kind} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str,
    kind: str,
    actor: str = "system",
    actor_role: str | None = None,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> AuditEvent:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.
    """
    event = AuditEvent(
        entity_type=entity_type,
        entity_id=str(entity_id),
        kind=kind,
        actor=actor or "system",
        actor_role=actor_role,
        actor_id=actor_id,
        payload_json=json.dumps(payload or {}, default=str),
    )
    db.session.add(event)
    db.session.flush()
    return event


def events_for(entity_type: str, entity_id: str) -> list[AuditEvent]:
    """All events for one entity, oldest first."""
    return (
        AuditEvent.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditEvent.timestamp.asc(), AuditEvent.id.asc())
        .all()
    )
