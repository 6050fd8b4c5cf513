"""Dashboard counters."""

from datetime import datetime, timezone

from sqlalchemy import func

from sop_manager.core.actor import ADMIN, CONTROLLER, ActorContext
from sop_manager.models import db
from sop_manager.models.change_request import ChangeRequest
from sop_manager.models.document import PENDING_APPROVAL_STATUSES, Document, DocumentStatus
from sop_manager.models.user import User
from sop_manager.services.capabilities import is_visible_to


def dashboard_stats(actor: ActorContext, today=None) -> dict:
    """
    Counts over the documents the actor can see.

    Deleted documents are never counted.  Users and pending change
    requests are global for admin/controller and omitted otherwise.
    """
    today = today or datetime.now(timezone.utc).date()
    docs = [d for d in Document.query.all() if is_visible_to(d, actor)]
    by_status = {}
    for d in docs:
        by_status[d.status] = by_status.get(d.status, 0) + 1

    stats = {
        "total_documents": len(docs),
        "live": by_status.get(DocumentStatus.LIVE.value, 0),
        "live_cr": by_status.get(DocumentStatus.LIVE_CR.value, 0),
        "under_review": by_status.get(DocumentStatus.UNDER_REVIEW.value, 0),
        "pending_approvals": sum(by_status.get(s.value, 0) for s in PENDING_APPROVAL_STATUSES),
        "approved": by_status.get(DocumentStatus.APPROVED.value, 0),
        "queried": by_status.get(DocumentStatus.QUERIED.value, 0),
        "archived": by_status.get(DocumentStatus.ARCHIVED.value, 0),
        "breached": sum(1 for d in docs if d.is_breached(today)),
        "by_status": by_status,
    }
    if actor.role in (ADMIN, CONTROLLER):
        stats["users"] = db.session.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0
        stats["pending_change_requests"] = (
            db.session.query(func.count(ChangeRequest.id))
            .filter(ChangeRequest.status.in_(("pending", "pending-owner-approval")))
            .scalar()
        ) or 0
    return stats
