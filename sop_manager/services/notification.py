"""
SOP Document Manager
Notification Service.

One static method per workflow hook.  Each hook resolves its recipients,
writes one Notification row per recipient and hands the email to
EmailService.

The workflow never calls hooks directly; it goes through ``dispatch``, which
runs after the status change is committed and swallows (logs) any failure
so a broken mailbox never undoes a transition.

The inbox methods back the in-app notification list: rows are matched to a
user by recipient email, case-insensitively.
"""

import logging
from datetime import datetime, timezone

from sop_manager.core.actor import CONTROLLER
from sop_manager.core.exceptions import NotFoundError
from sop_manager.models import db
from sop_manager.models.notification import NOTIFICATION_HOOKS, Notification
from sop_manager.models.user import User
from sop_manager.services.email_service import EmailService

logger = logging.getLogger(__name__)


def _people(*collections):
    """Flatten person lists, dropping entries without an email and duplicates."""
    seen = set()
    out = []
    for people in collections:
        for person in people or []:
            if not person:
                continue
            email = (person.get("email") or "").strip().lower()
            if not email or email in seen:
                continue
            seen.add(email)
            out.append(person)
    return out


def _controllers():
    users = User.query.filter_by(role=CONTROLLER, is_active=True).order_by(User.name).all()
    return [u.as_person() for u in users]


def _context(doc, **extra):
    ctx = {
        "sop_name": doc.sop_name,
        "document_code": doc.document_code or "",
        "status": doc.status,
        "pending_with": doc.pending_with or "-",
        "version_number": doc.version_number,
        "effective_date": doc.effective_date.isoformat() if doc.effective_date else "-",
        "review_deadline": doc.review_deadline.isoformat() if doc.review_deadline else "-",
    }
    ctx.update(extra)
    return ctx


class NotificationService:
    """Stateless workflow notification hooks."""

    @staticmethod
    def _deliver(doc, hook, recipients, template, context):
        rendered = EmailService.render(template, context)
        if rendered is None:
            return []
        subject, html = rendered
        rows = []
        for person in recipients:
            notif = Notification(
                document_id=doc.id,
                hook=hook,
                recipient_email=person.get("email"),
                recipient_name=person.get("name"),
                subject=subject,
                message=context.get("message", ""),
            )
            db.session.add(notif)
            try:
                EmailService.send(
                    to_email=person["email"], to_name=person.get("name"),
                    subject=subject, html_body=html,
                )
                notif.status = "sent"
                notif.sent_at = datetime.now(timezone.utc)
            except Exception as exc:
                notif.status = "failed"
                notif.error_message = str(exc)[:1000]
                logger.error("Email failed: hook=%s to=%s error=%s", hook, person.get("email"), exc)
            rows.append(notif)
        db.session.commit()
        logger.info("Notification %s: document=%s recipients=%d", hook, doc.id, len(rows))
        return rows

    # ── Inbox ────────────────────────────────────────────────────────────

    @staticmethod
    def _inbox(email):
        return Notification.query.filter(
            db.func.lower(Notification.recipient_email) == (email or "").strip().lower()
        )

    @staticmethod
    def list_for_recipient(email, unread_only=False, document_id=None):
        """A recipient's notifications, newest first."""
        q = NotificationService._inbox(email)
        if unread_only:
            q = q.filter_by(is_read=False)
        if document_id:
            q = q.filter_by(document_id=document_id)
        return q.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    @staticmethod
    def unread_count(email):
        return NotificationService._inbox(email).filter_by(is_read=False).count()

    @staticmethod
    def mark_read(notification_id, email):
        """
        Mark one of the recipient's notifications as read.

        Raises:
            NotFoundError when the notification does not exist or belongs
            to someone else.
        """
        notif = NotificationService._inbox(email).filter(Notification.id == notification_id).first()
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(email):
        count = NotificationService._inbox(email).filter_by(is_read=False).update(
            {"is_read": True, "read_at": datetime.now(timezone.utc)}, synchronize_session="fetch",
        )
        db.session.commit()
        return count

    # ── Workflow hooks ───────────────────────────────────────────────────

    @staticmethod
    def notify_document_live(doc):
        recipients = _people(
            doc.document_owners, doc.reviewers, doc.document_creators,
            doc.compliance_contacts, [doc.requested_by],
        )
        return NotificationService._deliver(
            doc, "notify_document_live", recipients, "document_live", _context(doc),
        )

    @staticmethod
    def send_review_notifications(doc, reviewers=None):
        recipients = _people(reviewers if reviewers is not None else doc.current_reviewers)
        return NotificationService._deliver(
            doc, "send_review_notifications", recipients, "review_request", _context(doc),
        )

    @staticmethod
    def notify_document_owner_for_approval(doc):
        return NotificationService._deliver(
            doc, "notify_document_owner_for_approval", _people(doc.document_owners),
            "owner_approval", _context(doc),
        )

    @staticmethod
    def notify_document_controller_query(doc, query):
        return NotificationService._deliver(
            doc, "notify_document_controller_query", _people(_controllers()),
            "controller_query", _context(doc, query=query, message=query),
        )

    @staticmethod
    def send_review_rejection_notifications(doc, reason):
        recipients = _people(_controllers(), doc.document_owners)
        return NotificationService._deliver(
            doc, "send_review_rejection_notifications", recipients,
            "review_rejected", _context(doc, reason=reason, message=reason),
        )

    @staticmethod
    def notify_requesters(doc):
        return NotificationService._deliver(
            doc, "notify_requesters", _people([doc.requested_by]),
            "action_required", _context(doc),
        )

    @staticmethod
    def notify_document_creators(doc):
        return NotificationService._deliver(
            doc, "notify_document_creators", _people(doc.document_creators),
            "action_required", _context(doc),
        )

    @staticmethod
    def notify_document_controller(doc, source=None):
        return NotificationService._deliver(
            doc, "notify_document_controller", _people(_controllers()),
            "action_required", _context(doc, message=source or ""),
        )

    @staticmethod
    def send_revision_reminder_to_owner(doc):
        return NotificationService._deliver(
            doc, "send_revision_reminder_to_owner", _people(doc.document_owners),
            "revision_reminder", _context(doc),
        )


def dispatch(hook: str, *args, **kwargs) -> bool:
    """Run one hook fire-and-forget.  Returns False when it failed."""
    if hook not in NOTIFICATION_HOOKS:
        logger.warning("Unknown notification hook: %s", hook)
        return False
    try:
        getattr(NotificationService, hook)(*args, **kwargs)
        return True
    except Exception:
        logger.exception("Notification hook %s failed", hook)
        db.session.rollback()
        return False
