"""
Notification Blueprint — the acting user's in-app inbox.

Routes:
  GET   /api/v1/notifications                 – own notifications, newest first
                                                 (?unread_only=true, ?document_id=)
  GET   /api/v1/notifications/unread-count    – number of unread notifications
  PATCH /api/v1/notifications/<id>/read       – mark one as read
  POST  /api/v1/notifications/mark-all-read   – mark every unread one as read

A user only ever sees rows addressed to their own email; someone else's
notification id answers 404.
"""

import logging

from flask import Blueprint, jsonify, request

from sop_manager.middleware.permission_required import current_actor, require_auth
from sop_manager.services.notification import NotificationService
from sop_manager.utils.errors import register_error_handlers
from sop_manager.utils.helpers import paginate

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
@require_auth
def list_notifications():
    actor = current_actor()
    items = NotificationService.list_for_recipient(
        actor.email,
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        document_id=request.args.get("document_id"),
    )
    page, total = paginate(items, default_limit=50)
    return jsonify({
        "items": [n.to_dict() for n in page],
        "total": total,
        "unread_count": NotificationService.unread_count(actor.email),
    }), 200


@notification_bp.route("/unread-count", methods=["GET"])
@require_auth
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor().email)}), 200


@notification_bp.route("/<int:nid>/read", methods=["PATCH"])
@require_auth
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_actor().email)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/mark-all-read", methods=["POST"])
@require_auth
def mark_all_read():
    actor = current_actor()
    count = NotificationService.mark_all_read(actor.email)
    logger.info("Notifications marked read: user=%s count=%d", actor.user_id, count)
    return jsonify({"marked_read": count}), 200
