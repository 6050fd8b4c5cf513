"""
SOP Document Manager
Email Service.

Sends workflow emails with simple templates.  When SMTP is not configured
(no MAIL_SERVER), emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
        <p style="margin: 4px 0 0; color: #94a3b8; font-size: 13px;">{document_code} · {sop_name}</p>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p style="color: #334155;">{body}</p>
        <p style="color: #64748b; font-size: 13px;">Status: <strong>{status}</strong></p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "document_live": {
        "subject": "[SOP Manager] {sop_name} is now live",
        "heading": "Document published",
        "body": "Version {version_number} is live from {effective_date}.",
    },
    "review_request": {
        "subject": "[SOP Manager] Review requested: {sop_name}",
        "heading": "Review requested",
        "body": "You have been asked to review this document. Deadline: {review_deadline}.",
    },
    "owner_approval": {
        "subject": "[SOP Manager] Approval needed: {sop_name}",
        "heading": "Revision awaiting your approval",
        "body": "A revised version has been uploaded and needs your approval.",
    },
    "controller_query": {
        "subject": "[SOP Manager] Query raised on {sop_name}",
        "heading": "Query raised",
        "body": "{query}",
    },
    "review_rejected": {
        "subject": "[SOP Manager] Rejected: {sop_name}",
        "heading": "Document rejected",
        "body": "Reason: {reason}",
    },
    "action_required": {
        "subject": "[SOP Manager] Action required: {sop_name}",
        "heading": "Action required",
        "body": "This document is now pending with {pending_with}.",
    },
    "revision_reminder": {
        "subject": "[SOP Manager] Revision needed: {sop_name}",
        "heading": "Please upload a revised version",
        "body": "The requester approved the review. Upload the revised document for approval.",
    },
}


class EmailService:
    """
    Email sending service with template support.

    Returns True when the message was handed to SMTP (or logged in dev mode).
    SMTP errors propagate; callers record them on the notification row.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def render(template_name: str, context: dict[str, Any]) -> tuple[str, str] | None:
        """Return (subject, html) for a named template, or None if unknown."""
        template = _TEMPLATES.get(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None
        ctx = _SafeDict(context)
        body = template["body"].format_map(ctx)
        html = _LAYOUT.format_map(_SafeDict(context, heading=template["heading"], body=body))
        return template["subject"].format_map(ctx), html

    @classmethod
    def send(cls, *, to_email: str, to_name: str | None = None,
             subject: str, html_body: str) -> bool:
        if not cls.is_configured():
            # Dev/test mode: log only
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return True

        cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, html_body=html_body)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
