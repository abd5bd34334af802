"""
Institutional Reference Portal
Email Service.

Workflow mails (form shared, delegated, returned for approval, submitted)
are rendered from the small template table below and recorded in
``EmailLog``. Without MAIL_SERVER the service records the mail and skips
SMTP entirely, which is what development and the test suite run on.

Configuration (env vars):
    MAIL_SERVER          SMTP host; unset means record-only
    MAIL_PORT            587 by default
    MAIL_USE_TLS         STARTTLS before login (default true)
    MAIL_USERNAME / MAIL_PASSWORD
    MAIL_DEFAULT_SENDER  From address
"""

from __future__ import annotations

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from refportal.models import db
from refportal.models.notification import EmailLog

logger = logging.getLogger(__name__)

EMPTY_VALUE = "-"

_FRAME = """\
<table role="presentation" width="100%" style="font-family: Helvetica, Arial, sans-serif; max-width: 640px;">
  <tr><td style="background: #0f3d5e; color: #ffffff; padding: 14px 20px; font-weight: bold;">
    Institutional Reference Portal
  </td></tr>
  <tr><td style="padding: 20px; border: 1px solid #d5dde5;">{body}</td></tr>
  <tr><td style="padding: 10px 20px; color: #7a8894; font-size: 11px;">
    You are receiving this because a form was routed to you.
  </td></tr>
</table>
"""

_TEMPLATES: dict[str, tuple[str, str]] = {
    "form_shared": (
        "New Form Shared: {title}",
        "<p><b>{title}</b> was shared with you by {sender}.</p>"
        "<p>Instructions: {instructions}</p><p>Deadline: {deadline}</p>",
    ),
    "form_delegated": (
        "Form Task Assigned: {title}",
        "<p>{sender} marked <b>{title}</b> to you for filling/processing.</p>"
        "<p>Remarks: {remarks}</p>",
    ),
    "form_marked_back": (
        "Form Returned for Approval: {title}",
        "<p>{sender} sent <b>{title}</b> back to you for approval.</p>"
        "<p>Remarks: {remarks}</p>",
    ),
    "form_submitted": (
        "Form Submitted: {title}",
        "<p>{sender} submitted the approved <b>{title}</b> back to you.</p>"
        "<p>Remarks: {remarks}</p>",
    ),
    "form_reminder": (
        'Reminder: Action Required for "{title}"',
        "<p>Reminder: please submit <b>{title}</b>, shared with you by {sender}.</p>",
    ),
}


class _Blank(dict):
    """format_map mapping that leaves unknown placeholders in place."""

    def __missing__(self, key):
        return "{" + key + "}"


def _values(context: dict[str, Any], *, escape: bool) -> _Blank:
    out = _Blank()
    for key, value in context.items():
        if value is None:
            out[key] = EMPTY_VALUE
        else:
            out[key] = html.escape(str(value)) if escape else str(value)
    return out


class EmailService:
    """Renders workflow mails and delivers them through SMTP when configured."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def render(template_name: str, context: dict[str, Any]) -> tuple[str, str] | None:
        """Return ``(subject, html)``, or None for an unknown template."""
        entry = _TEMPLATES.get(template_name)
        if entry is None:
            return None
        subject_tpl, body_tpl = entry
        subject = subject_tpl.format_map(_values(context, escape=False))
        body = body_tpl.format_map(_values(context, escape=True))
        return subject, _FRAME.format(body=body)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        to_name: str | None = None,
        template_name: str | None = None,
    ) -> EmailLog:
        """Deliver one mail and return its committed EmailLog row.

        SMTP errors are recorded on the row (status ``failed``) rather than
        raised; the row is committed either way.
        """
        entry = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            status="queued",
        )
        db.session.add(entry)

        if cls.is_configured():
            try:
                cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject, html_body=html_body)
            except (smtplib.SMTPException, OSError) as exc:
                entry.status = "failed"
                entry.error_message = str(exc)[:1000]
                logger.error("SMTP delivery failed", extra={"recipient": to_email, "template": template_name})
            else:
                entry.status = "sent"
                entry.sent_at = datetime.now(timezone.utc)
        else:
            entry.status = "sent"
            entry.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email recorded without SMTP",
                extra={"recipient": to_email, "template": template_name},
            )

        db.session.commit()
        return entry

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None, subject: str, html_body: str) -> None:
        cfg = current_app.config
        host = cfg["MAIL_SERVER"]

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{host}"
        message["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        message.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(host, cfg.get("MAIL_PORT", 587), timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME") and cfg.get("MAIL_PASSWORD"):
                smtp.login(cfg["MAIL_USERNAME"], cfg["MAIL_PASSWORD"])
            smtp.send_message(message)


def send_mail(to: str, subject: str, html_body: str, *, to_name: str | None = None,
              template_name: str | None = None) -> EmailLog:
    """Collaborator entry point: send a pre-rendered HTML body."""
    return EmailService.send(
        to_email=to, subject=subject, html_body=html_body,
        to_name=to_name, template_name=template_name,
    )
