"""
Institutional Reference Portal
Notification Service.

Creates and queries in-app notifications. Workflow operations call
``notify`` through the side-effect dispatcher, after their own commit.
"""

import logging

from refportal.models import db
from refportal.models.auth import User
from refportal.models.notification import Notification
from refportal.services.dispatch import SideEffectDispatcher
from refportal.services.email_service import EmailService, send_mail

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(user_id, type, title, message="", ref_id=None, ref_type="FormAssignment"):
        """
        Create a single notification record for one recipient.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            recipient_id=user_id,
            type=type,
            title=title,
            message=message,
            ref_id=ref_id,
            ref_type=ref_type,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Returns None if it is not the recipient's."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient_id != recipient_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif


def notify(user_id, type, title, message="", ref_id=None, ref_type="FormAssignment"):
    """Collaborator entry point used by the workflow engine."""
    return NotificationService.notify(user_id, type, title, message, ref_id, ref_type)


def _email_user(user_id, template_name, context):
    user = db.session.get(User, user_id)
    if user is None or not user.email:
        logger.warning("No email address for user", extra={"user_id": user_id, "template": template_name})
        return None
    rendered = EmailService.render(template_name, context)
    if rendered is None:
        logger.warning("Email template not found: %s", template_name)
        return None
    subject, html_body = rendered
    return send_mail(user.email, subject, html_body, to_name=user.full_name, template_name=template_name)


def announce(recipient_id, notif_type, title, message, ref_id, email_template, context):
    """Queue the in-app notification and the email for one recipient.

    Both run through the side-effect dispatcher; call only after the
    workflow change has been committed.
    """
    SideEffectDispatcher.submit(
        f"notify:{notif_type}", notify, recipient_id, notif_type, title, message, ref_id,
    )
    SideEffectDispatcher.submit(
        f"email:{email_template}", _email_user, recipient_id, email_template, context,
    )
