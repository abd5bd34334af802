"""
Outbound messages to users.

``Notification`` is the in-app inbox entry raised when a form is shared,
delegated, marked back or submitted; ``EmailLog`` records every mail the
portal attempted, with its delivery outcome.
"""

from datetime import datetime, timezone

from refportal.models import db

NOTIFICATION_TYPES = (
    "FORM_SHARED",
    "FORM_DELEGATED",
    "FORM_MARKED_BACK",
    "FORM_SUBMITTED",
    "FORM_REMINDER",
)
EMAIL_STATUSES = ("queued", "sent", "failed")


def _now():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    # What the notification points at (usually a FormAssignment)
    ref_type = db.Column(db.String(40), default="")
    ref_id = db.Column(db.Integer)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = _now()

    def to_dict(self):
        data = {
            col: getattr(self, col)
            for col in ("id", "recipient_id", "type", "title", "message", "ref_type", "ref_id", "is_read")
        }
        data["read_at"] = _iso(self.read_at)
        data["created_at"] = _iso(self.created_at)
        return data

    def __repr__(self):
        return f"<Notification {self.id} {self.type} -> user {self.recipient_id}>"


class EmailLog(db.Model):
    """One row per send attempt; ``status`` is one of EMAIL_STATUSES."""

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150))
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100))
    status = db.Column(db.String(20), default="queued")
    error_message = db.Column(db.Text)
    sent_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=_now)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": _iso(self.sent_at),
            "created_at": _iso(self.created_at),
        }
