"""
Form domain model — distributable dynamic-form definitions.

Models:
    - FormTemplate: the form definition routed through the delegation workflow
"""

from datetime import datetime, timezone

from refportal.models import db

# ── Constants ────────────────────────────────────────────────────────────────

FIELD_TYPES = ("text", "select", "date", "checkbox", "radio", "file", "header")
OPTION_FIELD_TYPES = frozenset({"select", "radio"})


class FormTemplate(db.Model):
    """
    Dynamic form definition.

    ``fields`` is a JSON list of field specs::

        {"id": "f1", "type": "text", "label": "Name", "required": true,
         "options": [...], "section": "Personal Details"}

    ``allow_delegation=False`` turns the form into a single-step form: a
    draft save auto-approves it and the delegation chain is skipped.
    """

    __tablename__ = "form_templates"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    fields = db.Column(db.JSON, nullable=False, default=list)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
        comment="Template owner; the original distributor of every chain on this form",
    )
    shared_with_labs = db.Column(db.JSON, default=list)
    shared_with_users = db.Column(db.JSON, default=list)

    is_public = db.Column(db.Boolean, default=False)
    allow_multiple_submissions = db.Column(db.Boolean, default=False)
    allow_delegation = db.Column(db.Boolean, default=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    owner = db.relationship("User", foreign_keys=[created_by])

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fields": self.fields or [],
            "created_by": self.created_by,
            "shared_with_labs": self.shared_with_labs or [],
            "shared_with_users": self.shared_with_users or [],
            "is_public": self.is_public,
            "allow_multiple_submissions": self.allow_multiple_submissions,
            "allow_delegation": self.allow_delegation,
            "is_active": self.is_active,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<FormTemplate {self.id}: {self.title[:40]}>"
