"""
Audit trail.

One ``AuditLog`` row per workflow event (template created, distributed,
delegated, marked back, marked final, approved, submitted, draft saved).
Rows are append-only; ``write_audit`` only flushes, so the audit row shares
the transaction of the change it records.
"""

import json
from datetime import UTC, datetime

from refportal.models import db

AUDIT_ACTIONS = (
    "FORM_TEMPLATE_CREATE",
    "FORM_DISTRIBUTION",
    "FORM_DELEGATION",
    "FORM_MARK_BACK",
    "FORM_MARK_FINAL",
    "FORM_APPROVAL",
    "FORM_FINAL_SUBMISSION",
    "FORM_DRAFT_SAVE",
    "FORM_REMINDER",
)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(60), nullable=False)

    # FormTemplate / FormAssignment / Submission; id stored as text
    entity_type = db.Column(db.String(40), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    ip_address = db.Column(db.String(45))
    diff_json = db.Column(db.Text, default="{}", comment="remarks, target user, resulting status")
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    @property
    def diff(self) -> dict:
        if not self.diff_json:
            return {}
        try:
            return json.loads(self.diff_json)
        except ValueError:
            return {}

    def to_dict(self) -> dict:
        stamp = self.timestamp.isoformat() if self.timestamp else None
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "ip_address": self.ip_address,
            "diff": self.diff,
            "timestamp": stamp,
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}#{self.entity_id}>"


def write_audit(*, action, entity_type, entity_id, actor_user_id=None, diff=None, ip_address=None):
    row = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_user_id=actor_user_id,
        ip_address=ip_address,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(row)
    db.session.flush()
    return row
