"""
Form Delegation Workflow — FormAssignment, Submission, SubmissionMovement.

FormAssignment is the chain-of-custody ledger: one row per custody event
(distribution, delegation, mark-back). Rows are never deleted, and their
identity fields never change after insert. Only status, is_finalized,
last_action, remarks, instructions and a late-bound data_id move.

Submission is the shared form payload. Several assignments across branches
may point at the same Submission via data_id; its movement log is the
append-only record of who did what to the data.
"""

from datetime import datetime, timezone

from sqlalchemy import event, inspect as sa_inspect

from refportal.core.exceptions import ImmutableHistoryError
from refportal.models import db

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_PENDING = "Pending"
STATUS_EDITED = "Edited"
STATUS_APPROVED = "Approved"
STATUS_SUBMITTED = "Submitted"
STATUS_RETURNED = "Returned"

ASSIGNMENT_STATUSES = (
    STATUS_PENDING, STATUS_EDITED, STATUS_APPROVED, STATUS_SUBMITTED, STATUS_RETURNED,
)
SUBMISSION_STATUSES = (STATUS_EDITED, STATUS_APPROVED, STATUS_SUBMITTED)

# last_action values
ACTION_ASSIGNED = "Assigned"
ACTION_DELEGATED = "Delegated"
ACTION_MARKED_BACK = "Marked Back"
ACTION_MARKED_FINAL = "Marked Final"
ACTION_APPROVED = "Approved"
ACTION_SUBMITTED = "Submitted"
ACTION_DRAFT_UPDATED = "Draft Updated"
ACTION_AUTO_APPROVED = "Auto-Approved (Restricted Mode)"

# How an assignment row came to exist
ORIGIN_DISTRIBUTION = "distribution"
ORIGIN_AUTO_START = "auto_start"
ORIGIN_DELEGATION = "delegation"
ORIGIN_MARK_BACK = "mark_back"

ASSIGNMENT_ORIGINS = frozenset({
    ORIGIN_DISTRIBUTION, ORIGIN_AUTO_START, ORIGIN_DELEGATION, ORIGIN_MARK_BACK,
})

DEFAULT_INSTRUCTIONS = "Please fill the form"

# Custody identity; frozen once the row is persisted.
IMMUTABLE_ASSIGNMENT_FIELDS = (
    "template_id",
    "assigned_to",
    "assigned_by",
    "parent_assignment_id",
    "delegation_chain",
    "origin",
)


def _utcnow():
    return datetime.now(timezone.utc)


class FormAssignment(db.Model):
    """
    One custody event of a form instance from one user to another.

    Business rules:
    - parent_assignment_id is None for a root (first distribution to a
      primary recipient); otherwise it points at the predecessor in this branch.
    - delegation_chain lists every holder from the distributor up to the
      user who routed this record; each delegate/mark-back hop appends one id.
    - is_finalized=True blocks any further delegation from this row.
    - instructions keeps the first delegation message after remarks is
      overwritten by approve/submit.
    """

    __tablename__ = "form_assignments"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False,
        comment="Current holder of this custody record",
    )
    assigned_by = db.Column(
        db.Integer, db.ForeignKey("users.id"), nullable=False,
        comment="User who routed the form to assigned_to",
    )
    data_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Shared Submission this branch is editing",
    )
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)
    parent_assignment_id = db.Column(
        db.Integer, db.ForeignKey("form_assignments.id"), nullable=True, index=True,
    )
    delegation_chain = db.Column(db.JSON, nullable=False, default=list)
    origin = db.Column(
        db.String(20), nullable=True,
        comment="distribution | auto_start | delegation | mark_back (NULL on legacy rows)",
    )
    last_action = db.Column(db.String(50), nullable=False, default=ACTION_ASSIGNED)
    is_read = db.Column(db.Boolean, default=False)
    remarks = db.Column(db.Text, nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    is_finalized = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    assignee = db.relationship("User", foreign_keys=[assigned_to])
    assigner = db.relationship("User", foreign_keys=[assigned_by])
    template = db.relationship("FormTemplate")
    submission = db.relationship("Submission", foreign_keys=[data_id])

    __table_args__ = (
        db.Index("ix_assignment_assignee_status", "assigned_to", "status"),
        db.Index("ix_assignment_template_assignee", "template_id", "assigned_to"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_assignment_id is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_id": self.template_id,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "data_id": self.data_id,
            "status": self.status,
            "parent_assignment_id": self.parent_assignment_id,
            "delegation_chain": list(self.delegation_chain or []),
            "origin": self.origin,
            "last_action": self.last_action,
            "is_read": self.is_read,
            "remarks": self.remarks,
            "instructions": self.instructions,
            "is_finalized": self.is_finalized,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<FormAssignment #{self.id} tpl={self.template_id} "
            f"{self.assigned_by}->{self.assigned_to} {self.status}>"
        )


class Submission(db.Model):
    """
    Form data payload, independent of the custody chain.

    One Submission is shared by every assignment whose data_id points at it.
    """

    __tablename__ = "submissions"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("form_templates.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    lab_name = db.Column(db.String(200), nullable=False, default="Unknown")
    submitted_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    data = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=STATUS_EDITED)
    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    movement_history = db.relationship(
        "SubmissionMovement",
        back_populates="submission",
        order_by="SubmissionMovement.id",
        cascade="all, delete-orphan",
    )

    def record_movement(self, performed_by: int, action: str, remarks: str | None = None):
        """Append one entry to the movement log; caller owns the commit."""
        entry = SubmissionMovement(performed_by=performed_by, action=action, remarks=remarks)
        self.movement_history.append(entry)
        return entry

    def to_dict(self, include_history: bool = True) -> dict:
        d = {
            "id": self.id,
            "template_id": self.template_id,
            "lab_name": self.lab_name,
            "submitted_by": self.submitted_by,
            "data": self.data or {},
            "status": self.status,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            d["movement_history"] = [m.to_dict() for m in self.movement_history]
        return d

    def __repr__(self) -> str:
        return f"<Submission #{self.id} tpl={self.template_id} {self.status}>"


class SubmissionMovement(db.Model):
    """Append-only movement log entry for a Submission."""

    __tablename__ = "submission_movements"

    id = db.Column(db.Integer, primary_key=True)
    submission_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    performed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(60), nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    submission = db.relationship("Submission", back_populates="movement_history")
    performer = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "performed_by": self.performed_by,
            "action": self.action,
            "remarks": self.remarks,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# ── Ledger guard ─────────────────────────────────────────────────────────────


def _register_immutable_guard(attr_name: str):
    @event.listens_for(getattr(FormAssignment, attr_name), "set")
    def _reject_rewrite(target, value, oldvalue, initiator):
        state = sa_inspect(target)
        if not state.persistent:
            return
        if value == oldvalue:
            return
        raise ImmutableHistoryError(attr_name, target.id)


for _field in IMMUTABLE_ASSIGNMENT_FIELDS:
    _register_immutable_guard(_field)


# ── Status and origin vocabulary ─────────────────────────────────────────────


def _register_vocabulary_guard(model, attr_name: str, allowed, *, nullable=False):
    @event.listens_for(getattr(model, attr_name), "set")
    def _reject_unknown(target, value, oldvalue, initiator):
        if value is None and nullable:
            return
        if value not in allowed:
            raise ValueError(f"{model.__name__}.{attr_name} cannot be {value!r}")


_register_vocabulary_guard(FormAssignment, "status", ASSIGNMENT_STATUSES)
_register_vocabulary_guard(FormAssignment, "origin", ASSIGNMENT_ORIGINS, nullable=True)
_register_vocabulary_guard(Submission, "status", SUBMISSION_STATUSES)
