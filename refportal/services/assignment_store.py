"""
Assignment Store — read-side queries over the custody ledger.

Everything here is query-only; the workflow service owns every write.
Ordering helpers treat ``(created_at, id)`` as the canonical sequence so
that rows created within the same clock tick still order deterministically.
"""

import logging
from datetime import datetime, timezone

from refportal.core.exceptions import NotFoundError
from refportal.models import db
from refportal.models.auth import User
from refportal.models.form import FormTemplate
from refportal.models.workflow import (
    STATUS_RETURNED,
    STATUS_SUBMITTED,
    FormAssignment,
    Submission,
)

logger = logging.getLogger(__name__)


# ── Ordering ─────────────────────────────────────────────────────────────────


def as_utc(value: datetime | None) -> datetime:
    """Normalise a timestamp for comparison.

    SQLite hands back naive datetimes even for timezone-aware columns; those
    are stored as UTC, so they are tagged rather than converted.
    """
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sort_key(assignment: FormAssignment) -> tuple:
    return (as_utc(assignment.created_at), assignment.id or 0)


def created_before(candidate: FormAssignment, reference: FormAssignment) -> bool:
    return sort_key(candidate) < sort_key(reference)


def created_after(candidate: FormAssignment, reference: FormAssignment) -> bool:
    return sort_key(candidate) > sort_key(reference)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_template(template_id: int) -> FormTemplate:
    template = db.session.get(FormTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="FormTemplate", resource_id=template_id)
    return template


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def get_assignment(assignment_id: int) -> FormAssignment:
    assignment = db.session.get(FormAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="FormAssignment", resource_id=assignment_id)
    return assignment


def get_submission(submission_id: int) -> Submission:
    submission = db.session.get(Submission, submission_id)
    if submission is None:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    return submission


def template_pool(template_id: int) -> list[FormAssignment]:
    """All assignments on a template, oldest first."""
    rows = FormAssignment.query.filter_by(template_id=template_id).all()
    return sorted(rows, key=sort_key)


def latest_for_user(template_id: int, user_id: int, *, include_returned: bool = False):
    """Most recent assignment held by *user_id* on the template, or None.

    Returned rows are inactive and skipped unless asked for.
    """
    q = FormAssignment.query.filter_by(template_id=template_id, assigned_to=user_id)
    if not include_returned:
        q = q.filter(FormAssignment.status != STATUS_RETURNED)
    rows = q.all()
    if not rows:
        return None
    return max(rows, key=sort_key)


def latest_for_submission(submission_id: int):
    """Most recent assignment that points at *submission_id*, or None."""
    rows = FormAssignment.query.filter_by(data_id=submission_id).all()
    if not rows:
        return None
    return max(rows, key=sort_key)


def has_assignment(template_id: int, user_id: int) -> bool:
    return (
        db.session.query(FormAssignment.id)
        .filter_by(template_id=template_id, assigned_to=user_id)
        .first()
        is not None
    )


def can_access_template(template: FormTemplate, user: User) -> bool:
    """Owner, public forms, explicit shares (user or lab), or any assignment."""
    if template.created_by == user.id or template.is_public:
        return True
    if user.id in (template.shared_with_users or []):
        return True
    if user.lab_name and user.lab_name in (template.shared_with_labs or []):
        return True
    return has_assignment(template.id, user.id)


def find_user_submission(template_id: int, user_id: int):
    """The caller's own working Submission on a template (newest), or None."""
    return (
        Submission.query
        .filter_by(template_id=template_id, submitted_by=user_id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .first()
    )


def has_submitted(template_id: int, user_id: int) -> bool:
    return (
        db.session.query(Submission.id)
        .filter_by(template_id=template_id, submitted_by=user_id, status=STATUS_SUBMITTED)
        .first()
        is not None
    )


# ── Inbox ────────────────────────────────────────────────────────────────────


def current_holder(template: FormTemplate, user_id: int, pool: list[FormAssignment] | None = None):
    """Who holds the form right now, as seen from *user_id*'s branch.

    Time-based heuristic: the latest assignment on the template that the
    user holds or whose delegation_chain contains the user. Once that
    assignment is Submitted the form is back with the template owner. This
    is independent of the chain timeline reconstruction and can disagree
    with it on forked or legacy histories.
    """
    pool = pool if pool is not None else template_pool(template.id)
    branch = [a for a in pool if a.assigned_to == user_id or user_id in (a.delegation_chain or [])]
    if not branch:
        return None
    latest = branch[-1]
    if latest.status == STATUS_SUBMITTED:
        return template.owner
    return latest.assignee


def _latest_outgoing(pool: list[FormAssignment], user_id: int):
    outgoing = [a for a in pool if a.assigned_by == user_id and a.status != STATUS_RETURNED]
    return outgoing[-1] if outgoing else None


def inbox(user_id: int, *, page: int = 1, limit: int = 20) -> dict:
    """Active assignments for *user_id*, newest first, one row per template."""
    rows = (
        FormAssignment.query
        .filter(FormAssignment.assigned_to == user_id, FormAssignment.status != STATUS_RETURNED)
        .all()
    )
    latest_by_template: dict[int, FormAssignment] = {}
    for a in rows:
        seen = latest_by_template.get(a.template_id)
        if seen is None or sort_key(a) > sort_key(seen):
            latest_by_template[a.template_id] = a

    ordered = sorted(latest_by_template.values(), key=sort_key, reverse=True)
    total = len(ordered)
    start = max(page - 1, 0) * limit
    now = datetime.now(timezone.utc)

    items = []
    for a in ordered[start:start + limit]:
        template = a.template
        pool = template_pool(a.template_id)
        submission_status = a.submission.status if a.submission is not None else None
        workflow_status = submission_status or a.status
        delegation = _latest_outgoing(pool, user_id)
        holder = current_holder(template, user_id, pool)

        days_to_deadline = None
        if template.deadline is not None:
            days_to_deadline = round((as_utc(template.deadline) - now).total_seconds() / 86400, 2)

        items.append({
            "assignment_id": a.id,
            "template_id": template.id,
            "title": template.title,
            "description": template.description,
            "deadline": template.deadline.isoformat() if template.deadline else None,
            "days_to_deadline": days_to_deadline,
            "allow_delegation": template.allow_delegation,
            "created_by": template.owner.to_summary() if template.owner else None,
            "assigned_by": a.assigner.to_summary() if a.assigner else None,
            "received_at": a.created_at.isoformat() if a.created_at else None,
            "status": a.status,
            "workflow_status": workflow_status,
            "is_submitted": workflow_status in ("Approved", STATUS_SUBMITTED),
            "is_finalized": a.is_finalized,
            "data_id": a.data_id,
            "my_delegation": {
                "assignment_id": delegation.id,
                "delegated_to": delegation.assignee.to_summary() if delegation.assignee else None,
                "status": delegation.status,
            } if delegation is not None else None,
            "current_holder": holder.to_summary() if holder is not None else None,
        })

    return {"items": items, "total": total, "page": page, "limit": limit}
