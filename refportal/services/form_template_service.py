"""
Form templates and initial distribution.

Distribution is what creates root assignments: one per recipient, held by
the recipient and routed by the template owner. Everything after that is
the workflow service's job.
"""

import logging

from refportal.core.exceptions import ForbiddenError, ValidationError
from refportal.models import db
from refportal.models.audit import write_audit
from refportal.models.auth import User
from refportal.models.form import FIELD_TYPES, OPTION_FIELD_TYPES, FormTemplate
from refportal.models.workflow import (
    ACTION_ASSIGNED,
    DEFAULT_INSTRUCTIONS,
    ORIGIN_DISTRIBUTION,
    STATUS_PENDING,
    FormAssignment,
    Submission,
)
from refportal.services import assignment_store as store
from refportal.services.approval_authority import Capability, has_capability
from refportal.services.notification import announce
from refportal.utils.helpers import parse_deadline, parse_int

logger = logging.getLogger(__name__)

PLACEHOLDER_OPTIONS = [
    {"label": "Option 1", "value": "option_1"},
    {"label": "Option 2", "value": "option_2"},
]


def normalize_fields(raw_fields) -> list[dict]:
    """Lower-case field types and give option fields something to pick.

    Raises ValidationError on a non-object field or an unknown type.
    """
    fields = []
    for index, raw in enumerate(raw_fields):
        if not isinstance(raw, dict):
            raise ValidationError(f"Field #{index + 1} must be an object")
        field = dict(raw)
        field["type"] = str(field.get("type") or "text").lower()
        if field["type"] not in FIELD_TYPES:
            raise ValidationError(
                f"Invalid field type detected: {field['type']}",
                details={"field": index, "allowed": list(FIELD_TYPES)},
            )
        if field["type"] in OPTION_FIELD_TYPES and not field.get("options"):
            field["options"] = [dict(o) for o in PLACEHOLDER_OPTIONS]
        fields.append(field)
    return fields


def _check_lab_scope(owner, labs):
    foreign = [lab for lab in labs if lab != owner.lab_name]
    if foreign and not has_capability(owner, Capability.DISTRIBUTE_INTER_LAB):
        raise ForbiddenError("You do not have permission to share forms with other labs")


def _sharer_label(owner) -> str:
    label = owner.full_name or owner.email
    if owner.designation:
        label += f", {owner.designation}"
    if owner.lab_name:
        label += f" ({owner.lab_name})"
    return label


def _create_roots(template, owner, user_ids, labs, instructions):
    """Add one Pending root per new recipient. Returns (created, skipped)."""
    recipients: dict[int, User] = {}
    skipped: list[int] = []

    for uid in user_ids:
        user = db.session.get(User, uid)
        if user is None:
            skipped.append(uid)
            continue
        recipients[user.id] = user
    if labs:
        for user in User.query.filter(User.lab_name.in_(labs)).all():
            recipients.setdefault(user.id, user)

    created: list[FormAssignment] = []
    for uid in sorted(recipients):
        if uid == owner.id or store.has_assignment(template.id, uid):
            skipped.append(uid)
            continue
        root = FormAssignment(
            template_id=template.id,
            assigned_to=uid,
            assigned_by=owner.id,
            status=STATUS_PENDING,
            delegation_chain=[owner.id],
            parent_assignment_id=None,
            origin=ORIGIN_DISTRIBUTION,
            last_action=ACTION_ASSIGNED,
            remarks=instructions or "Form distributed",
            instructions=instructions or DEFAULT_INSTRUCTIONS,
        )
        db.session.add(root)
        created.append(root)

    template.shared_with_users = sorted(set(template.shared_with_users or []) | set(recipients))
    template.shared_with_labs = sorted(set(template.shared_with_labs or []) | set(labs))
    db.session.flush()
    return created, skipped


def _announce_roots(template, owner, roots, instructions):
    sender = _sharer_label(owner)
    deadline = template.deadline.date().isoformat() if template.deadline else None
    for root in roots:
        announce(
            root.assigned_to, "FORM_SHARED", "New Form Shared",
            f'A new form "{template.title}" has been shared with you by {sender}.',
            root.id,
            "form_shared",
            {
                "title": template.title,
                "sender": sender,
                "instructions": instructions or DEFAULT_INSTRUCTIONS,
                "deadline": deadline,
            },
        )


def create_template(owner, payload: dict, ip_address=None):
    """Create a template and distribute it to its initial recipients.

    Returns:
        (template, {"created": [...assignment ids], "skipped": [...user ids]})
    """
    title = (payload.get("title") or "").strip()
    raw_fields = payload.get("fields")
    if not title or not isinstance(raw_fields, list) or not raw_fields:
        raise ValidationError("Title and at least one field are required")

    labs = list(payload.get("shared_with_labs") or [])
    user_ids = [parse_int(u, "shared_with_users") for u in payload.get("shared_with_users") or []]
    _check_lab_scope(owner, labs)
    fields = normalize_fields(raw_fields)
    deadline = parse_deadline(payload.get("deadline"))
    instructions = payload.get("filling_instructions")

    template = FormTemplate(
        title=title,
        description=payload.get("description") or "",
        fields=fields,
        created_by=owner.id,
        shared_with_labs=[],
        shared_with_users=[],
        is_public=bool(payload.get("is_public", False)),
        allow_multiple_submissions=bool(payload.get("allow_multiple_submissions", False)),
        allow_delegation=bool(payload.get("allow_delegation", True)),
        is_active=bool(payload.get("is_active", True)),
        deadline=deadline,
    )
    db.session.add(template)
    db.session.flush()

    roots, skipped = _create_roots(template, owner, user_ids, labs, instructions)
    write_audit(
        action="FORM_TEMPLATE_CREATE",
        entity_type="FormTemplate",
        entity_id=template.id,
        actor_user_id=owner.id,
        diff={"after": template.to_dict(), "recipients": [r.assigned_to for r in roots]},
        ip_address=ip_address,
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Template creation failed")
        raise

    logger.info(
        "Form template created",
        extra={"template_id": template.id, "actor_id": owner.id, "recipients": len(roots)},
    )
    _announce_roots(template, owner, roots, instructions)
    return template, {"created": [r.id for r in roots], "skipped": skipped}


def distribute(template_id, owner, user_ids=None, labs=None, instructions=None, ip_address=None):
    """Share an existing template with more recipients (owner only)."""
    template = store.get_template(template_id)
    if template.created_by != owner.id:
        raise ForbiddenError("Only the form owner can distribute it")
    labs = list(labs or [])
    user_ids = [parse_int(u, "user_ids") for u in user_ids or []]
    if not labs and not user_ids:
        raise ValidationError("Provide user_ids or labs to distribute to")
    _check_lab_scope(owner, labs)

    roots, skipped = _create_roots(template, owner, user_ids, labs, instructions)
    write_audit(
        action="FORM_DISTRIBUTION",
        entity_type="FormTemplate",
        entity_id=template.id,
        actor_user_id=owner.id,
        diff={"recipients": [r.assigned_to for r in roots], "skipped": skipped},
        ip_address=ip_address,
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Distribution failed")
        raise

    logger.info(
        "Form distributed",
        extra={
            "template_id": template.id,
            "actor_id": owner.id,
            "created_count": len(roots),
            "skipped_count": len(skipped),
        },
    )
    _announce_roots(template, owner, roots, instructions)
    return {"created": [r.id for r in roots], "skipped": skipped}


# ── Distributor side ─────────────────────────────────────────────────────────


def _can_oversee(template, user) -> bool:
    return template.created_by == user.id or has_capability(user, Capability.DISTRIBUTE_INTER_LAB)


def list_responses(template_id, user) -> list[dict]:
    """Submissions on a template, newest first.

    The owner and inter-lab distributors see every response; anyone else
    sees only their own.
    """
    template = store.get_template(template_id)
    query = Submission.query.filter_by(template_id=template.id)
    if not _can_oversee(template, user):
        query = query.filter_by(submitted_by=user.id)
    rows = query.order_by(Submission.created_at.desc(), Submission.id.desc()).all()

    people = {}
    if rows:
        submitter_ids = sorted({s.submitted_by for s in rows})
        people = {u.id: u for u in User.query.filter(User.id.in_(submitter_ids)).all()}
    responses = []
    for row in rows:
        entry = row.to_dict(include_history=False)
        submitter = people.get(row.submitted_by)
        entry["submitter"] = submitter.to_summary() if submitter else None
        responses.append(entry)
    return responses


def _pending_recipients(template) -> list[int]:
    """Everyone the form reached who has not submitted yet."""
    reached = {a.assigned_to for a in store.template_pool(template.id) if a.is_root}
    reached |= set(template.shared_with_users or [])
    reached.discard(template.created_by)
    return sorted(uid for uid in reached if not store.has_submitted(template.id, uid))


def send_reminders(template_id, sender, user_ids=None, ip_address=None) -> dict:
    """Nudge recipients who have not submitted.

    Without *user_ids* every pending recipient is reminded; with them, only
    the listed users that exist and have not submitted.
    """
    template = store.get_template(template_id)
    if not _can_oversee(template, sender):
        raise ForbiddenError("Unauthorized to send reminders for this form")

    if user_ids is None:
        targets = _pending_recipients(template)
    else:
        if not isinstance(user_ids, list) or not user_ids:
            raise ValidationError("Target users are required")
        wanted = {parse_int(u, "user_ids") for u in user_ids}
        known = {u.id for u in User.query.filter(User.id.in_(sorted(wanted))).all()}
        targets = sorted(uid for uid in known if not store.has_submitted(template.id, uid))

    write_audit(
        action="FORM_REMINDER",
        entity_type="FormTemplate",
        entity_id=template.id,
        actor_user_id=sender.id,
        diff={"recipients": targets},
        ip_address=ip_address,
    )
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Reminder bookkeeping failed")
        raise

    name = sender.full_name or sender.email
    for uid in targets:
        announce(
            uid, "FORM_REMINDER", "Form Submission Reminder",
            f'Reminder: Please submit the form "{template.title}" shared by {name}.',
            template.id,
            "form_reminder",
            {"title": template.title, "sender": name},
        )
    logger.info(
        "Form reminders sent",
        extra={"template_id": template.id, "actor_id": sender.id, "reminded_count": len(targets)},
    )
    return {"reminded": targets, "message": f"Reminders sent to {len(targets)} users"}
