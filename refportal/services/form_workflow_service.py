"""
Form delegation & approval workflow.

Each public function is one guarded state transition over the custody
ledger (FormAssignment) and the shared form payload (Submission):

    delegate               hand the form to a colleague in the same lab
    mark_back              send it back up the chain for approval
    mark_final             lock an assignment against further delegation
    approve                designation-gated approval of the submission
    submit_to_distributor  final hand-back of an approved submission
    save_draft             write form data; lazily starts the workflow

Business rules:
    - Every precondition is checked before the session is touched; a
      failing check leaves no trace.
    - All writes of one operation (assignments, submission, movement
      entry, audit row) commit together or not at all.
    - Notifications and emails are queued only after the commit and can
      never turn a successful transition into an error.
    - There is no per-assignment lock. Two concurrent delegate or
      mark-back calls on the same source can both succeed and leave two
      children under one parent; readers must tolerate that fork.
"""

import logging

from refportal.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from refportal.models import db
from refportal.models.audit import write_audit
from refportal.models.workflow import (
    ACTION_APPROVED,
    ACTION_ASSIGNED,
    ACTION_AUTO_APPROVED,
    ACTION_DELEGATED,
    ACTION_DRAFT_UPDATED,
    ACTION_MARKED_BACK,
    ACTION_MARKED_FINAL,
    ACTION_SUBMITTED,
    DEFAULT_INSTRUCTIONS,
    ORIGIN_AUTO_START,
    ORIGIN_DELEGATION,
    ORIGIN_MARK_BACK,
    STATUS_APPROVED,
    STATUS_EDITED,
    STATUS_PENDING,
    STATUS_SUBMITTED,
    FormAssignment,
    Submission,
)
from refportal.services import assignment_store as store
from refportal.services import storage_service
from refportal.services.approval_authority import Capability, has_capability
from refportal.services.chain_timeline import build_timeline, timeline_from_movements
from refportal.services.notification import announce

logger = logging.getLogger(__name__)

MOVEMENT_SENT_FOR_APPROVAL = "Sent for Approval"
MOVEMENT_DRAFT_CREATED = "Draft Created"
MOVEMENT_CREATED_APPROVED = "Created & Approved"

SOURCE_ASSIGNMENT_CHAIN = "assignment_chain"
SOURCE_MOVEMENT_HISTORY = "movement_history"


# ── Private helpers ──────────────────────────────────────────────────────────


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Workflow commit failed; transaction rolled back")
        raise


def _require_holder(assignment: FormAssignment, user, message="You are not the owner of this assignment"):
    if assignment.assigned_to != user.id:
        raise ForbiddenError(message)


def _preserve_instructions(assignment: FormAssignment):
    """Keep the first delegation message before remarks is overwritten."""
    if not assignment.instructions and assignment.remarks:
        assignment.instructions = assignment.remarks


def _is_closed(assignment: FormAssignment) -> bool:
    """True once the assignment or the submission it carries was submitted."""
    if assignment.status == STATUS_SUBMITTED:
        return True
    return assignment.submission is not None and assignment.submission.status == STATUS_SUBMITTED


def _new_root(template, user, *, status, last_action, remarks, data_id=None) -> FormAssignment:
    root = FormAssignment(
        template_id=template.id,
        assigned_to=user.id,
        assigned_by=template.created_by,
        status=status,
        delegation_chain=[template.created_by],
        parent_assignment_id=None,
        origin=ORIGIN_AUTO_START,
        last_action=last_action,
        remarks=remarks,
        instructions=DEFAULT_INSTRUCTIONS,
        data_id=data_id,
        is_finalized=status == STATUS_APPROVED,
    )
    db.session.add(root)
    db.session.flush()
    logger.info(
        "Root assignment auto-started",
        extra={"assignment_id": root.id, "template_id": template.id, "actor_id": user.id},
    )
    return root


# ── Delegate ─────────────────────────────────────────────────────────────────


def delegate(user, template_id, assigned_to_id, remarks=None, parent_assignment_id=None, ip_address=None):
    """Hand the form from *user* to a colleague in the same lab.

    The sender's assignment is ``parent_assignment_id`` when given, else the
    sender's latest non-Returned assignment on the template. A primary
    recipient with no assignment yet gets a root synthesised on the fly.

    Returns:
        The new Pending FormAssignment for the target.

    Raises:
        ValidationError: missing ids, self-delegation, or the sender's
            assignment is Approved, Submitted or finalized.
        NotFoundError: template, target user or parent assignment missing.
        ForbiddenError: delegation disabled, not the assignment holder,
            no access to the template, or target in another lab.
    """
    if not template_id or not assigned_to_id:
        raise ValidationError("templateId and assignedToId are required")

    template = store.get_template(template_id)
    if not template.allow_delegation:
        raise ForbiddenError("Delegation is not allowed for this form")

    if parent_assignment_id is not None:
        sender_assignment = store.get_assignment(parent_assignment_id)
        if sender_assignment.template_id != template.id:
            raise ValidationError("parentAssignmentId belongs to a different form")
        _require_holder(sender_assignment, user)
    else:
        sender_assignment = store.latest_for_user(template.id, user.id)
        if sender_assignment is None and not store.can_access_template(template, user):
            raise ForbiddenError("This form has not been shared with you")

    if sender_assignment is not None:
        if sender_assignment.status in (STATUS_APPROVED, STATUS_SUBMITTED) or sender_assignment.is_finalized:
            raise ValidationError("Cannot delegate: form is already Approved or Finalized")

    target = store.get_user(assigned_to_id)
    if target.id == user.id:
        raise ValidationError("You cannot delegate a form to yourself")
    if target.lab_name != user.lab_name:
        raise ForbiddenError(f"Delegation is restricted to your own lab ({user.lab_name})")

    if sender_assignment is None:
        sender_assignment = _new_root(
            template, user,
            status=STATUS_EDITED, last_action=ACTION_DELEGATED, remarks="Initial distribution",
        )

    child = FormAssignment(
        template_id=template.id,
        assigned_to=target.id,
        assigned_by=user.id,
        status=STATUS_PENDING,
        delegation_chain=list(sender_assignment.delegation_chain or []) + [user.id],
        parent_assignment_id=sender_assignment.id,
        origin=ORIGIN_DELEGATION,
        last_action=ACTION_ASSIGNED,
        remarks=remarks,
        instructions=remarks,
        data_id=sender_assignment.data_id,
    )
    db.session.add(child)

    sender_assignment.status = STATUS_EDITED
    sender_assignment.last_action = ACTION_DELEGATED

    if child.data_id is not None:
        submission = store.get_submission(child.data_id)
        submission.record_movement(user.id, ACTION_DELEGATED, remarks)

    db.session.flush()
    write_audit(
        action="FORM_DELEGATION",
        entity_type="FormAssignment",
        entity_id=child.id,
        actor_user_id=user.id,
        diff={"remarks": remarks, "assigned_to": target.id, "parent_assignment_id": sender_assignment.id},
        ip_address=ip_address,
    )
    _commit()

    logger.info(
        "Form delegated",
        extra={
            "assignment_id": child.id,
            "parent_assignment_id": sender_assignment.id,
            "template_id": template.id,
            "actor_id": user.id,
            "target_id": target.id,
        },
    )
    announce(
        target.id, "FORM_DELEGATED", "Form Task Assigned",
        f'{user.full_name} has marked a form "{template.title}" to you for filling/processing.',
        child.id,
        "form_delegated",
        {"title": template.title, "sender": user.full_name, "remarks": remarks},
    )
    return child


# ── Mark back ────────────────────────────────────────────────────────────────


def mark_back(user, assignment_id, remarks=None, return_to_id=None, data_id=None, ip_address=None):
    """Send the form back to a previous chain participant.

    The default target is whoever routed the form to *user*.
    ``return_to_id`` skips intermediate holders but must name someone in
    the current assignment's delegation_chain. The new assignment keeps the
    current one's parent link rather than pointing at it.

    Returns:
        The new Edited FormAssignment for the target.

    Raises:
        ValidationError: the assignment is Submitted, ``return_to_id`` is
            not on the chain, or the target would be *user*.
    """
    if not assignment_id:
        raise ValidationError("assignmentId is required")

    current = store.get_assignment(assignment_id)
    _require_holder(current, user, "You are not authorized to mark back this assignment")
    if current.status == STATUS_SUBMITTED:
        raise ValidationError("Form has already been submitted")

    target_id = current.assigned_by
    if return_to_id is not None:
        if return_to_id not in (current.delegation_chain or []):
            raise ValidationError(
                "Target user is not in the delegation chain history",
                details={"returnToId": return_to_id},
            )
        target_id = return_to_id
    if target_id == user.id:
        raise ValidationError("You cannot mark a form back to yourself", details={"returnToId": target_id})
    target = store.get_user(target_id)

    effective_data_id = data_id if data_id is not None else current.data_id
    submission = store.get_submission(effective_data_id) if effective_data_id is not None else None
    template = store.get_template(current.template_id)

    if current.status == STATUS_PENDING:
        current.status = STATUS_EDITED
    current.is_finalized = True

    returned = FormAssignment(
        template_id=current.template_id,
        assigned_to=target.id,
        assigned_by=user.id,
        status=STATUS_EDITED,
        parent_assignment_id=current.parent_assignment_id,
        delegation_chain=list(current.delegation_chain or []) + [user.id],
        origin=ORIGIN_MARK_BACK,
        last_action=ACTION_MARKED_BACK,
        remarks=remarks,
        data_id=effective_data_id,
    )
    db.session.add(returned)

    if submission is not None:
        submission.record_movement(user.id, MOVEMENT_SENT_FOR_APPROVAL, remarks)

    db.session.flush()
    write_audit(
        action="FORM_MARK_BACK",
        entity_type="FormAssignment",
        entity_id=returned.id,
        actor_user_id=user.id,
        diff={"remarks": remarks, "target_user_id": target.id, "from_assignment_id": current.id},
        ip_address=ip_address,
    )
    _commit()

    logger.info(
        "Form marked back",
        extra={
            "assignment_id": returned.id,
            "from_assignment_id": current.id,
            "template_id": current.template_id,
            "actor_id": user.id,
            "target_id": target.id,
        },
    )
    announce(
        target.id, "FORM_MARKED_BACK", "Form Returned for Approval",
        f'{user.full_name} has sent the form "{template.title}" back for your approval.',
        returned.id,
        "form_marked_back",
        {"title": template.title, "sender": user.full_name, "remarks": remarks},
    )
    return returned


# ── Mark final ───────────────────────────────────────────────────────────────


def mark_final(user, assignment_id, remarks=None, ip_address=None):
    """Lock *assignment_id* against further delegation.

    Safe to repeat. Only Pending is normalised to Edited; an Approved or
    Submitted status is left alone.
    """
    if not assignment_id:
        raise ValidationError("assignmentId is required")

    assignment = store.get_assignment(assignment_id)
    _require_holder(assignment, user)

    assignment.is_finalized = True
    _preserve_instructions(assignment)
    if assignment.status == STATUS_PENDING:
        assignment.status = STATUS_EDITED

    if assignment.data_id is not None:
        submission = store.get_submission(assignment.data_id)
        submission.record_movement(user.id, ACTION_MARKED_FINAL, remarks or "Marked as Final")

    write_audit(
        action="FORM_MARK_FINAL",
        entity_type="FormAssignment",
        entity_id=assignment.id,
        actor_user_id=user.id,
        diff={"remarks": remarks},
        ip_address=ip_address,
    )
    _commit()
    logger.info("Assignment marked final", extra={"assignment_id": assignment.id, "actor_id": user.id})
    return assignment


# ── Approve ──────────────────────────────────────────────────────────────────


def approve(user, assignment_id, remarks=None, ip_address=None):
    """Approve the submission held under *assignment_id*.

    Any chain participant may approve as long as they currently hold the
    assignment and their designation carries approval authority.
    """
    if not assignment_id:
        raise ValidationError("assignmentId is required")

    assignment = store.get_assignment(assignment_id)
    if assignment.data_id is None:
        raise NotFoundError(resource="Submission")
    _require_holder(assignment, user, "You are not the current holder of this assignment")

    if not has_capability(user, Capability.APPROVE_FORMS):
        raise ForbiddenError(
            f"Your designation ({user.designation or 'N/A'}) is not authorized to provide approvals"
        )
    if assignment.status == STATUS_SUBMITTED:
        raise ValidationError("Form has already been submitted")

    submission = store.get_submission(assignment.data_id)
    submission.status = STATUS_APPROVED
    submission.record_movement(user.id, ACTION_APPROVED, remarks)

    assignment.status = STATUS_APPROVED
    assignment.last_action = ACTION_APPROVED
    _preserve_instructions(assignment)
    assignment.remarks = remarks
    assignment.is_finalized = True

    write_audit(
        action="FORM_APPROVAL",
        entity_type="Submission",
        entity_id=submission.id,
        actor_user_id=user.id,
        diff={"status": STATUS_APPROVED, "remarks": remarks, "assignment_id": assignment.id},
        ip_address=ip_address,
    )
    _commit()
    logger.info(
        "Submission approved",
        extra={"assignment_id": assignment.id, "submission_id": submission.id, "actor_id": user.id},
    )
    return assignment


# ── Submit to distributor ────────────────────────────────────────────────────


def submit_to_distributor(user, assignment_id, remarks=None, ip_address=None):
    """Hand the approved submission back to the template owner.

    Only an Approved assignment can be submitted. Single-step forms reach
    Approved through save_draft, so Edited is rejected for them as well.
    """
    if not assignment_id:
        raise ValidationError("assignmentId is required")

    assignment = store.get_assignment(assignment_id)
    if assignment.data_id is None:
        raise NotFoundError(resource="Submission")
    template = store.get_template(assignment.template_id)
    _require_holder(assignment, user)

    if assignment.status != STATUS_APPROVED:
        raise ValidationError("Form must be Approved before submitting to distributor")
    submission = store.get_submission(assignment.data_id)
    if submission.status == STATUS_SUBMITTED:
        raise ValidationError("This submission has already been submitted")

    submission.status = STATUS_SUBMITTED
    submission.record_movement(user.id, ACTION_SUBMITTED, remarks)

    assignment.status = STATUS_SUBMITTED
    assignment.last_action = ACTION_SUBMITTED
    _preserve_instructions(assignment)
    assignment.remarks = remarks

    write_audit(
        action="FORM_FINAL_SUBMISSION",
        entity_type="Submission",
        entity_id=submission.id,
        actor_user_id=user.id,
        diff={"remarks": remarks, "assignment_id": assignment.id},
        ip_address=ip_address,
    )
    _commit()

    logger.info(
        "Submission sent to distributor",
        extra={"assignment_id": assignment.id, "submission_id": submission.id, "actor_id": user.id},
    )
    announce(
        template.created_by, "FORM_SUBMITTED", "Form Submitted",
        f'{user.full_name} has submitted the form "{template.title}".',
        assignment.id,
        "form_submitted",
        {"title": template.title, "sender": user.full_name, "remarks": remarks},
    )
    return assignment


# ── Save draft / auto-start ──────────────────────────────────────────────────


def save_draft(user, template_id, data, assignment_id=None, files=None, ip_address=None):
    """Write form data and bootstrap the workflow if needed.

    Forms with delegation disabled are approved on save. Uploaded files
    (``files`` maps field name to a werkzeug FileStorage) are stored first
    and merged into ``data`` under their field name.

    Returns:
        (submission, assignment)

    Without ``assignment_id`` the caller's latest assignment is used. Once
    that round has been submitted, a form allowing multiple submissions
    starts a new root and Submission; any other form answers with a
    conflict.

    Raises:
        ValidationError: missing input, or an explicit ``assignment_id``
            whose form was already submitted.
        ConflictError: the user already submitted and the form allows one
            submission only.
    """
    if not template_id or data is None:
        raise ValidationError("templateId and data are required")
    if not isinstance(data, dict):
        raise ValidationError("data must be an object of field values")

    template = store.get_template(template_id)

    if assignment_id is not None:
        assignment = store.get_assignment(assignment_id)
        if assignment.template_id != template.id:
            raise ValidationError("assignmentId belongs to a different form")
        _require_holder(assignment, user)
        if _is_closed(assignment):
            raise ValidationError("Form has already been submitted")
    else:
        assignment = store.latest_for_user(template.id, user.id)
        if assignment is None and not store.can_access_template(template, user):
            raise ForbiddenError("This form has not been shared with you")
        if assignment is not None and _is_closed(assignment):
            if not template.allow_multiple_submissions:
                raise ConflictError(resource="Submission", field="template_id", value=str(template.id))
            # Previous round is closed; the next save starts a fresh root
            assignment = None

    submission = None
    if assignment is not None and assignment.data_id is not None:
        submission = store.get_submission(assignment.data_id)
    if submission is None:
        own = store.find_user_submission(template.id, user.id)
        if own is not None and own.status != STATUS_SUBMITTED:
            submission = own
        elif not template.allow_multiple_submissions and store.has_submitted(template.id, user.id):
            raise ConflictError(resource="Submission", field="template_id", value=str(template.id))

    merged = dict(data)
    for field_name, file_storage in (files or {}).items():
        stored = storage_service.upload_stream(file_storage)
        merged[field_name] = {
            "url": stored["url"],
            "id": stored["id"],
            "provider": stored["provider"],
            "name": file_storage.filename,
            "mimetype": file_storage.mimetype,
        }

    auto_approve = not template.allow_delegation
    target_status = STATUS_APPROVED if auto_approve else STATUS_EDITED
    target_action = ACTION_AUTO_APPROVED if auto_approve else ACTION_DRAFT_UPDATED

    if submission is not None:
        submission.data = merged
        submission.status = target_status
        submission.ip_address = ip_address
        submission.record_movement(
            user.id, target_action,
            "Auto-approved by system (No Delegation)" if auto_approve else "Data modified in draft",
        )
    else:
        submission = Submission(
            template_id=template.id,
            lab_name=user.lab_name or "Unknown",
            submitted_by=user.id,
            data=merged,
            status=target_status,
            ip_address=ip_address,
        )
        db.session.add(submission)
        submission.record_movement(
            user.id,
            MOVEMENT_CREATED_APPROVED if auto_approve else MOVEMENT_DRAFT_CREATED,
            "Initial auto-approval" if auto_approve else "Initial draft saved",
        )
    db.session.flush()

    if assignment is None:
        assignment = _new_root(
            template, user,
            status=target_status, last_action=target_action,
            remarks="Workflow started via Draft Save", data_id=submission.id,
        )
    else:
        if assignment.data_id is None:
            assignment.data_id = submission.id
        assignment.status = target_status
        assignment.last_action = target_action
        if auto_approve:
            assignment.is_finalized = True

    write_audit(
        action="FORM_DRAFT_SAVE",
        entity_type="Submission",
        entity_id=submission.id,
        actor_user_id=user.id,
        diff={"status": target_status, "assignment_id": assignment.id, "fields": sorted(merged)},
        ip_address=ip_address,
    )
    _commit()

    logger.info(
        "Draft saved",
        extra={
            "submission_id": submission.id,
            "assignment_id": assignment.id,
            "template_id": template.id,
            "actor_id": user.id,
            "status": target_status,
        },
    )
    return submission, assignment


# ── Chain reads ──────────────────────────────────────────────────────────────


def get_chain_details(assignment_id):
    """Timeline around *assignment_id*, flagged as current."""
    assignment = store.get_assignment(assignment_id)
    return build_timeline(assignment, store.template_pool(assignment.template_id), assignment.id)


def get_chain_by_submission_id(submission_id):
    """Timeline for a submission.

    Uses the latest assignment that references the submission; with none,
    falls back to the submission's own movement log.

    Returns:
        (timeline, source)
    """
    assignment = store.latest_for_submission(submission_id)
    if assignment is not None:
        timeline = build_timeline(assignment, store.template_pool(assignment.template_id), assignment.id)
        return timeline, SOURCE_ASSIGNMENT_CHAIN

    submission = store.get_submission(submission_id)
    return timeline_from_movements(submission), SOURCE_MOVEMENT_HISTORY
