"""
Form workflow blueprint — delegation, approval and chain timeline.

Endpoints (all under /api/v1/forms/workflow, Bearer auth):
    POST /delegate                 → 201 new assignment
    POST /mark-back                → 200 new assignment
    POST /mark-final               → 200 assignment
    POST /approve                  → 200 assignment
    POST /submit-to-distributor    → 200 assignment
    POST /save-draft               → 200 {submission, assignment}
    GET  /chain/<assignment_id>    → {timeline, total}
    GET  /chain-by-submission/<id> → {timeline, total, source}
    GET  /inbox                    → caller's active assignments

Request bodies use snake_case keys; the camelCase spellings
(``templateId``, ``assignedToId``...) are accepted as well.
"""

import json
import logging

from flask import Blueprint, g, jsonify, request

from refportal.blueprints import register_error_handlers
from refportal.core.exceptions import ValidationError
from refportal.middleware.auth_required import require_user
from refportal.services import assignment_store
from refportal.services import form_workflow_service as workflow
from refportal.utils.helpers import get_client_ip, parse_int

logger = logging.getLogger(__name__)

form_workflow_bp = Blueprint("form_workflow_bp", __name__, url_prefix="/api/v1/forms/workflow")
register_error_handlers(form_workflow_bp)


def _field(data: dict, snake: str, camel: str | None = None):
    if snake in data:
        return data[snake]
    if camel is not None:
        return data.get(camel)
    return None


def _int_field(data, snake, camel=None, *, required=True):
    return parse_int(_field(data, snake, camel), camel or snake, required=required)


# ═════════════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════════════


@form_workflow_bp.route("/delegate", methods=["POST"])
@require_user
def delegate():
    data = request.get_json(silent=True) or {}
    assignment = workflow.delegate(
        g.current_user,
        template_id=_int_field(data, "template_id", "templateId"),
        assigned_to_id=_int_field(data, "assigned_to_id", "assignedToId"),
        remarks=_field(data, "remarks"),
        parent_assignment_id=_int_field(data, "parent_assignment_id", "parentAssignmentId", required=False),
        ip_address=get_client_ip(),
    )
    return jsonify(assignment.to_dict()), 201


@form_workflow_bp.route("/mark-back", methods=["POST"])
@require_user
def mark_back():
    data = request.get_json(silent=True) or {}
    assignment = workflow.mark_back(
        g.current_user,
        assignment_id=_int_field(data, "assignment_id", "assignmentId"),
        remarks=_field(data, "remarks"),
        return_to_id=_int_field(data, "return_to_id", "returnToId", required=False),
        data_id=_int_field(data, "data_id", "dataId", required=False),
        ip_address=get_client_ip(),
    )
    return jsonify(assignment.to_dict()), 200


@form_workflow_bp.route("/mark-final", methods=["POST"])
@require_user
def mark_final():
    data = request.get_json(silent=True) or {}
    assignment = workflow.mark_final(
        g.current_user,
        assignment_id=_int_field(data, "assignment_id", "assignmentId"),
        remarks=_field(data, "remarks"),
        ip_address=get_client_ip(),
    )
    return jsonify(assignment.to_dict()), 200


@form_workflow_bp.route("/approve", methods=["POST"])
@require_user
def approve():
    data = request.get_json(silent=True) or {}
    assignment = workflow.approve(
        g.current_user,
        assignment_id=_int_field(data, "assignment_id", "assignmentId"),
        remarks=_field(data, "remarks"),
        ip_address=get_client_ip(),
    )
    return jsonify(assignment.to_dict()), 200


@form_workflow_bp.route("/submit-to-distributor", methods=["POST"])
@require_user
def submit_to_distributor():
    data = request.get_json(silent=True) or {}
    assignment = workflow.submit_to_distributor(
        g.current_user,
        assignment_id=_int_field(data, "assignment_id", "assignmentId"),
        remarks=_field(data, "remarks"),
        ip_address=get_client_ip(),
    )
    return jsonify(assignment.to_dict()), 200


@form_workflow_bp.route("/save-draft", methods=["POST"])
@require_user
def save_draft():
    """JSON body, or multipart with ``data`` as a JSON string plus files."""
    files = {}
    if request.mimetype == "multipart/form-data":
        data = request.form.to_dict()
        raw = data.get("data")
        if isinstance(raw, str):
            try:
                data["data"] = json.loads(raw)
            except ValueError as exc:
                raise ValidationError("Invalid data format. Expected JSON string for 'data' field.") from exc
        files = {name: storage for name, storage in request.files.items() if storage and storage.filename}
    else:
        data = request.get_json(silent=True) or {}

    submission, assignment = workflow.save_draft(
        g.current_user,
        template_id=_int_field(data, "template_id", "templateId"),
        data=data.get("data"),
        assignment_id=_int_field(data, "assignment_id", "assignmentId", required=False),
        files=files,
        ip_address=get_client_ip(),
    )
    return jsonify({"submission": submission.to_dict(), "assignment": assignment.to_dict()}), 200


# ═════════════════════════════════════════════════════════════════════════════
# Reads
# ═════════════════════════════════════════════════════════════════════════════


@form_workflow_bp.route("/chain/<int:assignment_id>", methods=["GET"])
@require_user
def chain_details(assignment_id):
    timeline = workflow.get_chain_details(assignment_id)
    return jsonify({"timeline": timeline, "total": len(timeline)})


@form_workflow_bp.route("/chain-by-submission/<int:submission_id>", methods=["GET"])
@require_user
def chain_by_submission(submission_id):
    timeline, source = workflow.get_chain_by_submission_id(submission_id)
    return jsonify({"timeline": timeline, "total": len(timeline), "source": source})


@form_workflow_bp.route("/inbox", methods=["GET"])
@require_user
def inbox():
    page = max(request.args.get("page", 1, type=int), 1)
    limit = min(max(request.args.get("limit", 20, type=int), 1), 100)
    return jsonify(assignment_store.inbox(g.current_user.id, page=page, limit=limit))
