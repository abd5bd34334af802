"""
Form template blueprint — template creation and distribution.

Endpoints:
    POST /api/v1/forms/templates                    → 201 {template, distribution}
    GET  /api/v1/forms/templates/<id>
    POST /api/v1/forms/templates/<id>/distribute    → 201 {created, skipped}
    GET  /api/v1/forms/templates/<id>/responses     → {items, total}
    POST /api/v1/forms/templates/<id>/reminders     → {reminded, message}
"""

import logging

from flask import Blueprint, g, jsonify, request

from refportal.blueprints import register_error_handlers
from refportal.core.exceptions import ForbiddenError
from refportal.middleware.auth_required import require_user
from refportal.services import assignment_store
from refportal.services import form_template_service
from refportal.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

form_template_bp = Blueprint("form_template_bp", __name__, url_prefix="/api/v1/forms/templates")
register_error_handlers(form_template_bp)


@form_template_bp.route("", methods=["POST"])
@require_user
def create_template():
    data = request.get_json(silent=True) or {}
    template, distribution = form_template_service.create_template(
        g.current_user, data, ip_address=get_client_ip(),
    )
    return jsonify({"template": template.to_dict(), "distribution": distribution}), 201


@form_template_bp.route("/<int:template_id>", methods=["GET"])
@require_user
def get_template(template_id):
    template = assignment_store.get_template(template_id)
    if not assignment_store.can_access_template(template, g.current_user):
        raise ForbiddenError("This form has not been shared with you")
    return jsonify(template.to_dict())


@form_template_bp.route("/<int:template_id>/distribute", methods=["POST"])
@require_user
def distribute(template_id):
    data = request.get_json(silent=True) or {}
    result = form_template_service.distribute(
        template_id,
        g.current_user,
        user_ids=data.get("user_ids"),
        labs=data.get("labs"),
        instructions=data.get("instructions"),
        ip_address=get_client_ip(),
    )
    return jsonify(result), 201


@form_template_bp.route("/<int:template_id>/responses", methods=["GET"])
@require_user
def list_responses(template_id):
    responses = form_template_service.list_responses(template_id, g.current_user)
    return jsonify({"items": responses, "total": len(responses)})


@form_template_bp.route("/<int:template_id>/reminders", methods=["POST"])
@require_user
def send_reminders(template_id):
    data = request.get_json(silent=True) or {}
    result = form_template_service.send_reminders(
        template_id,
        g.current_user,
        user_ids=data.get("user_ids"),
        ip_address=get_client_ip(),
    )
    return jsonify(result), 200
