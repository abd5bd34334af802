"""
Notification blueprint — the caller's in-app notifications.

Endpoints:
    GET  /api/v1/notifications             ?unread_only=1&limit=&offset=
    POST /api/v1/notifications/<id>/read
"""

import logging

from flask import Blueprint, g, jsonify, request

from refportal.blueprints import register_error_handlers
from refportal.middleware.auth_required import require_user
from refportal.services.notification import NotificationService
from refportal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
@require_user
def list_notifications():
    unread_only = request.args.get("unread_only", "").lower() in ("1", "true", "yes")
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_recipient(
        g.current_user.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.current_user.id),
    })


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@require_user
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.current_user.id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())
