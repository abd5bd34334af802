"""JSON error bodies for the portal API.

Every error response has the shape ``{"error": <message>, "code": <ERR_*>}``
plus an optional ``details`` object, e.g. the offending field for a
validation failure::

    return api_error(E.NOT_FOUND, "Notification not found")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INTERNAL = "ERR_INTERNAL"

    STATUS = {
        VALIDATION_INVALID: 400,
        UNAUTHORIZED: 401,
        FORBIDDEN: 403,
        NOT_FOUND: 404,
        CONFLICT_DUPLICATE: 409,
        INTERNAL: 500,
    }


def error_body(code: str, message: str, details: dict | None = None) -> dict:
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return body


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for *code*; unknown codes map to 400."""
    return jsonify(error_body(code, message, details)), status or E.STATUS.get(code, 400)
