"""Shared request helpers."""

import logging
from datetime import date, datetime, timezone

from flask import request

from refportal.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


def get_client_ip() -> str | None:
    """Return the originating client IP.

    X-Forwarded-For first entry wins (load balancer), then X-Real-IP
    (nginx), then the socket peer address.
    """
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP", "")
    if real_ip:
        return real_ip.strip()
    return request.remote_addr


def parse_int(value, field: str, *, required: bool = True) -> int | None:
    """Coerce a request value to int, raising ValidationError on bad input."""
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: "invalid"}) from exc


def parse_deadline(value) -> datetime | None:
    """Parse an ISO date or datetime. Returns None for empty input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            "Invalid deadline. Use YYYY-MM-DD or an ISO datetime.",
            details={"deadline": "invalid"},
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
