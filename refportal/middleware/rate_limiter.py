"""
Rate limiting configuration.

The Limiter instance is created in refportal/__init__.py with no default
limits; this module applies per-blueprint limits.

Usage:
    from refportal.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def _method_limit() -> str:
    return READ_LIMIT if request.method == "GET" else WRITE_LIMIT


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow / template writes:  60/minute
        - Notifications (read-heavy):  200/minute
        - Health check:                exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("form_workflow_bp", "form_template_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(_method_limit)(bp)

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limits applied (write %s, read %s)", WRITE_LIMIT, READ_LIMIT)
