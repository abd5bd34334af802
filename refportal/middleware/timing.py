"""
Request timing middleware.

Every response carries X-Request-ID (echoed from the caller when present)
and X-Request-Duration-Ms. Requests slower than SLOW_REQUEST_MS are logged
at WARNING, 5xx responses at ERROR, the rest at DEBUG.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
QUIET_PATHS = ("/api/v1/health",)


def _level_for(status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _stamp_response(response):
        started = g.get("request_started")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"

        if not request.path.startswith(QUIET_PATHS):
            logger.log(
                _level_for(response.status_code, elapsed_ms),
                "%s %s -> %d",
                request.method, request.path, response.status_code,
                extra={
                    "request_id": g.request_id,
                    "method": request.method,
                    "path": request.path,
                    "status": response.status_code,
                    "duration_ms": elapsed_ms,
                    "remote_addr": request.remote_addr,
                    "user_id": g.get("jwt_user_id"),
                },
            )
        return response
