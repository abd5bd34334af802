"""
Fire-and-forget side-effect dispatch.

Notifications and emails run only after the workflow transaction has
committed, and their failures never reach the caller. Two modes:

    thread  each side effect runs in a daemon thread inside a fresh app
            context (default for development/production)
    sync    side effects run inline (testing), still isolated by try/except

Failures are logged and kept in a bounded in-memory buffer so that
operators and tests can inspect them via ``recent_failures()``.
"""

import logging
import threading
import time

from flask import current_app

from refportal.models import db

logger = logging.getLogger(__name__)

_failures: list[dict] = []
_MAX_FAILURES = 500
_lock = threading.Lock()


def _record_failure(label: str, exc: Exception) -> None:
    with _lock:
        _failures.append({"ts": time.time(), "label": label, "error": str(exc)})
        if len(_failures) > _MAX_FAILURES:
            del _failures[:_MAX_FAILURES // 2]


def recent_failures() -> list[dict]:
    with _lock:
        return list(_failures)


def reset_failures() -> None:
    with _lock:
        _failures.clear()


def _run_guarded(label: str, fn, args, kwargs) -> bool:
    try:
        fn(*args, **kwargs)
        return True
    except Exception as exc:
        db.session.rollback()
        logger.exception("Side effect '%s' failed", label)
        _record_failure(label, exc)
        return False


class SideEffectDispatcher:
    """Runs post-commit side effects without letting them fail the request."""

    @staticmethod
    def submit(label: str, fn, *args, **kwargs) -> None:
        app = current_app._get_current_object()
        mode = app.config.get("SIDE_EFFECT_MODE", "thread")

        if mode == "sync":
            _run_guarded(label, fn, args, kwargs)
            return

        def _target():
            with app.app_context():
                try:
                    _run_guarded(label, fn, args, kwargs)
                finally:
                    db.session.remove()

        t = threading.Thread(target=_target, name=f"side-effect:{label}", daemon=True)
        t.start()
