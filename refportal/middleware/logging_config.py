"""
Structured logging configuration.

One stderr handler on the root logger:
    production           JSONFormatter, one object per line
    development/testing  ReadableFormatter with ANSI level colours

LOG_LEVEL overrides the level (INFO in production, DEBUG otherwise).
Workflow services attach ids through ``extra={...}``; only the keys in
``CONTEXT_KEYS`` are carried into the output.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_KEYS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "user_id",
    "actor_id",
    "target_id",
    "template_id",
    "assignment_id",
    "parent_assignment_id",
    "from_assignment_id",
    "submission_id",
    "recipient",
    "template",
    "entries",
    "created_count",
    "skipped_count",
    "reminded_count",
    "recipients",
    "file_id",
    "stored_name",
)

# Shown inline by the readable formatter
_INLINE_KEYS = ("assignment_id", "submission_id", "template_id", "actor_id")

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """Single-line JSON for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        payload.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Terminal output for local work."""

    LEVEL_COLOURS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[34m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        line = f"{stamp} {colour}{record.levelname[0]}{self.RESET} [{record.name}] {record.getMessage()}"

        ctx = _context(record)
        inline = [f"{k}={ctx[k]}" for k in _INLINE_KEYS if k in ctx]
        if "duration_ms" in ctx:
            inline.append(f"{ctx['duration_ms']:.0f}ms")
        if inline:
            line += "  " + " ".join(inline)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for *app*'s environment. Safe to call repeatedly."""
    testing = app.config.get("TESTING", False)
    production = not testing and not app.config.get("DEBUG", False)

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, json=%s)", level_name, production)
