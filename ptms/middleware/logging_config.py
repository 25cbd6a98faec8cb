"""
Structured logging configuration.

- Development: one readable line per record, workflow ids appended
- Production: one JSON object per record
- Every record carries the request id and acting user when emitted inside
  a request, so service-level transition logs can be joined to access logs.
- Log level: LOG_LEVEL env variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context, has_request_context

# Request fields stamped by the timing middleware
_REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

# Workflow identifiers services pass through ``extra=``
_WORKFLOW_KEYS = ("user_id", "application_id", "document_id", "session_id", "event_type")


class WorkflowContextFilter(logging.Filter):
    """Fill ``request_id`` / ``user_id`` from the current request when absent."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not (has_app_context() and has_request_context()):
            return True
        if getattr(record, "request_id", None) is None:
            record.request_id = getattr(g, "request_id", None)
        if getattr(record, "user_id", None) is None:
            actor = getattr(g, "actor", None)
            record.user_id = actor.user_id if actor is not None else None
        return True


class JSONFormatter(logging.Formatter):
    """One JSON document per record for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in _REQUEST_KEYS + _WORKFLOW_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = []
        for key in ("application_id", "document_id", "session_id"):
            value = getattr(record, key, None)
            if value:
                tags.append(f"{key.split('_')[0]}={str(value)[:8]}")
        event = getattr(record, "event_type", None)
        if event:
            tags.append(f"<{event}>")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"[{duration:.0f}ms]")
        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        if tags:
            line += " " + " ".join(tags)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    JSON when the app is neither in DEBUG nor TESTING, readable otherwise.
    Existing root handlers are replaced so repeated factory calls (tests)
    do not duplicate output.
    """
    testing = app.config.get("TESTING", False)
    as_json = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if as_json else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if as_json else ReadableFormatter())
    handler.addFilter(WorkflowContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if as_json else "readable")
