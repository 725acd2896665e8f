"""
Logging setup for the workflow service.

Every record gets the current request id (from ``g.request_id``) stamped
on it, so service-layer log lines about an application or a transition can
be joined back to the HTTP request that caused them.

LOG_FORMAT selects the output ("json" or "readable"); it defaults to JSON
outside debug/testing. LOG_LEVEL overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

# Record attributes emitted when set via ``extra=`` or the context filter
_CONTEXT_FIELDS = ("request_id", "application_id", "transition_id")
_HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

_NOISY_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


class RequestContextFilter(logging.Filter):
    """Copy ``g.request_id`` onto records that do not carry one already."""

    def filter(self, record):
        if getattr(record, "request_id", None) is None and has_app_context():
            record.request_id = g.get("request_id")
        return True


def _context_of(record):
    return {
        key: getattr(record, key)
        for key in _CONTEXT_FIELDS + _HTTP_FIELDS
        if getattr(record, key, None) not in (None, "")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.lineno}",
        }
        entry.update(_context_of(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = " ".join(
            f"{key}={getattr(record, key)}"
            for key in _CONTEXT_FIELDS
            if getattr(record, key, None)
        )
        line = f"{color}{ts} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if tags:
            line += f" ({tags})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger for *app*."""
    quiet = app.config.get("DEBUG", False) or app.config.get("TESTING", False)

    fmt = (os.getenv("LOG_FORMAT") or ("readable" if quiet else "json")).lower()
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if quiet else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    # Replace rather than stack handlers when the factory runs repeatedly
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
