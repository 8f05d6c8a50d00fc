"""
Logging setup for the PMS API.

One stderr handler on the root logger:
    production   JSONFormatter, one object per line
    development  ReadableFormatter, colored level + context suffix

``RequestContextFilter`` stamps the current request id, caller and
project/report ids onto every record emitted while a request is active, so
a policy denial logged deep in the lifecycle engine carries the same ids as
the request-timing line. Values passed via ``extra=`` win over the stamp.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Report workflow context, in output order
CONTEXT_KEYS = (
    "request_id",
    "user_id",
    "project_id",
    "report_id",
    "old_status",
    "new_status",
    "reason",
)

# Set by the timing middleware on request lines
REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr")

_NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine")


def record_context(record: logging.LogRecord) -> dict:
    """Context/request attributes present on ``record``, without Nones."""
    out = {}
    for key in CONTEXT_KEYS + REQUEST_KEYS:
        val = getattr(record, key, None)
        if val is not None:
            out[key] = val
    return out


class RequestContextFilter(logging.Filter):
    """Copy request-scoped ids from ``flask.g`` / view args onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        actor = getattr(g, "actor", None)
        view_args = request.view_args or {}
        stamped = {
            "request_id": getattr(g, "request_id", None),
            "user_id": actor.id if actor is not None else None,
            "project_id": view_args.get("project_id"),
            "report_id": view_args.get("report_id"),
        }
        for key, val in stamped.items():
            if val is not None and getattr(record, key, None) is None:
                setattr(record, key, val)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(record_context(record))
        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.module}:{record.lineno}"
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO  pms.services.report_lifecycle: ... [report=.. user=..]``"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    # Shown in the suffix; request lines already print method/path/status
    SUFFIX_KEYS = ("report_id", "user_id", "reason")

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<7}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"

        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        parts = [
            f"{key.removesuffix('_id')}={getattr(record, key)}"
            for key in self.SUFFIX_KEYS
            if getattr(record, key, None) is not None
        ]
        if parts:
            line += " [" + " ".join(parts) + "]"

        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app creation."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = str(app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(
        JSONFormatter() if is_prod else ReadableFormatter(color=sys.stderr.isatty())
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "json" if is_prod else "readable")
