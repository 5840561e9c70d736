"""Structured logging configuration for acmesync.

Provides JSON and text formatters, a context filter that guarantees
``request_id`` and ``issuer`` on every record, the ``acmesync.events``
transition logger and a one-call ``configure_logging`` driven by the
``logging`` config section.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmesync.config.settings import LoggingSettings

ROOT_LOGGER = "acmesync"
EVENTS_LOGGER = "acmesync.events"
AUDIT_LOGGER = "acmesync.audit"

# Attributes of a plain LogRecord; anything else is caller-supplied extra.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter.

    Each record becomes one JSON object holding the standard fields plus
    every *extra* attribute.  Context attributes that are still at their
    ``"-"`` placeholder are left out.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        data: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in ContextFilter.CONTEXT_ATTRS and value == "-":
                continue
            data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(issuer)s %(request_id)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


class ContextFilter(logging.Filter):
    """Default ``request_id`` and ``issuer`` to ``"-"`` so formatters can rely on them."""

    CONTEXT_ATTRS = frozenset({"request_id", "issuer"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        for attr in self.CONTEXT_ATTRS:
            if getattr(record, attr, None) is None:
                setattr(record, attr, "-")
        return True


def log_transition(
    request_id: str,
    issuer: str,
    from_state: str,
    to_state: str,
    error: dict | None = None,
) -> None:
    """Emit the structured state-transition event.

    Goes to ``acmesync.events`` and, when auditing is on, to the audit log.
    """
    extra = {
        "request_id": request_id,
        "issuer": issuer,
        "from_state": from_state,
        "to_state": to_state,
        "error": error,
    }
    level = logging.WARNING if error else logging.INFO
    message = "request %s: %s -> %s" % (request_id, from_state, to_state)  # noqa: UP031
    logging.getLogger(EVENTS_LOGGER).log(level, message, extra=extra)
    audit = logging.getLogger(AUDIT_LOGGER)
    if audit.handlers:
        audit.info(message, extra=extra)


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``acmesync`` logger hierarchy from settings.

    Replaces any bootstrap handlers and sets up the optional audit log.
    Returns the root ``acmesync`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()
    ctx_filter = ContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    logging.getLogger(EVENTS_LOGGER).setLevel(logging.INFO)

    audit = logging.getLogger(AUDIT_LOGGER)
    audit.handlers.clear()
    # Audit records are written only to the audit file.
    audit.propagate = False
    if settings.audit.enabled and settings.audit.file:
        audit.setLevel(logging.INFO)
        try:
            fh = RotatingFileHandler(
                settings.audit.file,
                maxBytes=settings.audit.max_file_size_bytes,
                backupCount=settings.audit.backup_count,
            )
        except OSError as exc:
            root.warning("Could not open audit log file %s: %s", settings.audit.file, exc)
        else:
            fh.setFormatter(StructuredFormatter())
            fh.addFilter(ctx_filter)
            audit.addHandler(fh)

    for lib in ("werkzeug", "urllib3", "kubernetes"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
