"""Structured logging configuration for dynauth.

Provides JSON and text formatters, a reconcile-context filter that
injects the active controller, object and reconcile id into every log
record, and a one-call ``configure_logging`` function driven by config
settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from dynauth.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
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
        # Our own well-known context attributes (handled explicitly):
        "controller",
        "object",
        "reconcile_id",
    }
)

_reconcile_context: contextvars.ContextVar[dict[str, str] | None] = contextvars.ContextVar(
    "dynauth_reconcile_context",
    default=None,
)


@contextlib.contextmanager
def reconcile_scope(controller: str, obj: object) -> Iterator[str]:
    """Tag every record logged inside the block with the reconcile identity.

    Yields the generated reconcile id.
    """
    reconcile_id = uuid.uuid4().hex[:12]
    token = _reconcile_context.set(
        {"controller": controller, "object": str(obj), "reconcile_id": reconcile_id},
    )
    try:
        yield reconcile_id
    finally:
        _reconcile_context.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        # Reconcile context (set by ReconcileContextFilter)
        for attr in ReconcileContextFilter.CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value not in (None, "-"):
                data[attr] = value

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development / console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(controller)s %(object)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class ReconcileContextFilter(logging.Filter):
    """Inject the active reconcile context into every log record.

    Adds ``controller``, ``object`` and ``reconcile_id`` from the
    context entered with :func:`reconcile_scope`, otherwise falls back
    to ``"-"``.
    """

    CONTEXT_ATTRS = ("controller", "object", "reconcile_id")

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _reconcile_context.get() or {}
        for attr in self.CONTEXT_ATTRS:
            if not hasattr(record, attr):
                setattr(record, attr, context.get(attr, "-"))
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``dynauth`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.
    Returns the root ``dynauth`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("dynauth")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ReconcileContextFilter())
    root.addHandler(console)

    # Request lines from the health endpoint are noise at INFO.
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    return root
