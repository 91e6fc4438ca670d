"""
Structured JSON logging for the KIISHA job subsystem.

Every record under the ``kiisha`` logger is rendered as one JSON line.  Job
services bind the job they are working on (``job_id``, ``correlation_id``),
the acting user (``actor_id``) or the schedule being evaluated
(``schedule_id``) with ``LogContext.bind``; the bound fields are stamped on
every record emitted inside the block, including records from the job log
and the lower layers it calls.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

CONTEXT_FIELDS = ("job_id", "correlation_id", "actor_id", "schedule_id")

_LOGGER_PREFIX = "kiisha"

_context: ContextVar[dict[str, str]] = ContextVar("kiisha_log_context", default={})


def _checked(fields: dict[str, str | None]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {', '.join(sorted(unknown))}")
    return {k: str(v) for k, v in fields.items() if v is not None}


class LogContext:
    """Job-scoped fields attached to every record (contextvar-backed)."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Merge non-None ``fields`` into the current context."""
        _context.set({**_context.get(), **_checked(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Set ``fields`` for the duration of the block, then restore."""
        token = _context.set({**_context.get(), **_checked(fields)})
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # KiishaError subclasses keep their structured data as attributes.
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, then the
    bound context, then ``extra`` fields (which win on a clash)."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        out.update(_context.get())
        out.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in ("ts", "level", "logger")
        )

        if record.exc_info and record.exc_info[1] is not None:
            out.update(_exception_fields(record.exc_info[1]))
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger ``kiisha.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``kiisha`` logger.  Later calls are no-ops
    until ``reset_logging()``."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(target)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` again (tests)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
