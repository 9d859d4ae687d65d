"""
Structured JSON logging for the roster packages.

Every record is written as one JSON line: the ``ts`` / ``level`` /
``logger`` / ``message`` envelope, then the request fields bound through
``LogContext`` (correlation_id, actor_id, batch_id, log_id), then the
record's ``extra`` data.  A roster error logged with ``exc_info`` adds its
``code`` and its structured attributes as ``exc_*`` keys.

Bound fields live in ContextVars.  Fan-out worker threads start with an
empty context, so ``settle_all`` wraps each call in ``LogContext.propagate``.
"""

__all__ = [
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
from contextlib import contextmanager
from contextvars import ContextVar, copy_context
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Callable, Iterator, TypeVar

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Request-scoped fields
# ---------------------------------------------------------------------------

_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"roster_log_{name}", default=None)
    for name in ("correlation_id", "actor_id", "batch_id", "log_id")
}


def _field(name: str) -> ContextVar[str | None]:
    try:
        return _FIELDS[name]
    except KeyError:
        raise ValueError(f"Unknown log context field: {name}") from None


class LogContext:
    """Fields merged into every record emitted in the current context."""

    @staticmethod
    def get_all() -> dict[str, str]:
        """Bound fields that currently have a value."""
        values = {name: var.get() for name, var in _FIELDS.items()}
        return {name: value for name, value in values.items() if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _FIELDS.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Bind fields for the duration of the block.

        ``None`` values leave the current binding alone.  On exit every
        field goes back to what it was on entry.
        """
        tokens = [
            (_field(name), _field(name).set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def propagate(fn: Callable[[], T]) -> Callable[[], T]:
        """Wrap ``fn`` to run inside a snapshot of the caller's context."""
        ctx = copy_context()

        def _run() -> T:
            return ctx.run(fn)

        return _run


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _to_json(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            # batch_id, status, log_ids ... of RosterKernelError subclasses
            for key, value in vars(exc).items():
                if not key.startswith("_"):
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "roster"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``roster.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the ``roster`` logger; later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging`` (test isolation)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
