"""
Structured JSON logging for the inventory kernel.

Every record leaves as one JSON line carrying the event name as
``message``, whatever the caller passed in ``extra``, and the request
scoped fields held in LogContext (correlation, tenant, product, actor,
batch job).  Kernel exceptions attached with ``exc_info`` contribute
their public attributes as ``exc_<name>`` fields, so an
InsufficientStockError shows up with ``exc_requested`` and
``exc_available`` next to ``exc_code``.
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
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from fractions import Fraction
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

_CONTEXT_FIELDS = (
    "correlation_id",
    "organization_id",
    "product_id",
    "actor_id",
    "job_name",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("inventory_log_context", default=_EMPTY)


def _merged(current: Mapping[str, str], fields: Mapping[str, Any]) -> Mapping[str, str]:
    updated = dict(current)
    for name, value in fields.items():
        if name not in _CONTEXT_FIELDS:
            raise TypeError(f"unknown log context field: {name}")
        if value is not None:
            updated[name] = str(value)
    return MappingProxyType(updated)


class LogContext:
    """
    Request-scoped log fields, safe across threads and asyncio tasks.

    The fields live in one ContextVar holding a read-only mapping, so a
    worker thread started by the scheduler sees an empty context rather
    than whatever the main thread had bound.
    """

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields. None values leave the field unchanged."""
        _context.set(_merged(_context.get(), fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """
        Bind fields for the duration of a ``with`` block.

        Values are stringified so UUIDs can be passed directly; None
        values are skipped.  The previous context is restored on exit,
        including when the block raises.
        """
        token = _context.set(_merged(_context.get(), fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    # Quantities stay exact in the log line
    if isinstance(value, (UUID, Decimal, Fraction)):
        return str(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name in ("args", "code"):
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


_ROOT_LOGGER = "inventory_kernel"


def get_logger(name: str) -> logging.Logger:
    """Return ``inventory_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``inventory_kernel`` logger.

    Only the first call in a process has any effect; reset_logging()
    re-arms it.  Records do not propagate to the root logger, so host
    applications keep control of their own handlers.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        kernel_logger = logging.getLogger(_ROOT_LOGGER)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        kernel_logger.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow configure_logging() to run again. Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
        kernel_logger = logging.getLogger(_ROOT_LOGGER)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
