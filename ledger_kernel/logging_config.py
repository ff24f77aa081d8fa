"""
Structured JSON logging for the ledger.

Every record is one JSON object per line. The envelope carries the ledger
context bound with ``LogContext.bind`` (tenant, actor, source document,
journal entry) so a posting can be followed across the journal, the
document adapters and the scheduler without threading ids through every
log call. Event-specific fields go in ``extra=`` and land at the top level.

A ``LedgerError`` attached via ``exc_info`` is flattened into ``error_*``
fields (code, category and its public attributes) so operators can filter
on ``error_code`` without parsing tracebacks.
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
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

LEDGER_LOGGER = "ledger_kernel"

_CONTEXT_FIELDS = frozenset({
    "correlation_id",
    "tenant_id",
    "actor_id",
    "source_type",
    "source_id",
    "entry_id",
})

_context: ContextVar[dict[str, str]] = ContextVar("ledger_log_context", default={})


class LogContext:
    """Ledger ids bound to the current thread or task for log enrichment."""

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Add ``fields`` to the log context for the duration of the block.

        None values are ignored; unknown field names raise ``TypeError`` so
        a typo cannot silently drop context.
        """
        unknown = set(fields) - _CONTEXT_FIELDS
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        token = _context.set(merged)
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})


def _json_default(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


# LogRecord attributes that are not caller-supplied extras.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["error_code"] = code
        fields["error_category"] = getattr(exc, "category", None)
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields.setdefault(f"error_{name}", value)
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ledger namespace, e.g. ``get_logger("journal")``."""
    return logging.getLogger(f"{LEDGER_LOGGER}.{name}")


_setup_lock = threading.Lock()
_setup_done = False


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ledger logger.

    Only the first call has any effect; later calls (every engine init
    calls this) leave the existing handler and level alone.
    """
    global _setup_done
    with _setup_lock:
        if _setup_done:
            return
        _setup_done = True

        ledger_logger = logging.getLogger(LEDGER_LOGGER)
        ledger_logger.setLevel(level)
        ledger_logger.propagate = False
        out = handler or logging.StreamHandler(stream or sys.stderr)
        out.setFormatter(StructuredFormatter())
        ledger_logger.addHandler(out)


def reset_logging() -> None:
    """Detach handlers so configure_logging() applies again. Test use only."""
    global _setup_done
    with _setup_lock:
        _setup_done = False
        ledger_logger = logging.getLogger(LEDGER_LOGGER)
        ledger_logger.handlers.clear()
        ledger_logger.setLevel(logging.WARNING)
