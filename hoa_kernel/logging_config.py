"""
Structured JSON logging for the HOA ledger.

Every record is written as one JSON object per line.  Request-scoped fields
(the unit being paid, the transaction being deleted, the billing module)
are carried in context variables and merged into each record, so service
code logs an event name plus only the fields specific to that event:

    logger = get_logger("services.payment")
    with LogContext.bind(unit_id="203", billing_module="water"):
        logger.info("payment_record_committed", extra={"transaction_id": txn_id})

Exceptions logged with ``exc_info`` are rendered under an ``error`` object.
For ``HOALedgerError`` subclasses that object also carries the error
``code`` and the error's public attributes (``unit_id``, ``expected_balance``
and so on).
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
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

_LOGGER_PREFIX = "hoa_kernel"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "unit_id",
    "transaction_id",
    "billing_module",
    "actor_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"hoa_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


def _as_text(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class LogContext:
    """Request-scoped log fields, safe across threads and asyncio tasks."""

    fields = _CONTEXT_FIELDS

    @staticmethod
    def _var(name: str) -> ContextVar[str | None]:
        try:
            return _context_vars[name]
        except KeyError:
            raise ValueError(f"Unknown log context field: {name!r}") from None

    @classmethod
    def set(cls, **values: Any) -> None:
        """Set context fields.  ``None`` values leave a field unchanged."""
        for name, value in values.items():
            if value is not None:
                cls._var(name).set(_as_text(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens = [
            (cls._var(name), cls._var(name).set(_as_text(value)))
            for name, value in values.items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    """Serialize the value types the ledger logs: amounts, dates, ids, enums."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def _error_payload(exc: BaseException) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": type(exc).__name__,
        "message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        payload["code"] = code
        for key, value in vars(exc).items():
            if not key.startswith("_") and key not in payload:
                payload[key] = value
    if exc.__cause__ is not None:
        payload["cause"] = f"{type(exc.__cause__).__name__}: {exc.__cause__}"
    return payload


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _error_payload(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the hoa_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the hoa_kernel logger.  Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelNamesMapping()[level.upper()]

    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.setLevel(level)
    ledger_logger.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    ledger_logger.addHandler(target)


def reset_logging() -> None:
    """Remove handlers and allow ``configure_logging`` to run again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.handlers.clear()
    ledger_logger.setLevel(logging.WARNING)
