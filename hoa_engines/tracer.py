"""
hoa_engines.tracer -- LEDGER_ENGINE_TRACE records for pure engine calls.

``@traced_engine`` wraps an engine entry point and logs one
``LEDGER_ENGINE_TRACE`` record per call with the engine name and version,
a fingerprint of the selected keyword inputs, the duration and the outcome.
Two previews of the same payment against the same bills log the same
fingerprint, which is how a preview is matched to the record that followed.

Fingerprints hash a canonical JSON rendering of the inputs: dict keys are
sorted, dataclasses (bills, payment entries) are expanded field by field,
amounts and dates are rendered as text.  The digest is SHA-256 truncated
to 16 hex characters.

A call that raises still logs its trace, with ``outcome="error"`` and the
error code when the exception carries one, and the exception propagates.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from hoa_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_MESSAGE = "LEDGER_ENGINE_TRACE"


def _canonical(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, date)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-char SHA-256 prefix over the selected kwargs.  Missing fields count as None."""
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    canonical = json.dumps(selected, sort_keys=True, default=_canonical, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator emitting LEDGER_ENGINE_TRACE around a pure engine call."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            )
            trace: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "function": func.__qualname__,
            }

            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["outcome"] = "error"
                trace["error_code"] = getattr(exc, "code", type(exc).__name__)
                raise
            else:
                trace["outcome"] = "ok"
                return result
            finally:
                trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
                _logger.info(TRACE_MESSAGE, extra=trace)

        return wrapper

    return decorator
