"""
settlement_engines.tracer -- Engine invocation tracer emitting SETTLEMENT_ENGINE_TRACE.

Responsibility:
    Provide ``@traced_engine``, a decorator that wraps pure engine calls
    with one structured trace record: engine name and version, a
    deterministic fingerprint of selected inputs, and the duration.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; introduces no I/O into the engines it wraps.

Invariants enforced:
    - The fingerprint is deterministic: dict keys are sorted, sequences keep
      their order, Decimals keep their exponent, dataclasses are expanded
      field by field.

Failure modes:
    - Fingerprint fields absent from the call are recorded as "null".

Usage:
    from settlement_engines.tracer import traced_engine

    @traced_engine("stock_allocation", "1.0", fingerprint_fields=("quantity",))
    def allocate(self, quantity, sources):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

# Own namespace under the kernel root so the kernel's handler picks it up
# without the engines importing kernel logging.
_logger = logging.getLogger("settlement_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string representation of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (bool, int, Decimal)):
        return str(value)
    if isinstance(value, str):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named arguments."""
    parts = [
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    ]
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits SETTLEMENT_ENGINE_TRACE for pure engine calls.

    Args:
        engine_name: Engine identifier (e.g., "bin_packing").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Parameter names to include in the input
            fingerprint.  Positional and keyword arguments are both
            resolved against the wrapped function's signature.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "SETTLEMENT_ENGINE_TRACE",
                extra={
                    "trace_type": "SETTLEMENT_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
