"""
Debug tracing for the pure calculation engines.

``@traced_engine`` logs one ``ENGINE_TRACE`` record per call with the
engine name and version, the elapsed time and a short digest of chosen
keyword arguments, so two recomputes of the same ledger (or two pricings
of the same line) can be paired up when reading logs.  When DEBUG is off
the wrapped function is called straight through.
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

_logger = logging.getLogger("concession_kernel.engines.tracer")


def _stable_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _stable_text(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(map(_stable_text, value)) + "]"
    if hasattr(value, "value") and hasattr(value, "name"):
        # Enum members digest by value so renaming a member keeps digests stable.
        return _stable_text(value.value)
    return str(value)


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: Mapping[str, Any]) -> str:
    """First 16 hex digits of a SHA-256 over ``name=value`` for each named kwarg."""
    digest = hashlib.sha256()
    digest.update("|".join(f"{name}={_stable_text(kwargs.get(name))}" for name in fields).encode())
    return digest.hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def wrap(func: Callable) -> Callable:
        @functools.wraps(func)
        def call(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000
            _logger.debug(
                "ENGINE_TRACE",
                extra={
                    "trace_type": "ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": (
                        compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
                    ),
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
            return result

        return call

    return wrap
