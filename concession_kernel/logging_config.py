"""
JSON-lines logging for every concession package.

Loggers live under the ``concession_kernel`` namespace; each record is
rendered as one JSON object carrying the request fields bound in
:class:`LogContext` (tenant, order, product, ...) plus any ``extra=``
values supplied at the call site.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

NAMESPACE = "concession_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})
_fields: ContextVar[Mapping[str, str]] = ContextVar("concession_log_fields", default=_EMPTY)


class LogContext:
    """Request-scoped fields stamped onto every record; safe across threads and tasks."""

    FIELDS = ("correlation_id", "tenant_id", "actor_id", "order_id", "product_id", "trace_id")

    @classmethod
    def _merged(cls, values: Mapping[str, Any]) -> Mapping[str, str]:
        current = dict(_fields.get())
        current.update(
            (name, str(value))
            for name, value in values.items()
            if name in cls.FIELDS and value is not None
        )
        return MappingProxyType(current)

    @classmethod
    def set(
        cls,
        *,
        correlation_id: str | None = None,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        order_id: str | None = None,
        product_id: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        """Overwrite the given fields; ``None`` leaves a field as it was."""
        _fields.set(cls._merged(dict(
            correlation_id=correlation_id,
            tenant_id=tenant_id,
            actor_id=actor_id,
            order_id=order_id,
            product_id=product_id,
            trace_id=trace_id,
        )))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_fields.get())

    @classmethod
    def clear(cls) -> None:
        _fields.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Scope fields to a ``with`` block; unknown names and ``None`` are ignored."""
        token = _fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            _fields.reset(token)


_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    # Domain errors expose their structured payload as public attributes.
    fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name not in ("args", "code")
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then context and extras."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED:
                line.setdefault(name, value)
        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)
        return json.dumps(line, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{NAMESPACE}.{name}")


_state_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the namespace logger.

    Only the first call takes effect until :func:`reset_logging` runs, so
    scripts and the facade may both call it safely.
    """
    global _installed
    with _state_lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())
        namespace = logging.getLogger(NAMESPACE)
        namespace.setLevel(level)
        namespace.propagate = False
        namespace.addHandler(_installed)


def reset_logging() -> None:
    """Detach the installed handler so the next configure call applies (tests)."""
    global _installed
    with _state_lock:
        namespace = logging.getLogger(NAMESPACE)
        namespace.handlers.clear()
        namespace.setLevel(logging.WARNING)
        _installed = None
