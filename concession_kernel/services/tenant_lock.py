"""
TenantLockRegistry -- tenant-scoped and ledger-cell mutual exclusion.

Responsibility:
    Hands out in-process locks that serialize mutating work:

    * ``tenant(...)`` -- exclusive tenant-wide hold, taken by order creates,
      status changes and item cancellations so that order numbers stay
      gap-free and strictly increasing and the order/ledger pair is written
      by one writer at a time;
    * ``cells(tenant, keys)`` -- shared tenant hold plus one lock per
      ledger cell, taken by direct ledger writes so that writes on
      independent ``(family, product, year, month)`` cells run in parallel.

Architecture position:
    Kernel > Services -- imperative shell infrastructure, used by the facade.

Invariants enforced:
    - Every lock is acquired before the caller opens its database
      transaction and released after it closes, so in-process waits never
      nest inside a database lock wait.
    - Cell locks are acquired in sorted key order.
    - Bounded waits: acquisition honours a timeout and raises
      PersistenceTimeoutError instead of blocking forever.
    - Locks are released on exit, including on exceptions.

Failure modes:
    - PersistenceTimeoutError (TIMEOUT) when a lock cannot be acquired in time.

Non-goals:
    - Cross-process exclusion.  A multi-process deployment relies on the
      database row lock taken by SequenceService for numbering.
"""

from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Hashable, Iterable, Iterator

from concession_kernel.exceptions import PersistenceTimeoutError
from concession_kernel.logging_config import get_logger

logger = get_logger("services.tenant_lock")


class _TenantGate:
    """Shared/exclusive gate for one tenant; exclusive holds are re-entrant."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer: int | None = None
        self._writer_depth = 0
        self._writers_waiting = 0

    def acquire_exclusive(self, timeout: float) -> bool:
        me = threading.get_ident()
        deadline = time.monotonic() + timeout
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return True
            self._writers_waiting += 1
            try:
                while self._writer is not None or self._readers:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0 or not self._cond.wait(remaining):
                        if self._writer is not None or self._readers:
                            return False
                self._writer = me
                self._writer_depth = 1
                return True
            finally:
                self._writers_waiting -= 1

    def release_exclusive(self) -> None:
        with self._cond:
            self._writer_depth -= 1
            if self._writer_depth == 0:
                self._writer = None
                self._cond.notify_all()

    def acquire_shared(self, timeout: float) -> bool:
        me = threading.get_ident()
        deadline = time.monotonic() + timeout
        with self._cond:
            if self._writer == me:
                self._readers += 1
                return True
            while self._writer is not None or self._writers_waiting:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not self._cond.wait(remaining):
                    if self._writer is not None or self._writers_waiting:
                        return False
            self._readers += 1
            return True

    def release_shared(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()


class TenantLockRegistry:
    """Registry of tenant gates and ledger-cell locks."""

    def __init__(self, timeout_seconds: float = 30.0):
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._gates: dict[str, _TenantGate] = {}
        self._cells: dict[Hashable, threading.RLock] = {}

    def _gate(self, tenant_id) -> _TenantGate:
        key = str(tenant_id)
        with self._guard:
            gate = self._gates.get(key)
            if gate is None:
                gate = self._gates[key] = _TenantGate()
            return gate

    def _cell(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._cells.get(key)
            if lock is None:
                lock = self._cells[key] = threading.RLock()
            return lock

    def _timed_out(self, key: Hashable, operation: str) -> PersistenceTimeoutError:
        logger.warning(
            "lock_acquire_timeout",
            extra={"lock_key": str(key), "operation": operation, "timeout_seconds": self._timeout},
        )
        return PersistenceTimeoutError(f"{operation}:lock", self._timeout, 1)

    @contextmanager
    def tenant(self, tenant_id, operation: str = "tenant_write") -> Iterator[None]:
        """Hold the tenant exclusively."""
        gate = self._gate(tenant_id)
        if not gate.acquire_exclusive(self._timeout):
            raise self._timed_out(("tenant", str(tenant_id)), operation)
        try:
            yield
        finally:
            gate.release_exclusive()

    @contextmanager
    def cells(
        self,
        tenant_id,
        keys: Iterable[tuple],
        operation: str = "ledger_write",
    ) -> Iterator[None]:
        """Hold the tenant shared and every listed cell lock."""
        gate = self._gate(tenant_id)
        if not gate.acquire_shared(self._timeout):
            raise self._timed_out(("tenant", str(tenant_id)), operation)
        try:
            ordered = sorted({(str(tenant_id),) + tuple(str(p) for p in key) for key in keys})
            with ExitStack() as stack:
                for key in ordered:
                    lock = self._cell(key)
                    if not lock.acquire(timeout=self._timeout):
                        raise self._timed_out(key, operation)
                    stack.callback(lock.release)
                yield
        finally:
            gate.release_shared()
