"""
RetryService -- bounded exponential-backoff retry for persistence work.

Responsibility:
    Runs a unit of database work (a callable that opens and commits its own
    transaction) and re-runs it when the persistence layer reports a
    transient failure.  Distinguishes a pool that is still connecting
    (transient, retried) from one that is disconnected (fatal, surfaced at
    once).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Used by the facade around every read and write, and by the background
    maintenance workers.

Invariants enforced:
    - Bounded attempts: critical writes get at least 5 attempts, reads at
      least 3 (floors enforced by RetryPolicy).
    - Deadline: no attempt starts once the elapsed time plus the next backoff
      would cross ``deadline_seconds``.
    - Only transient database errors are retried.  Domain errors
      (ConcessionError) propagate on the first occurrence.

Failure modes:
    - PersistenceTimeoutError (TIMEOUT) when the deadline is reached or the
      last failure was a statement/pool timeout.
    - UnavailableError (UNAVAILABLE) when attempts run out while the pool is
      connecting, or immediately when it is disconnected.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError

from concession_kernel.db.engine import PoolState, pool_state
from concession_kernel.exceptions import PersistenceTimeoutError, UnavailableError
from concession_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

MIN_CRITICAL_WRITE_ATTEMPTS = 5
MIN_READ_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff curve for one class of operation."""

    max_attempts: int
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 3.0
    deadline_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be positive")

    @classmethod
    def critical_write(cls, attempts: int = MIN_CRITICAL_WRITE_ATTEMPTS, **kwargs) -> RetryPolicy:
        return cls(max_attempts=max(attempts, MIN_CRITICAL_WRITE_ATTEMPTS), **kwargs)

    @classmethod
    def read(cls, attempts: int = MIN_READ_ATTEMPTS, **kwargs) -> RetryPolicy:
        return cls(max_attempts=max(attempts, MIN_READ_ATTEMPTS), **kwargs)

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt ``attempt + 1`` (attempt is 1-based)."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, PoolTimeoutError):
        return True
    text = str(exc).lower()
    return "timeout" in text or "canceling statement" in text or "database is locked" in text


class RetryService:
    """
    Executes callables under a RetryPolicy.

    Contract:
        ``fn`` must be a complete unit of work: it opens its own session and
        either commits or rolls back before returning or raising.  Re-running
        it after a failure must therefore be safe.

    Guarantees:
        - At most ``policy.max_attempts`` invocations of ``fn``.
        - Each retry is logged with attempt number, delay and pool state.

    Non-goals:
        - Does NOT retry domain errors or programming errors.
    """

    def __init__(
        self,
        pool_reader: Callable[[], PoolState] = pool_state,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._pool_reader = pool_reader
        self._sleep = sleep
        self._monotonic = monotonic

    def run(self, operation: str, fn: Callable[[], T], policy: RetryPolicy) -> T:
        """
        Run ``fn`` with bounded retries.

        Raises:
            PersistenceTimeoutError: deadline reached or last failure timed out.
            UnavailableError: pool disconnected, or still connecting when the
                attempt budget ran out.
        """
        started = self._monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = fn()
                if attempt > 1:
                    logger.info(
                        "retry_succeeded",
                        extra={"operation": operation, "attempts": attempt},
                    )
                return result
            except (OperationalError, PoolTimeoutError, DBAPIError) as exc:
                if isinstance(exc, DBAPIError) and not isinstance(exc, OperationalError) \
                        and not exc.connection_invalidated:
                    raise
                state = self._pool_reader()
                if state == PoolState.DISCONNECTED:
                    raise UnavailableError(operation, "connection pool is disconnected") from exc

                elapsed = self._monotonic() - started
                delay = policy.delay_for(attempt)
                logger.warning(
                    "transient_persistence_failure",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "pool_state": state.value,
                        "elapsed_seconds": round(elapsed, 3),
                        "error": str(exc).splitlines()[0] if str(exc) else type(exc).__name__,
                    },
                )

                if elapsed + delay >= policy.deadline_seconds:
                    raise PersistenceTimeoutError(operation, policy.deadline_seconds, attempt) from exc
                if attempt >= policy.max_attempts:
                    if state == PoolState.CONNECTING and not _is_timeout(exc):
                        raise UnavailableError(operation, "connection pool not ready") from exc
                    raise PersistenceTimeoutError(operation, policy.deadline_seconds, attempt) from exc

                self._sleep(delay)
