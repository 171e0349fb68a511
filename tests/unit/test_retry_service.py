"""
Tests for RetryService and RetryPolicy.

Validates:
- Attempt floors for critical writes and reads
- Exponential backoff capped at max_delay_seconds
- Transient failures retried, domain and programming errors surfaced at once
- Deadline and attempt exhaustion map to TIMEOUT or UNAVAILABLE
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from concession_kernel.db.engine import PoolState
from concession_kernel.exceptions import (
    OrderAlreadyCancelledError,
    PersistenceTimeoutError,
    UnavailableError,
)
from concession_kernel.services.retry_service import RetryPolicy, RetryService


def _operational(message: str) -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def monotonic(self) -> float:
        return self.now


class Flaky:
    """Fails with ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int, error: Exception):
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    def test_floors(self):
        assert RetryPolicy.critical_write(2).max_attempts == 5
        assert RetryPolicy.read(1).max_attempts == 3
        assert RetryPolicy.critical_write(9).max_attempts == 9

    def test_backoff(self):
        policy = RetryPolicy(max_attempts=10, base_delay_seconds=0.5, max_delay_seconds=3)
        assert [policy.delay_for(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3, 3]

    @pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"max_attempts": 3, "deadline_seconds": 0}])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryService:
    def setup_method(self):
        self.time = FakeTime()
        self.state = PoolState.CONNECTED
        self.service = RetryService(pool_reader=lambda: self.state, sleep=self.time.sleep, monotonic=self.time.monotonic)

    def test_success_after_transient_failures(self, captured_logs):
        fn = Flaky(2, _operational("database is locked"))

        assert self.service.run("create_order", fn, RetryPolicy.critical_write()) == "ok"
        assert fn.calls == 3
        assert self.time.sleeps == [0.1, 0.2]
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("transient_persistence_failure") == 2
        assert "retry_succeeded" in messages

    def test_attempts_exhausted_on_timeout(self):
        fn = Flaky(10, _operational("canceling statement due to statement timeout"))
        with pytest.raises(PersistenceTimeoutError) as exc_info:
            self.service.run("get_order", fn, RetryPolicy.read())
        assert fn.calls == 3
        assert exc_info.value.retriable

    def test_connecting_pool_exhausted_is_unavailable(self):
        self.state = PoolState.CONNECTING
        fn = Flaky(10, _operational("could not connect to server"))
        with pytest.raises(UnavailableError):
            self.service.run("get_order", fn, RetryPolicy.read())
        assert fn.calls == 3

    def test_disconnected_pool_fails_immediately(self):
        self.state = PoolState.DISCONNECTED
        fn = Flaky(10, _operational("server closed the connection"))
        with pytest.raises(UnavailableError):
            self.service.run("create_order", fn, RetryPolicy.critical_write())
        assert fn.calls == 1

    def test_deadline_stops_retrying(self):
        policy = RetryPolicy(max_attempts=50, base_delay_seconds=4, max_delay_seconds=8, deadline_seconds=20)
        fn = Flaky(50, _operational("database is locked"))
        with pytest.raises(PersistenceTimeoutError):
            self.service.run("create_order", fn, policy)
        assert sum(self.time.sleeps) < 20

    @pytest.mark.parametrize("error", [
        OrderAlreadyCancelledError("GU0001"),
        IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")),
        KeyError("x"),
    ])
    def test_non_transient_errors_propagate(self, error):
        fn = Flaky(1, error)
        with pytest.raises(type(error)):
            self.service.run("create_order", fn, RetryPolicy.critical_write())
        assert fn.calls == 1
