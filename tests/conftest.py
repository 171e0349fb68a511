"""
Pytest fixtures for the concession engine test suite.

Provides:
- A file-backed SQLite database per test (tmp_path), schema created fresh
- A pinned DeterministicClock
- A ConcessionFacade wired to a recording notification sink
- Structured log capture

Environment Variables:
- DATABASE_URL: when set to a PostgreSQL URL, tests marked ``postgres`` run
  against it; everything else uses SQLite.
"""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from io import StringIO
from typing import Any

import pytest

from concession_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from concession_kernel.domain.clock import DeterministicClock
from concession_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Saturday afternoon, mid-month, so month and day boundaries are explicit in tests.
TEST_NOW = datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture concession_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, facade):
            facade.create_order(...)
            logs = captured_logs()
            assert any(r["message"] == "order_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("concession_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'concession.db'}"


@pytest.fixture
def engine(db_url):
    """Fresh engine and schema for one test."""
    eng = init_engine_from_url(db_url, statement_timeout_seconds=30)
    create_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """
    One open session for module-level tests.

    Module services flush and never commit; the session is rolled back at
    teardown.  Do not combine with ``facade`` in the same test: SQLite
    serializes writers and this session holds the write lock once it flushes.
    """
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(TEST_NOW)


# =============================================================================
# Facade
# =============================================================================


class RecordingSink:
    """Notification sink that remembers what it was given."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.published: list[tuple[str, dict[str, Any]]] = []
        self._cond = threading.Condition()

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        with self._cond:
            self.published.append((topic, payload))
            self._cond.notify_all()
        return self.accept

    def wait_for(self, count: int, timeout: float = 5.0) -> list[tuple[str, dict[str, Any]]]:
        with self._cond:
            self._cond.wait_for(lambda: len(self.published) >= count, timeout=timeout)
            return list(self.published)

    def events(self) -> list[str]:
        with self._cond:
            return [payload["event"] for _, payload in self.published]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def facade(session_factory, clock, sink):
    from concession_services.facade import ConcessionFacade

    f = ConcessionFacade(session_factory, clock=clock, sink=sink)
    yield f
    f.close()


def pytest_configure(config):
    config.addinivalue_line("markers", "postgres: mark test as requiring PostgreSQL")
    config.addinivalue_line("markers", "slow_locks: mark test as potentially waiting for DB locks")


def pytest_collection_modifyitems(config, items):
    url = os.environ.get("DATABASE_URL", "")
    if url.startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="DATABASE_URL is not a PostgreSQL URL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)
