"""
Injectable time source.

Business dates decide which ledger month a row lands in, how far a ledger
is gap-filled and when a batch expires, so nothing below the services layer
reads the wall clock itself; it asks the :class:`Clock` it was given.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

_DEFAULT_TEST_INSTANT = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of the current instant. ``now()`` is always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime: ...

    def now_utc(self) -> datetime:
        return self.now().astimezone(timezone.utc)

    def today(self) -> date:
        """Business date of ``now()`` in the clock's own zone."""
        return self.now().date()


class SystemClock(Clock):
    def __init__(self, tz: timezone | None = None):
        self._tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self._tz)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    Time only moves when a test moves it, via ``advance`` (seconds) or
    ``advance_days``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._instant = fixed_time or _DEFAULT_TEST_INSTANT

    def now(self) -> datetime:
        return self._instant

    def set_time(self, time: datetime) -> None:
        self._instant = time

    def advance(self, seconds: int = 1) -> None:
        self._instant += timedelta(seconds=seconds)

    def advance_days(self, days: int = 1) -> None:
        self._instant += timedelta(days=days)
