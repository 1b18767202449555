"""
Injectable time source.

Anything that compares against "now" (reservation deadlines, movement
timestamps, cron windows) takes a Clock instead of calling
``datetime.now()``; tests pass a DeterministicClock and move it by hand.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware UTC."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock; time only moves through set_time() and advance()."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = as_utc(fixed_time) if fixed_time else DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def set_time(self, time: datetime) -> None:
        self._now = as_utc(time)

    def advance(self, seconds: float = 0, **delta: float) -> datetime:
        """Step forward by ``seconds`` and/or timedelta keywords; return the new time."""
        self._now += timedelta(seconds=seconds, **delta)
        return self._now


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of ``value``; naive input is read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
