"""
Clock -- injectable source of UTC timestamps.

Responsibility:
    requested_at, decided_at and action_at are stamped from the clock handed
    to the approval manager, never from ``datetime.now()`` at the call site.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O (except SystemClock,
    which is the one sanctioned I/O boundary for time).

Invariants:
    Every value returned by ``now()`` is timezone-aware and in UTC.  Action
    hashes serialize action_at, so an offset or naive value would change
    the hash after a round trip through storage.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError(f"Clock times must be timezone-aware, got {value!r}")
    return value.astimezone(timezone.utc)


class Clock(ABC):
    """Source of the current time for services."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock frozen at a chosen instant.

    Guarantees:
        - ``now()`` is stable until ``advance()``, ``tick()`` or ``set_time()``.
        - Starts at 2024-01-01 12:00 UTC unless told otherwise.

    Raises:
        ValueError: for naive datetimes passed to the constructor or set_time().
    """

    START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = _as_utc(fixed_time) if fixed_time is not None else self.START

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = _as_utc(time)

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Move one second forward; returns the new time."""
        self.advance(1)
        return self._current
