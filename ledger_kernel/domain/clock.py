"""
Clock -- injectable time source.

Responsibility:
    Services, the scheduler, and the adapters receive a Clock instead of
    calling ``datetime.now()`` or ``date.today()``.  The recurring scheduler
    is therefore a function of ``clock.now()`` plus persisted state.

Architecture position:
    Kernel > Domain.  SystemClock is the one sanctioned I/O boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def set_date(self, day: date) -> None:
        """Move to noon UTC on the given date."""
        self._current = datetime(day.year, day.month, day.day, 12, 0, 0, tzinfo=timezone.utc)

    def advance(self, seconds: int = 0, days: int = 0) -> datetime:
        self._current = self._current + timedelta(days=days, seconds=seconds)
        return self._current
