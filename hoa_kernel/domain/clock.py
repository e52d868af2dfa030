"""
Clock -- injectable source of "now" for services.

Engines never read the wall clock: the payment date, the "today" that decides
whether a payment is backdated, and every ``recorded_at`` stamp come from a
``Clock`` handed to the service.  ``SystemClock`` is the only place that asks
the operating system for the time.

``today()`` is the calendar date in the clock's own timezone, not in UTC.
A payment entered late in the evening at the property is dated that day,
even if UTC has already rolled over.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo


class Clock(ABC):
    """
    Abstract clock.

    Guarantees:
        - ``now()`` is timezone-aware.
        - ``today()`` is the date of ``now()`` in the clock's timezone.
    """

    tz: tzinfo = timezone.utc

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().astimezone(self.tz).date()


class SystemClock(Clock):
    """Wall-clock time, reported in ``tz`` (UTC unless configured)."""

    def __init__(self, tz: tzinfo | None = None):
        self.tz = tz or timezone.utc

    def now(self) -> datetime:
        return datetime.now(self.tz)


class DeterministicClock(Clock):
    """
    Test clock frozen at a given instant.

    The time only moves through ``advance()``, ``tick()`` or ``set_time()``,
    so every timestamp a test writes is predictable.
    """

    def __init__(self, fixed_time: datetime, tz: tzinfo | None = None):
        if fixed_time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = fixed_time
        self.tz = tz or fixed_time.tzinfo

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new time."""
        self.advance(1)
        return self._current
