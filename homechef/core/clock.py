"""
Clock abstraction.

The state machine and the ledger never read wall-clock time directly; they
ask an injected clock. Production wiring uses SystemClock, tests use
FrozenClock and move it explicitly.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Anything that can answer "what time is it now?"."""

    def now(self) -> datetime:
        """Return a timezone-aware current time."""
        ...


class SystemClock:
    """Clock backed by the system time, always UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Clock that only moves when told to.

    Example:
        >>> clock = FrozenClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))
        >>> clock.advance(seconds=31)
        >>> clock.now()
        datetime.datetime(2024, 1, 15, 12, 0, 31, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, start: datetime):
        if start.tzinfo is None:
            raise ValueError("FrozenClock requires a timezone-aware datetime")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        """Move the clock forward and return the new time."""
        self._now = self._now + timedelta(seconds=seconds, **kwargs)
        return self._now

    def set(self, value: datetime) -> None:
        if value.tzinfo is None:
            raise ValueError("FrozenClock requires a timezone-aware datetime")
        self._now = value
