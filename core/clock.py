"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a testable clock for the schedulers and rollups.

- Analytics windows and amplifier age read time from here
- Tests freeze or advance time instead of sleeping

============================================================
DESIGN PRINCIPLES
============================================================
- UTC for stored values
- Local time only for the midnight schedule
- Mockable for testing

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    def local_now(self) -> datetime:
        """Current time in the host's local timezone."""
        return self.now().astimezone()

    def time_until_next_hour(self) -> timedelta:
        """Get time until next hour boundary."""
        now = self.now()
        next_hour = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return next_hour - now

    def time_until_local_midnight(self) -> timedelta:
        """Get time until the next local midnight."""
        now = self.local_now()
        midnight = (now + timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0,
        )
        return midnight - now


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Allows time manipulation for deterministic tests.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = initial_time or datetime.now(timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        if new_time.tzinfo is None:
            new_time = new_time.replace(tzinfo=timezone.utc)
        self._time = new_time

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        self._time = self._time + timedelta(seconds=seconds, **kwargs)


# ============================================================
# GLOBAL CLOCK
# ============================================================

_clock: ClockProtocol = SystemClock()


def get_clock() -> ClockProtocol:
    """Get the process-wide clock."""
    return _clock


def set_clock(clock: ClockProtocol) -> None:
    """Replace the process-wide clock (tests)."""
    global _clock
    _clock = clock
