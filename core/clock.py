"""
Core Module - System Clock.

============================================================
RESPONSIBILITY
============================================================
Provides a unified, testable clock abstraction for the engine.

- Timestamps for checkpoints and derived rows
- Deliberate pauses (batch delay, retry backoff)
- Settlement date parsing and calendar helpers

============================================================
DESIGN PRINCIPLES
============================================================
- UTC only - no timezone conversions in business logic
- Injected, never global: components receive a clock
- MockClock makes every pause instantaneous in tests

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Iterator, List, Optional, Union
import re
import threading
import time

from .exceptions import InvalidDateError


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for system clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Block the calling thread for the given number of seconds."""
        pass

    def today(self) -> date:
        """Get current UTC date."""
        return self.now().date()

    def format_iso(self, dt: Optional[datetime] = None) -> str:
        """Format datetime as ISO 8601."""
        dt = dt or self.now()
        return dt.isoformat()


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """
    Production clock using actual system time.

    All times are in UTC.
    """

    def now(self) -> datetime:
        """Get current UTC datetime."""
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    sleep() advances the mocked time instead of blocking and
    records every requested pause.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to current UTC)
        """
        self._time = initial_time or datetime.now(timezone.utc)
        self._lock = threading.Lock()
        self.sleeps: List[float] = []

    def now(self) -> datetime:
        """Get current (mocked) datetime."""
        with self._lock:
            return self._time

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            self._time = self._time + timedelta(seconds=max(seconds, 0))

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
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
        with self._lock:
            self._time = self._time + timedelta(seconds=seconds, **kwargs)

    @property
    def total_slept(self) -> float:
        return sum(self.sleeps)


# ============================================================
# DATE UTILITIES
# ============================================================

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[date, str]


def parse_settlement_date(value: DateLike) -> date:
    """
    Parse a settlement date.

    Accepts a date (returned unchanged) or a strict YYYY-MM-DD string.

    Raises:
        InvalidDateError: On any other input
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _DATE_PATTERN.match(value.strip()):
        raise InvalidDateError(value)
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        raise InvalidDateError(value, reason=str(e)) from e


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def day_key(day: date) -> str:
    return day.isoformat()


def month_key(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def year_key(day: date) -> str:
    return f"{day.year:04d}"


def month_bounds(day: date) -> tuple:
    """First and last date of the month containing day."""
    first = day.replace(day=1)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return first, next_first - timedelta(days=1)


def to_iso8601(dt: datetime) -> str:
    """Convert datetime to ISO 8601 string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def from_iso8601(iso_string: str) -> datetime:
    """Parse ISO 8601 string to datetime."""
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    # Protocols
    "ClockProtocol",

    # Implementations
    "SystemClock",
    "MockClock",

    # Dates
    "DateLike",
    "parse_settlement_date",
    "iter_dates",
    "day_key",
    "month_key",
    "year_key",
    "month_bounds",
    "to_iso8601",
    "from_iso8601",
]
