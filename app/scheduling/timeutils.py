"""Wall-clock time arithmetic on a single calendar date.

Times are compared as minutes since midnight. Inputs may be ``"HH:MM"``,
``"HH:MM:SS"`` or :class:`datetime.time`; seconds are truncated.
"""

import datetime as dt
import re
from typing import NamedTuple

from app.core.exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60

TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

TimeLike = str | dt.time


def parse_time(value: TimeLike) -> int:
    """Return minutes since midnight for ``value``.

    Raises:
        ValueError: If the value is not a valid wall-clock time.
    """
    if isinstance(value, dt.time):
        return value.hour * 60 + value.minute

    match = TIME_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Time must be HH:MM or HH:MM:SS format, got {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3) or 0)
    if hours > 23 or minutes > 59 or seconds > 59:
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_time(minutes: int, with_seconds: bool = False) -> str:
    """Render minutes since midnight as ``HH:MM`` (or ``HH:MM:SS``)."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"Minutes out of range for one day: {minutes}")
    text = f"{minutes // 60:02d}:{minutes % 60:02d}"
    return f"{text}:00" if with_seconds else text


def to_time(minutes: int) -> dt.time:
    """Convert minutes since midnight to :class:`datetime.time`."""
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"Minutes out of range for one day: {minutes}")
    return dt.time(minutes // 60, minutes % 60)


def parse_date(value: str | dt.date) -> dt.date:
    """Parse a ``YYYY-MM-DD`` date."""
    if isinstance(value, dt.date):
        return value
    if not DATE_PATTERN.match(value):
        raise ValueError(f"Date must be YYYY-MM-DD format, got {value!r}")
    return dt.date.fromisoformat(value)


def add_minutes(start: TimeLike, duration_minutes: int) -> dt.time:
    """Return ``start + duration_minutes`` on the same date.

    Raises:
        ValidationError: If the result would cross midnight.
    """
    end = parse_time(start) + duration_minutes
    if end >= MINUTES_PER_DAY:
        raise ValidationError("Appointment cannot extend past midnight")
    return to_time(end)


class TimeRange(NamedTuple):
    """Half-open interval ``[start, end)`` in minutes since midnight."""

    start: int
    end: int

    @classmethod
    def parse(cls, start: TimeLike, end: TimeLike) -> "TimeRange":
        """Build a range from two times, requiring ``start < end``."""
        start_minutes, end_minutes = parse_time(start), parse_time(end)
        if start_minutes >= end_minutes:
            raise ValueError("start time must be before end time")
        return cls(start_minutes, end_minutes)

    @property
    def duration(self) -> int:
        return self.end - self.start

    def contains(self, other: "TimeRange") -> bool:
        """True if ``other`` lies entirely inside this range."""
        return self.start <= other.start and other.end <= self.end


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    """True iff the half-open ranges share at least one minute."""
    return a.start < b.end and b.start < a.end
