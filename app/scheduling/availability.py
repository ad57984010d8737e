"""Provider availability windows and slot suggestions."""

import calendar
import datetime as dt
from collections import defaultdict
from collections.abc import Iterable, Sequence
from enum import Enum

from pydantic import BaseModel

from app.scheduling.models import Appointment, AvailabilityWindow
from app.scheduling.timeutils import TimeRange, format_time, overlaps

# Minutes kept free between "now" and the first slot offered today.
SAME_DAY_BUFFER_MINUTES = 30


class SuggestionHorizon(str, Enum):
    """How far ahead to search for free slots."""

    NEXT_WEEK = "next_week"
    TWO_WEEKS = "two_weeks"
    MONTH = "month"


class AvailableSlot(BaseModel):
    """A single bookable slot."""

    date: dt.date
    day_of_week: int
    start_time: str
    end_time: str
    is_preferred: bool = False


class DailySlots(BaseModel):
    """Slots grouped by date."""

    date: dt.date
    day_of_week: int
    slot_count: int
    slots: list[AvailableSlot]


def day_of_week(date: dt.date) -> int:
    """Day index with 0 = Sunday, as stored in availability tables."""
    return (date.weekday() + 1) % 7


def horizon_end(base_date: dt.date, horizon: SuggestionHorizon) -> dt.date:
    """Last date searched for ``horizon`` starting at ``base_date``."""
    if horizon == SuggestionHorizon.NEXT_WEEK:
        return base_date + dt.timedelta(days=7)
    if horizon == SuggestionHorizon.TWO_WEEKS:
        return base_date + dt.timedelta(days=14)

    year = base_date.year + base_date.month // 12
    month = base_date.month % 12 + 1
    day = min(base_date.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def _ranges(windows: Iterable[AvailabilityWindow], weekday: int | None = None) -> list[TimeRange]:
    return [
        TimeRange.parse(window.start_time, window.end_time)
        for window in windows
        if weekday is None or window.day_of_week == weekday
    ]


def fits_availability(
    slot: TimeRange,
    date: dt.date,
    windows: Sequence[AvailabilityWindow],
    breaks: Sequence[AvailabilityWindow] = (),
) -> bool:
    """
    Check a slot against a provider's weekly schedule.

    A provider without any configured window is unconstrained. Otherwise the
    slot must sit inside one window of that weekday and clear every break.
    """
    if not windows:
        return True

    weekday = day_of_week(date)
    if not any(window.contains(slot) for window in _ranges(windows, weekday)):
        return False
    return not any(overlaps(slot, brk) for brk in _ranges(breaks, weekday))


def generate_day_slots(
    date: dt.date,
    windows: Sequence[AvailabilityWindow],
    breaks: Sequence[AvailabilityWindow],
    bookings: Sequence[Appointment],
    duration_minutes: int,
    max_slots: int,
    not_before_minutes: int | None = None,
) -> list[AvailableSlot]:
    """
    Generate free slots of ``duration_minutes`` for one date.

    Args:
        date: Date to generate for
        windows: All availability windows of the provider
        breaks: All breaks of the provider
        bookings: Blocking appointments on ``date``
        duration_minutes: Slot length, also the step between slot starts
        max_slots: Stop after this many slots
        not_before_minutes: Earliest start (minutes since midnight), for today

    Returns:
        Slots in chronological order per window
    """
    weekday = day_of_week(date)
    break_ranges = _ranges(breaks, weekday)
    booked = [TimeRange.parse(b.start_time, b.end_time) for b in bookings]
    slots: list[AvailableSlot] = []

    for window in sorted(_ranges(windows, weekday)):
        slot_start = window.start
        if not_before_minutes is not None and slot_start < not_before_minutes:
            # Round up to the slot grid
            slot_start = -(-not_before_minutes // duration_minutes) * duration_minutes

        while slot_start + duration_minutes <= window.end:
            if len(slots) >= max_slots:
                return slots
            candidate = TimeRange(slot_start, slot_start + duration_minutes)
            blocked = any(overlaps(candidate, other) for other in break_ranges) or any(
                overlaps(candidate, other) for other in booked
            )
            if not blocked:
                slots.append(
                    AvailableSlot(
                        date=date,
                        day_of_week=weekday,
                        start_time=format_time(candidate.start),
                        end_time=format_time(candidate.end),
                        is_preferred=not slots,
                    )
                )
            slot_start += duration_minutes

    return slots


def suggest_slots(
    base_date: dt.date,
    horizon: SuggestionHorizon,
    windows: Sequence[AvailabilityWindow],
    breaks: Sequence[AvailabilityWindow],
    bookings: Sequence[Appointment],
    duration_minutes: int,
    max_per_day: int,
    now: dt.datetime,
) -> list[DailySlots]:
    """Slots for every date from ``base_date`` through the horizon end."""
    if not windows:
        return []

    bookings_by_date: dict[dt.date, list[Appointment]] = defaultdict(list)
    for booking in bookings:
        bookings_by_date[booking.appointment_date].append(booking)

    days: list[DailySlots] = []
    current = base_date
    end = horizon_end(base_date, horizon)
    while current <= end:
        not_before = None
        if current == now.date():
            not_before = now.hour * 60 + now.minute + SAME_DAY_BUFFER_MINUTES
        if current >= now.date():
            slots = generate_day_slots(
                current,
                windows,
                breaks,
                bookings_by_date.get(current, []),
                duration_minutes,
                max_per_day,
                not_before,
            )
            if slots:
                days.append(
                    DailySlots(
                        date=current,
                        day_of_week=day_of_week(current),
                        slot_count=len(slots),
                        slots=slots,
                    )
                )
        current += dt.timedelta(days=1)
    return days
