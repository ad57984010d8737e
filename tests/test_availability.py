"""Tests for availability windows and slot suggestions."""

import datetime as dt

from app.scheduling.availability import (
    SuggestionHorizon,
    day_of_week,
    fits_availability,
    generate_day_slots,
    horizon_end,
    suggest_slots,
)
from app.scheduling.models import Appointment, AvailabilityWindow
from app.scheduling.timeutils import TimeRange

MONDAY = dt.date(2026, 3, 2)


def window(day: int, start: str, end: str) -> AvailabilityWindow:
    return AvailabilityWindow(day_of_week=day, start_time=start, end_time=end)


class TestDayOfWeek:
    def test_sunday_is_zero(self):
        assert day_of_week(dt.date(2026, 3, 1)) == 0

    def test_monday_is_one(self):
        assert day_of_week(MONDAY) == 1


class TestHorizonEnd:
    def test_next_week(self):
        assert horizon_end(MONDAY, SuggestionHorizon.NEXT_WEEK) == dt.date(2026, 3, 9)

    def test_two_weeks(self):
        assert horizon_end(MONDAY, SuggestionHorizon.TWO_WEEKS) == dt.date(2026, 3, 16)

    def test_month_clamps_to_month_end(self):
        assert horizon_end(dt.date(2026, 1, 31), SuggestionHorizon.MONTH) == dt.date(2026, 2, 28)

    def test_month_rolls_over_year(self):
        assert horizon_end(dt.date(2026, 12, 15), SuggestionHorizon.MONTH) == dt.date(2027, 1, 15)


class TestFitsAvailability:
    windows = [window(1, "09:00", "13:00"), window(1, "14:00", "18:00")]
    breaks = [window(1, "11:00", "11:30")]

    def test_inside_window(self):
        slot = TimeRange.parse("09:00", "09:30")
        assert fits_availability(slot, MONDAY, self.windows, self.breaks)

    def test_spanning_two_windows_does_not_fit(self):
        slot = TimeRange.parse("12:45", "14:15")
        assert not fits_availability(slot, MONDAY, self.windows, self.breaks)

    def test_overlapping_break_does_not_fit(self):
        slot = TimeRange.parse("10:45", "11:15")
        assert not fits_availability(slot, MONDAY, self.windows, self.breaks)

    def test_other_weekday_does_not_fit(self):
        slot = TimeRange.parse("09:00", "09:30")
        assert not fits_availability(slot, MONDAY + dt.timedelta(days=1), self.windows)

    def test_no_windows_is_unconstrained(self):
        assert fits_availability(TimeRange.parse("22:00", "23:00"), MONDAY, [])


class TestGenerateDaySlots:
    def test_skips_breaks_and_bookings(self):
        booked = Appointment(
            id="b1",
            tenant_id="t1",
            doctor_id="d1",
            appointment_date=MONDAY,
            start_time="10:00",
            end_time="10:30",
        )
        slots = generate_day_slots(
            MONDAY,
            [window(1, "09:00", "12:00")],
            [window(1, "11:00", "11:30")],
            [booked],
            duration_minutes=30,
            max_slots=10,
        )
        assert [s.start_time for s in slots] == ["09:00", "09:30", "10:30", "11:30"]
        assert slots[0].end_time == "09:30"
        assert all(s.day_of_week == 1 for s in slots)

    def test_respects_max_slots(self):
        slots = generate_day_slots(
            MONDAY, [window(1, "09:00", "17:00")], [], [], duration_minutes=30, max_slots=3
        )
        assert len(slots) == 3

    def test_not_before_rounds_up_to_grid(self):
        slots = generate_day_slots(
            MONDAY,
            [window(1, "09:00", "12:00")],
            [],
            [],
            duration_minutes=30,
            max_slots=10,
            not_before_minutes=10 * 60 + 5,
        )
        assert slots[0].start_time == "10:30"

    def test_first_free_slot_of_day_is_preferred(self):
        slots = generate_day_slots(
            MONDAY,
            [window(1, "09:00", "10:30"), window(1, "14:00", "15:00")],
            [window(1, "09:00", "09:30")],
            [],
            duration_minutes=30,
            max_slots=10,
        )
        assert [s.start_time for s in slots if s.is_preferred] == ["09:30"]
        assert sum(s.is_preferred for s in slots) == 1


class TestSuggestSlots:
    def test_same_day_slots_keep_a_buffer(self):
        now = dt.datetime(2026, 3, 2, 9, 10)
        days = suggest_slots(
            MONDAY,
            SuggestionHorizon.NEXT_WEEK,
            [window(1, "09:00", "11:00")],
            [],
            [],
            duration_minutes=30,
            max_per_day=10,
            now=now,
        )
        # Monday today and Monday next week
        assert [d.date for d in days] == [MONDAY, dt.date(2026, 3, 9)]
        assert [s.start_time for s in days[0].slots] == ["10:00", "10:30"]
        assert days[1].slot_count == 4

    def test_no_windows_no_slots(self):
        days = suggest_slots(
            MONDAY,
            SuggestionHorizon.NEXT_WEEK,
            [],
            [],
            [],
            duration_minutes=30,
            max_per_day=10,
            now=dt.datetime(2026, 3, 2, 8, 0),
        )
        assert days == []
