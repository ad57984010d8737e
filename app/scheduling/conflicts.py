"""Time slot conflict detection."""

import datetime as dt
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from app.core.exceptions import ConflictError
from app.scheduling.models import Appointment
from app.scheduling.timeutils import TimeRange, overlaps


class CandidateSlot(BaseModel):
    """A slot someone wants to book for a provider."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    provider_id: str
    date: dt.date
    start: dt.time
    end: dt.time
    exclude_booking_id: str | None = None

    @property
    def range(self) -> TimeRange:
        return TimeRange.parse(self.start, self.end)


def find_conflicts(
    candidate: CandidateSlot,
    existing_bookings: Iterable[Appointment],
) -> list[Appointment]:
    """
    Return every booking overlapping ``candidate``.

    Bookings are expected to be pre-filtered to the candidate's tenant, date,
    provider and blocking statuses. Overbooking never hides a result here.
    """
    wanted = candidate.range
    return [
        booking
        for booking in existing_bookings
        if booking.id != candidate.exclude_booking_id
        and overlaps(wanted, TimeRange.parse(booking.start_time, booking.end_time))
    ]


def ensure_bookable(conflicts: list[Appointment], allow_overbooking: bool) -> None:
    """Raise ConflictError for non-empty ``conflicts`` unless overbooking is allowed."""
    if conflicts and not allow_overbooking:
        raise ConflictError(conflicting_ids=[booking.id for booking in conflicts])
