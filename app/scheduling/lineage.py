"""Reschedule chain assembly."""

import datetime as dt
from collections.abc import Iterable

from pydantic import BaseModel

from app.scheduling.models import Appointment, AppointmentStatus


class RescheduleChainEntry(BaseModel):
    """Represents a single entry in the reschedule chain."""

    appointment_id: str
    appointment_date: dt.date
    start_time: dt.time
    end_time: dt.time
    status: AppointmentStatus
    reschedule_count: int
    rescheduled_from_id: str | None = None
    reschedule_reason: str | None = None
    rescheduled_at: dt.datetime | None = None
    rescheduled_by: str | None = None
    is_rebook: bool
    created_at: dt.datetime | None = None


class AppointmentRescheduleChain(BaseModel):
    """Complete reschedule chain for an appointment."""

    original_appointment_id: str
    current_appointment_id: str
    total_reschedules: int
    total_rebooks: int
    chain: list[RescheduleChainEntry]


def _sort_key(appointment: Appointment) -> tuple:
    created = appointment.created_at or dt.datetime.min.replace(tzinfo=dt.UTC)
    if created.tzinfo is None:
        created = created.replace(tzinfo=dt.UTC)
    return (created, appointment.reschedule_count)


def build_chain(root_id: str, appointments: Iterable[Appointment]) -> AppointmentRescheduleChain:
    """
    Order the appointments sharing ``root_id`` into a chain.

    The current appointment is the latest one not cancelled; when every
    entry is cancelled it is the latest entry.
    """
    members = sorted(
        (a for a in appointments if a.id == root_id or a.original_appointment_id == root_id),
        key=_sort_key,
    )
    if not members:
        raise ValueError(f"No appointments found for chain {root_id}")

    active = [a for a in members if a.status != AppointmentStatus.CANCELLED]
    current = (active or members)[-1]

    return AppointmentRescheduleChain(
        original_appointment_id=root_id,
        current_appointment_id=current.id,
        total_reschedules=sum(1 for a in members if a.rescheduled_from_id and not a.is_rebook),
        total_rebooks=sum(1 for a in members if a.is_rebook),
        chain=[
            RescheduleChainEntry(
                appointment_id=a.id,
                appointment_date=a.appointment_date,
                start_time=a.start_time,
                end_time=a.end_time,
                status=a.status,
                reschedule_count=a.reschedule_count,
                rescheduled_from_id=a.rescheduled_from_id,
                reschedule_reason=a.reschedule_reason,
                rescheduled_at=a.rescheduled_at,
                rescheduled_by=a.rescheduled_by,
                is_rebook=a.is_rebook,
                created_at=a.created_at,
            )
            for a in members
        ],
    )
