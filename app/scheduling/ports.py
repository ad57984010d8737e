"""Collaborators the scheduling rules depend on."""

import datetime as dt
from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from app.scheduling.models import (
    Actor,
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    NewAppointment,
    NotificationRequest,
    Provider,
    Service,
    StatusAudit,
    StatusHistoryEntry,
)


class AppointmentRepository(Protocol):
    """Persistence of appointments and their catalog references.

    Write methods raise MutationError when the write fails.
    """

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Fetch an appointment by id."""
        ...

    async def get_service(self, service_id: str) -> Service | None:
        """Fetch a catalog service by id."""
        ...

    async def find_bookings(
        self,
        tenant_id: str,
        provider: Provider,
        date: dt.date,
        statuses: Sequence[AppointmentStatus],
    ) -> list[Appointment]:
        """Appointments of one provider on one date in the given statuses."""
        ...

    async def insert_appointment(self, record: NewAppointment) -> Appointment:
        """Insert a new appointment row."""
        ...

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        notes: str | None = None,
        audit: StatusAudit | None = None,
        expected_statuses: Sequence[AppointmentStatus] | None = None,
    ) -> Appointment:
        """Change the status (and optionally notes) and append a history row.

        When ``expected_statuses`` is given the change only applies while the
        row is still in one of them; otherwise ConcurrentUpdateError is raised.
        """
        ...

    async def delete_appointment(self, appointment_id: str) -> None:
        """Physically remove a row; only used to compensate a failed reschedule."""
        ...

    async def list_chain(self, root_id: str) -> list[Appointment]:
        """The root appointment and every appointment descending from it."""
        ...

    async def list_status_history(self, appointment_id: str) -> list[StatusHistoryEntry]:
        """Status changes of one appointment, newest first."""
        ...


class AvailabilityRepository(Protocol):
    """Weekly schedules of providers."""

    async def list_windows(self, tenant_id: str, provider: Provider) -> list[AvailabilityWindow]:
        """Active availability windows."""
        ...

    async def list_breaks(self, tenant_id: str, provider: Provider) -> list[AvailabilityWindow]:
        """Active breaks."""
        ...

    async def find_bookings_between(
        self,
        tenant_id: str,
        provider: Provider,
        start_date: dt.date,
        end_date: dt.date,
    ) -> list[Appointment]:
        """Blocking appointments of a provider in an inclusive date range."""
        ...


class Authorizer(Protocol):
    """Decides whether an actor may act on tenant data."""

    def may_access_tenant(self, actor: Actor, tenant_id: str) -> bool:
        """Actor works for the tenant."""
        ...

    def owns_as_patient(self, actor: Actor, appointment: Appointment) -> bool:
        """Actor is the patient of the appointment."""
        ...

    def may_view(self, actor: Actor, appointment: Appointment) -> bool:
        """Actor may read the appointment."""
        ...

    def may_act(self, actor: Actor, appointment: Appointment) -> bool:
        """Actor may modify the appointment."""
        ...


class Notifier(Protocol):
    """Fire-and-forget patient notification."""

    async def dispatch(self, request: NotificationRequest) -> None:
        """Record or send a notification; may raise on failure."""
        ...


class SlotLock(Protocol):
    """Mutual exclusion per (tenant, provider, date)."""

    def hold(
        self, tenant_id: str, provider_id: str, date: dt.date
    ) -> AbstractAsyncContextManager[None]:
        """Hold the lock for the duration of the ``async with`` block.

        Raises:
            SlotBusyError: If the lock cannot be obtained in time.
        """
        ...
