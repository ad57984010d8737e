"""Appointment persistence on PostgreSQL via SQLAlchemy Core."""

import datetime as dt
from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConcurrentUpdateError, MutationError, NotFoundError
from app.models.appointment_status_history import appointment_status_history
from app.models.appointments import appointments
from app.models.services import services
from app.scheduling.models import (
    Appointment,
    AppointmentStatus,
    NewAppointment,
    Provider,
    ProviderKind,
    Service,
    StatusAudit,
    StatusHistoryEntry,
)
from app.schemas.appointments import AppointmentFilters, AppointmentListResponse

logger = structlog.get_logger(__name__)


def provider_condition(provider: Provider) -> Any:
    """WHERE clause selecting the appointments of one provider."""
    if provider.kind == ProviderKind.DOCTOR:
        return appointments.c.doctor_id == provider.id
    return and_(appointments.c.doctor_id.is_(None), appointments.c.member_id == provider.id)


class SqlAppointmentRepository:
    """Repository for appointments, their services and status history."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """
        Get appointment by ID.

        Args:
            appointment_id: Appointment ID

        Returns:
            Appointment or None if not found
        """
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return Appointment.model_validate(dict(row._mapping)) if row else None

    async def get_service(self, service_id: str) -> Service | None:
        """Get an active catalog service by ID."""
        stmt = select(services).where(
            and_(services.c.id == service_id, services.c.is_active.is_(True))
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return Service.model_validate(dict(row._mapping)) if row else None

    async def find_bookings(
        self,
        tenant_id: str,
        provider: Provider,
        date: dt.date,
        statuses: Sequence[AppointmentStatus],
    ) -> list[Appointment]:
        """
        Get a provider's appointments on a date.

        Args:
            tenant_id: Tenant ID
            provider: Doctor or member whose calendar is checked
            date: Appointment date
            statuses: Statuses to include

        Returns:
            Appointments ordered by start time
        """
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.tenant_id == tenant_id,
                    appointments.c.appointment_date == date,
                    appointments.c.status.in_([s.value for s in statuses]),
                    provider_condition(provider),
                )
            )
            .order_by(appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [Appointment.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def insert_appointment(self, record: NewAppointment) -> Appointment:
        """
        Insert a new appointment.

        Raises:
            MutationError: If the insert fails
        """
        values = record.model_dump()
        values["status"] = record.status.value

        try:
            stmt = insert(appointments).values(**values).returning(appointments)
            result = await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("appointment_insert_failed", tenant_id=record.tenant_id, error=str(e))
            raise MutationError("Failed to create new appointment") from e

        row = result.fetchone()
        return Appointment.model_validate(dict(row._mapping))

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        notes: str | None = None,
        audit: StatusAudit | None = None,
        expected_statuses: Sequence[AppointmentStatus] | None = None,
    ) -> Appointment:
        """
        Update appointment status and record the change.

        Args:
            appointment_id: Appointment ID
            status: New status
            notes: Replacement notes; unchanged when None
            audit: Who changed the status and why
            expected_statuses: Only update while the row is in one of these

        Returns:
            Updated appointment

        Raises:
            NotFoundError: If appointment not found
            ConcurrentUpdateError: If the row left ``expected_statuses``
            MutationError: If the update fails
        """
        current = await self.get_appointment(appointment_id)
        if current is None:
            raise NotFoundError("Appointment not found")

        update_values: dict[str, Any] = {
            "status": status.value,
            "updated_at": dt.datetime.now(dt.UTC),
        }
        if notes is not None:
            update_values["notes"] = notes

        conditions = [appointments.c.id == appointment_id]
        if expected_statuses is not None:
            conditions.append(appointments.c.status.in_([s.value for s in expected_statuses]))

        audit = audit or StatusAudit()
        try:
            stmt = (
                update(appointments)
                .where(and_(*conditions))
                .values(**update_values)
                .returning(appointments)
            )
            result = await self.db.execute(stmt)
            row = result.fetchone()
            if row is None:
                await self.db.rollback()
                logger.warning(
                    "appointment_status_update_stale",
                    appointment_id=appointment_id,
                    status=status.value,
                    expected=[s.value for s in expected_statuses or ()],
                )
                raise ConcurrentUpdateError()

            await self.db.execute(
                insert(appointment_status_history).values(
                    appointment_id=appointment_id,
                    tenant_id=current.tenant_id,
                    status=status.value,
                    previous_status=current.status.value,
                    changed_by_user_id=audit.changed_by,
                    changed_by_role=audit.changed_by_role,
                    reason=audit.reason,
                    notes=audit.notes,
                    automated=audit.automated,
                    change_source=audit.change_source,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "appointment_status_update_failed",
                appointment_id=appointment_id,
                status=status.value,
                error=str(e),
            )
            raise MutationError("Failed to update appointment status") from e

        return Appointment.model_validate(dict(row._mapping))

    async def delete_appointment(self, appointment_id: str) -> None:
        """
        Permanently delete an appointment.

        Raises:
            MutationError: If the delete fails
        """
        try:
            await self.db.execute(delete(appointments).where(appointments.c.id == appointment_id))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise MutationError("Failed to delete appointment") from e

    async def list_chain(self, root_id: str) -> list[Appointment]:
        """Get the root appointment and all appointments descending from it."""
        stmt = (
            select(appointments)
            .where(
                or_(
                    appointments.c.id == root_id,
                    appointments.c.original_appointment_id == root_id,
                )
            )
            .order_by(appointments.c.created_at)
        )
        result = await self.db.execute(stmt)
        return [Appointment.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def list_status_history(self, appointment_id: str) -> list[StatusHistoryEntry]:
        """Get status changes of an appointment, newest first."""
        stmt = (
            select(appointment_status_history)
            .where(appointment_status_history.c.appointment_id == appointment_id)
            .order_by(appointment_status_history.c.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return [StatusHistoryEntry.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def list_appointments(
        self,
        tenant_id: str | None,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            tenant_id: Tenant ID; None lists across tenants (patient view)
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        conditions = []
        if tenant_id is not None:
            conditions.append(appointments.c.tenant_id == tenant_id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.member_id:
            conditions.append(appointments.c.member_id == filters.member_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        # Count total
        count_stmt = select(func.count()).select_from(appointments).where(*conditions)
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        # Get paginated results
        offset = (filters.page - 1) * filters.page_size

        stmt = (
            select(appointments)
            .where(*conditions)
            .order_by(appointments.c.appointment_date.desc(), appointments.c.start_time.desc())
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [Appointment.model_validate(dict(row._mapping)) for row in result.fetchall()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )
