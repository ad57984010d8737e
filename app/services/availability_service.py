"""Provider availability persistence via SQLAlchemy Core."""

import datetime as dt

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.models.provider_availability import provider_availability, provider_breaks
from app.scheduling.models import BLOCKING_STATUSES, Appointment, AvailabilityWindow, Provider
from app.services.appointment_service import provider_condition


class SqlAvailabilityRepository:
    """Repository for provider weekly schedules."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def list_windows(self, tenant_id: str, provider: Provider) -> list[AvailabilityWindow]:
        """Get active availability windows of a provider."""
        stmt = (
            select(provider_availability)
            .where(
                and_(
                    provider_availability.c.tenant_id == tenant_id,
                    provider_availability.c.provider_kind == provider.kind.value,
                    provider_availability.c.provider_id == provider.id,
                    provider_availability.c.is_active.is_(True),
                )
            )
            .order_by(provider_availability.c.day_of_week, provider_availability.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [AvailabilityWindow.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def list_breaks(self, tenant_id: str, provider: Provider) -> list[AvailabilityWindow]:
        """Get active breaks of a provider."""
        stmt = select(provider_breaks).where(
            and_(
                provider_breaks.c.tenant_id == tenant_id,
                provider_breaks.c.provider_kind == provider.kind.value,
                provider_breaks.c.provider_id == provider.id,
                provider_breaks.c.is_active.is_(True),
            )
        )
        result = await self.db.execute(stmt)
        return [AvailabilityWindow.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def find_bookings_between(
        self,
        tenant_id: str,
        provider: Provider,
        start_date: dt.date,
        end_date: dt.date,
    ) -> list[Appointment]:
        """
        Get blocking appointments of a provider in a date range.

        Args:
            tenant_id: Tenant ID
            provider: Doctor or member
            start_date: First date, inclusive
            end_date: Last date, inclusive

        Returns:
            Pending and confirmed appointments
        """
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.tenant_id == tenant_id,
                    appointments.c.appointment_date >= start_date,
                    appointments.c.appointment_date <= end_date,
                    appointments.c.status.in_([s.value for s in BLOCKING_STATUSES]),
                    provider_condition(provider),
                )
            )
            .order_by(appointments.c.appointment_date, appointments.c.start_time)
        )
        result = await self.db.execute(stmt)
        return [Appointment.model_validate(dict(row._mapping)) for row in result.fetchall()]
