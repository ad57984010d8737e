"""FastAPI dependencies."""

from datetime import datetime
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.locks import LocalSlotLock, RedisSlotLock
from app.core.redis_client import get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.scheduling.eligibility import ReschedulePolicy
from app.scheduling.models import Actor
from app.scheduling.orchestrator import AppointmentScheduler
from app.scheduling.ports import (
    AppointmentRepository,
    Authorizer,
    AvailabilityRepository,
    Notifier,
    SlotLock,
)
from app.services.appointment_service import SqlAppointmentRepository
from app.services.authorization import TenantAuthorizer
from app.services.availability_service import SqlAvailabilityRepository
from app.services.notification_service import OutboxNotifier

# Security
security = HTTPBearer()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> Actor:
    """
    Build the acting user from JWT claims.

    Args:
        credentials: Bearer token credentials

    Returns:
        Actor with user ID, role and tenant

    Raises:
        HTTPException: If token is invalid, expired or lacks claims
    """
    claims = decode_access_token(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(id=claims.sub, role=claims.role, tenant_id=claims.tenant_id)


def get_facility_now() -> datetime:
    """Current wall-clock time at the facility, without tzinfo."""
    return datetime.now(settings.facility_zone).replace(tzinfo=None)


def get_reschedule_policy() -> ReschedulePolicy:
    """Get the reschedule policy from settings."""
    return settings.reschedule_policy()


def get_appointment_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SqlAppointmentRepository:
    """Get appointment repository bound to the request session."""
    return SqlAppointmentRepository(db)


def get_availability_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AvailabilityRepository:
    """Get availability repository bound to the request session."""
    return SqlAvailabilityRepository(db)


def get_notifier(db: Annotated[AsyncSession, Depends(get_db)]) -> Notifier:
    """Get notification outbox writer bound to the request session."""
    return OutboxNotifier(db)


def get_authorizer() -> Authorizer:
    """Get tenant authorizer."""
    return TenantAuthorizer()


@lru_cache
def get_slot_lock() -> SlotLock:
    """Get the process-wide slot lock for the configured backend."""
    if settings.slot_lock_backend == "local":
        return LocalSlotLock(wait=settings.slot_lock_wait_seconds)
    return RedisSlotLock(
        get_redis_client(),
        timeout=settings.slot_lock_timeout_seconds,
        wait=settings.slot_lock_wait_seconds,
    )


def get_scheduler(
    repository: Annotated[AppointmentRepository, Depends(get_appointment_repository)],
    availability: Annotated[AvailabilityRepository, Depends(get_availability_repository)],
    authorizer: Annotated[Authorizer, Depends(get_authorizer)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    slot_lock: Annotated[SlotLock, Depends(get_slot_lock)],
    policy: Annotated[ReschedulePolicy, Depends(get_reschedule_policy)],
) -> AppointmentScheduler:
    """Get the appointment scheduler wired to its collaborators."""
    return AppointmentScheduler(
        repository=repository,
        authorizer=authorizer,
        notifier=notifier,
        slot_lock=slot_lock,
        policy=policy,
        availability=availability,
        default_channels=settings.default_notification_channels,
        default_duration_minutes=settings.default_slot_duration_minutes,
        patient_cancel_min_hours=settings.patient_cancel_min_hours,
    )


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
FacilityNow = Annotated[datetime, Depends(get_facility_now)]
Scheduler = Annotated[AppointmentScheduler, Depends(get_scheduler)]
AppointmentRepo = Annotated[SqlAppointmentRepository, Depends(get_appointment_repository)]
AvailabilityRepo = Annotated[AvailabilityRepository, Depends(get_availability_repository)]
