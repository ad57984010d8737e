"""Provider availability endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.exceptions import ForbiddenError, ValidationError
from app.dependencies import AvailabilityRepo, CurrentActor, FacilityNow
from app.scheduling.availability import SuggestionHorizon, horizon_end, suggest_slots
from app.scheduling.models import Provider, ProviderKind
from app.schemas.availability import AvailableSlotsResponse

router = APIRouter()


@router.get(
    "/providers/{kind}/{provider_id}/available-slots",
    response_model=AvailableSlotsResponse,
    status_code=status.HTTP_200_OK,
    tags=["Providers"],
    summary="List available slots",
)
async def get_available_slots(
    kind: ProviderKind,
    provider_id: UUID,
    actor: CurrentActor,
    availability: AvailabilityRepo,
    now: FacilityNow,
    base_date: date | None = Query(None, description="First date to search, defaults to today"),
    horizon: SuggestionHorizon = Query(SuggestionHorizon.NEXT_WEEK),
    duration_minutes: int = Query(30, ge=5, le=480),
    max_per_day: int = Query(10, ge=1, le=50),
) -> AvailableSlotsResponse:
    """
    Suggest free slots of a doctor or member.

    Args:
        kind: Provider kind
        provider_id: Provider ID
        actor: Authenticated user
        availability: Availability repository
        now: Current facility-local time
        base_date: First date to search
        horizon: How far ahead to search
        duration_minutes: Slot length
        max_per_day: Maximum slots per date

    Returns:
        Free slots grouped by date
    """
    if not actor.tenant_id:
        raise ForbiddenError("You are not a member of any tenant")

    start = base_date or now.date()
    if start < now.date():
        raise ValidationError("base_date cannot be in the past")

    provider = Provider(kind=kind, id=str(provider_id))
    windows = await availability.list_windows(actor.tenant_id, provider)
    breaks = await availability.list_breaks(actor.tenant_id, provider)
    bookings = await availability.find_bookings_between(
        actor.tenant_id, provider, start, horizon_end(start, horizon)
    )

    days = suggest_slots(
        start,
        horizon,
        windows,
        breaks,
        bookings,
        duration_minutes=duration_minutes,
        max_per_day=max_per_day,
        now=now,
    )
    return AvailableSlotsResponse(
        provider=provider,
        base_date=start,
        horizon=horizon,
        duration_minutes=duration_minutes,
        total_slots=sum(day.slot_count for day in days),
        days=days,
    )
