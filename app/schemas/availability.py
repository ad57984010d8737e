"""Availability schemas for slot suggestions."""

from datetime import date

from pydantic import BaseModel

from app.scheduling.availability import DailySlots, SuggestionHorizon
from app.scheduling.models import Provider


class AvailableSlotsResponse(BaseModel):
    """Free slots of a provider grouped by date."""

    provider: Provider
    base_date: date
    horizon: SuggestionHorizon
    duration_minutes: int
    total_slots: int
    days: list[DailySlots]
