"""Database models."""

from app.models.appointment_notifications import appointment_notifications
from app.models.appointment_status_history import appointment_status_history
from app.models.appointments import appointments
from app.models.provider_availability import provider_availability, provider_breaks
from app.models.services import services

__all__ = [
    "appointment_notifications",
    "appointment_status_history",
    "appointments",
    "provider_availability",
    "provider_breaks",
    "services",
]
