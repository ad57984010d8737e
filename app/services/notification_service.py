"""Patient notifications about scheduling changes, written to an outbox.

Delivery through email, SMS or WhatsApp is done by an external worker that
reads pending rows of ``appointment_notifications``.
"""

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointment_notifications import appointment_notifications
from app.scheduling.models import NotificationRequest

logger = structlog.get_logger(__name__)

NOTIFICATION_MESSAGES = {
    "booking": ("Appointment Scheduled", "Your appointment has been scheduled"),
    "reschedule": ("Appointment Rescheduled", "Your appointment has been moved to a new time"),
    "rebook": ("Appointment Booked", "A new appointment has been booked for you"),
    "cancellation": ("Appointment Cancelled", "Your appointment has been cancelled"),
}


class OutboxNotifier:
    """Records notification intents in the outbox table."""

    def __init__(self, db: AsyncSession):
        """Initialize notifier with database session."""
        self.db = db

    async def dispatch(self, request: NotificationRequest) -> None:
        """
        Write a pending notification for the patient.

        Args:
            request: Appointment, kind and channels to notify through

        Raises:
            SQLAlchemyError: If the outbox row cannot be written
        """
        title, body = NOTIFICATION_MESSAGES.get(
            request.kind, ("Appointment Update", "Your appointment has been updated")
        )
        try:
            await self.db.execute(
                insert(appointment_notifications).values(
                    appointment_id=request.appointment_id,
                    tenant_id=request.tenant_id,
                    kind=request.kind,
                    channels=[channel.value for channel in request.channels],
                    payload={
                        "title": title,
                        "body": body,
                        "screen": f"/appointments/{request.appointment_id}",
                    },
                )
            )
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(
            "notification_queued",
            appointment_id=request.appointment_id,
            kind=request.kind,
            channels=[channel.value for channel in request.channels],
        )
