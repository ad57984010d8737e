"""Typed commands produced from validated request bodies."""

import datetime as dt
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.scheduling.models import AppointmentStatus, NotificationChannel
from app.scheduling.timeutils import parse_date, parse_time, to_time


def _check_uuid(value: str) -> str:
    UUID(value)
    return value


IdStr = Annotated[str, AfterValidator(_check_uuid)]


def coerce_time(value: Any) -> Any:
    """Accept ``HH:MM`` / ``HH:MM:SS`` strings for time fields."""
    if isinstance(value, str):
        return to_time(parse_time(value))
    return value


def coerce_date(value: Any) -> Any:
    """Accept only ``YYYY-MM-DD`` strings for date fields."""
    if isinstance(value, str):
        return parse_date(value)
    return value


class _SlotFields(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    notes: str | None = Field(None, max_length=2000)
    allow_overbooking: bool = False
    send_notification: bool = True
    notification_channels: list[NotificationChannel] | None = None


class _MoveFields(_SlotFields):
    new_date: dt.date
    new_start_time: dt.time
    new_end_time: dt.time | None = None
    new_doctor_id: IdStr | None = None
    new_member_id: IdStr | None = None

    @field_validator("new_date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        """Validate date format."""
        return coerce_date(v)

    @field_validator("new_start_time", "new_end_time", mode="before")
    @classmethod
    def validate_times(cls, v: Any) -> Any:
        """Validate time format."""
        return coerce_time(v)

    @model_validator(mode="after")
    def validate_end_time(self):
        """Validate end time is after start time."""
        if self.new_end_time is not None and self.new_end_time <= self.new_start_time:
            raise ValueError("new_end_time must be after new_start_time")
        return self


class RescheduleCommand(_MoveFields):
    """Move an active appointment to a new slot."""

    kind: Literal["reschedule"] = "reschedule"
    reason: str | None = Field(None, min_length=3, max_length=500)


class RebookCommand(_MoveFields):
    """Book a fresh appointment from a terminal one."""

    kind: Literal["rebook"] = "rebook"
    new_service_id: IdStr | None = None


class BookCommand(_SlotFields):
    """Create a new appointment."""

    kind: Literal["book"] = "book"
    patient_id: IdStr
    service_id: IdStr | None = None
    doctor_id: IdStr | None = None
    member_id: IdStr | None = None
    appointment_date: dt.date
    start_time: dt.time
    end_time: dt.time | None = None
    total_amount: Decimal | None = Field(None, ge=0)
    send_notification: bool = False

    @field_validator("appointment_date", mode="before")
    @classmethod
    def validate_date(cls, v: Any) -> Any:
        """Validate date format."""
        return coerce_date(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_times(cls, v: Any) -> Any:
        """Validate time format."""
        return coerce_time(v)

    @model_validator(mode="after")
    def validate_booking(self):
        """Require a provider and an end time after the start time."""
        if not self.doctor_id and not self.member_id:
            raise ValueError("Either doctor_id or member_id is required")
        if self.end_time is not None and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class StatusChangeCommand(BaseModel):
    """Request a status transition."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    new_status: AppointmentStatus
    reason: str | None = Field(None, max_length=500)
    notes: str | None = Field(None, max_length=2000)
    automated: bool = False
    change_source: str = Field(default="api", max_length=50)


class PatientCancelCommand(BaseModel):
    """A patient cancelling their own appointment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    reason: str | None = Field(None, max_length=500)
    send_notification: bool = True


AppointmentCommand = Annotated[
    BookCommand | RescheduleCommand | RebookCommand,
    Field(discriminator="kind"),
]
