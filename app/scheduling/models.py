"""Domain models for the appointment lifecycle."""

import datetime as dt
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)

# Statuses that occupy a provider's time slot.
BLOCKING_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class Role(str, Enum):
    """Tenant user roles known to the scheduling rules."""

    ADMIN_TENANT = "admin_tenant"
    RECEPTIONIST = "receptionist"
    STAFF = "staff"
    DOCTOR = "doctor"
    MEMBER = "member"
    PATIENT = "patient"


class ProviderKind(str, Enum):
    """Kind of schedulable provider."""

    DOCTOR = "doctor"
    MEMBER = "member"


class NotificationChannel(str, Enum):
    """Channels a patient notification can be sent through."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class Actor(BaseModel):
    """The authenticated user performing an operation."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    tenant_id: str | None = None


class Provider(BaseModel):
    """A doctor or member whose calendar is being booked."""

    model_config = ConfigDict(frozen=True)

    kind: ProviderKind
    id: str


class Service(BaseModel):
    """A catalog service; only the fields scheduling needs."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    tenant_id: str
    name: str
    duration_minutes: int | None = None
    price: Decimal | None = None


class _AppointmentFields(BaseModel):
    tenant_id: str
    patient_id: str | None = None
    service_id: str | None = None
    doctor_id: str | None = None
    member_id: str | None = None
    appointment_date: dt.date
    start_time: dt.time
    end_time: dt.time
    status: AppointmentStatus = AppointmentStatus.PENDING
    notes: str | None = None
    total_amount: Decimal | None = None

    # Lineage
    original_appointment_id: str | None = None
    rescheduled_from_id: str | None = None
    reschedule_count: int = Field(default=0, ge=0)
    is_rebook: bool = False
    rescheduled_at: dt.datetime | None = None
    rescheduled_by: str | None = None
    reschedule_reason: str | None = None

    @model_validator(mode="after")
    def _check_times(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def provider(self) -> Provider | None:
        """The doctor if one is assigned, else the assigned member."""
        if self.doctor_id:
            return Provider(kind=ProviderKind.DOCTOR, id=self.doctor_id)
        if self.member_id:
            return Provider(kind=ProviderKind.MEMBER, id=self.member_id)
        return None

    @property
    def starts_at(self) -> dt.datetime:
        """Naive facility-local start datetime."""
        return dt.datetime.combine(self.appointment_date, self.start_time)


class NewAppointment(_AppointmentFields):
    """An appointment row about to be inserted."""

    model_config = ConfigDict(frozen=True)


class Appointment(_AppointmentFields):
    """A persisted appointment."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def chain_root_id(self) -> str:
        """Root of the reschedule chain this appointment belongs to."""
        return self.original_appointment_id or self.id


class StatusAudit(BaseModel):
    """Who changed a status and why; stored alongside the change."""

    model_config = ConfigDict(frozen=True)

    changed_by: str | None = None
    changed_by_role: str | None = None
    reason: str | None = None
    notes: str | None = None
    automated: bool = False
    change_source: str = "api"


class StatusHistoryEntry(BaseModel):
    """A recorded status change."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    appointment_id: str
    status: AppointmentStatus
    previous_status: AppointmentStatus | None = None
    changed_by_user_id: str | None = None
    changed_by_role: str | None = None
    reason: str | None = None
    notes: str | None = None
    automated: bool = False
    change_source: str | None = None
    created_at: dt.datetime | None = None


class AvailabilityWindow(BaseModel):
    """A weekly working range (or break) for a provider."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    day_of_week: int = Field(ge=0, le=6)
    start_time: dt.time
    end_time: dt.time


class NotificationRequest(BaseModel):
    """Intent to notify a patient about a scheduling change."""

    model_config = ConfigDict(frozen=True)

    appointment_id: str
    tenant_id: str
    kind: str
    channels: list[NotificationChannel]
