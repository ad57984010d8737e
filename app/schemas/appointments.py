"""Appointment schemas for request/response validation."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from app.scheduling.commands import (
    BookCommand,
    PatientCancelCommand,
    RebookCommand,
    RescheduleCommand,
    StatusChangeCommand,
)
from app.scheduling.eligibility import RebookEligibility, ReschedulePolicy, RescheduleEligibility
from app.scheduling.lineage import AppointmentRescheduleChain
from app.scheduling.models import (
    Appointment,
    AppointmentStatus,
    StatusHistoryEntry,
)
from app.scheduling.orchestrator import (
    BookingResult,
    CancellationResult,
    MoveResult,
    StatusChangeResult,
)

# Request bodies are the command objects themselves
AppointmentCreate = BookCommand
RescheduleRequest = RescheduleCommand
RebookRequest = RebookCommand
StatusUpdateRequest = StatusChangeCommand
PatientCancelRequest = PatientCancelCommand

AppointmentResponse = Appointment
BookingResponse = BookingResult
RescheduleResponse = MoveResult
RebookResponse = MoveResult
StatusUpdateResponse = StatusChangeResult
CancellationResponse = CancellationResult
ChainResponse = AppointmentRescheduleChain


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    patient_id: str | None = None
    doctor_id: str | None = None
    member_id: str | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class RescheduleEligibilityResponse(BaseModel):
    """Eligibility of an appointment for rescheduling."""

    appointment_id: str
    eligibility: RescheduleEligibility
    policy: ReschedulePolicy
    checked_at: datetime


class RebookEligibilityResponse(BaseModel):
    """Eligibility of an appointment for rebooking."""

    appointment_id: str
    eligibility: RebookEligibility


class StatusHistoryResponse(BaseModel):
    """Current status, recorded changes and reachable statuses."""

    appointment_id: str
    current_status: AppointmentStatus
    available_transitions: list[AppointmentStatus]
    history: list[StatusHistoryEntry]
