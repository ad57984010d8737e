"""Reschedule and rebook eligibility rules."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.scheduling.models import TERMINAL_STATUSES, Appointment, AppointmentStatus

REBOOKABLE_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
    AppointmentStatus.CANCELLED,
)


class ReschedulePolicy(BaseModel):
    """Configuration for reschedule policies."""

    model_config = ConfigDict(frozen=True)

    # 0 means unlimited
    max_reschedules_per_appointment: int = Field(default=3, ge=0)
    min_hours_before_appointment: float = Field(default=24, ge=0)
    allowed_source_statuses: tuple[AppointmentStatus, ...] = (
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
    )
    requires_reason: bool = True
    notify_patient: bool = True

    @field_validator("allowed_source_statuses")
    @classmethod
    def validate_source_statuses(
        cls, v: tuple[AppointmentStatus, ...]
    ) -> tuple[AppointmentStatus, ...]:
        """A rescheduled original is cancelled, so it cannot start terminal."""
        terminal = [status.value for status in v if status in TERMINAL_STATUSES]
        if terminal:
            raise ValueError(f"Terminal statuses cannot be rescheduled: {', '.join(terminal)}")
        return v


class RescheduleEligibility(BaseModel):
    """Result of checking if an appointment can be rescheduled."""

    can_reschedule: bool
    reasons: list[str]
    max_reschedules_reached: bool = False
    cutoff_time_passed: bool = False
    status_not_allowed: bool = False


class RebookEligibility(BaseModel):
    """Result of checking if an appointment can be rebooked."""

    can_rebook: bool
    reasons: list[str]
    current_status: AppointmentStatus
    allowed_statuses: list[AppointmentStatus] = list(REBOOKABLE_STATUSES)


def is_reschedule_limit_reached(current_count: int, max_reschedules: int) -> bool:
    """Check if reschedule limit is reached."""
    if max_reschedules == 0:
        return False
    return current_count >= max_reschedules


def check_reschedule_eligibility(
    appointment: Appointment,
    policy: ReschedulePolicy,
    now: dt.datetime,
) -> RescheduleEligibility:
    """
    Check every reschedule rule and collect all failing reasons.

    Args:
        appointment: Appointment to move
        policy: Active reschedule policy
        now: Current facility-local time (naive)

    Returns:
        Eligibility with one reason per failed rule
    """
    reasons: list[str] = []

    status_allowed = appointment.status in policy.allowed_source_statuses
    if not status_allowed:
        reasons.append(f'Status "{appointment.status.value}" does not allow rescheduling')

    max_reached = is_reschedule_limit_reached(
        appointment.reschedule_count,
        policy.max_reschedules_per_appointment,
    )
    if max_reached:
        reasons.append(
            f"Reached the limit of {policy.max_reschedules_per_appointment} reschedules"
        )

    cutoff = appointment.starts_at - dt.timedelta(hours=policy.min_hours_before_appointment)
    cutoff_passed = now > cutoff
    if cutoff_passed:
        reasons.append(
            f"Rescheduling requires at least {policy.min_hours_before_appointment:g} hours notice"
        )

    return RescheduleEligibility(
        can_reschedule=not reasons,
        reasons=reasons,
        max_reschedules_reached=max_reached,
        cutoff_time_passed=cutoff_passed,
        status_not_allowed=not status_allowed,
    )


def check_rebook_eligibility(appointment: Appointment) -> RebookEligibility:
    """Only appointments in a terminal status can be rebooked."""
    reasons: list[str] = []
    if appointment.status not in REBOOKABLE_STATUSES:
        reasons.append(
            f'Status "{appointment.status.value}" does not allow rebooking. '
            "Only completed, no-show or cancelled appointments can be rebooked."
        )
    return RebookEligibility(
        can_rebook=not reasons,
        reasons=reasons,
        current_status=appointment.status,
    )
