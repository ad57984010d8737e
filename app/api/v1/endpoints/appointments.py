"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.core.exceptions import ForbiddenError
from app.dependencies import AppointmentRepo, CurrentActor, FacilityNow, Scheduler
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    BookingResponse,
    CancellationResponse,
    ChainResponse,
    PatientCancelRequest,
    RebookEligibilityResponse,
    RebookRequest,
    RebookResponse,
    RescheduleEligibilityResponse,
    RescheduleRequest,
    RescheduleResponse,
    StatusHistoryResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from app.scheduling.models import AppointmentStatus, Role

router = APIRouter()


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Create new appointment",
)
async def create_appointment(
    data: AppointmentCreate,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
) -> BookingResponse:
    """
    Book a new appointment in the actor's tenant.

    Args:
        data: Appointment creation data
        actor: Authenticated user
        scheduler: Appointment scheduler
        now: Current facility-local time

    Returns:
        Created appointment, with overbooking details
    """
    return await scheduler.book(data, actor, now)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    repository: AppointmentRepo,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    patient_id: UUID | None = Query(None),
    doctor_id: UUID | None = Query(None),
    member_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments of the actor's tenant with filtering.

    Args:
        actor: Authenticated user
        repository: Appointment repository
        status_filter: Filter by status
        patient_id: Filter by patient ID
        doctor_id: Filter by doctor ID
        member_id: Filter by assigned member ID
        from_date: First appointment date (YYYY-MM-DD)
        to_date: Last appointment date (YYYY-MM-DD)
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    if actor.role == Role.PATIENT:
        raise ForbiddenError("Patients can only list their own appointments")
    if not actor.tenant_id:
        raise ForbiddenError("You are not a member of any tenant")

    filters = AppointmentFilters(
        status=status_filter,
        patient_id=str(patient_id) if patient_id else None,
        doctor_id=str(doctor_id) if doctor_id else None,
        member_id=str(member_id) if member_id else None,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await repository.list_appointments(actor.tenant_id, filters)


@router.get(
    "/mine",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List my appointments",
)
async def list_my_appointments(
    actor: CurrentActor,
    repository: AppointmentRepo,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List the appointments booked for the authenticated patient.

    Patients without a tenant claim see their appointments at every clinic.
    """
    if actor.role != Role.PATIENT:
        raise ForbiddenError("Only patients have their own appointment list")

    filters = AppointmentFilters(
        status=status_filter,
        patient_id=actor.id,
        page=page,
        page_size=page_size,
    )
    return await repository.list_appointments(actor.tenant_id, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
) -> AppointmentResponse:
    """
    Get a specific appointment by ID.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated user
        scheduler: Appointment scheduler

    Returns:
        Appointment details
    """
    return await scheduler.get_appointment(str(appointment_id), actor)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=RescheduleResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
) -> RescheduleResponse:
    """
    Move an appointment to a new slot.

    A new pending appointment is created and the original is cancelled.

    Args:
        appointment_id: Appointment to move
        data: New slot and reason
        actor: Authenticated user
        scheduler: Appointment scheduler
        now: Current facility-local time

    Returns:
        New and original appointments
    """
    return await scheduler.execute(data, actor, now, appointment_id=str(appointment_id))


@router.get(
    "/{appointment_id}/reschedule",
    response_model=RescheduleEligibilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check reschedule eligibility",
)
async def check_reschedule(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
) -> RescheduleEligibilityResponse:
    """
    Check whether an appointment can be rescheduled, without changing it.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated user
        scheduler: Appointment scheduler
        now: Current facility-local time

    Returns:
        Eligibility with every failing reason and the active policy
    """
    eligibility = await scheduler.reschedule_eligibility(str(appointment_id), actor, now)
    return RescheduleEligibilityResponse(
        appointment_id=str(appointment_id),
        eligibility=eligibility,
        policy=scheduler.policy,
        checked_at=now,
    )


@router.post(
    "/{appointment_id}/rebook",
    response_model=RebookResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Rebook appointment",
)
async def rebook_appointment(
    appointment_id: UUID,
    data: RebookRequest,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
) -> RebookResponse:
    """
    Book a new appointment from a completed, cancelled or no-show one.

    Args:
        appointment_id: Appointment to rebook from
        data: New slot and optional service
        actor: Authenticated user
        scheduler: Appointment scheduler
        now: Current facility-local time

    Returns:
        New appointment and the untouched original
    """
    return await scheduler.execute(data, actor, now, appointment_id=str(appointment_id))


@router.get(
    "/{appointment_id}/rebook",
    response_model=RebookEligibilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check rebook eligibility",
)
async def check_rebook(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
) -> RebookEligibilityResponse:
    """Check whether an appointment can be rebooked, without changing it."""
    eligibility = await scheduler.rebook_eligibility(str(appointment_id), actor)
    return RebookEligibilityResponse(appointment_id=str(appointment_id), eligibility=eligibility)


@router.put(
    "/{appointment_id}/status",
    response_model=StatusUpdateResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: StatusUpdateRequest,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
) -> StatusUpdateResponse:
    """
    Apply a status transition.

    Args:
        appointment_id: Appointment ID
        data: Requested status with reason and notes
        actor: Authenticated user
        scheduler: Appointment scheduler
        now: Current facility-local time

    Returns:
        Accepted transition and updated appointment
    """
    return await scheduler.change_status(str(appointment_id), data, actor, now)


@router.put(
    "/{appointment_id}/cancel",
    response_model=CancellationResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel my appointment",
)
async def cancel_my_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
    now: FacilityNow,
    data: PatientCancelRequest | None = None,
) -> CancellationResponse:
    """
    Cancel the authenticated patient's own appointment.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated patient
        scheduler: Appointment scheduler
        now: Current facility-local time
        data: Optional reason and notification switch

    Returns:
        Cancelled appointment
    """
    return await scheduler.cancel_by_patient(
        str(appointment_id), data or PatientCancelRequest(), actor, now
    )


@router.get(
    "/{appointment_id}/status",
    response_model=StatusHistoryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment status history",
)
async def get_status_history(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
) -> StatusHistoryResponse:
    """Current status, recorded status changes and reachable statuses."""
    appointment, history, transitions = await scheduler.status_history(
        str(appointment_id), actor
    )
    return StatusHistoryResponse(
        appointment_id=appointment.id,
        current_status=appointment.status,
        available_transitions=transitions,
        history=history,
    )


@router.get(
    "/{appointment_id}/chain",
    response_model=ChainResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get reschedule chain",
)
async def get_reschedule_chain(
    appointment_id: UUID,
    actor: CurrentActor,
    scheduler: Scheduler,
) -> ChainResponse:
    """
    Get the chain of reschedules and rebooks an appointment belongs to.

    Args:
        appointment_id: Any appointment of the chain
        actor: Authenticated user
        scheduler: Appointment scheduler

    Returns:
        Chain ordered from the original appointment
    """
    return await scheduler.chain(str(appointment_id), actor)
