"""Booking, reschedule and rebook orchestration.

Every step before the mutation is free of side effects. The mutation runs
under the ``(tenant, provider, date)`` slot lock and is shielded from
request cancellation so a compensating delete always gets to run.
"""

import asyncio
import datetime as dt
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

import structlog
from pydantic import BaseModel

from app.core.exceptions import (
    CompensationError,
    EligibilityError,
    ForbiddenError,
    InvalidTransitionError,
    MutationError,
    NoOpTransitionError,
    NotFoundError,
    ValidationError,
)
from app.scheduling.availability import fits_availability
from app.scheduling.commands import (
    AppointmentCommand,
    BookCommand,
    PatientCancelCommand,
    RebookCommand,
    RescheduleCommand,
    StatusChangeCommand,
)
from app.scheduling.conflicts import CandidateSlot, ensure_bookable, find_conflicts
from app.scheduling.eligibility import (
    RebookEligibility,
    RescheduleEligibility,
    ReschedulePolicy,
    check_rebook_eligibility,
    check_reschedule_eligibility,
)
from app.scheduling.lineage import AppointmentRescheduleChain, build_chain
from app.scheduling.models import (
    BLOCKING_STATUSES,
    Actor,
    Appointment,
    AppointmentStatus,
    NewAppointment,
    NotificationChannel,
    NotificationRequest,
    Service,
    StatusAudit,
    StatusHistoryEntry,
)
from app.scheduling.ports import (
    AppointmentRepository,
    Authorizer,
    AvailabilityRepository,
    Notifier,
    SlotLock,
)
from app.scheduling.timeutils import TimeRange, add_minutes, parse_time
from app.scheduling.transitions import StatusTransition, allowed_transitions, transition

logger = structlog.get_logger(__name__)


class MoveResult(BaseModel):
    """Response for reschedule/rebook operations."""

    success: bool = True
    new_appointment: Appointment
    original_appointment: Appointment
    reschedule_count: int
    message: str
    notification_sent: bool = False
    overbooked: bool = False
    conflicting_appointment_ids: list[str] = []


class BookingResult(BaseModel):
    """Response for a new booking."""

    success: bool = True
    appointment: Appointment
    notification_sent: bool = False
    overbooked: bool = False
    conflicting_appointment_ids: list[str] = []


class CancellationResult(BaseModel):
    """Response for a patient cancelling their own appointment."""

    success: bool = True
    appointment: Appointment
    message: str
    notification_sent: bool = False


class StatusChangeResult(BaseModel):
    """Accepted status change and the updated appointment."""

    appointment: Appointment
    transition: StatusTransition
    changed_at: dt.datetime
    changed_by: Actor
    reason: str | None = None
    notes: str | None = None


class AppointmentScheduler:
    """Applies the scheduling rules over the persistence collaborators."""

    def __init__(
        self,
        repository: AppointmentRepository,
        authorizer: Authorizer,
        notifier: Notifier,
        slot_lock: SlotLock,
        policy: ReschedulePolicy,
        availability: AvailabilityRepository | None = None,
        default_channels: Sequence[NotificationChannel] = (NotificationChannel.EMAIL,),
        default_duration_minutes: int = 30,
        patient_cancel_min_hours: int = 24,
    ):
        """Initialize scheduler with its collaborators."""
        self.repository = repository
        self.authorizer = authorizer
        self.notifier = notifier
        self.slot_lock = slot_lock
        self.policy = policy
        self.availability = availability
        self.default_channels = list(default_channels)
        self.default_duration_minutes = default_duration_minutes
        self.patient_cancel_min_hours = patient_cancel_min_hours

    # ------------------------------------------------------------------
    # Loading and authorization
    # ------------------------------------------------------------------

    async def get_appointment(self, appointment_id: str, actor: Actor) -> Appointment:
        """
        Fetch an appointment the actor may see.

        Raises:
            NotFoundError: If appointment not found
            ForbiddenError: If the actor belongs to another tenant, or is
                another patient
        """
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if not self.authorizer.may_view(actor, appointment):
            raise ForbiddenError("Access denied to this appointment")
        return appointment

    async def _load_for_update(self, appointment_id: str, actor: Actor, action: str) -> Appointment:
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if not self.authorizer.may_act(actor, appointment):
            raise ForbiddenError(f"You do not have permission to {action} this appointment")
        return appointment

    async def _get_service(self, service_id: str, tenant_id: str) -> Service:
        service = await self.repository.get_service(service_id)
        if service is None or service.tenant_id != tenant_id:
            raise NotFoundError("Service not found")
        return service

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def execute(
        self,
        command: AppointmentCommand,
        actor: Actor,
        now: dt.datetime,
        appointment_id: str | None = None,
    ) -> MoveResult | BookingResult:
        """Dispatch a validated command to its operation."""
        if isinstance(command, BookCommand):
            return await self.book(command, actor, now)
        if appointment_id is None:
            raise ValidationError("appointment_id is required")
        if isinstance(command, RescheduleCommand):
            return await self.reschedule(appointment_id, command, actor, now)
        if isinstance(command, RebookCommand):
            return await self.rebook(appointment_id, command, actor, now)
        raise ValidationError(f"Unsupported command: {command!r}")

    async def book(self, command: BookCommand, actor: Actor, now: dt.datetime) -> BookingResult:
        """
        Create a new pending appointment.

        Args:
            command: Validated booking command
            actor: Authenticated user
            now: Current facility-local time

        Returns:
            The created appointment and overbooking details

        Raises:
            ForbiddenError: If the actor has no tenant
            NotFoundError: If the service does not exist
            ValidationError: If the slot is in the past or outside availability
            ConflictError: If the slot overlaps and overbooking is not allowed
        """
        if not actor.tenant_id or not self.authorizer.may_access_tenant(actor, actor.tenant_id):
            raise ForbiddenError("You do not have permission to book appointments")
        tenant_id = actor.tenant_id

        service = None
        if command.service_id:
            service = await self._get_service(command.service_id, tenant_id)

        end_time = self._resolve_end_time(
            command.start_time,
            command.end_time,
            service.duration_minutes if service else None,
            fallback_minutes=self.default_duration_minutes,
        )
        if dt.datetime.combine(command.appointment_date, command.start_time) < now:
            raise ValidationError("Cannot book an appointment in the past")

        record = NewAppointment(
            tenant_id=tenant_id,
            patient_id=command.patient_id,
            service_id=command.service_id,
            doctor_id=command.doctor_id,
            member_id=command.member_id,
            appointment_date=command.appointment_date,
            start_time=command.start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING,
            notes=command.notes,
            total_amount=command.total_amount
            if command.total_amount is not None
            else (service.price if service else None),
        )
        await self._check_availability(record)

        appointment, conflicts = await asyncio.shield(
            self._locked_insert(record, exclude_id=None, allow_overbooking=command.allow_overbooking)
        )
        notification_sent = await self._notify(
            appointment, "booking", command.send_notification, command.notification_channels
        )

        logger.info(
            "appointment_booked",
            appointment_id=appointment.id,
            tenant_id=tenant_id,
            overbooked=bool(conflicts),
        )
        return BookingResult(
            appointment=appointment,
            notification_sent=notification_sent,
            overbooked=bool(conflicts),
            conflicting_appointment_ids=[c.id for c in conflicts],
        )

    async def reschedule(
        self,
        appointment_id: str,
        command: RescheduleCommand,
        actor: Actor,
        now: dt.datetime,
    ) -> MoveResult:
        """
        Move an active appointment: create the new row, cancel the original.

        Raises:
            NotFoundError: If appointment not found
            ForbiddenError: If the actor may not act on the appointment
            ValidationError: If the request is incomplete or the slot malformed
            EligibilityError: If the policy refuses, with every reason
            ConflictError: If the new slot overlaps and overbooking is not allowed
            ConcurrentUpdateError: If the original changed status meanwhile (compensated)
            MutationError: If a write failed (and was compensated)
            CompensationError: If a write failed and so did its compensation
        """
        original = await self._load_for_update(appointment_id, actor, "reschedule")

        if self.policy.requires_reason and not command.reason:
            raise ValidationError("A reason of at least 3 characters is required")

        eligibility = check_reschedule_eligibility(original, self.policy, now)
        if not eligibility.can_reschedule:
            raise EligibilityError("Cannot reschedule appointment", eligibility.reasons)

        duration = None
        if original.service_id:
            service = await self.repository.get_service(original.service_id)
            duration = service.duration_minutes if service else None
        end_time = self._resolve_end_time(
            command.new_start_time,
            command.new_end_time,
            duration,
            fallback_minutes=TimeRange.parse(original.start_time, original.end_time).duration,
        )

        record = NewAppointment(
            tenant_id=original.tenant_id,
            patient_id=original.patient_id,
            service_id=original.service_id,
            doctor_id=command.new_doctor_id or original.doctor_id,
            member_id=command.new_member_id or original.member_id,
            appointment_date=command.new_date,
            start_time=command.new_start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING,
            notes=command.notes or original.notes,
            total_amount=original.total_amount,
            original_appointment_id=original.chain_root_id,
            rescheduled_from_id=original.id,
            reschedule_count=original.reschedule_count + 1,
            is_rebook=False,
            rescheduled_at=now,
            rescheduled_by=actor.id,
            reschedule_reason=command.reason,
        )

        new_appointment, cancelled, conflicts = await asyncio.shield(
            self._locked_reschedule(original, record, command, actor)
        )
        notification_sent = await self._notify(
            new_appointment,
            "reschedule",
            command.send_notification and self.policy.notify_patient,
            command.notification_channels,
        )

        logger.info(
            "appointment_rescheduled",
            original_appointment_id=original.id,
            new_appointment_id=new_appointment.id,
            reschedule_count=new_appointment.reschedule_count,
            overbooked=bool(conflicts),
        )
        return MoveResult(
            new_appointment=new_appointment,
            original_appointment=cancelled,
            reschedule_count=new_appointment.reschedule_count,
            message="Appointment rescheduled successfully",
            notification_sent=notification_sent,
            overbooked=bool(conflicts),
            conflicting_appointment_ids=[c.id for c in conflicts],
        )

    async def rebook(
        self,
        appointment_id: str,
        command: RebookCommand,
        actor: Actor,
        now: dt.datetime,
    ) -> MoveResult:
        """
        Book a fresh appointment from a completed, cancelled or no-show one.

        The original appointment is left untouched.
        """
        original = await self._load_for_update(appointment_id, actor, "rebook")

        eligibility = check_rebook_eligibility(original)
        if not eligibility.can_rebook:
            raise EligibilityError("Cannot rebook this appointment", eligibility.reasons)

        service: Service | None = None
        if command.new_service_id:
            service = await self._get_service(command.new_service_id, original.tenant_id)
        elif original.service_id:
            service = await self.repository.get_service(original.service_id)

        end_time = self._resolve_end_time(
            command.new_start_time,
            command.new_end_time,
            service.duration_minutes if service else None,
            fallback_minutes=TimeRange.parse(original.start_time, original.end_time).duration,
        )

        total_amount = original.total_amount
        if command.new_service_id and service and service.price is not None:
            total_amount = service.price

        record = NewAppointment(
            tenant_id=original.tenant_id,
            patient_id=original.patient_id,
            service_id=command.new_service_id or original.service_id,
            doctor_id=command.new_doctor_id or original.doctor_id,
            member_id=command.new_member_id or original.member_id,
            appointment_date=command.new_date,
            start_time=command.new_start_time,
            end_time=end_time,
            status=AppointmentStatus.PENDING,
            notes=command.notes,
            total_amount=total_amount,
            original_appointment_id=original.chain_root_id,
            rescheduled_from_id=original.id,
            reschedule_count=0,
            is_rebook=True,
            rescheduled_at=now,
            rescheduled_by=actor.id,
            reschedule_reason=f"Rebook of {original.status.value} appointment",
        )

        new_appointment, conflicts = await asyncio.shield(
            self._locked_insert(
                record,
                exclude_id=original.id,
                allow_overbooking=command.allow_overbooking,
            )
        )
        notification_sent = await self._notify(
            new_appointment,
            "rebook",
            command.send_notification and self.policy.notify_patient,
            command.notification_channels,
        )

        logger.info(
            "appointment_rebooked",
            original_appointment_id=original.id,
            new_appointment_id=new_appointment.id,
            overbooked=bool(conflicts),
        )
        return MoveResult(
            new_appointment=new_appointment,
            original_appointment=original,
            reschedule_count=0,
            message="Appointment rebooked successfully",
            notification_sent=notification_sent,
            overbooked=bool(conflicts),
            conflicting_appointment_ids=[c.id for c in conflicts],
        )

    async def change_status(
        self,
        appointment_id: str,
        command: StatusChangeCommand,
        actor: Actor,
        now: dt.datetime,
    ) -> StatusChangeResult:
        """Apply a status transition and record it in the history."""
        appointment = await self.get_appointment(appointment_id, actor)
        accepted = transition(appointment.status, command.new_status, actor.role)

        updated = await self.repository.update_appointment_status(
            appointment.id,
            accepted.to_status,
            audit=StatusAudit(
                changed_by=actor.id,
                changed_by_role=actor.role.value,
                reason=command.reason,
                notes=command.notes,
                automated=command.automated,
                change_source=command.change_source,
            ),
            expected_statuses=(accepted.from_status,),
        )
        logger.info(
            "appointment_status_changed",
            appointment_id=appointment.id,
            from_status=accepted.from_status.value,
            to_status=accepted.to_status.value,
            role=actor.role.value,
        )
        return StatusChangeResult(
            appointment=updated,
            transition=accepted,
            changed_at=now,
            changed_by=actor,
            reason=command.reason,
            notes=command.notes,
        )

    async def cancel_by_patient(
        self,
        appointment_id: str,
        command: PatientCancelCommand,
        actor: Actor,
        now: dt.datetime,
    ) -> CancellationResult:
        """
        Cancel the actor's own appointment with enough notice.

        Raises:
            NotFoundError: If appointment not found
            ForbiddenError: If the appointment is not the actor's
            NoOpTransitionError: If it is already cancelled
            InvalidTransitionError: If it is completed or a no-show
            EligibilityError: If it starts within the notice window
        """
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        if not self.authorizer.owns_as_patient(actor, appointment):
            raise ForbiddenError("You can only cancel your own appointments")

        if appointment.status == AppointmentStatus.CANCELLED:
            raise NoOpTransitionError(appointment.status.value)
        reachable = allowed_transitions(appointment.status)
        if AppointmentStatus.CANCELLED not in reachable:
            raise InvalidTransitionError(
                appointment.status.value,
                AppointmentStatus.CANCELLED.value,
                [s.value for s in reachable],
            )
        if appointment.starts_at - now < dt.timedelta(hours=self.patient_cancel_min_hours):
            raise EligibilityError(
                "Cannot cancel appointment",
                [
                    f"Appointments must be cancelled at least "
                    f"{self.patient_cancel_min_hours} hours in advance"
                ],
            )

        cancelled = await self.repository.update_appointment_status(
            appointment.id,
            AppointmentStatus.CANCELLED,
            audit=StatusAudit(
                changed_by=actor.id,
                changed_by_role=actor.role.value,
                reason=command.reason,
                change_source="patient",
            ),
            expected_statuses=(appointment.status,),
        )
        notification_sent = await self._notify(
            cancelled, "cancellation", command.send_notification, None
        )

        logger.info(
            "appointment_cancelled_by_patient",
            appointment_id=appointment.id,
            patient_id=actor.id,
            previous_status=appointment.status.value,
        )
        return CancellationResult(
            appointment=cancelled,
            message="Appointment cancelled successfully",
            notification_sent=notification_sent,
        )

    # ------------------------------------------------------------------
    # Read-only checks
    # ------------------------------------------------------------------

    async def reschedule_eligibility(
        self, appointment_id: str, actor: Actor, now: dt.datetime
    ) -> RescheduleEligibility:
        """Eligibility of an appointment for rescheduling, without mutating."""
        appointment = await self.get_appointment(appointment_id, actor)
        return check_reschedule_eligibility(appointment, self.policy, now)

    async def rebook_eligibility(self, appointment_id: str, actor: Actor) -> RebookEligibility:
        """Whether an appointment can be rebooked, without mutating."""
        appointment = await self.get_appointment(appointment_id, actor)
        return check_rebook_eligibility(appointment)

    async def status_history(
        self, appointment_id: str, actor: Actor
    ) -> tuple[Appointment, list[StatusHistoryEntry], list[AppointmentStatus]]:
        """Appointment, its recorded status changes and the reachable statuses."""
        appointment = await self.get_appointment(appointment_id, actor)
        history = await self.repository.list_status_history(appointment.id)
        return appointment, history, allowed_transitions(appointment.status)

    async def chain(self, appointment_id: str, actor: Actor) -> AppointmentRescheduleChain:
        """The reschedule/rebook chain the appointment belongs to."""
        appointment = await self.get_appointment(appointment_id, actor)
        root_id = appointment.chain_root_id
        return build_chain(root_id, await self.repository.list_chain(root_id))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_end_time(
        start: dt.time,
        end: dt.time | None,
        duration_minutes: int | None,
        fallback_minutes: int,
    ) -> dt.time:
        """Explicit end, else start + service duration, else start + fallback."""
        if end is not None:
            if parse_time(end) <= parse_time(start):
                raise ValidationError("End time must be after start time")
            return end
        return add_minutes(start, duration_minutes or fallback_minutes)

    async def _check_availability(self, record: NewAppointment) -> None:
        provider = record.provider
        if self.availability is None or provider is None:
            return
        windows = await self.availability.list_windows(record.tenant_id, provider)
        breaks = await self.availability.list_breaks(record.tenant_id, provider)
        slot = TimeRange.parse(record.start_time, record.end_time)
        if not fits_availability(slot, record.appointment_date, windows, breaks):
            raise ValidationError("The selected time is outside the provider's availability")

    @asynccontextmanager
    async def _slot_guard(self, record: NewAppointment) -> AsyncIterator[None]:
        provider = record.provider
        if provider is None:
            yield
            return
        async with self.slot_lock.hold(record.tenant_id, provider.id, record.appointment_date):
            yield

    async def _detect_conflicts(
        self,
        record: NewAppointment,
        exclude_id: str | None,
        allow_overbooking: bool,
    ) -> list[Appointment]:
        provider = record.provider
        if provider is None:
            return []

        bookings = await self.repository.find_bookings(
            record.tenant_id, provider, record.appointment_date, BLOCKING_STATUSES
        )
        candidate = CandidateSlot(
            tenant_id=record.tenant_id,
            provider_id=provider.id,
            date=record.appointment_date,
            start=record.start_time,
            end=record.end_time,
            exclude_booking_id=exclude_id,
        )
        conflicts = find_conflicts(candidate, bookings)
        if conflicts:
            logger.info(
                "slot_conflicts_detected",
                tenant_id=record.tenant_id,
                provider_id=provider.id,
                date=record.appointment_date.isoformat(),
                conflicting_ids=[c.id for c in conflicts],
                allow_overbooking=allow_overbooking,
            )
        ensure_bookable(conflicts, allow_overbooking)
        return conflicts

    async def _insert(self, record: NewAppointment) -> Appointment:
        try:
            return await self.repository.insert_appointment(record)
        except MutationError:
            raise
        except Exception as e:
            raise MutationError(f"Failed to create new appointment: {e}") from e

    async def _locked_insert(
        self,
        record: NewAppointment,
        exclude_id: str | None,
        allow_overbooking: bool,
    ) -> tuple[Appointment, list[Appointment]]:
        async with self._slot_guard(record):
            conflicts = await self._detect_conflicts(record, exclude_id, allow_overbooking)
            return await self._insert(record), conflicts

    async def _locked_reschedule(
        self,
        original: Appointment,
        record: NewAppointment,
        command: RescheduleCommand,
        actor: Actor,
    ) -> tuple[Appointment, Appointment, list[Appointment]]:
        async with self._slot_guard(record):
            conflicts = await self._detect_conflicts(
                record, original.id, command.allow_overbooking
            )
            new_appointment = await self._insert(record)
            cancelled = await self._cancel_or_compensate(original, new_appointment, command, actor)
            return new_appointment, cancelled, conflicts

    async def _cancel_or_compensate(
        self,
        original: Appointment,
        new_appointment: Appointment,
        command: RescheduleCommand,
        actor: Actor,
    ) -> Appointment:
        reason = command.reason or "no reason given"
        note = f"{original.notes or ''}\n[Rescheduled: {reason}]".strip()
        try:
            return await self.repository.update_appointment_status(
                original.id,
                AppointmentStatus.CANCELLED,
                notes=note,
                audit=StatusAudit(
                    changed_by=actor.id,
                    changed_by_role=actor.role.value,
                    reason=command.reason,
                    change_source="reschedule",
                ),
                expected_statuses=self.policy.allowed_source_statuses,
            )
        except Exception as e:
            mutation_error = (
                e
                if isinstance(e, MutationError)
                else MutationError(f"Failed to cancel original appointment: {e}")
            )
            logger.error(
                "reschedule_cancel_failed",
                original_appointment_id=original.id,
                new_appointment_id=new_appointment.id,
                error=str(e),
            )
            try:
                await self.repository.delete_appointment(new_appointment.id)
            except Exception as compensation_error:
                logger.critical(
                    "reschedule_compensation_failed",
                    original_appointment_id=original.id,
                    new_appointment_id=new_appointment.id,
                    error=str(compensation_error),
                )
                raise CompensationError(mutation_error, compensation_error) from compensation_error

            logger.warning(
                "reschedule_compensated",
                original_appointment_id=original.id,
                deleted_appointment_id=new_appointment.id,
            )
            if mutation_error is e:
                raise
            raise mutation_error from e

    async def _notify(
        self,
        appointment: Appointment,
        kind: str,
        send: bool,
        channels: list[NotificationChannel] | None,
    ) -> bool:
        """Record the intent to notify; failures never undo the mutation."""
        if not send:
            return False
        request = NotificationRequest(
            appointment_id=appointment.id,
            tenant_id=appointment.tenant_id,
            kind=kind,
            channels=channels or self.default_channels,
        )
        try:
            await self.notifier.dispatch(request)
        except Exception as e:
            logger.warning(
                "notification_dispatch_failed",
                appointment_id=appointment.id,
                kind=kind,
                error=str(e),
            )
            return False
        return True
