"""Tests for booking, reschedule and rebook orchestration."""

import asyncio
import datetime as dt
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    CompensationError,
    ConcurrentUpdateError,
    ConflictError,
    EligibilityError,
    ForbiddenError,
    InvalidTransitionError,
    MutationError,
    NoOpTransitionError,
    NotFoundError,
    ValidationError,
)
from app.core.locks import LocalSlotLock
from app.scheduling.commands import (
    BookCommand,
    PatientCancelCommand,
    RebookCommand,
    RescheduleCommand,
    StatusChangeCommand,
)
from app.scheduling.eligibility import ReschedulePolicy
from app.scheduling.models import Actor, AppointmentStatus, NotificationChannel, Role
from app.scheduling.orchestrator import AppointmentScheduler
from app.services.authorization import TenantAuthorizer
from tests.fakes import (
    DOCTOR_ID,
    LONG_SERVICE_ID,
    MEMBER_ID,
    NOW,
    OTHER_DOCTOR_ID,
    OTHER_TENANT_ID,
    PATIENT_ID,
    SERVICE_ID,
    TENANT_ID,
    RecordingNotifier,
)

TOMORROW = NOW.date() + dt.timedelta(days=1)
NEXT_WEEK = NOW.date() + dt.timedelta(days=7)


def reschedule_to(day: dt.date, start: str, **fields) -> RescheduleCommand:
    values = {"new_date": day.isoformat(), "new_start_time": start, "reason": "patient request"}
    values.update(fields)
    return RescheduleCommand(**values)


class TestReschedule:
    @pytest.mark.asyncio
    async def test_end_to_end(self, scheduler, repository, receptionist):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert result.success
        assert result.message == "Appointment rescheduled successfully"
        assert result.reschedule_count == 1
        assert result.new_appointment.status == AppointmentStatus.PENDING
        assert result.new_appointment.appointment_date == NEXT_WEEK
        assert result.new_appointment.start_time == dt.time(14, 0)
        assert result.new_appointment.end_time == dt.time(14, 30)
        assert result.original_appointment.status == AppointmentStatus.CANCELLED
        assert repository.appointments[original.id].status == AppointmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_lineage_preserves_root(self, scheduler, repository, receptionist):
        x = repository.seed()

        y = (
            await scheduler.reschedule(x.id, reschedule_to(NEXT_WEEK, "11:00"), receptionist, NOW)
        ).new_appointment
        z = (
            await scheduler.reschedule(y.id, reschedule_to(NEXT_WEEK, "15:00"), receptionist, NOW)
        ).new_appointment

        assert y.original_appointment_id == x.id
        assert y.rescheduled_from_id == x.id
        assert y.reschedule_count == 1
        assert not y.is_rebook
        assert z.original_appointment_id == x.id
        assert z.rescheduled_from_id == y.id
        assert z.reschedule_count == 2

    @pytest.mark.asyncio
    async def test_carries_over_original_fields(self, scheduler, repository, receptionist):
        original = repository.seed(notes="Bring reports", total_amount=Decimal("75.00"))

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        new = result.new_appointment
        assert new.doctor_id == DOCTOR_ID
        assert new.patient_id == PATIENT_ID
        assert new.service_id == SERVICE_ID
        assert new.notes == "Bring reports"
        assert new.total_amount == Decimal("75.00")
        assert new.reschedule_reason == "patient request"
        assert new.rescheduled_by == receptionist.id

    @pytest.mark.asyncio
    async def test_original_note_annotated(self, scheduler, repository, receptionist):
        original = repository.seed(notes="Bring reports")

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert result.original_appointment.notes == "Bring reports\n[Rescheduled: patient request]"
        assert repository.history[-1].change_source == "reschedule"
        assert repository.history[-1].previous_status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_explicit_end_time(self, scheduler, repository, receptionist):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(NEXT_WEEK, "14:00", new_end_time="15:15"),
            receptionist,
            NOW,
        )

        assert result.new_appointment.end_time == dt.time(15, 15)

    @pytest.mark.asyncio
    async def test_end_time_from_original_without_service(
        self, scheduler, repository, receptionist
    ):
        original = repository.seed(service_id=None, end_time=dt.time(10, 45))

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert result.new_appointment.end_time == dt.time(14, 45)

    @pytest.mark.asyncio
    async def test_new_doctor(self, scheduler, repository, receptionist):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(NEXT_WEEK, "14:00", new_doctor_id=OTHER_DOCTOR_ID),
            receptionist,
            NOW,
        )

        assert result.new_appointment.doctor_id == OTHER_DOCTOR_ID

    @pytest.mark.asyncio
    async def test_same_slot_does_not_conflict_with_itself(
        self, scheduler, repository, receptionist
    ):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(original.appointment_date, "10:15"),
            receptionist,
            NOW,
        )

        assert not result.overbooked
        assert result.conflicting_appointment_ids == []

    @pytest.mark.asyncio
    async def test_not_found(self, scheduler, receptionist):
        with pytest.raises(NotFoundError):
            await scheduler.reschedule(
                "00000000-0000-4000-8000-000000000000",
                reschedule_to(NEXT_WEEK, "14:00"),
                receptionist,
                NOW,
            )

    @pytest.mark.asyncio
    async def test_other_tenant_forbidden(self, scheduler, repository):
        original = repository.seed()
        outsider = Actor(id="u2", role=Role.ADMIN_TENANT, tenant_id=OTHER_TENANT_ID)

        with pytest.raises(ForbiddenError):
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), outsider, NOW
            )

    @pytest.mark.asyncio
    async def test_other_doctor_forbidden(self, scheduler, repository):
        original = repository.seed()
        doctor = Actor(id=OTHER_DOCTOR_ID, role=Role.DOCTOR, tenant_id=TENANT_ID)

        with pytest.raises(ForbiddenError) as exc_info:
            await scheduler.reschedule(original.id, reschedule_to(NEXT_WEEK, "14:00"), doctor, NOW)

        assert exc_info.value.message == "You do not have permission to reschedule this appointment"

    @pytest.mark.asyncio
    async def test_own_doctor_allowed(self, scheduler, repository):
        original = repository.seed()
        doctor = Actor(id=DOCTOR_ID, role=Role.DOCTOR, tenant_id=TENANT_ID)

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), doctor, NOW
        )

        assert result.new_appointment.rescheduled_by == DOCTOR_ID

    @pytest.mark.asyncio
    async def test_reason_required(self, scheduler, repository, receptionist):
        original = repository.seed()

        with pytest.raises(ValidationError):
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00", reason=None), receptionist, NOW
            )

        assert len(repository.appointments) == 1

    @pytest.mark.asyncio
    async def test_eligibility_reports_every_reason(self, scheduler, repository, receptionist):
        original = repository.seed(
            reschedule_count=3,
            appointment_date=NOW.date(),
            start_time=dt.time(11, 0),
            end_time=dt.time(11, 30),
        )

        with pytest.raises(EligibilityError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        reasons = exc_info.value.reasons
        assert len(reasons) == 2
        assert any("limit of 3" in reason for reason in reasons)
        assert any("24 hours" in reason for reason in reasons)

    @pytest.mark.asyncio
    async def test_terminal_status_not_eligible(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.COMPLETED)

        with pytest.raises(EligibilityError):
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert repository.appointments[original.id].status == AppointmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_conflict_rejected(self, scheduler, repository, receptionist):
        original = repository.seed()
        blocker = repository.seed(
            appointment_date=NEXT_WEEK, start_time=dt.time(14, 0), end_time=dt.time(14, 30)
        )

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert exc_info.value.conflicting_ids == [blocker.id]
        assert len(repository.appointments) == 2
        assert repository.appointments[original.id].status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_conflict_reports_every_booking(self, scheduler, repository, receptionist):
        original = repository.seed()
        first = repository.seed(
            appointment_date=NEXT_WEEK, start_time=dt.time(14, 0), end_time=dt.time(14, 20)
        )
        second = repository.seed(
            appointment_date=NEXT_WEEK,
            start_time=dt.time(14, 20),
            end_time=dt.time(14, 40),
            status=AppointmentStatus.PENDING,
        )

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert sorted(exc_info.value.conflicting_ids) == sorted([first.id, second.id])

    @pytest.mark.asyncio
    async def test_cancelled_booking_does_not_block(self, scheduler, repository, receptionist):
        original = repository.seed()
        repository.seed(
            appointment_date=NEXT_WEEK,
            start_time=dt.time(14, 0),
            end_time=dt.time(14, 30),
            status=AppointmentStatus.CANCELLED,
        )

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert not result.overbooked

    @pytest.mark.asyncio
    async def test_overbooking_allowed(self, scheduler, repository, receptionist):
        original = repository.seed()
        blocker = repository.seed(
            appointment_date=NEXT_WEEK, start_time=dt.time(14, 0), end_time=dt.time(14, 30)
        )

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(NEXT_WEEK, "14:00", allow_overbooking=True),
            receptionist,
            NOW,
        )

        assert result.overbooked
        assert result.conflicting_appointment_ids == [blocker.id]
        assert result.new_appointment.id in repository.appointments
        assert blocker.id in repository.appointments

    @pytest.mark.asyncio
    async def test_cancel_failure_deletes_new_appointment(
        self, scheduler, repository, receptionist
    ):
        original = repository.seed()
        repository.update_error = MutationError("Failed to update appointment status")

        with pytest.raises(MutationError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert not isinstance(exc_info.value, CompensationError)
        assert exc_info.value is repository.update_error
        assert exc_info.value.__cause__ is not exc_info.value
        assert len(repository.deleted) == 1
        assert list(repository.appointments) == [original.id]
        assert repository.appointments[original.id].status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_unexpected_cancel_failure_is_wrapped(
        self, scheduler, repository, receptionist
    ):
        original = repository.seed()
        repository.update_error = OperationalError("UPDATE", {}, Exception("connection lost"))

        with pytest.raises(MutationError):
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert list(repository.appointments) == [original.id]

    @pytest.mark.asyncio
    async def test_concurrent_reschedules_move_once(self, scheduler, repository, receptionist):
        original = repository.seed()

        results = await asyncio.gather(
            scheduler.reschedule(
                original.id, reschedule_to(TOMORROW, "11:00"), receptionist, NOW
            ),
            scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            ),
            return_exceptions=True,
        )

        moved = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(moved) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], ConcurrentUpdateError)
        assert failed[0].status_code == 409

        successors = [
            a for a in repository.appointments.values() if a.rescheduled_from_id == original.id
        ]
        assert [a.id for a in successors] == [moved[0].new_appointment.id]
        assert len(repository.deleted) == 1
        assert [(h.previous_status, h.status) for h in repository.history] == [
            (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED)
        ]

    @pytest.mark.asyncio
    async def test_original_cancelled_meanwhile_is_compensated(
        self, scheduler, repository, receptionist, monkeypatch
    ):
        original = repository.seed()
        repository.appointments[original.id] = original.model_copy(
            update={"status": AppointmentStatus.CANCELLED}
        )

        async def stale_read(appointment_id):
            return original

        monkeypatch.setattr(repository, "get_appointment", stale_read)

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert exc_info.value.__cause__ is not exc_info.value
        assert list(repository.appointments) == [original.id]
        assert len(repository.deleted) == 1
        assert repository.history == []

    @pytest.mark.asyncio
    async def test_compensation_failure_surfaces_both_errors(
        self, scheduler, repository, receptionist
    ):
        original = repository.seed()
        repository.update_error = MutationError("Failed to update appointment status")
        repository.delete_error = MutationError("Failed to delete appointment")

        with pytest.raises(CompensationError) as exc_info:
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        error = exc_info.value
        assert str(error.mutation_error) == "Failed to update appointment status"
        assert str(error.compensation_error) == "Failed to delete appointment"
        assert error.extra() == {
            "mutation_error": "Failed to update appointment status",
            "compensation_error": "Failed to delete appointment",
        }

    @pytest.mark.asyncio
    async def test_insert_failure_leaves_original(self, scheduler, repository, receptionist):
        original = repository.seed()
        repository.insert_error = MutationError("Failed to create new appointment")

        with pytest.raises(MutationError):
            await scheduler.reschedule(
                original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
            )

        assert repository.deleted == []
        assert repository.appointments[original.id].status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_notification_dispatched(self, scheduler, repository, notifier, receptionist):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(NEXT_WEEK, "14:00", notification_channels=["sms"]),
            receptionist,
            NOW,
        )

        assert result.notification_sent
        assert len(notifier.dispatched) == 1
        request = notifier.dispatched[0]
        assert request.appointment_id == result.new_appointment.id
        assert request.kind == "reschedule"
        assert request.channels == [NotificationChannel.SMS]

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail(
        self, scheduler, repository, notifier, receptionist
    ):
        original = repository.seed()
        notifier.error = RuntimeError("mail server down")

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert result.success
        assert not result.notification_sent
        assert repository.appointments[original.id].status == AppointmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_notification_skipped_on_request(
        self, scheduler, repository, notifier, receptionist
    ):
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id,
            reschedule_to(NEXT_WEEK, "14:00", send_notification=False),
            receptionist,
            NOW,
        )

        assert not result.notification_sent
        assert notifier.dispatched == []

    @pytest.mark.asyncio
    async def test_outside_availability_still_allowed(
        self, scheduler, repository, availability, receptionist
    ):
        """Only new bookings are checked against working hours."""
        availability.add_window(DOCTOR_ID, 1, "09:00", "12:00")
        original = repository.seed()

        result = await scheduler.reschedule(
            original.id, reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW
        )

        assert result.success


class TestRebook:
    @pytest.mark.asyncio
    async def test_rebook_completed(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.COMPLETED, reschedule_count=2)

        result = await scheduler.rebook(
            original.id,
            RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="09:00"),
            receptionist,
            NOW,
        )

        new = result.new_appointment
        assert result.message == "Appointment rebooked successfully"
        assert result.reschedule_count == 0
        assert new.reschedule_count == 0
        assert new.is_rebook
        assert new.status == AppointmentStatus.PENDING
        assert new.original_appointment_id == original.id
        assert new.rescheduled_from_id == original.id
        assert new.reschedule_reason == "Rebook of completed appointment"
        assert result.original_appointment == original
        assert repository.appointments[original.id].status == AppointmentStatus.COMPLETED
        assert repository.history == []

    @pytest.mark.asyncio
    async def test_rebook_keeps_chain_root(self, scheduler, repository, receptionist):
        root = repository.seed(status=AppointmentStatus.CANCELLED)
        moved = repository.seed(
            status=AppointmentStatus.NO_SHOW,
            original_appointment_id=root.id,
            rescheduled_from_id=root.id,
            reschedule_count=1,
        )

        result = await scheduler.rebook(
            moved.id,
            RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="09:00"),
            receptionist,
            NOW,
        )

        assert result.new_appointment.original_appointment_id == root.id
        assert result.new_appointment.rescheduled_from_id == moved.id

    @pytest.mark.asyncio
    async def test_rebook_active_rejected(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.PENDING)

        with pytest.raises(EligibilityError) as exc_info:
            await scheduler.rebook(
                original.id,
                RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="09:00"),
                receptionist,
                NOW,
            )

        assert len(exc_info.value.reasons) == 1
        assert "pending" in exc_info.value.reasons[0]

    @pytest.mark.asyncio
    async def test_rebook_with_new_service(self, scheduler, repository, receptionist):
        repository.add_service(LONG_SERVICE_ID, duration_minutes=60, price=Decimal("120.00"))
        original = repository.seed(status=AppointmentStatus.COMPLETED)

        result = await scheduler.rebook(
            original.id,
            RebookCommand(
                new_date=NEXT_WEEK.isoformat(),
                new_start_time="09:00",
                new_service_id=LONG_SERVICE_ID,
                notes="Follow-up",
            ),
            receptionist,
            NOW,
        )

        new = result.new_appointment
        assert new.service_id == LONG_SERVICE_ID
        assert new.end_time == dt.time(10, 0)
        assert new.total_amount == Decimal("120.00")
        assert new.notes == "Follow-up"

    @pytest.mark.asyncio
    async def test_rebook_unknown_service(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.COMPLETED)

        with pytest.raises(NotFoundError):
            await scheduler.rebook(
                original.id,
                RebookCommand(
                    new_date=NEXT_WEEK.isoformat(),
                    new_start_time="09:00",
                    new_service_id=LONG_SERVICE_ID,
                ),
                receptionist,
                NOW,
            )

    @pytest.mark.asyncio
    async def test_rebook_conflict(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.COMPLETED)
        blocker = repository.seed(
            appointment_date=NEXT_WEEK, start_time=dt.time(9, 0), end_time=dt.time(9, 30)
        )

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.rebook(
                original.id,
                RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="09:00"),
                receptionist,
                NOW,
            )

        assert exc_info.value.conflicting_ids == [blocker.id]

    @pytest.mark.asyncio
    async def test_rebook_notifies(self, scheduler, repository, notifier, receptionist):
        original = repository.seed(status=AppointmentStatus.CANCELLED)

        result = await scheduler.rebook(
            original.id,
            RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="09:00"),
            receptionist,
            NOW,
        )

        assert result.notification_sent
        assert notifier.dispatched[0].kind == "rebook"


class TestBook:
    @pytest.mark.asyncio
    async def test_book_with_service_duration(self, scheduler, repository, receptionist):
        command = BookCommand(
            patient_id=PATIENT_ID,
            service_id=SERVICE_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="09:00",
        )

        result = await scheduler.book(command, receptionist, NOW)

        appointment = result.appointment
        assert appointment.tenant_id == TENANT_ID
        assert appointment.status == AppointmentStatus.PENDING
        assert appointment.end_time == dt.time(9, 30)
        assert appointment.total_amount == Decimal("50.00")
        assert appointment.reschedule_count == 0
        assert appointment.original_appointment_id is None
        assert not result.notification_sent

    @pytest.mark.asyncio
    async def test_book_default_duration(self, scheduler, receptionist):
        command = BookCommand(
            patient_id=PATIENT_ID,
            member_id=MEMBER_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="16:00",
        )

        result = await scheduler.book(command, receptionist, NOW)

        assert result.appointment.end_time == dt.time(16, 30)
        assert result.appointment.total_amount is None

    @pytest.mark.asyncio
    async def test_book_in_past(self, scheduler, receptionist):
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=NOW.date().isoformat(),
            start_time="08:00",
        )

        with pytest.raises(ValidationError):
            await scheduler.book(command, receptionist, NOW)

    @pytest.mark.asyncio
    async def test_book_unknown_service(self, scheduler, receptionist):
        command = BookCommand(
            patient_id=PATIENT_ID,
            service_id=LONG_SERVICE_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="09:00",
        )

        with pytest.raises(NotFoundError):
            await scheduler.book(command, receptionist, NOW)

    @pytest.mark.asyncio
    async def test_book_without_tenant(self, scheduler):
        actor = Actor(id="u1", role=Role.RECEPTIONIST)
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="09:00",
        )

        with pytest.raises(ForbiddenError):
            await scheduler.book(command, actor, NOW)

    @pytest.mark.asyncio
    async def test_book_outside_availability(self, scheduler, availability, receptionist):
        # Tuesday 09:00-12:00
        availability.add_window(DOCTOR_ID, 2, "09:00", "12:00")
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="13:00",
        )

        with pytest.raises(ValidationError):
            await scheduler.book(command, receptionist, NOW)

    @pytest.mark.asyncio
    async def test_book_during_break(self, scheduler, availability, receptionist):
        availability.add_window(DOCTOR_ID, 2, "09:00", "17:00")
        availability.add_break(DOCTOR_ID, 2, "12:00", "13:00")
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="12:15",
        )

        with pytest.raises(ValidationError):
            await scheduler.book(command, receptionist, NOW)

    @pytest.mark.asyncio
    async def test_book_inside_availability(self, scheduler, availability, receptionist):
        availability.add_window(DOCTOR_ID, 2, "09:00", "12:00")
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="11:30",
        )

        result = await scheduler.book(command, receptionist, NOW)

        assert result.appointment.end_time == dt.time(12, 0)

    @pytest.mark.asyncio
    async def test_overlapping_bookings(self, scheduler, repository, receptionist):
        existing = repository.seed(appointment_date=TOMORROW)
        command = {
            "patient_id": PATIENT_ID,
            "doctor_id": DOCTOR_ID,
            "appointment_date": TOMORROW.isoformat(),
            "start_time": "10:00",
            "end_time": "10:30",
        }

        with pytest.raises(ConflictError) as exc_info:
            await scheduler.book(BookCommand(**command), receptionist, NOW)
        assert exc_info.value.conflicting_ids == [existing.id]

        result = await scheduler.book(
            BookCommand(**command, allow_overbooking=True), receptionist, NOW
        )
        assert result.overbooked
        assert result.conflicting_appointment_ids == [existing.id]
        assert len(repository.appointments) == 2

    @pytest.mark.asyncio
    async def test_book_notification(self, scheduler, notifier, receptionist):
        command = BookCommand(
            patient_id=PATIENT_ID,
            doctor_id=DOCTOR_ID,
            appointment_date=TOMORROW.isoformat(),
            start_time="09:00",
            send_notification=True,
        )

        result = await scheduler.book(command, receptionist, NOW)

        assert result.notification_sent
        assert notifier.dispatched[0].kind == "booking"
        assert notifier.dispatched[0].channels == [NotificationChannel.EMAIL]


class TestExecute:
    @pytest.mark.asyncio
    async def test_dispatches_reschedule(self, scheduler, repository, receptionist):
        original = repository.seed()

        result = await scheduler.execute(
            reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW, appointment_id=original.id
        )

        assert result.reschedule_count == 1

    @pytest.mark.asyncio
    async def test_requires_appointment_id(self, scheduler, receptionist):
        with pytest.raises(ValidationError):
            await scheduler.execute(reschedule_to(NEXT_WEEK, "14:00"), receptionist, NOW)


class TestChangeStatus:
    @pytest.mark.asyncio
    async def test_confirm_records_history(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.PENDING)

        result = await scheduler.change_status(
            original.id,
            StatusChangeCommand(new_status="confirmed", reason="Called patient"),
            receptionist,
            NOW,
        )

        assert result.appointment.status == AppointmentStatus.CONFIRMED
        assert result.transition.from_status == AppointmentStatus.PENDING
        assert result.changed_at == NOW
        entry = repository.history[-1]
        assert entry.status == AppointmentStatus.CONFIRMED
        assert entry.previous_status == AppointmentStatus.PENDING
        assert entry.changed_by_user_id == receptionist.id
        assert entry.reason == "Called patient"

    @pytest.mark.asyncio
    async def test_terminal_status_rejected(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await scheduler.change_status(
                original.id, StatusChangeCommand(new_status="confirmed"), receptionist, NOW
            )

        assert repository.history == []

    @pytest.mark.asyncio
    async def test_stale_status_rejected(self, scheduler, repository, receptionist, monkeypatch):
        original = repository.seed(status=AppointmentStatus.PENDING)
        repository.appointments[original.id] = original.model_copy(
            update={"status": AppointmentStatus.CANCELLED}
        )

        async def stale_read(appointment_id):
            return original

        monkeypatch.setattr(repository, "get_appointment", stale_read)

        with pytest.raises(ConcurrentUpdateError):
            await scheduler.change_status(
                original.id, StatusChangeCommand(new_status="confirmed"), receptionist, NOW
            )

        assert repository.appointments[original.id].status == AppointmentStatus.CANCELLED
        assert repository.history == []

    @pytest.mark.asyncio
    async def test_status_history(self, scheduler, repository, receptionist):
        original = repository.seed(status=AppointmentStatus.PENDING)
        await scheduler.change_status(
            original.id, StatusChangeCommand(new_status="confirmed"), receptionist, NOW
        )

        appointment, history, transitions = await scheduler.status_history(
            original.id, receptionist
        )

        assert appointment.status == AppointmentStatus.CONFIRMED
        assert [h.status for h in history] == [AppointmentStatus.CONFIRMED]
        assert AppointmentStatus.COMPLETED in transitions


class TestCancelByPatient:
    @pytest.fixture
    def patient(self) -> Actor:
        return Actor(id=PATIENT_ID, role=Role.PATIENT)

    @pytest.mark.asyncio
    async def test_cancel_own_appointment(self, scheduler, repository, notifier, patient):
        appointment = repository.seed()

        result = await scheduler.cancel_by_patient(
            appointment.id, PatientCancelCommand(reason="Feeling better"), patient, NOW
        )

        assert result.success
        assert result.appointment.status == AppointmentStatus.CANCELLED
        assert result.notification_sent
        assert [r.kind for r in notifier.dispatched] == ["cancellation"]
        entry = repository.history[-1]
        assert entry.previous_status == AppointmentStatus.CONFIRMED
        assert entry.changed_by_role == "patient"
        assert entry.change_source == "patient"
        assert entry.reason == "Feeling better"

    @pytest.mark.asyncio
    async def test_without_notification(self, scheduler, repository, notifier, patient):
        appointment = repository.seed(status=AppointmentStatus.PENDING)

        result = await scheduler.cancel_by_patient(
            appointment.id, PatientCancelCommand(send_notification=False), patient, NOW
        )

        assert not result.notification_sent
        assert notifier.dispatched == []

    @pytest.mark.asyncio
    async def test_within_notice_window(self, scheduler, repository, patient):
        appointment = repository.seed(
            appointment_date=TOMORROW, start_time=dt.time(8, 0), end_time=dt.time(8, 30)
        )

        with pytest.raises(EligibilityError) as exc_info:
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), patient, NOW
            )

        assert exc_info.value.reasons == [
            "Appointments must be cancelled at least 24 hours in advance"
        ]
        assert repository.appointments[appointment.id].status == AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_notice_window_is_configurable(self, repository, patient):
        appointment = repository.seed(
            appointment_date=TOMORROW, start_time=dt.time(8, 0), end_time=dt.time(8, 30)
        )
        scheduler = AppointmentScheduler(
            repository=repository,
            authorizer=TenantAuthorizer(),
            notifier=RecordingNotifier(),
            slot_lock=LocalSlotLock(wait=0.5),
            policy=ReschedulePolicy(),
            patient_cancel_min_hours=12,
        )

        result = await scheduler.cancel_by_patient(
            appointment.id, PatientCancelCommand(), patient, NOW
        )

        assert result.appointment.status == AppointmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_other_patient_forbidden(self, scheduler, repository):
        appointment = repository.seed()
        stranger = Actor(id="9a710000-0000-4000-8000-000000000099", role=Role.PATIENT)

        with pytest.raises(ForbiddenError):
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), stranger, NOW
            )

    @pytest.mark.asyncio
    async def test_patient_of_other_tenant_forbidden(self, scheduler, repository):
        appointment = repository.seed()
        patient = Actor(id=PATIENT_ID, role=Role.PATIENT, tenant_id=OTHER_TENANT_ID)

        with pytest.raises(ForbiddenError):
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), patient, NOW
            )

    @pytest.mark.asyncio
    async def test_staff_cannot_use_patient_cancel(self, scheduler, repository, receptionist):
        appointment = repository.seed()

        with pytest.raises(ForbiddenError):
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), receptionist, NOW
            )

    @pytest.mark.asyncio
    async def test_already_cancelled(self, scheduler, repository, patient):
        appointment = repository.seed(status=AppointmentStatus.CANCELLED)

        with pytest.raises(NoOpTransitionError):
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), patient, NOW
            )

    @pytest.mark.asyncio
    async def test_completed_cannot_be_cancelled(self, scheduler, repository, patient):
        appointment = repository.seed(status=AppointmentStatus.COMPLETED)

        with pytest.raises(InvalidTransitionError):
            await scheduler.cancel_by_patient(
                appointment.id, PatientCancelCommand(), patient, NOW
            )

        assert repository.history == []

    @pytest.mark.asyncio
    async def test_not_found(self, scheduler, patient):
        with pytest.raises(NotFoundError):
            await scheduler.cancel_by_patient(
                "00000000-0000-4000-8000-000000000000", PatientCancelCommand(), patient, NOW
            )

    @pytest.mark.asyncio
    async def test_patient_sees_only_own_appointments(self, scheduler, repository, patient):
        own = repository.seed()
        other = repository.seed(patient_id="9a710000-0000-4000-8000-000000000099")

        assert (await scheduler.get_appointment(own.id, patient)).id == own.id
        with pytest.raises(ForbiddenError):
            await scheduler.get_appointment(other.id, patient)

    @pytest.mark.asyncio
    async def test_patient_cannot_reschedule(self, scheduler, repository, patient):
        appointment = repository.seed()

        with pytest.raises(ForbiddenError):
            await scheduler.reschedule(
                appointment.id, reschedule_to(NEXT_WEEK, "14:00"), patient, NOW
            )


class TestChain:
    @pytest.mark.asyncio
    async def test_chain_after_reschedule_and_rebook(self, scheduler, repository, receptionist):
        x = repository.seed()
        y = (
            await scheduler.reschedule(x.id, reschedule_to(NEXT_WEEK, "11:00"), receptionist, NOW)
        ).new_appointment
        for status in ("confirmed", "no_show"):
            await scheduler.change_status(
                y.id, StatusChangeCommand(new_status=status), receptionist, NOW
            )
        z = (
            await scheduler.rebook(
                y.id,
                RebookCommand(new_date=NEXT_WEEK.isoformat(), new_start_time="15:00"),
                receptionist,
                NOW,
            )
        ).new_appointment

        chain = await scheduler.chain(y.id, receptionist)

        assert chain.original_appointment_id == x.id
        assert chain.current_appointment_id == z.id
        assert [entry.appointment_id for entry in chain.chain] == [x.id, y.id, z.id]
        assert chain.total_reschedules == 1
        assert chain.total_rebooks == 1
