"""Appointment status transition table."""

from dataclasses import dataclass

from app.core.exceptions import ForbiddenError, InvalidTransitionError, NoOpTransitionError
from app.scheduling.models import AppointmentStatus, Role

_STATUS_ROLES = frozenset({Role.ADMIN_TENANT, Role.RECEPTIONIST, Role.DOCTOR, Role.MEMBER})


@dataclass(frozen=True)
class TransitionRule:
    """Allowed next statuses and the roles that may perform the change."""

    allowed_next: frozenset[AppointmentStatus]
    required_roles: frozenset[Role]


TRANSITION_RULES: dict[AppointmentStatus, TransitionRule] = {
    AppointmentStatus.PENDING: TransitionRule(
        allowed_next=frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
        required_roles=_STATUS_ROLES,
    ),
    AppointmentStatus.CONFIRMED: TransitionRule(
        allowed_next=frozenset(
            {
                AppointmentStatus.COMPLETED,
                AppointmentStatus.CANCELLED,
                AppointmentStatus.NO_SHOW,
            }
        ),
        required_roles=_STATUS_ROLES,
    ),
    # Terminal states
    AppointmentStatus.COMPLETED: TransitionRule(frozenset(), _STATUS_ROLES),
    AppointmentStatus.CANCELLED: TransitionRule(frozenset(), _STATUS_ROLES),
    AppointmentStatus.NO_SHOW: TransitionRule(frozenset(), _STATUS_ROLES),
}


@dataclass(frozen=True)
class StatusTransition:
    """An accepted status change, kept for the audit trail."""

    from_status: AppointmentStatus
    to_status: AppointmentStatus


def allowed_transitions(status: AppointmentStatus) -> list[AppointmentStatus]:
    """Statuses reachable from ``status``, in declaration order."""
    allowed = TRANSITION_RULES[status].allowed_next
    return [candidate for candidate in AppointmentStatus if candidate in allowed]


def transition(
    current: AppointmentStatus,
    requested: AppointmentStatus,
    actor_role: Role | str,
) -> StatusTransition:
    """
    Decide whether ``current`` may move to ``requested``.

    Args:
        current: Status stored on the appointment
        requested: Status the caller asks for
        actor_role: Role of the user making the change

    Returns:
        The accepted transition

    Raises:
        NoOpTransitionError: If the appointment already has ``requested``
        InvalidTransitionError: If the edge is not in the table
        ForbiddenError: If the role may not perform the change
    """
    current = AppointmentStatus(current)
    requested = AppointmentStatus(requested)
    rule = TRANSITION_RULES[current]

    if requested == current:
        raise NoOpTransitionError(current.value)

    if requested not in rule.allowed_next:
        raise InvalidTransitionError(
            current.value,
            requested.value,
            [status.value for status in allowed_transitions(current)],
        )

    role_value = actor_role.value if isinstance(actor_role, Role) else actor_role
    if role_value not in {role.value for role in rule.required_roles}:
        raise ForbiddenError(f"Role '{role_value}' is not authorized to change appointment status")

    return StatusTransition(from_status=current, to_status=requested)
