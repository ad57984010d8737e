"""Custom application exceptions."""

from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional fields rendered in the error response body."""
        return {}


class ValidationError(AppException):
    """Malformed input (shape or format)."""

    def __init__(self, message: str = "Validation error"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class NotFoundError(AppException):
    """Referenced appointment, service or provider does not exist."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedError(AppException):
    """Missing or invalid credentials."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenError(AppException):
    """Actor lacks the role or tenant ownership for the operation."""

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class EligibilityError(AppException):
    """Policy refuses the operation; carries every failing reason."""

    def __init__(self, message: str, reasons: list[str]):
        """Initialize with 400 status code and the list of reasons."""
        self.reasons = list(reasons)
        super().__init__(message, status_code=400)

    def extra(self) -> dict[str, Any]:
        return {"reasons": self.reasons}


class InvalidTransitionError(AppException):
    """Requested status is not reachable from the current status."""

    def __init__(self, current: str, requested: str, allowed: list[str]):
        """Initialize with 400 status code."""
        self.current = current
        self.requested = requested
        self.allowed = allowed
        super().__init__(
            f"Status transition from '{current}' to '{requested}' is not allowed",
            status_code=400,
        )

    def extra(self) -> dict[str, Any]:
        return {"current_status": self.current, "allowed_transitions": self.allowed}


class NoOpTransitionError(AppException):
    """Requested status equals the current status."""

    def __init__(self, status: str):
        """Initialize with 400 status code."""
        self.current = status
        super().__init__(f"Appointment is already in '{status}' status", status_code=400)

    def extra(self) -> dict[str, Any]:
        return {"current_status": self.current}


class ConflictError(AppException):
    """The requested slot overlaps existing bookings."""

    def __init__(
        self,
        message: str = "The selected time slot is not available",
        conflicting_ids: list[str] | None = None,
    ):
        """Initialize with 409 status code and the conflicting booking ids."""
        self.conflicting_ids = list(conflicting_ids or [])
        super().__init__(message, status_code=409)

    def extra(self) -> dict[str, Any]:
        return {"conflicting_appointment_ids": self.conflicting_ids}


class SlotBusyError(ConflictError):
    """Another request holds the lock for the same provider and date."""

    def __init__(self, message: str = "The time slot is being booked by another request, retry"):
        """Initialize with 409 status code."""
        super().__init__(message)


class MutationError(AppException):
    """A persistence write failed."""

    def __init__(self, message: str = "Failed to write appointment"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)


class ConcurrentUpdateError(MutationError):
    """The row no longer had the status the write was conditioned on."""

    def __init__(self, message: str = "Appointment was changed by another request, retry"):
        """Initialize with 409 status code."""
        super().__init__(message)
        self.status_code = 409


class CompensationError(AppException):
    """Rolling back a partial mutation failed as well.

    Both failures are kept: the system needs operator attention.
    """

    def __init__(self, mutation_error: Exception, compensation_error: Exception):
        """Initialize with 500 status code and both causes."""
        self.mutation_error = mutation_error
        self.compensation_error = compensation_error
        super().__init__(
            f"{mutation_error}; compensation failed: {compensation_error}",
            status_code=500,
        )

    def extra(self) -> dict[str, Any]:
        return {
            "mutation_error": str(self.mutation_error),
            "compensation_error": str(self.compensation_error),
        }
