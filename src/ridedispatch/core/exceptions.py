"""Standardized exception hierarchy for the dispatch core."""

from typing import Any


class DispatchError(Exception):
    """Base exception for all dispatch errors."""

    code = "dispatch_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class TransientError(DispatchError):
    """Errors that may succeed on retry."""

    code = "transient_error"


class StoreTimeoutError(TransientError):
    """Store did not answer within its deadline."""

    code = "timeout"


class PersistenceError(TransientError):
    """Database write failed for a reason other than a timeout."""

    code = "persistence_error"


class PermanentError(DispatchError):
    """Errors that will not succeed on retry."""

    code = "permanent_error"


class ValidationError(PermanentError):
    """Invalid input or data format."""

    code = "invalid_input"


class InvalidLocationError(ValidationError):
    """Pickup or destination coordinates are missing or NaN."""

    code = "invalid_location"


class InvalidCoordinateError(ValidationError):
    """Reported coordinate is outside the valid lat/lon range."""

    code = "invalid_coordinate"


class NotInProximityError(ValidationError):
    """Driver is not close enough to the pickup or destination."""

    code = "not_in_proximity"


class NotFoundError(PermanentError):
    """Requested entity does not exist."""

    code = "not_found"


class DuplicateIDError(PermanentError):
    """An entity with the same id already exists."""

    code = "duplicate_id"


class PermissionDeniedError(PermanentError):
    """Actor is not allowed to perform the operation."""

    code = "permission_denied"


class ConflictError(PermanentError):
    """Compare-and-set lost a race or a stale transition was attempted."""

    code = "conflict"


class AlreadyTakenError(ConflictError):
    """Ride was claimed by another driver."""

    code = "already_taken"


class AlreadyTerminalError(ConflictError):
    """Mutation attempted on a completed or cancelled ride."""

    code = "already_terminal"


class DriverBusyError(ConflictError):
    """Driver is already bound to another ride."""

    code = "driver_busy"


class AssignmentFailedError(PermanentError):
    """Driver binding failed and the ride was rolled back to searching."""

    code = "assignment_failed"


class ConfigurationError(PermanentError):
    """Missing or invalid configuration."""

    code = "configuration_error"
