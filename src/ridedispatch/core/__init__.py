from .exceptions import (
    AlreadyTakenError,
    AlreadyTerminalError,
    AssignmentFailedError,
    ConfigurationError,
    ConflictError,
    DispatchError,
    DriverBusyError,
    DuplicateIDError,
    InvalidCoordinateError,
    InvalidLocationError,
    NotFoundError,
    NotInProximityError,
    PermanentError,
    PermissionDeniedError,
    PersistenceError,
    StoreTimeoutError,
    TransientError,
    ValidationError,
)
from .retry import RetryConfig, with_retry_sync

__all__ = [
    "AlreadyTakenError",
    "AlreadyTerminalError",
    "AssignmentFailedError",
    "ConfigurationError",
    "ConflictError",
    "DispatchError",
    "DriverBusyError",
    "DuplicateIDError",
    "InvalidCoordinateError",
    "InvalidLocationError",
    "NotFoundError",
    "NotInProximityError",
    "PermanentError",
    "PermissionDeniedError",
    "PersistenceError",
    "RetryConfig",
    "StoreTimeoutError",
    "TransientError",
    "ValidationError",
    "with_retry_sync",
]
