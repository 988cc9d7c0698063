"""Domain error codes and typed failures.

Every I/O component surfaces one of these across its boundary; raw collaborator
exceptions are wrapped into `TransientNetworkError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    PERMISSION_DENIED = "PERMISSION_DENIED"
    POSITION_UNAVAILABLE = "POSITION_UNAVAILABLE"
    LOCATION_TIMEOUT = "LOCATION_TIMEOUT"
    LOCATION_UNKNOWN = "LOCATION_UNKNOWN"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_CHECKED_IN = "ALREADY_CHECKED_IN"
    VALIDATION = "VALIDATION"
    INVALID_CODE = "INVALID_CODE"
    TRANSIENT_NETWORK = "TRANSIENT_NETWORK"
    PROJECTION_WRITE = "PROJECTION_WRITE"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class LocationError(DomainError):
    """Base for positioning failures. All of them are recoverable via fallback or retry."""


class LocationPermissionError(LocationError):
    def __init__(self, message: str = "Location permission denied") -> None:
        super().__init__(code=ErrorCode.PERMISSION_DENIED, message=message)


class PositionUnavailableError(LocationError):
    def __init__(self, message: str = "Position unavailable") -> None:
        super().__init__(code=ErrorCode.POSITION_UNAVAILABLE, message=message)


class LocationTimeoutError(LocationError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            code=ErrorCode.LOCATION_TIMEOUT,
            message=f"No position within {timeout_seconds:g}s",
        )
        self.timeout_seconds = timeout_seconds


class UnknownLocationError(LocationError):
    def __init__(self, message: str = "Unknown location error") -> None:
        super().__init__(code=ErrorCode.LOCATION_UNKNOWN, message=message)


class NotFoundError(DomainError):
    """Raised when an entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class AlreadyCheckedInError(DomainError):
    """Expected business outcome: the user already checked in at this studio today."""

    def __init__(self, user_id: str, studio_id: str) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_CHECKED_IN,
            message="Already checked in at this studio today",
        )
        self.user_id = user_id
        self.studio_id = studio_id


class ValidationError(DomainError):
    """Malformed input (filters, payloads)."""

    def __init__(self, message: str, *, code: ErrorCode = ErrorCode.VALIDATION) -> None:
        super().__init__(code=code, message=message)


class InvalidCodeError(ValidationError):
    """A scanned QR code that is not a check-in payload."""

    def __init__(self, message: str = "Invalid check-in code") -> None:
        super().__init__(message, code=ErrorCode.INVALID_CODE)


class TransientNetworkError(DomainError):
    """A retryable collaborator failure. The core never retries on its own."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        super().__init__(
            code=ErrorCode.TRANSIENT_NETWORK,
            message=f"{operation} failed, please retry",
        )
        self.operation = operation
        self.cause = cause


class ProjectionWriteError(DomainError):
    """The denormalized subscription status could not be written. Logged, never raised to callers."""

    def __init__(self, user_id: str, cause: BaseException | None = None) -> None:
        super().__init__(
            code=ErrorCode.PROJECTION_WRITE,
            message="Subscription status projection failed",
        )
        self.user_id = user_id
        self.cause = cause
