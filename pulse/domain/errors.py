"""Domain error codes for registration, payments and reminders."""

from __future__ import annotations

import uuid
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    EVENT_ALREADY_STARTED = "EVENT_ALREADY_STARTED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    PERSISTENCE_CONFLICT = "PERSISTENCE_CONFLICT"
    FORBIDDEN = "FORBIDDEN"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    default_message = "Not found"


class AlreadyRegisteredError(DomainError):
    code = ErrorCode.ALREADY_REGISTERED
    default_message = "You are already registered for this event"


class EventAlreadyStartedError(DomainError):
    code = ErrorCode.EVENT_ALREADY_STARTED
    default_message = "This event has already started"


class ValidationError(DomainError):
    code = ErrorCode.VALIDATION_ERROR


class TransportFailureError(DomainError):
    """An email or payment-provider call failed."""

    code = ErrorCode.TRANSPORT_FAILURE
    default_message = "External service call failed"


class PersistenceConflictError(DomainError):
    """Raised by a store when a uniqueness constraint rejects a write."""

    code = ErrorCode.PERSISTENCE_CONFLICT
    default_message = "Record already exists"


class ForbiddenError(DomainError):
    code = ErrorCode.FORBIDDEN
    default_message = "Not allowed"


def ensure_id(value: str, label: str = "ID") -> str:
    """Return *value* if it is a well-formed UUID string.

    Raises:
        ValidationError: If the value does not parse as a UUID.
    """
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {label}") from None
    return value
