"""
Custom Exception Hierarchy

Structured exceptions shared by ingestion, delivery and the HTTP layer.
Ingestion-time errors propagate to the caller; delivery-time errors are
recorded to the ledger and never escape the dispatch boundary.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Ingestion errors (2xxx)
    DUPLICATE_EVENT = "ERR_2001"
    EVENT_NOT_FOUND = "ERR_2002"

    # Subscription errors (3xxx)
    WEBHOOK_NOT_FOUND = "ERR_3001"

    # Delivery errors (4xxx)
    TRANSPORT_ERROR = "ERR_4001"
    TRANSPORT_TIMEOUT = "ERR_4002"

    # Infrastructure errors (5xxx)
    PERSISTENCE_ERROR = "ERR_5001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationError(AppException):
    """Raised when input is malformed and rejected before ingestion"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class DuplicateEventError(AppException):
    """
    Raised when the idempotency key is already taken.

    This is a conflict, not a failure: callers may treat the event as
    already accepted.
    """

    def __init__(self, idempotency_key: str, existing_event_id: str | None = None):
        super().__init__(
            message="Duplicate event: idempotency key already exists",
            error_code=ErrorCode.DUPLICATE_EVENT,
            status_code=409,
            details={"idempotency_key": idempotency_key}
        )
        self.idempotency_key = idempotency_key
        self.existing_event_id = existing_event_id
        if existing_event_id:
            self.details["existing_event_id"] = existing_event_id


class NotFoundError(AppException):
    """Raised when a referenced event or webhook is missing"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class EventNotFoundError(NotFoundError):
    """Raised when an event id does not resolve"""

    def __init__(self, event_id: str):
        super().__init__("Event", event_id, error_code=ErrorCode.EVENT_NOT_FOUND)


class WebhookNotFoundError(NotFoundError):
    """Raised when a webhook id does not resolve"""

    def __init__(self, webhook_id: str):
        super().__init__("Webhook", webhook_id, error_code=ErrorCode.WEBHOOK_NOT_FOUND)


class TransportError(AppException):
    """
    Raised on network-level delivery failures (timeout, DNS, refused).

    Any HTTP status code is a response, never a TransportError.
    """

    def __init__(self, url: str, message: str, timeout: bool = False):
        super().__init__(
            message=message,
            error_code=ErrorCode.TRANSPORT_TIMEOUT if timeout else ErrorCode.TRANSPORT_ERROR,
            status_code=502,
            details={"url": url, "timeout": timeout}
        )
        self.url = url
        self.timeout = timeout


class PersistenceError(AppException):
    """Raised when an underlying store (database, Redis) is unavailable"""

    def __init__(self, operation: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"{operation} failed: {message}",
            error_code=ErrorCode.PERSISTENCE_ERROR,
            status_code=503,
            details=details
        )
        self.details["operation"] = operation
