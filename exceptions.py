"""Custom exceptions for the application."""

from typing import Optional


class ApplicationError(Exception):
    """Base exception for the application."""

    pass


class ConfigurationError(ApplicationError):
    """Raised when a channel sender is missing provider credentials."""

    def __init__(self, message: str, channel: str = "unknown"):
        self.message = message
        self.channel = channel
        super().__init__(f"{channel}: {message}")


class ExternalServiceError(ApplicationError):
    """Raised when an external service call fails."""

    def __init__(
        self,
        message: str,
        service_name: str = "Unknown",
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.service_name = service_name
        self.original_error = original_error
        super().__init__(f"{service_name}: {message}")


class DeliveryError(ExternalServiceError):
    """Raised by a transport when the provider rejects or fails a send."""

    def __init__(
        self,
        message: str,
        service_name: str = "Unknown",
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_name=service_name, original_error=original_error)


class TransportTimeout(DeliveryError):
    """Raised when a provider call exceeds its time budget."""

    pass


class LogStoreError(ExternalServiceError):
    """Raised when the notification log store cannot be written or read."""

    pass


class SnapshotValidationError(ApplicationError):
    """Raised when a raw entity row cannot be turned into a typed snapshot."""

    def __init__(self, message: str, entity_type: Optional[str] = None):
        self.message = message
        self.entity_type = entity_type
        super().__init__(
            f"Invalid {entity_type} snapshot: {message}" if entity_type else message
        )


class EscalationRejected(ApplicationError):
    """Raised when an emergency call escalation is not admissible."""

    def __init__(self, message: str, complaint_id: Optional[str] = None):
        self.message = message
        self.complaint_id = complaint_id
        super().__init__(message)


class AttemptNotFound(ApplicationError):
    """Raised when a delivery attempt id is unknown."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"Delivery attempt {attempt_id} not found")


class ResendNotAllowed(ApplicationError):
    """Raised when resend targets an attempt that is not failed."""

    def __init__(self, attempt_id: int, status: str):
        self.attempt_id = attempt_id
        self.status = status
        super().__init__(
            f"Delivery attempt {attempt_id} is {status}; only failed attempts can be resent"
        )


class InvalidStatusTransition(ApplicationError):
    """Raised when a delivery attempt is moved out of a terminal status."""

    def __init__(self, attempt_id: int, current: str, requested: str):
        self.attempt_id = attempt_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Delivery attempt {attempt_id} cannot move from {current} to {requested}"
        )
