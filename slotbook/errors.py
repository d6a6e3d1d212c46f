"""
Booking engine error taxonomy

Every error carries a machine-readable kind and a human message. The API
layer turns them into {"error": {"kind", "message"}} responses; nothing
below the service layer leaks raw driver or SQL errors to callers.
"""

from typing import Optional


class BookingEngineError(Exception):
    """Base class for structured booking engine errors"""

    kind = "Internal"
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(BookingEngineError):
    """Event type, booking, webhook or host unknown"""

    kind = "NotFound"
    status_code = 404
    default_message = "Not found"


class InvalidInputError(BookingEngineError):
    """Malformed date/time, duration mismatch or other bad input"""

    kind = "InvalidInput"
    status_code = 400
    default_message = "Invalid input"


class SlotUnavailableError(BookingEngineError):
    """Requested interval failed re-validation at commit time"""

    kind = "SlotUnavailable"
    status_code = 409
    default_message = "This time is no longer available, please pick another."


class AlreadyCancelledError(BookingEngineError):
    kind = "AlreadyCancelled"
    status_code = 409
    default_message = "Booking is already cancelled"


class UpstreamUnavailableError(BookingEngineError):
    """External calendar collaborator failed or timed out"""

    kind = "UpstreamUnavailable"
    status_code = 503
    default_message = "Calendar provider is unavailable"


class DeliveryFailedError(BookingEngineError):
    """A webhook delivery attempt failed. Recorded on the delivery, never surfaced to booking callers."""

    kind = "DeliveryFailed"
    status_code = 502
    default_message = "Webhook delivery failed"

    def __init__(self, message: Optional[str] = None, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
