"""Exceptions raised by the booking and settlement core."""


class BookingError(Exception):
    """Base exception for booking errors."""
    status_code = 400


class ValidationError(BookingError):
    """Malformed window, missing field or a broken input invariant."""
    status_code = 400


class NotFound(BookingError):
    status_code = 404


class PermissionDenied(BookingError):
    """The acting user may not perform this transition."""
    status_code = 403


class AvailabilityError(BookingError):
    """The requested window cannot be booked; `reason` says why."""
    status_code = 409

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Spot is not bookable: {reason}")


class InvalidState(BookingError):
    """Transition attempted on a request that is no longer pending."""
    status_code = 409


class Conflict(BookingError):
    """Another accepted booking now overlaps the window."""
    status_code = 409


class InsufficientFunds(BookingError):
    """The payer's wallet cannot cover the total charge."""
    status_code = 402

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient funds: need {required}, have {available}")


class SettlementConflict(BookingError):
    """The idempotency key was already settled."""
    status_code = 409


class WebhookSignatureError(BookingError):
    status_code = 400
