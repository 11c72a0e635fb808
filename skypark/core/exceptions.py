"""
Custom application exceptions
"""

from typing import Optional, Dict, Any


class SkyParkException(Exception):
    """Base exception for SkyPark application"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthorizationError(SkyParkException):
    """Authorization related errors"""

    def __init__(self, message: str = "Not authorized", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_FORBIDDEN",
            status_code=403,
            details=details
        )


class NotFoundError(SkyParkException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details={"resource": resource}
        )


class ValidationError(SkyParkException):
    """Validation errors, tagged with the offending field"""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class BookingError(SkyParkException):
    """Booking related errors"""

    def __init__(
        self,
        message: str,
        code: str = "BOOKING_ERROR",
        status_code: int = 400,
        details: Optional[Dict] = None
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            details=details
        )


class CapacityError(BookingError):
    """The requested slot has no room left for the party"""

    def __init__(self, slot: str, requested: int, remaining: Optional[int] = None):
        details = {"time_slot": slot, "requested": requested}
        if remaining is not None:
            details["remaining"] = remaining
        super().__init__(
            message="Selected time slot is full, please choose another slot",
            code="CAPACITY_EXCEEDED",
            status_code=409,
            details=details
        )


class SlotTooSoonError(BookingError):
    """The slot starts inside the minimum booking lead time"""

    def __init__(self, slot: str, lead_minutes: int):
        super().__init__(
            message=f"Slot {slot} starts in less than {lead_minutes} minutes, please choose a later time",
            code="SLOT_TOO_SOON",
            details={"time_slot": slot, "lead_time_minutes": lead_minutes}
        )


class InvalidTransitionError(SkyParkException):
    """A lifecycle transition not listed in the entity's transition table"""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(
            message=f"Cannot move {entity} from {current} to {target}",
            code="INVALID_TRANSITION",
            status_code=409,
            details={"entity": entity, "from": current, "to": target}
        )


class ModificationWindowClosedError(SkyParkException):
    """Booking can no longer be modified"""

    def __init__(self, booking_id: str, reason: str):
        super().__init__(
            message=f"Booking can no longer be modified: {reason}",
            code="MODIFICATION_WINDOW_CLOSED",
            status_code=409,
            details={"booking_id": booking_id}
        )


class PaymentError(SkyParkException):
    """Payment related errors"""

    def __init__(self, message: str = "Payment processing failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="PAYMENT_FAILED",
            status_code=402,
            details=details
        )


class RateLimitError(SkyParkException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMIT_EXCEEDED",
            status_code=429,
            details={"limit": limit, "window": window}
        )


# Gate validation outcomes. All of them are terminal for a single scan.

class GateValidationError(SkyParkException):
    """Base class for rejected gate scans"""

    def __init__(self, message: str, code: str, details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=422,
            details=details
        )


class InvalidFormatError(GateValidationError):
    def __init__(self, message: str = "QR code is not a SkyPark ticket"):
        super().__init__(message, "INVALID_FORMAT")


class TicketNotFoundError(GateValidationError):
    def __init__(self, reference: str):
        super().__init__(
            "Ticket not found",
            "TICKET_NOT_FOUND",
            details={"reference": reference}
        )


class TamperedCodeError(GateValidationError):
    def __init__(self):
        super().__init__(
            "Ticket code failed the security check, call a supervisor",
            "TAMPERED_CODE"
        )


class AlreadyUsedError(GateValidationError):
    def __init__(self, used_at: Optional[str] = None, used_gate: Optional[str] = None):
        message = "Ticket has already been used"
        if used_at:
            message = f"Ticket already used at {used_at}"
            if used_gate:
                message += f" (gate {used_gate})"
        super().__init__(
            message,
            "ALREADY_USED",
            details={"used_at": used_at, "used_gate": used_gate}
        )


class ExpiredError(GateValidationError):
    def __init__(self, valid_until: Optional[str] = None):
        super().__init__(
            "Ticket has expired",
            "EXPIRED",
            details={"valid_until": valid_until}
        )


class NotYetValidError(GateValidationError):
    def __init__(self, valid_from: str):
        super().__init__(
            f"Ticket is valid from {valid_from}",
            "NOT_YET_VALID",
            details={"valid_from": valid_from}
        )


class TicketCancelledError(GateValidationError):
    def __init__(self, status: str):
        super().__init__(
            f"Ticket is {status}",
            "TICKET_CANCELLED",
            details={"status": status}
        )
