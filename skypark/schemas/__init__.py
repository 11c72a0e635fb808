"""
Pydantic schemas for request/response validation
"""

from skypark.schemas.base import BaseSchema, IDSchema, TimestampSchema
from skypark.schemas.park import ParkResponse, TimeSlot, AvailabilityResponse
from skypark.schemas.booking import (
    BookingCreate, BookingUpdate, BookingCancel, BookingReject, BookingResponse
)
from skypark.schemas.payment import (
    PaymentCreate, PaymentOutcome, PaymentWebhook, PaymentRefund, PaymentResponse, OutcomeStatus
)
from skypark.schemas.ticket import TicketResponse
from skypark.schemas.gate import GateValidateRequest, GateValidationResult, TicketSummary
from skypark.schemas.response import ErrorDetail, ErrorResponse, MessageResponse

__all__ = [
    "BaseSchema",
    "IDSchema",
    "TimestampSchema",
    "ParkResponse",
    "TimeSlot",
    "AvailabilityResponse",
    "BookingCreate",
    "BookingUpdate",
    "BookingCancel",
    "BookingReject",
    "BookingResponse",
    "PaymentCreate",
    "PaymentOutcome",
    "PaymentWebhook",
    "PaymentRefund",
    "PaymentResponse",
    "OutcomeStatus",
    "TicketResponse",
    "GateValidateRequest",
    "GateValidationResult",
    "TicketSummary",
    "ErrorResponse",
    "ErrorDetail",
    "MessageResponse",
]
