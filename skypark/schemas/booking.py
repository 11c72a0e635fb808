"""
Booking schemas

Business rules (guest mix, phone format, slot checks) are enforced by the
booking service so they raise field-tagged errors; these schemas only
guard types and obvious bounds.
"""

from pydantic import Field
from typing import List, Optional
from uuid import UUID
from datetime import date, datetime, time

from skypark.schemas.base import BaseSchema, IDSchema, TimestampSchema
from skypark.models.booking import BookingStatus


class BookingCreate(BaseSchema):
    """Booking creation schema"""
    park_id: UUID
    visit_date: date
    time_slot: time
    adult_count: int = Field(0, ge=0)
    child_count: int = Field(0, ge=0)
    contact_name: str = Field(..., min_length=1, max_length=255)
    contact_phone: str = Field(..., min_length=1, max_length=20)
    contact_email: Optional[str] = None
    guest_names: List[str] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=2000)


class BookingUpdate(BaseSchema):
    """Booking modification schema, only set fields are applied"""
    visit_date: Optional[date] = None
    time_slot: Optional[time] = None
    contact_name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    guest_names: Optional[List[str]] = None
    notes: Optional[str] = Field(None, max_length=2000)
    # Accepted so the service can reject them with a field-tagged error
    adult_count: Optional[int] = None
    child_count: Optional[int] = None


class BookingCancel(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingReject(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class BookingResponse(IDSchema, TimestampSchema):
    """Booking response schema"""
    booking_code: str
    user_id: UUID
    park_id: UUID
    visit_date: date
    slot_start: time
    slot_end: time
    adult_count: int
    child_count: int
    adult_price: int
    child_price: int
    total_cost: int
    currency: str
    status: BookingStatus
    contact_name: str
    contact_phone: str
    contact_email: Optional[str] = None
    guest_names: List[str] = []
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    rejection_reason: Optional[str] = None
