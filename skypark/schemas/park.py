"""
Park and availability schemas
"""

from datetime import date, time
from typing import List, Optional
from uuid import UUID

from skypark.schemas.base import BaseSchema, IDSchema


class ParkResponse(IDSchema):
    """Park response schema"""
    name: str
    city: Optional[str] = None
    country_code: str
    opening_time: time
    closing_time: time
    slot_duration_minutes: int
    slot_capacity: int
    adult_price: int
    child_price: int
    currency: str


class TimeSlot(BaseSchema):
    """One bookable window of a park day"""
    park_id: UUID
    visit_date: date
    start_time: time
    end_time: time
    capacity_total: int
    capacity_reserved: int
    available: bool

    @property
    def remaining(self) -> int:
        return max(self.capacity_total - self.capacity_reserved, 0)

    @property
    def label(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"


class AvailabilityResponse(BaseSchema):
    """Availability for a park day"""
    park_id: UUID
    visit_date: date
    adult_price: int
    child_price: int
    currency: str
    slots: List[TimeSlot]
