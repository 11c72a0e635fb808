"""
Gate validation schemas
"""

from pydantic import Field
from typing import Optional
from uuid import UUID
from datetime import date, datetime, time

from skypark.schemas.base import BaseSchema


class GateValidateRequest(BaseSchema):
    """Scanned QR payload or manually typed validation code"""
    code: str = Field(..., min_length=1, max_length=1000)
    gate_id: str = Field(..., min_length=1, max_length=50)


class TicketSummary(BaseSchema):
    """What gate staff see for a scanned ticket"""
    ticket_id: UUID
    ticket_number: str
    holder_name: str
    ticket_type: str
    visit_date: date
    slot_start: time
    slot_end: time


class GateValidationResult(BaseSchema):
    """Accept/reject signal for gate staff"""
    accepted: bool
    code: str
    reason: str
    gate_id: str
    validated_at: datetime
    ticket: Optional[TicketSummary] = None
