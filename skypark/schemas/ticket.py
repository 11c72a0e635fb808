"""
Ticket schemas
"""

from typing import Optional
from uuid import UUID
from datetime import datetime

from skypark.schemas.base import IDSchema
from skypark.models.ticket import TicketStatus, TicketType


class TicketResponse(IDSchema):
    """Ticket response schema"""
    booking_id: UUID
    ticket_number: str
    holder_name: str
    ticket_type: TicketType
    status: TicketStatus
    original_price: int
    price: int
    discount_amount: int
    discount_reason: Optional[str] = None
    qr_payload: str
    validation_code: str
    valid_from: datetime
    valid_until: datetime
    issued_at: datetime
    used_at: Optional[datetime] = None
    used_gate: Optional[str] = None

