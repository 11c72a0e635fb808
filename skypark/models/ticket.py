"""
Ticket bundle and ticket models
"""

from sqlalchemy import (
    Column, String, Integer, Enum, DateTime, ForeignKey, Text, Uuid, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum

from skypark.models.base import BaseModel


class TicketType(str, enum.Enum):
    ADULT = "adult"
    CHILD = "child"


class TicketStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TicketBundle(BaseModel):
    """
    The tickets minted together from one successful payment
    """
    __tablename__ = "ticket_bundles"
    __table_args__ = (
        UniqueConstraint("booking_id", "payment_id", name="uq_bundle_booking_payment"),
    )

    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False)
    total_tickets = Column(Integer, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)

    tickets = relationship(
        "Ticket",
        back_populates="bundle",
        order_by="Ticket.ticket_number",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<TicketBundle(id={self.id}, booking_id={self.booking_id}, tickets={self.total_tickets})>"


class Ticket(BaseModel):
    """
    Entry ticket for a single guest
    """
    __tablename__ = "tickets"

    bundle_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_bundles.id"), nullable=False, index=True)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    payment_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=False)
    park_id = Column(Uuid(as_uuid=True), ForeignKey("parks.id"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    ticket_number = Column(String(32), unique=True, nullable=False)
    holder_name = Column(String(255), nullable=False)
    ticket_type = Column(Enum(TicketType), nullable=False)
    status = Column(
        Enum(TicketStatus),
        default=TicketStatus.ACTIVE,
        nullable=False,
        index=True
    )

    # Price breakdown as charged, never re-derived
    original_price = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    discount_amount = Column(Integer, nullable=False, default=0)
    discount_reason = Column(String(100))

    qr_payload = Column(Text, nullable=False)
    validation_code = Column(String(16), unique=True, nullable=False, index=True)
    security_hash = Column(String(64), nullable=False)

    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True))
    used_gate = Column(String(50))
    cancelled_at = Column(DateTime(timezone=True))

    bundle = relationship("TicketBundle", back_populates="tickets")

    def __repr__(self):
        return f"<Ticket(id={self.id}, number={self.ticket_number}, type={self.ticket_type}, status={self.status})>"
