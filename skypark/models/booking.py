"""
Booking model and its lifecycle transition table
"""

from sqlalchemy import (
    Column, String, ForeignKey, Enum, Integer, DateTime, Date, Time, Text, JSON,
    Uuid, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from skypark.models.base import BaseModel


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.REJECTED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.REJECTED: set(),
}

# Statuses that still hold slot capacity
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in BOOKING_TRANSITIONS[current]


class Booking(BaseModel):
    """
    A reservation of guests into one park time slot
    """
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("adult_count >= 0 AND child_count >= 0", name="ck_booking_counts_non_negative"),
        CheckConstraint("adult_count + child_count >= 1", name="ck_booking_has_guests"),
        CheckConstraint("child_count = 0 OR adult_count >= 1", name="ck_booking_children_accompanied"),
        CheckConstraint("total_cost >= 0", name="ck_booking_total_non_negative"),
    )

    booking_code = Column(String(20), unique=True, nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    park_id = Column(Uuid(as_uuid=True), ForeignKey("parks.id"), nullable=False, index=True)
    visit_date = Column(Date, nullable=False, index=True)
    slot_start = Column(Time, nullable=False)
    slot_end = Column(Time, nullable=False)

    adult_count = Column(Integer, nullable=False, default=0)
    child_count = Column(Integer, nullable=False, default=0)
    # Per-guest prices are snapshotted so total_cost never drifts
    adult_price = Column(Integer, nullable=False)
    child_price = Column(Integer, nullable=False)
    total_cost = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    contact_name = Column(String(255), nullable=False)
    contact_phone = Column(String(20), nullable=False)
    contact_email = Column(String(255))
    guest_names = Column(JSON, nullable=False, default=list)
    notes = Column(Text)

    confirmed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(String(500))
    rejection_reason = Column(String(500))
    loyalty_accrued_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="bookings")
    park = relationship("Park")
    payments = relationship("Payment", back_populates="booking")

    @property
    def guest_count(self) -> int:
        return self.adult_count + self.child_count

    @property
    def time_slot(self) -> str:
        return f"{self.slot_start.strftime('%H:%M')}-{self.slot_end.strftime('%H:%M')}"

    @property
    def is_terminal(self) -> bool:
        return not BOOKING_TRANSITIONS[self.status]

    def __repr__(self):
        return f"<Booking(id={self.id}, code={self.booking_code}, status={self.status}, total={self.total_cost})>"
