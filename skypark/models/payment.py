"""
Payment model and its lifecycle transition table
"""

from sqlalchemy import (
    Column, String, Integer, Enum, DateTime, ForeignKey, Uuid, Index,
    CheckConstraint, text
)
from sqlalchemy.orm import relationship
import enum

from skypark.models.base import BaseModel


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    BANK_CARD = "bank_card"
    ELCART = "elcart"
    ELQR = "elqr"
    ODENGI = "odengi"
    MBANK = "mbank"
    WALLET = "wallet"
    CASH = "cash"
    LOYALTY_POINTS = "loyalty_points"


PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING, PaymentStatus.COMPLETED,
        PaymentStatus.FAILED, PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}

# Attempts the provider may still report an outcome for
IN_FLIGHT_PAYMENT_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


class Payment(BaseModel):
    """
    One payment attempt against a booking
    """
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("net_amount = amount - fee_amount", name="ck_payment_net_amount"),
        CheckConstraint(
            "refund_amount IS NULL OR (refund_amount > 0 AND refund_amount <= amount)",
            name="ck_payment_refund_bounds"
        ),
        # At most one completed payment per booking
        Index(
            "uq_payment_completed_per_booking",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'COMPLETED'"),
            sqlite_where=text("status = 'COMPLETED'"),
        ),
    )

    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    method = Column(Enum(PaymentMethod), nullable=False)
    provider = Column(String(50), nullable=False)
    amount = Column(Integer, nullable=False)
    fee_amount = Column(Integer, nullable=False, default=0)
    net_amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )
    provider_transaction_id = Column(String(255), unique=True)
    failure_reason = Column(String(500))

    # Refund details
    refund_amount = Column(Integer)
    refund_reason = Column(String(500))
    provider_refund_id = Column(String(255))

    # Timestamps
    initiated_at = Column(DateTime(timezone=True))
    captured_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))
    refunded_at = Column(DateTime(timezone=True))

    # Relationships
    booking = relationship("Booking", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"
