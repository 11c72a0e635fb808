"""
Notification outbox model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Text, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship
import enum

from skypark.models.base import BaseModel


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(BaseModel):
    """
    Outbox row picked up by the external notification transport
    """
    __tablename__ = "notifications"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        Enum(NotificationStatus),
        default=NotificationStatus.PENDING,
        nullable=False,
        index=True
    )
    error = Column(Text)
    sent_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, event={self.event_type}, status={self.status})>"
