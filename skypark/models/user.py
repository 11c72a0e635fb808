"""
User model with embedded loyalty account
"""

from sqlalchemy import Column, String, Boolean, Enum, Integer, DateTime
from sqlalchemy.orm import relationship
import enum

from skypark.models.base import BaseModel


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    ADMIN = "admin"


class LoyaltyTier(str, enum.Enum):
    BEGINNER = "beginner"
    FRIEND = "friend"
    VIP = "vip"


# Ascending order, tiers only ever move right
LOYALTY_TIER_ORDER = [LoyaltyTier.BEGINNER, LoyaltyTier.FRIEND, LoyaltyTier.VIP]


class User(BaseModel):
    """
    User model for park customers and staff
    """
    __tablename__ = "users"

    phone = Column(String(20), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255))
    role = Column(
        Enum(UserRole),
        default=UserRole.CUSTOMER,
        nullable=False
    )
    is_active = Column(Boolean, default=True, nullable=False)

    # Loyalty account
    loyalty_tier = Column(
        Enum(LoyaltyTier),
        default=LoyaltyTier.BEGINNER,
        nullable=False
    )
    loyalty_points = Column(Integer, default=0, nullable=False)
    total_spent = Column(Integer, default=0, nullable=False)
    total_visits = Column(Integer, default=0, nullable=False)
    last_visit_at = Column(DateTime(timezone=True))

    # Relationships
    bookings = relationship("Booking", back_populates="user")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User(id={self.id}, phone={self.phone}, role={self.role}, tier={self.loyalty_tier})>"
