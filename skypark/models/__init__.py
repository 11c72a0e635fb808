"""
Database models
"""

from skypark.models.user import User, UserRole, LoyaltyTier
from skypark.models.park import Park, SlotCapacity
from skypark.models.booking import Booking, BookingStatus
from skypark.models.payment import Payment, PaymentStatus, PaymentMethod
from skypark.models.ticket import Ticket, TicketBundle, TicketStatus, TicketType
from skypark.models.notification import Notification, NotificationStatus

__all__ = [
    "User",
    "UserRole",
    "LoyaltyTier",
    "Park",
    "SlotCapacity",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "Ticket",
    "TicketBundle",
    "TicketStatus",
    "TicketType",
    "Notification",
    "NotificationStatus",
]
