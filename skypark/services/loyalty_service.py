"""
Loyalty Accrual
Turns completed visits into points, spend and visit totals, and tier upgrades
"""

from decimal import Decimal, ROUND_FLOOR
from uuid import UUID
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import db_manager
from skypark.core.exceptions import NotFoundError
from skypark.core.tasks import task_dispatcher
from skypark.core.timeutils import utcnow
from skypark.models.booking import Booking, BookingStatus
from skypark.models.payment import Payment, PaymentMethod, PaymentStatus
from skypark.models.user import LOYALTY_TIER_ORDER, LoyaltyTier, User

logger = logging.getLogger(__name__)


def tier_for(total_spent: int, total_visits: int) -> LoyaltyTier:
    """Tier earned by lifetime totals; either threshold qualifies"""
    if total_spent >= settings.LOYALTY_VIP_MIN_SPENT or total_visits >= settings.LOYALTY_VIP_MIN_VISITS:
        return LoyaltyTier.VIP
    if total_spent >= settings.LOYALTY_FRIEND_MIN_SPENT or total_visits >= settings.LOYALTY_FRIEND_MIN_VISITS:
        return LoyaltyTier.FRIEND
    return LoyaltyTier.BEGINNER


def points_for(amount: int, tier: LoyaltyTier) -> int:
    multiplier = Decimal(str(settings.LOYALTY_POINTS_MULTIPLIERS.get(LoyaltyTier(tier).value, 1.0)))
    return int((Decimal(amount) * multiplier).to_integral_value(rounding=ROUND_FLOOR))


def higher_tier(current: LoyaltyTier, earned: LoyaltyTier) -> LoyaltyTier:
    return max(LoyaltyTier(current), LoyaltyTier(earned), key=LOYALTY_TIER_ORDER.index)


class LoyaltyService:
    """Applies a completed booking to the customer's loyalty account"""

    async def accrue(self, db: AsyncSession, user_id: UUID, booking_id: UUID) -> bool:
        """
        Apply a completed booking once.

        Returns False when the booking was already accrued. The claim on
        booking.loyalty_accrued_at and the account update share a transaction,
        so a failed attempt can be retried safely.
        """
        now = utcnow()
        async with db_manager.transaction(db):
            claimed = await db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.user_id == user_id,
                    Booking.status == BookingStatus.COMPLETED,
                    Booking.loyalty_accrued_at.is_(None),
                )
                .values(loyalty_accrued_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                logger.info(f"Loyalty already applied or booking {booking_id} not completed")
                return False

            user = (await db.execute(
                select(User).where(User.id == user_id).execution_options(populate_existing=True)
            )).scalar_one_or_none()
            if not user:
                raise NotFoundError("User", user_id)

            paid = await self._paid_amount(db, booking_id)
            points = points_for(paid, user.loyalty_tier)

            await db.execute(
                update(User)
                .where(User.id == user_id)
                .values(
                    loyalty_points=User.loyalty_points + points,
                    total_spent=User.total_spent + paid,
                    total_visits=User.total_visits + 1,
                    last_visit_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.refresh(user)

            tier = higher_tier(user.loyalty_tier, tier_for(user.total_spent, user.total_visits))
            if tier != user.loyalty_tier:
                logger.info(f"User {user_id} upgraded from {user.loyalty_tier.value} to {tier.value}")
                user.loyalty_tier = tier

        logger.info(
            f"Accrued {points} points for booking {booking_id}",
            extra={"user_id": str(user_id), "paid_amount": paid}
        )
        return True

    async def _paid_amount(self, db: AsyncSession, booking_id: UUID) -> int:
        """Money captured for the visit; paying with points earns nothing"""
        result = await db.execute(
            select(Payment.amount).where(
                Payment.booking_id == booking_id,
                Payment.status == PaymentStatus.COMPLETED,
                Payment.method != PaymentMethod.LOYALTY_POINTS,
            )
        )
        return result.scalar_one_or_none() or 0

    async def accrue_in_new_session(self, user_id: UUID, booking_id: UUID) -> bool:
        async with db_manager.session_factory() as session:
            return await self.accrue(session, user_id, booking_id)

    def dispatch(self, user_id: UUID, booking_id: UUID):
        """Run accrual out of band with retries; the booking is never affected"""
        return task_dispatcher.dispatch(
            f"loyalty:{booking_id}", self.accrue_in_new_session, user_id, booking_id
        )


loyalty_service = LoyaltyService()
