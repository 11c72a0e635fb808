"""
Tests for loyalty accrual on completed visits
"""

import pytest
from sqlalchemy import select, update

from skypark.core.tasks import TaskDispatcher, task_dispatcher
from skypark.models import BookingStatus, LoyaltyTier, PaymentMethod, User
from skypark.services.booking_service import booking_service
from skypark.services.loyalty_service import higher_tier, loyalty_service, points_for, tier_for
from tests.conftest import booking_request, park_time, pay


async def fresh_user(db_session, user_id) -> User:
    result = await db_session.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def completed_visit(db_session, park, customer, visit_date, payments):
    booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
    booking_id = booking.id
    await pay(payments, db_session, booking)
    await booking_service.complete_booking(db_session, booking_id, now=park_time(visit_date, 12, 30))
    await task_dispatcher.drain()
    return booking_id


@pytest.mark.unit
@pytest.mark.asyncio
class TestLoyaltyRules:

    @pytest.mark.parametrize("spent,visits,tier", [
        (0, 0, LoyaltyTier.BEGINNER),
        (4999, 4, LoyaltyTier.BEGINNER),
        (5000, 0, LoyaltyTier.FRIEND),
        (0, 5, LoyaltyTier.FRIEND),
        (14999, 19, LoyaltyTier.FRIEND),
        (15000, 0, LoyaltyTier.VIP),
        (100, 20, LoyaltyTier.VIP),
    ])
    async def test_tier_thresholds(self, spent, visits, tier):
        assert tier_for(spent, visits) == tier

    async def test_points_round_down(self):
        assert points_for(750, LoyaltyTier.BEGINNER) == 750
        assert points_for(333, LoyaltyTier.FRIEND) == 499
        assert points_for(750, LoyaltyTier.VIP) == 1500

    async def test_tier_never_drops(self):
        assert higher_tier(LoyaltyTier.VIP, LoyaltyTier.BEGINNER) == LoyaltyTier.VIP
        assert higher_tier(LoyaltyTier.BEGINNER, LoyaltyTier.FRIEND) == LoyaltyTier.FRIEND


@pytest.mark.asyncio
class TestAccrual:

    async def test_completed_visit_accrues(self, db_session, park, customer, visit_date, payments):
        booking_id = await completed_visit(db_session, park, customer, visit_date, payments)

        user = await fresh_user(db_session, customer.id)
        assert user.loyalty_points == 750
        assert user.total_spent == 750
        assert user.total_visits == 1
        assert user.last_visit_at is not None
        assert user.loyalty_tier == LoyaltyTier.BEGINNER

        booking = await booking_service.get_booking(db_session, booking_id)
        assert booking.status == BookingStatus.COMPLETED
        assert booking.loyalty_accrued_at is not None

    async def test_accrues_once(self, db_session, park, customer, visit_date, payments):
        booking_id = await completed_visit(db_session, park, customer, visit_date, payments)

        assert await loyalty_service.accrue(db_session, customer.id, booking_id) is False
        assert (await fresh_user(db_session, customer.id)).loyalty_points == 750

    async def test_upgrade_to_friend(self, db_session, park, customer, visit_date, payments):
        await db_session.execute(update(User).where(User.id == customer.id).values(total_spent=4500))
        await db_session.commit()

        await completed_visit(db_session, park, customer, visit_date, payments)

        user = await fresh_user(db_session, customer.id)
        assert user.total_spent == 5250
        assert user.loyalty_points == 750
        assert user.loyalty_tier == LoyaltyTier.FRIEND

    async def test_vip_earns_double(self, db_session, park, customer, visit_date, payments):
        await db_session.execute(
            update(User).where(User.id == customer.id).values(loyalty_tier=LoyaltyTier.VIP)
        )
        await db_session.commit()

        await completed_visit(db_session, park, customer, visit_date, payments)

        user = await fresh_user(db_session, customer.id)
        assert user.loyalty_points == 1500
        assert user.loyalty_tier == LoyaltyTier.VIP

    async def test_points_paid_visit_earns_nothing(self, db_session, park, customer, visit_date, payments):
        await db_session.execute(update(User).where(User.id == customer.id).values(loyalty_points=800))
        await db_session.commit()
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        booking_id = booking.id
        await payments.initiate_payment(db_session, booking_id, PaymentMethod.LOYALTY_POINTS, 750)

        await booking_service.complete_booking(db_session, booking_id, now=park_time(visit_date, 12, 30))
        await task_dispatcher.drain()

        user = await fresh_user(db_session, customer.id)
        assert user.loyalty_points == 50
        assert user.total_spent == 0
        assert user.total_visits == 1

    async def test_confirmed_booking_earns_nothing(self, db_session, park, customer, visit_date, payments):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        booking_id = booking.id
        await pay(payments, db_session, booking)

        assert await loyalty_service.accrue(db_session, customer.id, booking_id) is False
        assert (await fresh_user(db_session, customer.id)).total_visits == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestTaskDispatcher:

    async def test_retries_until_success(self):
        dispatcher = TaskDispatcher(max_retries=2, backoff_cap=0)
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RuntimeError("temporary")

        assert await dispatcher.dispatch("flaky", flaky) is True
        assert len(calls) == 3

    async def test_gives_up_without_raising(self):
        dispatcher = TaskDispatcher(max_retries=1, backoff_cap=0)

        async def broken():
            raise RuntimeError("down")

        assert await dispatcher.dispatch("broken", broken) is False
