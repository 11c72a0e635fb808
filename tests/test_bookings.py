"""
Tests for the booking lifecycle: creation, modification and transitions
"""

import asyncio

import pytest
from datetime import time, timedelta
from uuid import uuid4

from sqlalchemy import func, select

from skypark.core.exceptions import (
    CapacityError,
    InvalidTransitionError,
    ModificationWindowClosedError,
    NotFoundError,
    RateLimitError,
    SlotTooSoonError,
    ValidationError,
)
from skypark.core.database import async_session
from skypark.core.tasks import task_dispatcher
from skypark.core.timeutils import utcnow
from skypark.models import Booking, BookingStatus, Notification, PaymentMethod
from skypark.schemas.booking import BookingUpdate
from skypark.services.availability_service import availability_service
from skypark.services.booking_service import BookingService, booking_service
from tests.conftest import booking_request, park_time, pay


async def reserved(db_session, park, visit_date, index=0):
    slots = await availability_service.get_availability(db_session, park.id, visit_date)
    return slots[index].capacity_reserved


@pytest.mark.asyncio
class TestCreateBooking:

    async def test_create_prices_children_at_discount(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, adults=2, children=1)
        )

        assert booking.status == BookingStatus.PENDING
        assert booking.adult_price == 300
        assert booking.child_price == 150
        assert booking.total_cost == 750
        assert booking.currency == "KGS"
        assert booking.slot_start == time(10, 0)
        assert booking.slot_end == time(12, 0)
        assert booking.time_slot == "10:00-12:00"
        assert booking.booking_code.startswith("SP") and len(booking.booking_code) == 10
        assert await reserved(db_session, park, visit_date) == 3

    async def test_contact_details_are_normalized(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(
            db_session,
            customer.id,
            booking_request(
                park, visit_date,
                contact_phone="+996 555 123-456",
                contact_email="Aigerim@Example.com",
                guest_names=[" Aigerim ", "Timur"],
            )
        )

        assert booking.contact_phone == "+996555123456"
        assert booking.contact_email == "Aigerim@example.com"
        assert booking.guest_names == ["Aigerim", "Timur"]

    @pytest.mark.parametrize("adults,children,field", [
        (0, 0, "adult_count"),
        (0, 2, "adult_count"),
        (15, 6, "adult_count"),
    ])
    async def test_guest_mix_is_validated(self, db_session, park, customer, visit_date, adults, children, field):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_booking(
                db_session, customer.id, booking_request(park, visit_date, adults=adults, children=children)
            )
        assert exc_info.value.field == field
        assert await reserved(db_session, park, visit_date) == 0

    async def test_phone_must_match_park_country(self, db_session, park, customer, visit_date):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_booking(
                db_session, customer.id, booking_request(park, visit_date, contact_phone="+77011234567")
            )
        assert exc_info.value.field == "contact_phone"

    async def test_invalid_email(self, db_session, park, customer, visit_date):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_booking(
                db_session, customer.id, booking_request(park, visit_date, contact_email="not-an-email")
            )
        assert exc_info.value.field == "contact_email"

    async def test_more_names_than_guests(self, db_session, park, customer, visit_date):
        with pytest.raises(ValidationError) as exc_info:
            await booking_service.create_booking(
                db_session, customer.id,
                booking_request(park, visit_date, adults=1, children=0, guest_names=["A", "B"])
            )
        assert exc_info.value.field == "guest_names"

    async def test_slot_inside_lead_time(self, db_session, park, customer, visit_date):
        with pytest.raises(SlotTooSoonError):
            await booking_service.create_booking(
                db_session, customer.id, booking_request(park, visit_date),
                now=park_time(visit_date, 9, 30),
            )
        assert await reserved(db_session, park, visit_date) == 0

    async def test_capacity_exceeded_leaves_no_trace(self, db_session, park, customer, visit_date):
        await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, adults=8, children=0)
        )

        with pytest.raises(CapacityError):
            await booking_service.create_booking(
                db_session, customer.id, booking_request(park, visit_date, adults=3, children=0)
            )

        assert await reserved(db_session, park, visit_date) == 8
        count = (await db_session.execute(select(func.count(Booking.id)))).scalar()
        assert count == 1

    async def test_exact_fit_is_accepted(self, db_session, park, customer, visit_date):
        await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, adults=8, children=0)
        )
        await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, adults=1, children=1)
        )
        assert await reserved(db_session, park, visit_date) == 10

    async def test_concurrent_bookings_cannot_oversell(self, db_session, park, customer, other_customer, visit_date):
        async def attempt(user):
            async with async_session() as session:
                try:
                    booking = await booking_service.create_booking(
                        session, user.id, booking_request(park, visit_date, adults=6, children=0)
                    )
                except CapacityError:
                    return None
                return booking.guest_count

        results = await asyncio.gather(attempt(customer), attempt(other_customer))

        assert results.count(None) == 1
        assert [guests for guests in results if guests] == [6]
        assert await reserved(db_session, park, visit_date) == 6
        assert (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one() == 1

    async def test_rate_limited(self, db_session, park, customer, visit_date, no_rate_limit):
        no_rate_limit.return_value = (True, 10)

        with pytest.raises(RateLimitError):
            await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

    async def test_unknown_park(self, db_session, park, customer, visit_date):
        request = booking_request(park, visit_date).model_copy(update={"park_id": uuid4()})
        with pytest.raises(NotFoundError):
            await booking_service.create_booking(db_session, customer.id, request)

    async def test_created_notification_is_queued(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await task_dispatcher.drain()

        result = await db_session.execute(
            select(Notification).where(Notification.user_id == customer.id)
        )
        notification = result.scalar_one()
        assert notification.event_type == "booking_created"
        assert notification.payload["booking_code"] == booking.booking_code
        assert notification.payload["total_cost"] == 750


@pytest.mark.asyncio
class TestBookingAccess:

    async def test_customers_only_see_their_bookings(self, db_session, park, customer, other_customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        with pytest.raises(NotFoundError):
            await booking_service.get_booking(db_session, booking.id, other_customer.id)
        assert (await booking_service.get_booking(db_session, booking.id, customer.id)).id == booking.id

    async def test_list_by_status(self, db_session, park, customer, visit_date):
        first = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, time_slot=time(14, 0))
        )
        await booking_service.cancel_booking(db_session, first.id)

        pending = await booking_service.list_user_bookings(db_session, customer.id, BookingStatus.PENDING)
        everything = await booking_service.list_user_bookings(db_session, customer.id)
        assert len(pending) == 1
        assert pending[0].slot_start == time(14, 0)
        assert len(everything) == 2


@pytest.mark.asyncio
class TestModifyBooking:

    async def test_move_to_another_slot(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        updated = await booking_service.modify_booking(
            db_session, booking.id, BookingUpdate(time_slot=time(12, 0), contact_name="Timur")
        )

        assert updated.slot_start == time(12, 0)
        assert updated.slot_end == time(14, 0)
        assert updated.contact_name == "Timur"
        assert updated.total_cost == 750
        assert await reserved(db_session, park, visit_date, 0) == 0
        assert await reserved(db_session, park, visit_date, 1) == 3

    async def test_move_to_full_slot_keeps_original(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        booking_id = booking.id
        await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, adults=9, children=0, time_slot=time(12, 0))
        )

        with pytest.raises(CapacityError):
            await booking_service.modify_booking(db_session, booking_id, BookingUpdate(time_slot=time(12, 0)))

        booking = await booking_service.get_booking(db_session, booking_id)
        assert booking.slot_start == time(10, 0)
        assert await reserved(db_session, park, visit_date, 0) == 3
        assert await reserved(db_session, park, visit_date, 1) == 9

    async def test_guest_counts_are_immutable(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        with pytest.raises(ValidationError) as exc_info:
            await booking_service.modify_booking(db_session, booking.id, BookingUpdate(child_count=3))
        assert exc_info.value.field == "child_count"

    async def test_window_closes_before_visit(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        with pytest.raises(ModificationWindowClosedError):
            await booking_service.modify_booking(
                db_session, booking.id, BookingUpdate(contact_name="Late Change"),
                now=park_time(visit_date, 10) - timedelta(hours=23),
            )

    async def test_only_pending_bookings_can_change(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await booking_service.confirm_booking(db_session, booking.id)

        with pytest.raises(ModificationWindowClosedError):
            await booking_service.modify_booking(db_session, booking.id, BookingUpdate(notes="window seat"))


@pytest.mark.asyncio
class TestBookingTransitions:

    async def test_cancel_releases_capacity(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        cancelled = await booking_service.cancel_booking(db_session, booking.id, reason="plans changed")

        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_reason == "plans changed"
        assert cancelled.cancelled_at is not None
        assert await reserved(db_session, park, visit_date) == 0

    async def test_cancel_twice_is_a_no_op(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        first = await booking_service.cancel_booking(db_session, booking.id)
        cancelled_at = first.cancelled_at

        second = await booking_service.cancel_booking(db_session, booking.id, reason="again")

        assert second.status == BookingStatus.CANCELLED
        assert second.cancelled_at == cancelled_at
        assert second.cancellation_reason is None
        assert await reserved(db_session, park, visit_date) == 0

    async def test_reject_requires_reason_and_releases(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        with pytest.raises(ValidationError):
            await booking_service.reject_booking(db_session, booking.id, "  ")

        rejected = await booking_service.reject_booking(db_session, booking.id, "park closed for maintenance")
        assert rejected.status == BookingStatus.REJECTED
        assert rejected.rejection_reason == "park closed for maintenance"
        assert await reserved(db_session, park, visit_date) == 0

    async def test_complete_only_after_slot_ends(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await booking_service.confirm_booking(db_session, booking.id)

        with pytest.raises(InvalidTransitionError):
            await booking_service.complete_booking(db_session, booking.id, now=park_time(visit_date, 11))

        completed = await booking_service.complete_booking(db_session, booking.id, now=park_time(visit_date, 12, 5))
        assert completed.status == BookingStatus.COMPLETED
        assert completed.completed_at is not None

    async def test_refunded_booking_cannot_complete(self, db_session, park, customer, visit_date, payments):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        booking_id = booking.id
        payment = await pay(payments, db_session, booking)
        await payments.refund(db_session, payment.id, reason="rain")

        with pytest.raises(InvalidTransitionError):
            await booking_service.complete_booking(db_session, booking_id, now=park_time(visit_date, 12, 30))

        assert (await booking_service.get_booking(db_session, booking_id)).status == BookingStatus.CONFIRMED

    async def test_pending_booking_cannot_complete(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        with pytest.raises(InvalidTransitionError):
            await booking_service.complete_booking(db_session, booking.id, now=park_time(visit_date, 13))

    async def test_terminal_bookings_cannot_cancel(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await booking_service.reject_booking(db_session, booking.id, "duplicate")

        with pytest.raises(InvalidTransitionError):
            await booking_service.cancel_booking(db_session, booking.id)

    async def test_confirm_twice_is_rejected(self, db_session, park, customer, visit_date):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        await booking_service.confirm_booking(db_session, booking.id)

        with pytest.raises(InvalidTransitionError):
            await booking_service.confirm_booking(db_session, booking.id)


@pytest.mark.asyncio
class TestExpireStaleBookings:

    async def test_unpaid_pending_bookings_expire(self, db_session, park, customer, visit_date, payments):
        stale = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        paying = await booking_service.create_booking(
            db_session, customer.id, booking_request(park, visit_date, time_slot=time(12, 0))
        )
        await payments.initiate_payment(db_session, paying.id, PaymentMethod.BANK_CARD, paying.total_cost)

        expired = await booking_service.expire_stale_bookings(
            db_session, older_than_minutes=30, now=utcnow() + timedelta(hours=1)
        )

        assert expired == 1
        stale = await booking_service.get_booking(db_session, stale.id)
        assert stale.status == BookingStatus.CANCELLED
        assert stale.cancellation_reason == "payment_timeout"
        assert (await booking_service.get_booking(db_session, paying.id)).status == BookingStatus.PENDING
        assert await reserved(db_session, park, visit_date, 0) == 0
        assert await reserved(db_session, park, visit_date, 1) == 3

    async def test_recent_bookings_are_kept(self, db_session, park, customer, visit_date):
        await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))

        assert await booking_service.expire_stale_bookings(db_session, older_than_minutes=30) == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestValidators:

    async def test_total_is_integer_arithmetic(self):
        assert BookingService.calculate_total(2, 1, 300, 150) == 750
        assert BookingService.calculate_total(1, 0, 450, 225) == 450

    async def test_kazakh_numbers_use_their_own_pattern(self):
        assert BookingService.validate_phone("+7 701 123 4567", "KZ") == "+77011234567"
        with pytest.raises(ValidationError):
            BookingService.validate_phone("+996555123456", "KZ")
