"""
Booking Lifecycle Manager

Owns booking state: creation with atomic slot reservation, modification
inside the cutoff window, and the administrative transitions.
"""

import re
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import db_manager
from skypark.core.exceptions import (
    InvalidTransitionError,
    ModificationWindowClosedError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from skypark.core.metrics import track_booking_operation
from skypark.core.redis import redis_manager
from skypark.core.timeutils import park_local_to_utc, utcnow
from skypark.models.booking import Booking, BookingStatus, can_transition
from skypark.models.park import Park
from skypark.models.payment import IN_FLIGHT_PAYMENT_STATUSES, Payment, PaymentStatus
from skypark.models.user import User
from skypark.schemas.booking import BookingCreate, BookingUpdate
from skypark.services.availability_service import AvailabilityService, availability_service
from skypark.services.loyalty_service import LoyaltyService, loyalty_service
from skypark.services.notification_service import NotificationService, notification_service
from skypark.services.ticket_service import CODE_ALPHABET, TicketService, ticket_service

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60


def generate_booking_code() -> str:
    return "SP" + "".join(secrets.choice(CODE_ALPHABET) for _ in range(8))


class BookingService:
    """
    Booking lifecycle: pending -> confirmed -> completed, with cancelled and
    rejected as the other terminal states
    """

    def __init__(
        self,
        availability: AvailabilityService = availability_service,
        tickets: TicketService = ticket_service,
        loyalty: LoyaltyService = loyalty_service,
        notifier: NotificationService = notification_service,
    ):
        self.availability = availability
        self.tickets = tickets
        self.loyalty = loyalty
        self.notifier = notifier

    # Validation

    @staticmethod
    def validate_guest_counts(adult_count: int, child_count: int):
        if adult_count < 0:
            raise ValidationError("Adult count cannot be negative", field="adult_count")
        if child_count < 0:
            raise ValidationError("Child count cannot be negative", field="child_count")
        if adult_count + child_count < 1:
            raise ValidationError("At least one guest is required", field="adult_count")
        if child_count > 0 and adult_count < 1:
            raise ValidationError("Children must be accompanied by at least one adult", field="adult_count")
        if adult_count + child_count > settings.MAX_GUESTS_PER_BOOKING:
            raise ValidationError(
                f"A booking can include at most {settings.MAX_GUESTS_PER_BOOKING} guests",
                field="adult_count"
            )

    @staticmethod
    def validate_phone(phone: str, country_code: Optional[str]) -> str:
        normalized = re.sub(r"[\s\-()]", "", phone or "")
        if not re.match(settings.phone_pattern(country_code), normalized):
            raise ValidationError("Phone number format is not valid for this country", field="contact_phone")
        return normalized

    @staticmethod
    def validate_email(email: Optional[str]) -> Optional[str]:
        if email is None or not email.strip():
            return None
        try:
            return validate_email(email.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f"Email address is not valid: {e}", field="contact_email")

    @staticmethod
    def validate_guest_names(names: Optional[List[str]], guest_count: int) -> List[str]:
        cleaned = [name.strip() for name in (names or [])]
        if len(cleaned) > guest_count:
            raise ValidationError(
                f"Got {len(cleaned)} guest names for {guest_count} guests",
                field="guest_names"
            )
        if any(not name for name in cleaned):
            raise ValidationError("Guest names cannot be blank", field="guest_names")
        return cleaned

    @staticmethod
    def calculate_total(adult_count: int, child_count: int, adult_price: int, child_price: int) -> int:
        return adult_count * adult_price + child_count * child_price

    async def _check_rate_limit(self, user_id: UUID):
        if not settings.RATE_LIMIT_ENABLED:
            return
        is_limited, _ = await redis_manager.is_rate_limited(
            f"user:{user_id}:bookings",
            settings.RATE_LIMIT_BOOKING_PER_MINUTE,
            RATE_LIMIT_WINDOW_SECONDS,
        )
        if is_limited:
            raise RateLimitError(settings.RATE_LIMIT_BOOKING_PER_MINUTE, RATE_LIMIT_WINDOW_SECONDS)

    # Reads

    async def get_booking(self, db: AsyncSession, booking_id: UUID, user_id: Optional[UUID] = None) -> Booking:
        result = await db.execute(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking or (user_id is not None and booking.user_id != user_id):
            raise NotFoundError("Booking", booking_id)
        return booking

    async def list_user_bookings(
        self,
        db: AsyncSession,
        user_id: UUID,
        status: Optional[BookingStatus] = None
    ) -> List[Booking]:
        stmt = select(Booking).where(Booking.user_id == user_id)
        if status:
            stmt = stmt.where(Booking.status == status)
        result = await db.execute(
            stmt.order_by(Booking.visit_date.desc(), Booking.slot_start.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars())

    # Lifecycle

    async def create_booking(
        self,
        db: AsyncSession,
        user_id: UUID,
        request: BookingCreate,
        now: Optional[datetime] = None
    ) -> Booking:
        """
        Validate the request, reserve slot capacity and persist a pending booking.

        Raises ValidationError, SlotTooSoonError or CapacityError. Nothing is
        persisted when any of them is raised.
        """
        async with track_booking_operation("create"):
            await self._check_rate_limit(user_id)

            park = await self.availability.get_park(db, request.park_id)
            if not await db.get(User, user_id):
                raise NotFoundError("User", user_id)

            self.validate_guest_counts(request.adult_count, request.child_count)
            guest_count = request.adult_count + request.child_count
            phone = self.validate_phone(request.contact_phone, park.country_code)
            email = self.validate_email(request.contact_email)
            guest_names = self.validate_guest_names(request.guest_names, guest_count)
            slot_start, slot_end = self.availability.check_slot(park, request.visit_date, request.time_slot, now)

            adult_price = park.adult_price
            child_price = park.effective_child_price(settings.CHILD_DISCOUNT_PERCENT)

            async with db_manager.transaction(db):
                await self.availability.reserve(db, park, request.visit_date, slot_start, guest_count)
                booking = Booking(
                    booking_code=generate_booking_code(),
                    user_id=user_id,
                    park_id=park.id,
                    visit_date=request.visit_date,
                    slot_start=slot_start,
                    slot_end=slot_end,
                    adult_count=request.adult_count,
                    child_count=request.child_count,
                    adult_price=adult_price,
                    child_price=child_price,
                    total_cost=self.calculate_total(request.adult_count, request.child_count, adult_price, child_price),
                    currency=park.currency,
                    status=BookingStatus.PENDING,
                    contact_name=request.contact_name.strip(),
                    contact_phone=phone,
                    contact_email=email,
                    guest_names=guest_names,
                    notes=request.notes,
                )
                db.add(booking)
                await db.flush()

        logger.info(
            f"Booking {booking.booking_code} created for {guest_count} guests, total {booking.total_cost}",
            extra={"booking_id": str(booking.id), "user_id": str(user_id)}
        )
        self.notifier.dispatch(user_id, "booking_created", self._notification_payload(booking))
        return booking

    async def modify_booking(
        self,
        db: AsyncSession,
        booking_id: UUID,
        changes: BookingUpdate,
        user_id: Optional[UUID] = None,
        now: Optional[datetime] = None
    ) -> Booking:
        """
        Change date/slot, contact details, guest names or notes of a pending
        booking whose visit starts more than the cutoff away
        """
        now = now or utcnow()
        booking = await self.get_booking(db, booking_id, user_id)
        data = changes.model_dump(exclude_unset=True)

        for field in ("adult_count", "child_count"):
            if field in data and data[field] != getattr(booking, field):
                raise ValidationError(
                    "Guest counts cannot be changed, cancel and book again",
                    field=field
                )

        if booking.status != BookingStatus.PENDING:
            raise ModificationWindowClosedError(str(booking.id), f"booking is {booking.status.value}")

        park = await db.get(Park, booking.park_id)
        starts_at = park_local_to_utc(booking.visit_date, booking.slot_start, park.utc_offset_minutes)
        if starts_at - now <= timedelta(hours=settings.MODIFICATION_CUTOFF_HOURS):
            raise ModificationWindowClosedError(
                str(booking.id),
                f"changes close {settings.MODIFICATION_CUTOFF_HOURS} hours before the visit"
            )

        values: Dict[str, Any] = {}
        if data.get("contact_name") is not None:
            values["contact_name"] = data["contact_name"].strip()
        if data.get("contact_phone") is not None:
            values["contact_phone"] = self.validate_phone(data["contact_phone"], park.country_code)
        if "contact_email" in data:
            values["contact_email"] = self.validate_email(data["contact_email"])
        if data.get("guest_names") is not None:
            values["guest_names"] = self.validate_guest_names(data["guest_names"], booking.guest_count)
        if "notes" in data:
            values["notes"] = data["notes"]

        new_date = data.get("visit_date") or booking.visit_date
        new_start = data.get("time_slot") or booking.slot_start
        moving = (new_date, new_start) != (booking.visit_date, booking.slot_start)
        if moving:
            new_start, new_end = self.availability.check_slot(park, new_date, new_start, now)
            values.update(visit_date=new_date, slot_start=new_start, slot_end=new_end)

        if not values:
            return booking

        async with track_booking_operation("modify"):
            async with db_manager.transaction(db):
                if moving:
                    await self.availability.reserve(db, park, new_date, new_start, booking.guest_count)

                result = await db.execute(
                    update(Booking)
                    .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ModificationWindowClosedError(str(booking.id), "booking is no longer pending")

                if moving:
                    await self.availability.release(
                        db, booking.park_id, booking.visit_date, booking.slot_start, booking.guest_count
                    )
                await db.refresh(booking)

        logger.info(f"Booking {booking.booking_code} modified: {sorted(values)}")
        self.notifier.dispatch(booking.user_id, "booking_modified", self._notification_payload(booking))
        return booking

    async def cancel_booking(
        self,
        db: AsyncSession,
        booking_id: UUID,
        reason: Optional[str] = None,
        user_id: Optional[UUID] = None,
        now: Optional[datetime] = None
    ) -> Booking:
        """
        Cancel a pending or confirmed booking, releasing its capacity and
        voiding its active tickets. Cancelling twice is a no-op.
        """
        booking = await self.get_booking(db, booking_id, user_id)
        if booking.status == BookingStatus.CANCELLED:
            logger.info(f"Booking {booking.booking_code} already cancelled")
            return booking
        if not can_transition(booking.status, BookingStatus.CANCELLED):
            raise InvalidTransitionError("booking", booking.status.value, BookingStatus.CANCELLED.value)

        async with track_booking_operation("cancel"):
            async with db_manager.transaction(db):
                applied = await self._transition(
                    db, booking, BookingStatus.CANCELLED,
                    cancelled_at=now or utcnow(),
                    cancellation_reason=reason,
                )
                if applied:
                    await self.availability.release(
                        db, booking.park_id, booking.visit_date, booking.slot_start, booking.guest_count
                    )
                    await self.tickets.cancel_active_tickets(db, booking.id)
                await db.refresh(booking)
                if not applied and booking.status != BookingStatus.CANCELLED:
                    raise InvalidTransitionError("booking", booking.status.value, BookingStatus.CANCELLED.value)

        if applied:
            logger.info(f"Booking {booking.booking_code} cancelled: {reason or 'no reason given'}")
            self.notifier.dispatch(booking.user_id, "booking_cancelled", self._notification_payload(booking))
        return booking

    async def confirm_booking(self, db: AsyncSession, booking_id: UUID, now: Optional[datetime] = None) -> Booking:
        booking = await self.get_booking(db, booking_id)
        self._require_transition(booking, BookingStatus.CONFIRMED)

        async with db_manager.transaction(db):
            await self._transition_or_raise(db, booking, BookingStatus.CONFIRMED, confirmed_at=now or utcnow())

        logger.info(f"Booking {booking.booking_code} confirmed")
        self.notifier.dispatch(booking.user_id, "booking_confirmed", self._notification_payload(booking))
        return booking

    async def reject_booking(self, db: AsyncSession, booking_id: UUID, reason: str) -> Booking:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")
        booking = await self.get_booking(db, booking_id)
        self._require_transition(booking, BookingStatus.REJECTED)

        async with db_manager.transaction(db):
            await self._transition_or_raise(db, booking, BookingStatus.REJECTED, rejection_reason=reason.strip())
            await self.availability.release(
                db, booking.park_id, booking.visit_date, booking.slot_start, booking.guest_count
            )

        logger.info(f"Booking {booking.booking_code} rejected: {reason}")
        self.notifier.dispatch(booking.user_id, "booking_rejected", self._notification_payload(booking))
        return booking

    async def complete_booking(self, db: AsyncSession, booking_id: UUID, now: Optional[datetime] = None) -> Booking:
        """Close out a confirmed booking whose slot has ended, then accrue loyalty"""
        now = now or utcnow()
        booking = await self.get_booking(db, booking_id)
        self._require_transition(booking, BookingStatus.COMPLETED)

        park = await db.get(Park, booking.park_id)
        ends_at = park_local_to_utc(booking.visit_date, booking.slot_end, park.utc_offset_minutes)
        if now < ends_at:
            raise InvalidTransitionError("booking", booking.status.value, BookingStatus.COMPLETED.value)
        if await self._refunded_without_repayment(db, booking.id):
            # Refunded visits are cancelled, never completed
            raise InvalidTransitionError("booking", "refunded", BookingStatus.COMPLETED.value)

        async with db_manager.transaction(db):
            await self._transition_or_raise(db, booking, BookingStatus.COMPLETED, completed_at=now)

        logger.info(f"Booking {booking.booking_code} completed")
        self.loyalty.dispatch(booking.user_id, booking.id)
        self.notifier.dispatch(booking.user_id, "booking_completed", self._notification_payload(booking))
        return booking

    async def expire_stale_bookings(
        self,
        db: AsyncSession,
        older_than_minutes: int,
        now: Optional[datetime] = None
    ) -> int:
        """
        Maintenance: cancel pending bookings older than the threshold that
        have no payment in flight or captured
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=older_than_minutes)

        paid_or_paying = select(Payment.booking_id).where(
            Payment.status.in_(IN_FLIGHT_PAYMENT_STATUSES + (PaymentStatus.COMPLETED,))
        )
        result = await db.execute(
            select(Booking.id).where(
                Booking.status == BookingStatus.PENDING,
                Booking.created_at < cutoff,
                Booking.id.not_in(paid_or_paying),
            )
        )
        stale_ids = list(result.scalars())

        expired = 0
        for stale_id in stale_ids:
            try:
                booking = await self.cancel_booking(db, stale_id, reason="payment_timeout", now=now)
            except InvalidTransitionError:
                # Moved on since the scan
                continue
            if booking.status == BookingStatus.CANCELLED:
                expired += 1

        logger.info(f"Expired {expired} stale pending bookings older than {older_than_minutes} minutes")
        return expired

    # Helpers

    def _require_transition(self, booking: Booking, target: BookingStatus):
        if not can_transition(booking.status, target):
            raise InvalidTransitionError("booking", booking.status.value, target.value)

    async def _refunded_without_repayment(self, db: AsyncSession, booking_id: UUID) -> bool:
        result = await db.execute(
            select(Payment.status).where(
                Payment.booking_id == booking_id,
                Payment.status.in_((PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)),
            )
        )
        statuses = {PaymentStatus(status) for status in result.scalars()}
        return PaymentStatus.REFUNDED in statuses and PaymentStatus.COMPLETED not in statuses

    async def _transition(self, db: AsyncSession, booking: Booking, target: BookingStatus, **values) -> bool:
        """Compare-and-set on status; False when another writer got there first"""
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == booking.status)
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _transition_or_raise(self, db: AsyncSession, booking: Booking, target: BookingStatus, **values):
        current = booking.status
        if not await self._transition(db, booking, target, **values):
            await db.refresh(booking)
            raise InvalidTransitionError("booking", booking.status.value, target.value)
        await db.refresh(booking)
        logger.debug(f"Booking {booking.booking_code}: {current.value} -> {target.value}")

    @staticmethod
    def _notification_payload(booking: Booking) -> Dict[str, Any]:
        return {
            "booking_id": str(booking.id),
            "booking_code": booking.booking_code,
            "status": booking.status.value,
            "visit_date": booking.visit_date.isoformat(),
            "time_slot": booking.time_slot,
            "total_cost": booking.total_cost,
            "currency": booking.currency,
        }


booking_service = BookingService()
