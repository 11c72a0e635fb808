"""
Payment Lifecycle Manager
Initiates payment attempts, reconciles provider outcomes and handles refunds
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import db_manager
from skypark.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    PaymentError,
    ValidationError,
)
from skypark.core.metrics import PAYMENT_EVENTS
from skypark.core.timeutils import utcnow
from skypark.models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from skypark.models.payment import (
    IN_FLIGHT_PAYMENT_STATUSES,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from skypark.models.user import User
from skypark.schemas.payment import OutcomeStatus, PaymentOutcome
from skypark.services.notification_service import NotificationService, notification_service
from skypark.services.payment_providers import ProviderError, ProviderRegistry, provider_registry
from skypark.services.ticket_service import TicketService, ticket_service

logger = logging.getLogger(__name__)


def calculate_fee(amount: int, method: PaymentMethod) -> int:
    """Provider fee in minor units, rounded half up"""
    rate = Decimal(str(settings.PAYMENT_FEE_RATES.get(PaymentMethod(method).value, 0)))
    return int((Decimal(amount) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    """Service for handling payment operations"""

    def __init__(
        self,
        providers: ProviderRegistry = provider_registry,
        tickets: TicketService = ticket_service,
        notifier: NotificationService = notification_service,
    ):
        self.providers = providers
        self.tickets = tickets
        self.notifier = notifier

    async def get_payment(self, db: AsyncSession, payment_id: UUID, user_id: Optional[UUID] = None) -> Payment:
        result = await db.execute(
            select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment or (user_id is not None and payment.user_id != user_id):
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_booking_payments(self, db: AsyncSession, booking_id: UUID) -> List[Payment]:
        result = await db.execute(
            select(Payment)
            .where(Payment.booking_id == booking_id)
            .order_by(Payment.created_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def _completed_payment(
        self,
        db: AsyncSession,
        booking_id: UUID,
        exclude: Optional[UUID] = None
    ) -> Optional[Payment]:
        stmt = select(Payment).where(
            Payment.booking_id == booking_id,
            Payment.status == PaymentStatus.COMPLETED,
        )
        if exclude is not None:
            stmt = stmt.where(Payment.id != exclude)
        result = await db.execute(stmt)
        return result.scalars().first()

    async def initiate_payment(
        self,
        db: AsyncSession,
        booking_id: UUID,
        method: PaymentMethod,
        amount: int,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[UUID] = None
    ) -> Payment:
        """
        Create a payment attempt for the full booking total and hand it to
        the provider. Providers that settle on the spot are reconciled here.

        `user_id` scopes the call to the booking's owner. Cash is recorded
        only by unscoped (staff) callers at the cash desk, and loyalty point
        payments take the points from the owner's balance up front.
        """
        method = PaymentMethod(method)
        result = await db.execute(
            select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking or (user_id is not None and booking.user_id != user_id):
            raise NotFoundError("Booking", booking_id)
        if method == PaymentMethod.CASH and user_id is not None:
            raise AuthorizationError("Cash payments are recorded by staff at the cash desk")

        if booking.status not in ACTIVE_BOOKING_STATUSES:
            raise PaymentError(
                f"Booking is {booking.status.value} and cannot be paid",
                details={"booking_id": str(booking.id), "status": booking.status.value}
            )
        if amount != booking.total_cost:
            raise PaymentError(
                "Payment amount must equal the booking total",
                details={"expected": booking.total_cost, "received": amount}
            )
        if await self._completed_payment(db, booking.id):
            raise PaymentError("Booking is already paid", details={"booking_id": str(booking.id)})

        provider = self.providers.for_method(method)
        fee_amount = calculate_fee(amount, method)

        async with db_manager.transaction(db):
            if method == PaymentMethod.LOYALTY_POINTS:
                await self._redeem_points(db, booking.user_id, amount)
            payment = Payment(
                booking_id=booking.id,
                user_id=booking.user_id,
                method=method,
                provider=provider.name,
                amount=amount,
                fee_amount=fee_amount,
                net_amount=amount - fee_amount,
                currency=booking.currency,
                status=PaymentStatus.PENDING,
                initiated_at=utcnow(),
            )
            db.add(payment)
            await db.flush()
        PAYMENT_EVENTS.labels(method=method.value, status=PaymentStatus.PENDING.value).inc()

        try:
            charge = await provider.charge(
                amount=amount,
                currency=booking.currency,
                method=method,
                details=details or {},
                metadata={"booking_id": str(booking.id), "payment_id": str(payment.id)},
            )
        except ProviderError as e:
            async with db_manager.transaction(db):
                await self._move(
                    db, payment, IN_FLIGHT_PAYMENT_STATUSES, PaymentStatus.FAILED,
                    failure_reason=str(e)[:500], failed_at=utcnow(),
                )
                await self._return_points(db, payment, payment.amount)
            logger.warning(f"Payment {payment.id} rejected by {provider.name}: {e}")
            raise PaymentError(str(e), details={"payment_id": str(payment.id)})

        async with db_manager.transaction(db):
            await self._move(
                db, payment, (PaymentStatus.PENDING,), PaymentStatus.PROCESSING,
                provider_transaction_id=charge.transaction_id,
            )
        logger.info(
            f"Payment {payment.id} handed to {provider.name} as {charge.transaction_id}",
            extra={"booking_id": str(booking.id), "amount": amount, "fee_amount": fee_amount}
        )

        if charge.status == "succeeded":
            return await self.reconcile(db, payment.id, PaymentOutcome(status=OutcomeStatus.SUCCEEDED))
        if charge.status == "failed":
            return await self.reconcile(
                db, payment.id, PaymentOutcome(status=OutcomeStatus.FAILED, reason=charge.reason or "declined")
            )
        return payment

    async def reconcile_by_transaction(
        self,
        db: AsyncSession,
        transaction_id: str,
        outcome: PaymentOutcome
    ) -> Payment:
        result = await db.execute(
            select(Payment.id).where(Payment.provider_transaction_id == transaction_id)
        )
        payment_id = result.scalar_one_or_none()
        if payment_id is None:
            raise NotFoundError("Payment", transaction_id)
        return await self.reconcile(db, payment_id, outcome)

    async def reconcile(self, db: AsyncSession, payment_id: UUID, outcome: PaymentOutcome) -> Payment:
        """
        Apply a provider outcome. Duplicate deliveries are no-ops; the first
        successful attempt for a booking wins and later ones are superseded.
        """
        succeeded = OutcomeStatus(outcome.status) == OutcomeStatus.SUCCEEDED

        # A concurrent success for a sibling attempt can trip the
        # completed-per-booking index; the second pass then supersedes.
        for attempt in range(2):
            payment = await self.get_payment(db, payment_id)
            booking_id = payment.booking_id
            if self._already_applied(payment, succeeded):
                logger.info(f"Outcome for payment {payment.id} already applied ({payment.status.value})")
                return payment
            if payment.status not in IN_FLIGHT_PAYMENT_STATUSES:
                target = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED
                raise InvalidTransitionError("payment", payment.status.value, target.value)

            if not succeeded:
                return await self._apply_failure(db, payment, outcome.reason)

            try:
                return await self._apply_success(db, payment)
            except IntegrityError:
                if attempt:
                    raise
                logger.warning(f"Concurrent completion detected for booking {booking_id}, re-checking")

    @staticmethod
    def _already_applied(payment: Payment, succeeded: bool) -> bool:
        if succeeded:
            return payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED, PaymentStatus.CANCELLED)
        return payment.status == PaymentStatus.FAILED

    async def _apply_failure(self, db: AsyncSession, payment: Payment, reason: Optional[str]) -> Payment:
        async with db_manager.transaction(db):
            await self._move(
                db, payment, IN_FLIGHT_PAYMENT_STATUSES, PaymentStatus.FAILED,
                failure_reason=(reason or "declined")[:500], failed_at=utcnow(),
            )
            await self._return_points(db, payment, payment.amount)
        logger.info(f"Payment {payment.id} failed: {payment.failure_reason}")
        self.notifier.dispatch(payment.user_id, "payment_failed", self._notification_payload(payment))
        return payment

    async def _apply_success(self, db: AsyncSession, payment: Payment) -> Payment:
        confirmed = False
        tickets_issued = 0

        async with db_manager.transaction(db):
            winner = await self._completed_payment(db, payment.booking_id, exclude=payment.id)
            if winner:
                await self._move(
                    db, payment, IN_FLIGHT_PAYMENT_STATUSES, PaymentStatus.CANCELLED,
                    failure_reason=f"superseded by payment {winner.id}",
                )
                await self._return_points(db, payment, payment.amount)
                logger.warning(
                    f"Payment {payment.id} captured after booking {payment.booking_id} was already paid "
                    f"by {winner.id}; manual refund required",
                    extra={"payment_id": str(payment.id), "amount": payment.amount}
                )
                return payment

            await self._move(
                db, payment, IN_FLIGHT_PAYMENT_STATUSES, PaymentStatus.COMPLETED,
                captured_at=utcnow(),
            )

            booking = (await db.execute(
                select(Booking).where(Booking.id == payment.booking_id).execution_options(populate_existing=True)
            )).scalar_one()

            if booking.status not in ACTIVE_BOOKING_STATUSES:
                logger.warning(
                    f"Payment {payment.id} captured for {booking.status.value} booking "
                    f"{booking.booking_code}; no tickets issued, refund required"
                )
            else:
                bundle = await self.tickets.issue_tickets(db, booking.id, payment.id)
                tickets_issued = bundle.total_tickets

                if settings.AUTO_CONFIRM_ON_PAYMENT and booking.status == BookingStatus.PENDING:
                    result = await db.execute(
                        update(Booking)
                        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING)
                        .values(status=BookingStatus.CONFIRMED, confirmed_at=utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    confirmed = result.rowcount == 1

        logger.info(
            f"Payment {payment.id} completed, {tickets_issued} tickets issued",
            extra={"booking_id": str(payment.booking_id), "net_amount": payment.net_amount}
        )
        self.notifier.dispatch(payment.user_id, "payment_completed", self._notification_payload(payment))
        if confirmed:
            self.notifier.dispatch(
                payment.user_id, "booking_confirmed", {"booking_id": str(payment.booking_id)}
            )
        return payment

    async def refund(
        self,
        db: AsyncSession,
        payment_id: UUID,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer"
    ) -> Payment:
        """
        Refund a completed payment in full or in part, voiding the booking's
        active tickets. A payment is refunded at most once.
        """
        payment = await self.get_payment(db, payment_id)
        if payment.status == PaymentStatus.REFUNDED:
            raise PaymentError("Payment has already been refunded", details={"payment_id": str(payment.id)})
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidTransitionError("payment", payment.status.value, PaymentStatus.REFUNDED.value)

        refund_amount = payment.amount if amount is None else amount
        if refund_amount <= 0 or refund_amount > payment.amount:
            raise ValidationError(
                f"Refund amount must be between 1 and {payment.amount}",
                field="amount"
            )

        provider = self.providers.for_method(payment.method)
        async with db_manager.transaction(db):
            # Claim first so concurrent refunds cannot both reach the provider
            await self._move(
                db, payment, (PaymentStatus.COMPLETED,), PaymentStatus.REFUNDED,
                refund_amount=refund_amount,
                refund_reason=reason,
                refunded_at=utcnow(),
            )
            try:
                result = await provider.refund(payment.provider_transaction_id, refund_amount)
            except ProviderError as e:
                raise PaymentError(f"Refund failed: {e}", details={"payment_id": str(payment.id)})

            payment.provider_refund_id = result.refund_id
            await self._return_points(db, payment, refund_amount)
            cancelled = await self.tickets.cancel_active_tickets(db, payment.booking_id)

        logger.info(
            f"Payment {payment.id} refunded {refund_amount} of {payment.amount}, {cancelled} tickets cancelled",
            extra={"booking_id": str(payment.booking_id), "refund_id": result.refund_id}
        )
        self.notifier.dispatch(payment.user_id, "payment_refunded", self._notification_payload(payment))
        return payment

    async def _redeem_points(self, db: AsyncSession, user_id: UUID, points: int):
        """Take points in one conditional write; a short balance matches no row"""
        result = await db.execute(
            update(User)
            .where(User.id == user_id, User.loyalty_points >= points)
            .values(loyalty_points=User.loyalty_points - points)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PaymentError("Not enough loyalty points", details={"required": points})

    async def _return_points(self, db: AsyncSession, payment: Payment, points: int):
        if PaymentMethod(payment.method) != PaymentMethod.LOYALTY_POINTS:
            return
        await db.execute(
            update(User)
            .where(User.id == payment.user_id)
            .values(loyalty_points=User.loyalty_points + points)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Returned {points} loyalty points to user {payment.user_id} for payment {payment.id}")

    async def _move(self, db: AsyncSession, payment: Payment, sources: tuple, target: PaymentStatus, **values):
        """Compare-and-set the payment status, refreshing the instance"""
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(sources))
            .values(status=target, **values)
            .execution_options(synchronize_session=False)
        )
        await db.refresh(payment)
        if result.rowcount != 1:
            raise InvalidTransitionError("payment", payment.status.value, target.value)
        PAYMENT_EVENTS.labels(method=PaymentMethod(payment.method).value, status=target.value).inc()

    @staticmethod
    def _notification_payload(payment: Payment) -> Dict[str, Any]:
        return {
            "payment_id": str(payment.id),
            "booking_id": str(payment.booking_id),
            "status": payment.status.value,
            "amount": payment.amount,
            "currency": payment.currency,
        }


payment_service = PaymentService()
