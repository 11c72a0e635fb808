"""
Ticket Issuance Engine
Mints signed tickets for paid bookings and renders their QR codes
"""

import qrcode
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from io import BytesIO
from typing import List, Optional
from uuid import UUID
import logging

from PIL import Image as PILImage
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.config import settings
from skypark.core.database import db_manager
from skypark.core.exceptions import InvalidFormatError, NotFoundError, PaymentError
from skypark.core.metrics import TICKETS_ISSUED
from skypark.core.security import security_manager
from skypark.core.timeutils import (
    as_utc,
    compact_timestamp,
    park_end_of_day,
    park_local_to_utc,
    parse_compact_timestamp,
    utcnow,
)
from skypark.models.booking import Booking
from skypark.models.park import Park
from skypark.models.payment import Payment, PaymentStatus
from skypark.models.ticket import Ticket, TicketBundle, TicketStatus, TicketType

logger = logging.getLogger(__name__)

# No 0/O, 1/I/L: codes are read aloud and typed by gate staff
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
QR_VERSION = "v1"
QR_FIELD_COUNT = 8


@dataclass(frozen=True)
class QRPayload:
    """Decoded ticket QR payload"""
    version: str
    ticket_id: UUID
    ticket_type: str
    price: int
    issued_at: datetime
    validation_code: str
    valid_until: datetime
    security_hash: str


def qr_prefix() -> str:
    return f"{settings.QR_SCHEME}://ticket/"


def generate_validation_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def looks_like_validation_code(value: str) -> bool:
    return len(value) == CODE_LENGTH and all(c in CODE_ALPHABET for c in value)


def compute_security_hash(ticket_id: UUID, validation_code: str, valid_until: datetime) -> str:
    """Keyed hash binding a ticket's identity, code and expiry"""
    message = f"{ticket_id}|{validation_code}|{compact_timestamp(valid_until)}"
    return security_manager.sign(settings.TICKET_SIGNING_KEY, message)[:32]


def encode_qr_payload(ticket: Ticket) -> str:
    return qr_prefix() + "/".join([
        QR_VERSION,
        str(ticket.id),
        TicketType(ticket.ticket_type).value,
        str(ticket.price),
        compact_timestamp(ticket.issued_at),
        ticket.validation_code,
        compact_timestamp(ticket.valid_until),
        ticket.security_hash,
    ])


def decode_qr_payload(payload: str) -> QRPayload:
    """
    Parse a scanned QR string.

    Raises InvalidFormatError for anything that is not a well formed
    ticket payload of a supported version.
    """
    prefix = qr_prefix()
    if not payload.startswith(prefix):
        raise InvalidFormatError()

    parts = payload[len(prefix):].split("/")
    if len(parts) != QR_FIELD_COUNT:
        raise InvalidFormatError("QR code has an unexpected number of fields")

    version, ticket_id, ticket_type, price, issued, code, valid_until, security_hash = parts
    if version != QR_VERSION:
        raise InvalidFormatError(f"Unsupported ticket format {version}")

    try:
        return QRPayload(
            version=version,
            ticket_id=UUID(ticket_id),
            ticket_type=TicketType(ticket_type).value,
            price=int(price),
            issued_at=parse_compact_timestamp(issued),
            validation_code=code,
            valid_until=parse_compact_timestamp(valid_until),
            security_hash=security_hash,
        )
    except ValueError:
        raise InvalidFormatError("QR code fields are malformed")


class TicketService:
    """Service for minting and managing tickets"""

    async def issue_tickets(self, db: AsyncSession, booking_id: UUID, payment_id: UUID) -> TicketBundle:
        """
        Mint one ticket per guest of the booking, adults first.

        Idempotent per (booking, payment): a repeated call returns the bundle
        minted the first time. Runs inside the caller's transaction.
        """
        existing = await self._get_bundle(db, booking_id, payment_id)
        if existing:
            logger.info(f"Tickets already issued for booking {booking_id} payment {payment_id}")
            return existing

        booking = await db.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        payment = await db.get(Payment, payment_id)
        if not payment or payment.booking_id != booking.id:
            raise NotFoundError("Payment", payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise PaymentError(
                "Tickets can only be issued for a completed payment",
                details={"payment_id": str(payment_id), "status": payment.status.value}
            )
        park = await db.get(Park, booking.park_id)

        now = utcnow().replace(microsecond=0)
        valid_from = park_local_to_utc(booking.visit_date, booking.slot_start, park.utc_offset_minutes) - timedelta(
            minutes=settings.TICKET_EARLY_ENTRY_MINUTES
        )
        valid_until = park_end_of_day(booking.visit_date, park.utc_offset_minutes)

        bundle = TicketBundle(
            id=uuid.uuid4(),
            booking_id=booking.id,
            payment_id=payment.id,
            total_tickets=booking.guest_count,
            issued_at=now,
        )
        db.add(bundle)

        guest_types = [TicketType.ADULT] * booking.adult_count + [TicketType.CHILD] * booking.child_count
        codes = await self._unique_codes(db, len(guest_types))
        names = list(booking.guest_names or [])

        tickets = []
        for index, ticket_type in enumerate(guest_types):
            price = booking.adult_price if ticket_type == TicketType.ADULT else booking.child_price
            ticket = Ticket(
                id=uuid.uuid4(),
                bundle_id=bundle.id,
                booking_id=booking.id,
                payment_id=payment.id,
                park_id=booking.park_id,
                user_id=booking.user_id,
                ticket_number=f"{booking.booking_code}-{index + 1:02d}",
                holder_name=names[index] if index < len(names) and names[index] else booking.contact_name,
                ticket_type=ticket_type,
                status=TicketStatus.ACTIVE,
                original_price=booking.adult_price,
                price=price,
                discount_amount=booking.adult_price - price,
                discount_reason="child_discount" if booking.adult_price > price else None,
                validation_code=codes[index],
                valid_from=valid_from,
                valid_until=valid_until,
                issued_at=now,
            )
            ticket.security_hash = compute_security_hash(ticket.id, ticket.validation_code, valid_until)
            ticket.qr_payload = encode_qr_payload(ticket)
            tickets.append(ticket)
            TICKETS_ISSUED.labels(ticket_type=ticket_type.value).inc()

        db.add_all(tickets)
        await db.flush()

        logger.info(
            f"Issued {len(tickets)} tickets for booking {booking.booking_code}",
            extra={"booking_id": str(booking.id), "payment_id": str(payment.id)}
        )
        return await self._get_bundle(db, booking_id, payment_id)

    async def _get_bundle(self, db: AsyncSession, booking_id: UUID, payment_id: UUID) -> Optional[TicketBundle]:
        result = await db.execute(
            select(TicketBundle)
            .where(TicketBundle.booking_id == booking_id, TicketBundle.payment_id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _unique_codes(self, db: AsyncSession, count: int) -> List[str]:
        codes: set = set()
        while len(codes) < count:
            candidates = {generate_validation_code() for _ in range(count - len(codes))} - codes
            result = await db.execute(select(Ticket.validation_code).where(Ticket.validation_code.in_(candidates)))
            codes |= candidates - set(result.scalars())
        return list(codes)

    async def get_ticket(self, db: AsyncSession, ticket_id: UUID, user_id: Optional[UUID] = None) -> Ticket:
        ticket = await db.get(Ticket, ticket_id, populate_existing=True)
        if not ticket or (user_id is not None and ticket.user_id != user_id):
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    async def get_booking_tickets(self, db: AsyncSession, booking_id: UUID) -> List[Ticket]:
        result = await db.execute(
            select(Ticket)
            .where(Ticket.booking_id == booking_id)
            .order_by(Ticket.ticket_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def list_user_tickets(self, db: AsyncSession, user_id: UUID, status: Optional[TicketStatus] = None) -> List[Ticket]:
        stmt = select(Ticket).where(Ticket.user_id == user_id)
        if status:
            stmt = stmt.where(Ticket.status == status)
        result = await db.execute(
            stmt.order_by(Ticket.valid_from.desc(), Ticket.ticket_number).execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def cancel_active_tickets(
        self,
        db: AsyncSession,
        booking_id: UUID,
        status: TicketStatus = TicketStatus.CANCELLED
    ) -> int:
        """Void every still-active ticket of a booking; used tickets stay used"""
        result = await db.execute(
            update(Ticket)
            .where(Ticket.booking_id == booking_id, Ticket.status == TicketStatus.ACTIVE)
            .values(status=status, cancelled_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Moved {result.rowcount} active tickets of booking {booking_id} to {status.value}")
        return result.rowcount

    async def expire_tickets(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        """Maintenance: mark active tickets past their validity window as expired"""
        now = now or utcnow()
        async with db_manager.transaction(db):
            result = await db.execute(
                update(Ticket)
                .where(Ticket.status == TicketStatus.ACTIVE, Ticket.valid_until < now)
                .values(status=TicketStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
        logger.info(f"Expired {result.rowcount} tickets")
        return result.rowcount

    @staticmethod
    def render_qr_png(ticket: Ticket, size: int = 300, border: int = 4) -> bytes:
        """Render the ticket's QR payload as a PNG"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=border,
        )
        qr.add_data(ticket.qr_payload)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white").get_image()
        if size != img.size[0]:
            img = img.resize((size, size), PILImage.NEAREST)

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()

    @staticmethod
    def is_within_window(ticket: Ticket, now: datetime) -> bool:
        return as_utc(ticket.valid_from) <= now <= as_utc(ticket.valid_until)


ticket_service = TicketService()
