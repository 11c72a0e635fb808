"""
Gate Validation Protocol

Redeems a scanned QR payload or a typed validation code for park entry.
Every outcome comes back as a GateValidationResult; a rejected scan is
final and is never retried automatically.
"""

import hmac
from datetime import datetime
from typing import Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from skypark.core.database import db_manager
from skypark.core.exceptions import (
    AlreadyUsedError,
    ExpiredError,
    GateValidationError,
    InvalidFormatError,
    NotYetValidError,
    TamperedCodeError,
    TicketCancelledError,
    TicketNotFoundError,
)
from skypark.core.logging import LoggerAdapter
from skypark.core.metrics import GATE_VALIDATIONS
from skypark.core.timeutils import as_utc, utcnow
from skypark.models.booking import Booking
from skypark.models.ticket import Ticket, TicketStatus, TicketType
from skypark.schemas.gate import GateValidationResult, TicketSummary
from skypark.services.ticket_service import (
    QRPayload,
    compute_security_hash,
    decode_qr_payload,
    looks_like_validation_code,
    qr_prefix,
)

logger = logging.getLogger(__name__)

ACCEPTED = "ACCEPTED"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


class GateService:
    """Validates tickets at park entrances"""

    async def validate(
        self,
        db: AsyncSession,
        code: str,
        gate_id: str,
        now: Optional[datetime] = None
    ) -> GateValidationResult:
        now = now or utcnow()
        log = LoggerAdapter(logger, {"gate_id": gate_id})
        summary = None

        try:
            ticket, payload = await self._lookup(db, (code or "").strip())
            summary = await self._summary(db, ticket)
            self._verify_integrity(ticket, payload)
            self._check_state(ticket, now)
            await self._consume(db, ticket.id, gate_id, now)
        except GateValidationError as e:
            GATE_VALIDATIONS.labels(gate=gate_id, result=e.code).inc()
            log.warning(f"Rejected scan: {e.code} {e.message}")
            return GateValidationResult(
                accepted=False,
                code=e.code,
                reason=e.message,
                gate_id=gate_id,
                validated_at=now,
                ticket=summary,
            )

        GATE_VALIDATIONS.labels(gate=gate_id, result=ACCEPTED).inc()
        log.info(f"Admitted ticket {summary.ticket_number}")
        return GateValidationResult(
            accepted=True,
            code=ACCEPTED,
            reason=f"Welcome, {summary.holder_name}",
            gate_id=gate_id,
            validated_at=now,
            ticket=summary,
        )

    async def _lookup(self, db: AsyncSession, code: str) -> Tuple[Ticket, Optional[QRPayload]]:
        if code.startswith(qr_prefix()):
            payload = decode_qr_payload(code)
            ticket = await self._fetch(db, Ticket.id == payload.ticket_id)
            if not ticket:
                raise TicketNotFoundError(str(payload.ticket_id))
            return ticket, payload

        manual = code.upper()
        if not looks_like_validation_code(manual):
            raise InvalidFormatError()
        ticket = await self._fetch(db, Ticket.validation_code == manual)
        if not ticket:
            raise TicketNotFoundError(manual)
        return ticket, None

    async def _fetch(self, db: AsyncSession, criterion) -> Optional[Ticket]:
        result = await db.execute(
            select(Ticket).where(criterion).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _summary(self, db: AsyncSession, ticket: Ticket) -> TicketSummary:
        booking = await db.get(Booking, ticket.booking_id)
        return TicketSummary(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            holder_name=ticket.holder_name,
            ticket_type=TicketType(ticket.ticket_type).value,
            visit_date=booking.visit_date,
            slot_start=booking.slot_start,
            slot_end=booking.slot_end,
        )

    @staticmethod
    def _verify_integrity(ticket: Ticket, payload: Optional[QRPayload]):
        """The stored hash and, for QR scans, every signed payload field must agree"""
        expected = compute_security_hash(ticket.id, ticket.validation_code, as_utc(ticket.valid_until))
        if not hmac.compare_digest(expected, ticket.security_hash):
            raise TamperedCodeError()

        if payload is None:
            return

        recomputed = compute_security_hash(payload.ticket_id, payload.validation_code, payload.valid_until)
        if not hmac.compare_digest(recomputed, payload.security_hash):
            raise TamperedCodeError()
        if (
            payload.security_hash != ticket.security_hash
            or payload.validation_code != ticket.validation_code
            or payload.ticket_type != TicketType(ticket.ticket_type).value
            or payload.price != ticket.price
        ):
            raise TamperedCodeError()

    @staticmethod
    def _check_state(ticket: Ticket, now: datetime):
        status = TicketStatus(ticket.status)
        if status == TicketStatus.USED:
            raise AlreadyUsedError(_iso(ticket.used_at), ticket.used_gate)
        if status == TicketStatus.EXPIRED:
            raise ExpiredError(_iso(ticket.valid_until))
        if status != TicketStatus.ACTIVE:
            raise TicketCancelledError(status.value)
        if now > as_utc(ticket.valid_until):
            raise ExpiredError(_iso(ticket.valid_until))
        if now < as_utc(ticket.valid_from):
            raise NotYetValidError(_iso(ticket.valid_from))

    async def _consume(self, db: AsyncSession, ticket_id: UUID, gate_id: str, now: datetime):
        """Single conditional write; exactly one concurrent scan can win"""
        async with db_manager.transaction(db):
            result = await db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.ACTIVE)
                .values(status=TicketStatus.USED, used_at=now, used_gate=gate_id)
                .execution_options(synchronize_session=False)
            )

        if result.rowcount != 1:
            # Lost to another scan, or voided since the state check
            row = (await db.execute(
                select(Ticket.status, Ticket.used_at, Ticket.used_gate, Ticket.valid_until)
                .where(Ticket.id == ticket_id)
            )).one()
            status = TicketStatus(row.status)
            if status == TicketStatus.USED:
                raise AlreadyUsedError(_iso(row.used_at), row.used_gate)
            if status == TicketStatus.EXPIRED:
                raise ExpiredError(_iso(row.valid_until))
            raise TicketCancelledError(status.value)


gate_service = GateService()
