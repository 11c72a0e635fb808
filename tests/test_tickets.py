"""
Tests for ticket issuance, the QR payload format and ticket maintenance
"""

import pytest
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import func, select

from skypark.core.exceptions import InvalidFormatError, PaymentError
from skypark.core.timeutils import as_utc, park_end_of_day
from skypark.models import PaymentMethod, Ticket, TicketBundle, TicketStatus, TicketType
from skypark.services.booking_service import booking_service
from skypark.services.ticket_service import (
    CODE_ALPHABET,
    CODE_LENGTH,
    compute_security_hash,
    decode_qr_payload,
    qr_prefix,
    ticket_service,
)
from tests.conftest import PARK_UTC_OFFSET, booking_request, park_time, pay


async def issued_booking(db_session, park, customer, visit_date, payments, **overrides):
    booking = await booking_service.create_booking(
        db_session, customer.id, booking_request(park, visit_date, **overrides)
    )
    payment = await pay(payments, db_session, booking)
    return booking, payment


@pytest.mark.asyncio
class TestIssuance:

    async def test_one_ticket_per_guest_adults_first(self, db_session, park, customer, visit_date, payments):
        booking, payment = await issued_booking(
            db_session, park, customer, visit_date, payments, guest_names=["Aigerim", "Timur", "Aruuke"]
        )

        tickets = await ticket_service.get_booking_tickets(db_session, booking.id)

        assert [t.ticket_type for t in tickets] == [TicketType.ADULT, TicketType.ADULT, TicketType.CHILD]
        assert [t.ticket_number for t in tickets] == [f"{booking.booking_code}-0{n}" for n in (1, 2, 3)]
        assert [t.holder_name for t in tickets] == ["Aigerim", "Timur", "Aruuke"]
        assert [t.price for t in tickets] == [300, 300, 150]
        assert [t.original_price for t in tickets] == [300, 300, 300]
        assert [t.discount_amount for t in tickets] == [0, 0, 150]
        assert [t.discount_reason for t in tickets] == [None, None, "child_discount"]
        assert sum(t.price for t in tickets) == booking.total_cost
        assert all(t.status == TicketStatus.ACTIVE for t in tickets)
        assert all(t.payment_id == payment.id for t in tickets)

    async def test_validity_window(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments)

        ticket = (await ticket_service.get_booking_tickets(db_session, booking.id))[0]

        assert as_utc(ticket.valid_from) == park_time(visit_date, 10) - timedelta(minutes=30)
        assert as_utc(ticket.valid_until) == park_end_of_day(visit_date, PARK_UTC_OFFSET)

    async def test_holder_defaults_to_contact_name(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(
            db_session, park, customer, visit_date, payments, guest_names=["Timur"]
        )

        tickets = await ticket_service.get_booking_tickets(db_session, booking.id)
        assert [t.holder_name for t in tickets] == ["Timur", "Aigerim Test", "Aigerim Test"]

    async def test_validation_codes_are_unique_and_readable(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments, adults=6, children=4)

        codes = [t.validation_code for t in await ticket_service.get_booking_tickets(db_session, booking.id)]

        assert len(set(codes)) == 10
        assert all(len(code) == CODE_LENGTH and set(code) <= set(CODE_ALPHABET) for code in codes)

    async def test_issuance_is_idempotent(self, db_session, park, customer, visit_date, payments):
        booking, payment = await issued_booking(db_session, park, customer, visit_date, payments)
        original = await ticket_service._get_bundle(db_session, booking.id, payment.id)

        again = await ticket_service.issue_tickets(db_session, booking.id, payment.id)
        await db_session.commit()

        assert again.id == original.id
        assert again.total_tickets == 3
        assert len(again.tickets) == 3
        ticket_count = (await db_session.execute(select(func.count(Ticket.id)))).scalar()
        bundle_count = (await db_session.execute(select(func.count(TicketBundle.id)))).scalar()
        assert (ticket_count, bundle_count) == (3, 1)

    async def test_requires_completed_payment(self, db_session, park, customer, visit_date, payments):
        booking = await booking_service.create_booking(db_session, customer.id, booking_request(park, visit_date))
        payment = await payments.initiate_payment(db_session, booking.id, PaymentMethod.BANK_CARD, 750)

        with pytest.raises(PaymentError):
            await ticket_service.issue_tickets(db_session, booking.id, payment.id)


@pytest.mark.asyncio
class TestQRPayload:

    async def test_payload_carries_signed_fields(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments)
        ticket = (await ticket_service.get_booking_tickets(db_session, booking.id))[2]

        payload = decode_qr_payload(ticket.qr_payload)

        assert ticket.qr_payload.startswith(qr_prefix())
        assert payload.version == "v1"
        assert payload.ticket_id == ticket.id
        assert payload.ticket_type == "child"
        assert payload.price == 150
        assert payload.validation_code == ticket.validation_code
        assert payload.security_hash == ticket.security_hash
        assert payload.valid_until == as_utc(ticket.valid_until)
        assert compute_security_hash(ticket.id, ticket.validation_code, payload.valid_until) == ticket.security_hash

    @pytest.mark.parametrize("payload", [
        "https://example.com/ticket",
        "skypark://ticket/v1/only/three",
        "skypark://ticket/v9/" + "/".join(["x"] * 7),
        f"skypark://ticket/v1/not-a-uuid/adult/300/20260101T000000Z/ABCDEFGH/20260101T235959Z/{'0' * 32}",
        f"skypark://ticket/v1/{uuid4()}/senior/300/20260101T000000Z/ABCDEFGH/20260101T235959Z/{'0' * 32}",
        f"skypark://ticket/v1/{uuid4()}/adult/free/20260101T000000Z/ABCDEFGH/20260101T235959Z/{'0' * 32}",
    ])
    async def test_malformed_payloads(self, payload):
        with pytest.raises(InvalidFormatError):
            decode_qr_payload(payload)

    async def test_qr_png(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments)
        ticket = (await ticket_service.get_booking_tickets(db_session, booking.id))[0]

        png = ticket_service.render_qr_png(ticket, size=240)

        assert png.startswith(b"\x89PNG\r\n\x1a\n")


@pytest.mark.asyncio
class TestTicketMaintenance:

    async def test_expire_past_tickets(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments)

        assert await ticket_service.expire_tickets(db_session, now=park_time(visit_date, 12)) == 0
        expired = await ticket_service.expire_tickets(db_session, now=park_time(visit_date + timedelta(days=1), 1))

        assert expired == 3
        tickets = await ticket_service.get_booking_tickets(db_session, booking.id)
        assert {t.status for t in tickets} == {TicketStatus.EXPIRED}

    async def test_booking_cancel_voids_active_tickets(self, db_session, park, customer, visit_date, payments):
        booking, _ = await issued_booking(db_session, park, customer, visit_date, payments)

        await booking_service.cancel_booking(db_session, booking.id, reason="weather")

        tickets = await ticket_service.get_booking_tickets(db_session, booking.id)
        assert {t.status for t in tickets} == {TicketStatus.CANCELLED}
        assert all(t.cancelled_at is not None for t in tickets)

    async def test_user_ticket_listing(self, db_session, park, customer, other_customer, visit_date, payments):
        await issued_booking(db_session, park, customer, visit_date, payments)

        assert len(await ticket_service.list_user_tickets(db_session, customer.id)) == 3
        assert len(await ticket_service.list_user_tickets(db_session, customer.id, TicketStatus.USED)) == 0
        assert await ticket_service.list_user_tickets(db_session, other_customer.id) == []
