"""
Test configuration and fixtures
Runs the booking core against a throwaway SQLite database
"""

import os
import tempfile
from datetime import date, datetime, time, timedelta
from typing import AsyncGenerator, List
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment before anything reads settings
_TEST_DIR = tempfile.mkdtemp(prefix="skypark-tests-")
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'skypark.db')}"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["SECRET_KEY"] = "test-secret-key-for-skypark-unit-tests-0001"
os.environ["JWT_SECRET_KEY"] = "test-jwt-key-for-skypark-unit-tests-0002"
os.environ["TICKET_SIGNING_KEY"] = "test-ticket-signing-key-for-skypark-0003"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "whsec_test_skypark"
os.environ["TASK_RETRY_BACKOFF_CAP_SECONDS"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

# Import all models BEFORE creating fixtures (create_all needs them registered)
from skypark.core.database import Base, async_session, engine
from skypark.core.redis import redis_manager
from skypark.core.security import create_access_token
from skypark.core.tasks import task_dispatcher
from skypark.core.timeutils import park_local_to_utc, park_today
from skypark.models import Park, PaymentMethod, User, UserRole
from skypark.schemas.booking import BookingCreate
from skypark.schemas.payment import OutcomeStatus, PaymentOutcome
from skypark.services.payment_providers import (
    ChargeResult,
    PaymentProvider,
    ProviderError,
    ProviderRegistry,
    RefundResult,
)
from skypark.services.payment_service import PaymentService

PARK_UTC_OFFSET = 360
KG_PHONE = "+996555123456"


class FakeCardProvider(PaymentProvider):
    """Records charges and reports whatever outcome the test asks for"""

    name = "fake_card"

    def __init__(self, outcome: str = "processing", error: str = None):
        self.outcome = outcome
        self.error = error
        self.charges: List[dict] = []
        self.refunds: List[tuple] = []

    async def charge(self, amount, currency, method, details, metadata) -> ChargeResult:
        self.charges.append({"amount": amount, "currency": currency, "method": method, "metadata": metadata})
        if self.error:
            raise ProviderError(self.error)
        return ChargeResult(
            transaction_id=f"fake_{uuid4().hex}",
            status=self.outcome,
            reason="card declined" if self.outcome == "failed" else None,
        )

    async def refund(self, transaction_id: str, amount: int) -> RefundResult:
        self.refunds.append((transaction_id, amount))
        return RefundResult(refund_id=f"re_{uuid4().hex}", status="succeeded")


@pytest_asyncio.fixture(autouse=True)
async def database():
    """Fresh schema per test; background tasks finish before it is dropped"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await task_dispatcher.drain()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def no_rate_limit(monkeypatch):
    """Redis is not available in unit tests"""
    limiter = AsyncMock(return_value=(False, 0))
    monkeypatch.setattr(redis_manager, "is_rate_limited", limiter)
    return limiter


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def _persist(*objects):
    # Seeded in a separate session so fixtures stay usable after test rollbacks
    async with async_session() as session:
        session.add_all(objects)
        await session.commit()
    return objects


@pytest_asyncio.fixture
async def customer() -> User:
    user = User(phone=KG_PHONE, full_name="Aigerim Test", role=UserRole.CUSTOMER)
    await _persist(user)
    return user


@pytest_asyncio.fixture
async def other_customer() -> User:
    user = User(phone="+996700000111", full_name="Other Customer", role=UserRole.CUSTOMER)
    await _persist(user)
    return user


@pytest_asyncio.fixture
async def staff_user() -> User:
    user = User(phone="+996700000222", full_name="Gate Staff", role=UserRole.STAFF)
    await _persist(user)
    return user


@pytest_asyncio.fixture
async def admin_user() -> User:
    user = User(phone="+996700000333", full_name="Park Admin", role=UserRole.ADMIN)
    await _persist(user)
    return user


@pytest_asyncio.fixture
async def park() -> Park:
    park = Park(
        name="SkyPark Bishkek",
        city="Bishkek",
        country_code="KG",
        utc_offset_minutes=PARK_UTC_OFFSET,
        opening_time=time(10, 0),
        closing_time=time(20, 0),
        slot_duration_minutes=120,
        slot_capacity=10,
        adult_price=300,
        child_price=None,
        currency="KGS",
    )
    await _persist(park)
    return park


@pytest.fixture
def visit_date() -> date:
    return park_today(PARK_UTC_OFFSET) + timedelta(days=7)


def park_time(visit_date: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant of a park-local wall clock time"""
    return park_local_to_utc(visit_date, time(hour, minute), PARK_UTC_OFFSET)


def booking_request(park: Park, visit_date: date, adults: int = 2, children: int = 1, **overrides) -> BookingCreate:
    data = {
        "park_id": park.id,
        "visit_date": visit_date,
        "time_slot": time(10, 0),
        "adult_count": adults,
        "child_count": children,
        "contact_name": "Aigerim Test",
        "contact_phone": KG_PHONE,
        "contact_email": "aigerim@example.com",
        "guest_names": [],
    }
    data.update(overrides)
    return BookingCreate(**data)


async def pay(payments: PaymentService, db_session: AsyncSession, booking, method=PaymentMethod.BANK_CARD):
    """Initiate a payment for the full total and report it captured"""
    payment = await payments.initiate_payment(db_session, booking.id, method, booking.total_cost)
    return await payments.reconcile(db_session, payment.id, PaymentOutcome(status=OutcomeStatus.SUCCEEDED))


@pytest.fixture
def fake_card() -> FakeCardProvider:
    return FakeCardProvider()


@pytest.fixture
def payments(fake_card) -> PaymentService:
    return PaymentService(providers=ProviderRegistry(card=fake_card))


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from skypark.main import app

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
