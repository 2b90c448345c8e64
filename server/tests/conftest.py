"""Test configuration and fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WORKERS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "development")

from datetime import date, datetime  # noqa: E402

import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from availability_engine.core.clock import FrozenClock  # noqa: E402
from availability_engine.core.config import settings  # noqa: E402
from availability_engine.core.database import Base  # noqa: E402
from availability_engine.core.dependencies import Caller, get_clock, get_db, get_outbox  # noqa: E402
from availability_engine.models import *  # noqa: E402,F403 - Import all models
from availability_engine.models.slot import Slot, SlotStatus  # noqa: E402
from availability_engine.scheduling.recurrence import compute_booking_deadline, compute_end_time  # noqa: E402
from availability_engine.services.notifications import NotificationOutbox  # noqa: E402

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Monday
NOW = datetime(2025, 3, 3, 10, 0)

VENDOR = Caller(user_id="vendor-1", roles=("vendor",), email="vendor@example.com")
OTHER_VENDOR = Caller(user_id="vendor-2", roles=("vendor",))
ADMIN = Caller(user_id="admin-1", roles=("admin",))
ALICE = Caller(user_id="alice", roles=("customer",), email="alice@example.com")
BOB = Caller(user_id="bob", roles=("customer",), email="bob@example.com")
CAROL = Caller(user_id="carol", roles=("customer",), email="carol@example.com")


class RecordingDispatcher:
    """Dispatcher that keeps every event; optionally fails for chosen customers."""

    def __init__(self):
        self.spot_available: list[dict] = []
        self.cancellations: list[dict] = []
        self.fail_for: set[str] = set()

    async def waitlist_spot_available(
        self, customer_id, slot_id, expires_at, listing, channel, customer_email=None
    ):
        if customer_id in self.fail_for:
            raise RuntimeError(f"delivery to {customer_id} failed")
        self.spot_available.append(
            {
                "customer_id": customer_id,
                "slot_id": slot_id,
                "expires_at": expires_at,
                "listing": listing,
                "channel": channel,
                "customer_email": customer_email,
            }
        )

    async def booking_cancelled(self, customer_id, slot_id, reason, message=None, customer_email=None):
        if customer_id in self.fail_for:
            raise RuntimeError(f"delivery to {customer_id} failed")
        self.cancellations.append(
            {
                "customer_id": customer_id,
                "slot_id": slot_id,
                "reason": reason,
                "message": message,
                "customer_email": customer_email,
            }
        )

    def offered_to(self, channel: str = "in_app") -> list[str]:
        return [event["customer_id"] for event in self.spot_available if event["channel"] == channel]


def make_engine():
    return create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        pool_reset_on_return=None,
    )


def make_session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def token_for(caller: Caller) -> dict[str, str]:
    """Authorization header carrying a signed token for ``caller``."""
    claims = {"sub": caller.user_id, "roles": list(caller.roles)}
    if caller.email:
        claims["email"] = caller.email
    token = jwt.encode(claims, settings.bearer_token_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def make_slot(
    *,
    listing_id: str = "listing-1",
    vendor_id: str = VENDOR.user_id,
    slot_date: date = date(2025, 3, 10),
    start_time: str = "09:00",
    duration_minutes: int = 120,
    capacity: int = 4,
    booked: int = 0,
    deadline_hours: int = 0,
    status: SlotStatus = SlotStatus.ACTIVE,
    rule_id=None,
) -> Slot:
    return Slot(
        listing_id=listing_id,
        vendor_id=vendor_id,
        rule_id=rule_id,
        slot_date=slot_date,
        start_time=start_time,
        end_time=compute_end_time(start_time, duration_minutes),
        capacity=capacity,
        booked=booked,
        available=capacity - booked,
        booking_deadline=compute_booking_deadline(slot_date, start_time, deadline_hours),
        status=status,
        version=1,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = make_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return make_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest_asyncio.fixture
async def outbox(dispatcher):
    box = NotificationOutbox(dispatcher)
    yield box
    await box.drain()


@pytest_asyncio.fixture
async def slot_factory(test_session):
    """Insert a slot directly and return it."""

    async def create(**kwargs) -> Slot:
        slot = make_slot(**kwargs)
        test_session.add(slot)
        await test_session.commit()
        return slot

    return create


@pytest_asyncio.fixture(scope="function")
async def test_app(session_factory, clock, outbox):
    """Create the application with test database, clock and notifications."""
    from availability_engine.main import create_app

    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_outbox] = lambda: outbox

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def weekly_rule_data():
    """Weekly Monday/Wednesday/Friday morning rule."""
    return {
        "listing_id": "listing-1",
        "name": "Morning kayak tour",
        "rule_type": "recurring",
        "pattern": {
            "frequency": "weekly",
            "days_of_week": [1, 3, 5],
            "start_time": "09:00",
            "duration_minutes": 120,
        },
        "capacity": 4,
        "booking_deadline_hours": 2,
        "generate_days_in_advance": 14,
    }
