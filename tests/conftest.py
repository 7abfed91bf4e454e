"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) built from the production
models, so tests run without Docker / PostgreSQL / Redis.  ``StaticPool``
keeps a single connection so every session sees the same in-memory DB.
Row locks (``FOR UPDATE``) are silently ignored by SQLite.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.domain.entities import Bid, Location, Ride
from src.domain.enums import BidStatus, RideStatus, UserRole, VehicleType
from src.infrastructure.database import Base
from src.infrastructure.models import UserModel
from src.services.booking import BookingService

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)

GRADY = Location(33.7522, -84.3816)
EMORY = Location(33.7925, -84.3226)


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


# ── Domain helpers ────────────────────────────────────────────────────


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def make_ride():
    """Factory for unsaved ``Ride`` entities with sensible defaults."""

    def _make(**overrides) -> Ride:
        fields = dict(
            rider_id=1,
            pickup_location="80 Jesse Hill Jr Dr SE, Atlanta, GA",
            dropoff_location="1364 Clifton Rd, Atlanta, GA",
            pickup=GRADY,
            dropoff=EMORY,
            scheduled_time=NOW + timedelta(days=3),
            vehicle_type=VehicleType.STANDARD,
            rider_bid=60.0,
        )
        fields.update(overrides)
        return Ride(**fields)

    return _make


@pytest.fixture
def open_ride(make_ride) -> Ride:
    """A saved-looking ride open for bids with a $100 suggested price."""
    return make_ride(id=1, suggested_price=100.0, status=RideStatus.REQUESTED)


@pytest.fixture
def make_bid():
    counter = {"next": 1}

    def _make(**overrides) -> Bid:
        fields = dict(
            id=counter["next"],
            ride_id=1,
            driver_id=100 + counter["next"],
            amount=90.0,
            status=BidStatus.PENDING,
            created_at=NOW + timedelta(minutes=counter["next"]),
        )
        fields.update(overrides)
        counter["next"] += 1
        return Bid(**fields)

    return _make


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory schema per test."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session_factory) -> SimpleNamespace:
    """A rider, a second rider, two onboarded drivers and one still onboarding."""
    async with session_factory() as session:
        people = SimpleNamespace(
            rider=UserModel(name="Rita Rider", email="rita@example.com", role=UserRole.RIDER),
            other_rider=UserModel(name="Omar Rider", email="omar@example.com", role=UserRole.RIDER),
            driver=UserModel(
                name="Dana Driver", email="dana@example.com",
                role=UserRole.DRIVER, documents_complete=True,
            ),
            other_driver=UserModel(
                name="Eli Driver", email="eli@example.com",
                role=UserRole.DRIVER, documents_complete=True,
            ),
            unverified_driver=UserModel(
                name="Finn Driver", email="finn@example.com",
                role=UserRole.DRIVER, documents_complete=False,
            ),
        )
        session.add_all(vars(people).values())
        await session.commit()
    return people


@pytest.fixture
def service(db_session, clock) -> BookingService:
    return BookingService(db_session, clock=clock)
