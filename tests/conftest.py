"""Shared test fixtures and configuration."""
import pytest
import os
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from app.main import app
from app.core.config import Settings
from app.db.database import Base, get_db
from app.services.call_session.clock import MeteringClock
from app.services.call_session.engine import CallEngine
from app.services.ledger.memory import InMemoryLedgerStore
from app.services.ledger.sql import SqlLedgerStore
from app.services.signaling.base import RecordingRelay


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Interval charge at the default rate
INTERVAL_CHARGE = Decimal("0.0033")


@pytest.fixture
def test_settings():
    """Settings with the documented defaults and timers that never fire on their own."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        rate_per_second=Decimal("0.0033"),
        billing_interval_seconds=1,
        minimum_start_balance=Decimal("0.50"),
        ring_timeout_seconds=3600,
        max_consecutive_ledger_failures=3,
        low_balance_warning_intervals=30,
        wallet_signup_bonus=Decimal("5.00"),
    )


@pytest.fixture
def manual_clock():
    """Clock whose interval is long enough that tests drive ticks by hand."""
    return MeteringClock(interval_seconds=3600)


@pytest.fixture
def ledger():
    """In-memory ledger with a few funded users."""
    return InMemoryLedgerStore(
        {
            "alice": Decimal("1.00"),
            "bob": Decimal("2.00"),
            "carol": Decimal("10.00"),
            "dave": Decimal("0.10"),
        }
    )


@pytest.fixture
def relay():
    """Relay that records every notification."""
    return RecordingRelay()


@pytest.fixture
async def call_engine(ledger, relay, test_settings, manual_clock):
    """Call engine driven by manual ticks."""
    engine = CallEngine(ledger=ledger, relay=relay, clock=manual_clock, config=test_settings)
    yield engine
    await engine.shutdown()


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_factory(test_db_engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def test_db(test_session_factory):
    """Create test database session."""
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def sql_ledger(test_session_factory):
    """Ledger backed by the test database."""
    return SqlLedgerStore(test_session_factory)


@pytest.fixture
async def api_engine(sql_ledger, relay, test_settings, manual_clock):
    """Call engine wired to the SQL ledger, as the app builds it."""
    engine = CallEngine(ledger=sql_ledger, relay=relay, clock=manual_clock, config=test_settings)
    yield engine
    await engine.shutdown()


@pytest.fixture
async def api_client(api_engine, sql_ledger, relay, test_session_factory):
    """HTTP client against the app with test collaborators installed."""
    async def _override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.call_engine = api_engine
    app.state.ledger = sql_ledger
    app.state.relay = relay

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
