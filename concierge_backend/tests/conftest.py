"""
Centralized Test Configuration.
"""

import json
import os
import tempfile
from typing import List, Optional

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from concierge_backend.app.main import app
from concierge_backend.app.db.session import get_db, Base
from concierge_backend.app.core.reliability import payment_circuit_breaker
import concierge_backend.app.core.redis_client as redis_client_module
from concierge_backend.app.domain.pricing.pricing_catalog import pricing_catalog
from concierge_backend.app.domain.tracking.trip_tracker import trip_tracker
from concierge_backend.app.models.enums import UserRole
from concierge_backend.app.schemas.actor import Actor
from concierge_backend.app.services.payment_gateway import get_payment_gateway, set_payment_gateway

from factories import TENANT_ID, InMemoryPaymentGateway

# File-backed SQLite so concurrent sessions get their own connections
TEST_DATABASE_PATH = os.path.join(tempfile.mkdtemp(prefix="concierge-tests-"), "test.db")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DATABASE_PATH}"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=NullPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# Mock Redis: records every publish so tests can assert on realtime events
class MockRedis:
    def __init__(self):
        self.published = []
        self._closed = False

    async def ping(self):
        return not self._closed

    async def publish(self, channel, message):
        if self._closed:
            return 0
        self.published.append((channel, message))
        return 1

    async def flushdb(self):
        self.published = []

    async def aclose(self):
        self._closed = True
        self.published = []

    def events(self, event_name: Optional[str] = None, channel: Optional[str] = None) -> List[dict]:
        """Decoded envelopes, in publish order, optionally filtered."""
        decoded = []
        for published_channel, message in self.published:
            if channel is not None and published_channel != channel:
                continue
            envelope = json.loads(message)
            if event_name is not None and envelope["event"] != event_name:
                continue
            decoded.append(envelope)
        return decoded


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(redis_client):
    """Patch the global redis client and the DB dependency for each test."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
async def domain_state(setup_database):
    """Point the tracker at the test database and reset process-wide state."""
    original = (trip_tracker.session_factory, trip_tracker.tick_interval, trip_tracker.total_steps)
    trip_tracker.session_factory = TestingSessionLocal
    # Background tick tasks stay asleep; tests drive tick() directly
    trip_tracker.tick_interval = 3600
    trip_tracker.total_steps = 200
    pricing_catalog.invalidate()
    payment_circuit_breaker.reset_state()

    yield

    await trip_tracker.shutdown()
    trip_tracker._stopped.clear()
    trip_tracker.session_factory, trip_tracker.tick_interval, trip_tracker.total_steps = original
    pricing_catalog.invalidate()
    payment_circuit_breaker.reset_state()


@pytest.fixture(autouse=True)
def payment_gateway():
    original = get_payment_gateway()
    gateway = InMemoryPaymentGateway()
    set_payment_gateway(gateway)
    yield gateway
    set_payment_gateway(original)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Actors

@pytest.fixture
def admin():
    return Actor(user_id=1, role=UserRole.ADMIN, tenant_id=TENANT_ID, username="admin")


@pytest.fixture
def concierge():
    return Actor(user_id=10, role=UserRole.CONCIERGE, tenant_id=TENANT_ID, username="concierge")


@pytest.fixture
def other_concierge():
    return Actor(user_id=11, role=UserRole.CONCIERGE, tenant_id=TENANT_ID, username="concierge2")


@pytest.fixture
def operators():
    return [
        Actor(user_id=20 + i, role=UserRole.OPERATOR, tenant_id=TENANT_ID, username=f"operator{i}")
        for i in range(3)
    ]


@pytest.fixture
def driver():
    return Actor(user_id=30, role=UserRole.DRIVER, tenant_id=TENANT_ID, username="driver")



@pytest.fixture
def session_factory():
    """Factory for code that opens its own sessions (sweeper, tracker, concurrent callers)."""
    return TestingSessionLocal
