"""
Test configuration and fixtures.

Every test gets a fresh in-memory SQLite database. The API client talks
to the ASGI app in-process with ``get_db`` pointed at that database; the
app lifespan (and with it the PostgreSQL engine) never runs.
"""

from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  registers the tables on Base.metadata
from app.database import Base, get_db
from app.main import app
from app.models import Business
from app.services.notifications import BaseEventPublisher, reset_notification_service
from app.services.pricing import PricingConfig, PricingEngine
from app.services.subscriptions import SubscriptionManager
from app.services.tokens import TokenLifecycleManager


class RecordingPublisher(BaseEventPublisher):
    """Publisher that keeps every event in memory."""

    provider_name = "recording"

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    async def publish(self, event_type: str, data: Any = None) -> int:
        self.events.append((event_type, data))
        return 0


# Database fixtures
@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def business(db) -> Business:
    """A committed business without a token."""
    business = Business(name="Pizza Palace", owner_id="owner-1", category="restaurant", city="Moscow")
    db.add(business)
    await db.commit()
    return business


# Service fixtures
@pytest.fixture
def pricing():
    return PricingEngine(PricingConfig())


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def token_manager(pricing):
    return TokenLifecycleManager(pricing=pricing)


@pytest.fixture
def subscription_manager(pricing, publisher):
    return SubscriptionManager(pricing=pricing, publisher=publisher)


@pytest_asyncio.fixture
async def token(db, business, token_manager):
    """Token with 100 tokens available at the base price."""
    return await token_manager.create_token(db, business.id, "PIZT", Decimal("19.00"), 100)


@pytest.fixture(autouse=True)
def fresh_registry():
    """Each test starts with an empty connection registry."""
    reset_notification_service()
    yield
    reset_notification_service()


# API fixtures
@pytest_asyncio.fixture
async def client(session_maker):
    """HTTP client bound to the app with the test database."""
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
