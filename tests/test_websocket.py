"""
Tests for the admin notification WebSocket.

These run through the framework's ``TestClient`` so the socket and the HTTP
requests share one event loop. The app lifespan is swapped for one that
builds an in-memory SQLite database instead of connecting to PostgreSQL.
"""

from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  registers the tables on Base.metadata
from app.database import Base, get_db
from app.main import app
from app.services.notifications import get_connection_registry

ORDER = {
    "customer_name": "John Doe",
    "customer_phone": "555-123-4567",
    "items": [{"name": "Pizza Margherita", "quantity": 2, "unit_price": 14.99}],
}


@pytest.fixture
def live_client(monkeypatch):
    """TestClient with its own lifespan and database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    sessions = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def lifespan(_app):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        await get_connection_registry().close_all()
        await engine.dispose()

    async def override_get_db():
        async with sessions() as session:
            yield session

    monkeypatch.setattr(app.router, "lifespan_context", lifespan)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


class TestAdminWebSocket:

    def test_welcome_message(self, live_client):
        with live_client.websocket_connect("/api/admin/ws") as ws:
            message = ws.receive_json()

        assert message["type"] == "connected"
        assert message["data"]["status"] == "ready"

    def test_order_event_is_pushed(self, live_client):
        registry = get_connection_registry()

        with live_client.websocket_connect("/api/admin/ws") as ws:
            assert ws.receive_json()["type"] == "connected"
            assert registry.active_count == 1

            health = live_client.get("/health").json()
            assert health["websocket_clients"] == 1
            assert len(health["websocket_connections"]) == 1

            response = live_client.post("/api/orders", json=ORDER)
            assert response.status_code == 200
            assert response.json()["notified_clients"] == 1

            event = ws.receive_json()
            assert event["type"] == "new_order"
            assert event["data"]["customer_name"] == "John Doe"

    def test_client_is_unregistered_on_close(self, live_client):
        registry = get_connection_registry()

        with live_client.websocket_connect("/api/admin/ws") as ws:
            ws.receive_json()
            assert registry.active_count == 1

        assert registry.active_count == 0
        assert live_client.get("/health").json()["websocket_connections"] == []

    def test_incoming_frames_are_ignored(self, live_client):
        registry = get_connection_registry()

        with live_client.websocket_connect("/api/admin/ws") as ws:
            ws.receive_json()
            ws.send_text("ping")
            ws.send_bytes(b"\x00")

            response = live_client.post("/api/orders", json=ORDER)
            assert response.json()["notified_clients"] == 1
            assert ws.receive_json()["type"] == "new_order"

        assert registry.active_count == 0
