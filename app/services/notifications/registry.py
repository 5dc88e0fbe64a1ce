"""
WebSocket Connection Registry

Tracks connected clients, each with its own bounded outbound queue.
Broadcasting only enqueues: a client whose queue is full is dropped rather
than slowing the broadcaster down. The WebSocket endpoint drains a
client's queue onto its socket.

Version: 1.0.0
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from app.services.notifications.base import BaseEventPublisher, EventMessage

logger = logging.getLogger(__name__)

# Sentinel telling a client's writer loop to stop
CLOSE = None


class ClientConnection:
    """One registered subscriber and its message queue."""

    def __init__(self, queue_size: int = 256, label: str = ""):
        self.id = uuid.uuid4().hex[:12]
        self.label = label
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)
        self.connected_at = datetime.now(timezone.utc)
        self.last_seen = self.connected_at
        self.closed = False

    def touch(self) -> None:
        self.last_seen = datetime.now(timezone.utc)

    def info(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "connected_at": self.connected_at,
            "last_seen": self.last_seen,
        }

    def offer(self, message: str) -> bool:
        """Enqueue without waiting. False when the client cannot keep up."""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> Optional[str]:
        """Wait for the next message; None once the connection is closed."""
        return await self.queue.get()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Make room for the sentinel so a blocked reader always wakes up
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(CLOSE)

    def __repr__(self):
        return f"<ClientConnection {self.id} {self.label}>"


class ConnectionRegistry(BaseEventPublisher):
    """Registry of live clients; publishes events by broadcasting to them."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._clients: dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()
        logger.info(f"ConnectionRegistry initialized (queue_size={queue_size})")

    @property
    def provider_name(self) -> str:
        return "websocket"

    @property
    def active_count(self) -> int:
        return len(self._clients)

    def connections(self) -> list[dict[str, Any]]:
        """Snapshot of the live clients, oldest first."""
        clients = sorted(self._clients.values(), key=lambda c: c.connected_at)
        return [client.info() for client in clients]

    async def register(self, label: str = "") -> ClientConnection:
        client = ClientConnection(queue_size=self.queue_size, label=label)
        async with self._lock:
            self._clients[client.id] = client
            total = len(self._clients)
        logger.info(f"✅ Client connected: {client.id} {label} (total active: {total})")
        return client

    async def unregister(self, client: ClientConnection) -> None:
        """Remove and close a client. Safe to call more than once."""
        async with self._lock:
            removed = self._clients.pop(client.id, None)
            total = len(self._clients)
        client.close()
        if removed is not None:
            logger.info(f"🔌 Client disconnected: {client.id} (remaining: {total})")

    async def broadcast(self, message: EventMessage) -> int:
        """Queue ``message`` for every client, dropping the ones that are full."""
        payload = message.to_json()

        async with self._lock:
            clients = list(self._clients.values())

        sent = 0
        stale = []
        for client in clients:
            if client.offer(payload):
                sent += 1
            else:
                stale.append(client)

        for client in stale:
            logger.warning(f"⚠️ Client {client.id} queue full, dropping")
            await self.unregister(client)

        logger.info(f"📡 Broadcast sent: type={message.type} to {sent} clients")
        return sent

    async def publish(self, event_type: str, data: Any = None) -> int:
        try:
            return await self.broadcast(EventMessage(type=event_type, data=data))
        except Exception as e:
            logger.error(f"❌ Failed to publish {event_type}: {e}")
            return 0

    async def close_all(self) -> None:
        """Disconnect every client (shutdown)."""
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            client.close()
        logger.info(f"✅ All WebSocket connections closed ({len(clients)} clients)")
