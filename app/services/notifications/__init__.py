"""
Notification Service Factory

Returns the process-wide event publisher. Services depend on
BaseEventPublisher only; the WebSocket endpoint additionally uses the
registry methods.

Version: 1.0.0
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.notifications.base import BaseEventPublisher, EventMessage
from app.services.notifications.registry import ConnectionRegistry, ClientConnection

logger = logging.getLogger(__name__)


@lru_cache()
def get_connection_registry() -> ConnectionRegistry:
    """Get the shared connection registry."""
    settings = get_settings()
    return ConnectionRegistry(queue_size=settings.ws_queue_size)


def get_event_publisher() -> BaseEventPublisher:
    """Get the configured event publisher."""
    return get_connection_registry()


def reset_notification_service() -> None:
    """Clear the cached registry instance."""
    get_connection_registry.cache_clear()


__all__ = [
    "get_connection_registry",
    "get_event_publisher",
    "reset_notification_service",
    "BaseEventPublisher",
    "EventMessage",
    "ConnectionRegistry",
    "ClientConnection",
]
