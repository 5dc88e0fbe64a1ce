"""
Event Publisher Abstract Base Class

The narrow interface the token engine and the order path use to push
events to connected clients. Publishers are best-effort: they never raise
into the caller and never block on a slow consumer.

Version: 1.0.0
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass
class EventMessage:
    """A single notification pushed to subscribers."""
    type: str
    data: Any = None
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_json(self) -> str:
        """Serialize to the wire format ``{"type": ..., "data": ...}``."""
        return json.dumps({"type": self.type, "data": self.data}, default=_json_default)


class BaseEventPublisher(ABC):
    """Abstract base class for event publishers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the publisher name."""
        pass

    @abstractmethod
    async def publish(self, event_type: str, data: Any = None) -> int:
        """
        Publish an event to every current subscriber.

        Returns:
            Number of subscribers the event was queued for
        """
        pass
