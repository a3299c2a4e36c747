"""
In-process event bus.

Domain services publish integration events after their state change is
committed; subscribers (notifications, analytics, cache invalidation) react
asynchronously. Handler failures are logged and never roll back the
publisher's committed work.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger(__name__)


class EventPriority(str, Enum):
    """Delivery priority hint for subscribers."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class Event(BaseModel):
    """Published event envelope."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: EventPriority = EventPriority.NORMAL
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """Minimal async publish/subscribe bus keyed by event type."""

    WILDCARD = "*"

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register a handler for an event type (``*`` receives every event)."""
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
        priority: EventPriority = EventPriority.NORMAL,
    ) -> Event:
        """Publish an event to all matching handlers."""
        event = Event(
            event_type=event_type,
            payload=payload,
            metadata=metadata or {},
            priority=priority,
        )

        handlers = [*self._handlers.get(event_type, []), *self._handlers.get(self.WILDCARD, [])]
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    event_type=event_type,
                    event_id=event.event_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )

        return event


_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop all subscriptions (mainly for testing)."""
    global _event_bus
    _event_bus = None


__all__ = ["Event", "EventBus", "EventHandler", "EventPriority", "get_event_bus", "reset_event_bus"]
