"""In-process dispatch of tenant lifecycle events.

Subscribers are async callables. A failing subscriber is logged and skipped:
the lifecycle operation that raised the event has already happened and must
not be reported as failed because a listener broke.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from src.tenancy.events.schemas import TenantEvent, TenantEventType

logger = structlog.get_logger(__name__)

Subscriber = Callable[[TenantEvent], Awaitable[None]]


class TenantEventPublisher:
    """Fan events out to subscribers, optionally filtered by event type."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[TenantEventType | None, Subscriber]] = []

    def subscribe(self, handler: Subscriber, event_type: TenantEventType | None = None) -> None:
        self._subscribers.append((event_type, handler))

    def unsubscribe(self, handler: Subscriber) -> None:
        self._subscribers = [(t, h) for t, h in self._subscribers if h is not handler]

    async def publish(self, event: TenantEvent) -> None:
        """Deliver ``event`` to every matching subscriber in registration order."""
        for event_type, handler in list(self._subscribers):
            if event_type is not None and event_type != event.event_type:
                continue
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "event_subscriber_failed",
                    event_type=event.event_type.value,
                    tenant_id=event.tenant_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )
