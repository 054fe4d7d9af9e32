"""In-process event hub between the licensing collaborator and the pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

from accessgate.events.types import (
    GRANT_CHANGE_TYPES,
    Event,
    EventSeverity,
    EventSource,
)

logger = logging.getLogger("accessgate.events")

EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    sources: frozenset[str] | None = None
    severities: frozenset[EventSeverity] | None = None

    def matches(self, event: Event) -> bool:
        if self.sources and event.source not in self.sources:
            return False
        return not self.severities or event.severity in self.severities


class EventBus:
    """Delivers events to subscribers filtered by source and severity.

    A failing handler is logged and skipped; the remaining handlers still
    receive the event. The last ``max_recent`` events are kept for inspection.
    """

    def __init__(self, max_recent: int = 500) -> None:
        self._subscriptions: list[Subscription] = []
        self._recent: deque[Event] = deque(maxlen=max_recent)
        self._pending: set[asyncio.Task[None]] = set()

    def subscribe(
        self,
        handler: EventHandler,
        sources: set[str] | None = None,
        severities: set[EventSeverity] | None = None,
    ) -> Subscription:
        """Register ``handler``; empty filters match every event."""
        subscription = Subscription(
            handler,
            frozenset(sources) if sources else None,
            frozenset(severities) if severities else None,
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.handler != handler]

    async def publish(self, event: Event) -> None:
        self._recent.append(event)
        if event.severity != EventSeverity.NORMAL:
            logger.info("Event [%s] %s: %s", event.severity, event.type, event.message or "(no message)")

        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            try:
                await subscription.handler(event)
            except Exception:
                logger.exception("Event handler error for %s", event.type)

    def publish_nowait(self, event: Event) -> None:
        """Schedule ``publish`` on the running loop; drops the event without one."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, dropping event: %s", event.type)
            return
        task = loop.create_task(self.publish(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def get_recent_events(
        self,
        severity: EventSeverity | None = None,
        source: str | None = None,
        limit: int = 50,
    ) -> list[Event]:
        events = [
            e
            for e in self._recent
            if (severity is None or e.severity == severity) and (source is None or e.source == source)
        ]
        return events[-limit:]

    def clear(self) -> None:
        self._subscriptions.clear()
        self._recent.clear()


async def publish_grant_changed(
    bus: EventBus, tenant_id: str, feature_id: str, change: str
) -> Event:
    """Announce that a tenant's feature grant was created, renewed or revoked."""
    try:
        event_type = GRANT_CHANGE_TYPES[change]
    except KeyError:
        raise ValueError(f"Unknown grant change: {change!r}") from None

    event = Event(
        source=EventSource.LICENSING,
        type=event_type,
        data={"tenant_id": tenant_id, "feature_id": feature_id, "change": change},
        message=f"Grant {change} for feature {feature_id} in tenant {tenant_id}",
    )
    await bus.publish(event)
    return event


# Global singleton
_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus singleton."""
    global _bus
    if _bus is None:
        _bus = EventBus()
    return _bus


def reset_event_bus() -> None:
    """Reset the event bus (for testing)."""
    global _bus
    if _bus:
        _bus.clear()
    _bus = None
