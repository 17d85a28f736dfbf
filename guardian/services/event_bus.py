"""Fire-and-forget domain events.

Grant changes and game session issuance are published here for an external
notification component. ``publish`` schedules every subscriber as a
background task and returns immediately; subscriber failures are logged
and never reach the publisher.
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from guardian.core.clock import utcnow

logger = logging.getLogger(__name__)

GRANT_ADDED = "grant_added"
GRANT_UPDATED = "grant_updated"
GRANT_REVOKED = "grant_revoked"
PRIMARY_TRANSFERRED = "primary_transferred"
GAME_SESSION_ISSUED = "game_session_issued"


@dataclass(frozen=True)
class DomainEvent:
    type: str
    child_id: uuid.UUID
    actor_id: uuid.UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)


Subscriber = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """Process-wide registry of async event subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: DomainEvent) -> int:
        """Schedule delivery to every subscriber. Returns the number scheduled."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, dropping event %s", event.type)
            return 0

        for subscriber in list(self._subscribers):
            task = loop.create_task(self._deliver(subscriber, event))
            # Keep a reference until done, see asyncio.create_task docs
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(self._subscribers)

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    async def _deliver(subscriber: Subscriber, event: DomainEvent) -> None:
        try:
            await subscriber(event)
        except Exception:
            logger.exception("Event subscriber failed for %s (child %s)", event.type, event.child_id)


event_bus = EventBus()
