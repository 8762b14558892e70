"""Marketplace events: persisted audit rows plus an in-process pub/sub for SSE."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from stakework.db_models import MarketEvent
from stakework.ids import event_id

logger = logging.getLogger("stakework.events")

MAX_QUEUE_SIZE = 100


@dataclass
class Event:
    type: str
    task_id: int | None = None
    data: dict = field(default_factory=dict)


def record_event(
    session: AsyncSession,
    kind: str,
    *,
    task_id: int | None = None,
    actor_id: str | None = None,
    **data,
) -> Event:
    """Add an audit row to the current transaction and return the matching Event.

    The row commits (or rolls back) with the operation that produced it; the
    returned Event should be published only after that commit.
    """
    session.add(MarketEvent(id=event_id(), kind=kind, task_id=task_id, actor_id=actor_id, data=data))
    return Event(type=kind, task_id=task_id, data=data)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, identity: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
        self._subscribers.setdefault(identity, []).append(queue)
        return queue

    def unsubscribe(self, identity: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(identity, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(identity, None)

    def publish(self, identity: str | None, event: Event) -> None:
        if identity is None:
            return
        for queue in self._subscribers.get(identity, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s event for slow subscriber %s", event.type, identity)

    def publish_many(self, identities: Iterable[str | None], event: Event) -> None:
        for identity in set(i for i in identities if i):
            self.publish(identity, event)


event_bus = EventBus()
