"""Per-session multicast of outbound events with replay for late subscribers."""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from session_types import SessionEvent

_CLOSED = object()


class Subscription:
    """Ordered stream of one hub's events: the replayed backlog, then live events.

    Iterate it with ``async for``; use it as an async context manager to make
    sure it is detached when the consumer goes away.
    """

    def __init__(self, hub: "EventHub", backlog: List[SessionEvent]):
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue()
        for event in backlog:
            self._queue.put_nowait(event)
        self.closed = False

    def _deliver(self, event: SessionEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def _end(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._hub.unsubscribe(self)
        self._end()

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> Optional[SessionEvent]:
        """Next event, or None once the subscription has ended."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker so repeated calls also see the end.
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> SessionEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class EventHub:
    """Chronological event buffer plus the set of live subscribers.

    All methods are synchronous and run on the event loop thread, so taking a
    snapshot and registering a subscriber cannot interleave with a publish.
    """

    def __init__(self, name: str = "", logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger("event_hub")
        self._events: List[SessionEvent] = []
        self._subscribers: List[Subscription] = []
        self.closed = False

    @property
    def events(self) -> List[SessionEvent]:
        return list(self._events)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: SessionEvent) -> None:
        if self.closed:
            self.logger.debug(f"Dropping {event.type} event for closed hub {self.name}")
            return
        self._events.append(event)
        for subscriber in list(self._subscribers):
            subscriber._deliver(event)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self._events)
        if self.closed:
            subscription._end()
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def close(self) -> None:
        """End every subscription; later publishes are dropped."""
        self.closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscriber in subscribers:
            subscriber._end()
