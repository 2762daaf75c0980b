"""In-process notification bus.

A bounded broadcast channel: every subscriber gets its own buffer of
event names. Publishing never blocks; when a subscriber's buffer is
full its oldest event is dropped and the next read returns ``LAGGED``
so the client knows to re-fetch everything.

Events carry no payload. Subscribers re-read state when they see one.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

CASH_UPDATED = "cashUpdated"
POSITION_UPDATED = "positionUpdated"
ORDERS_UPDATED = "ordersUpdated"
ALERTS_UPDATED = "alertsUpdated"

# Synthetic events delivered by Subscription.get()
LAGGED = "lagged"
CLOSED = "closed"


class Subscription:
    """One subscriber's view of the bus."""

    def __init__(self, bus: "EventBus", capacity: int):
        self._bus = bus
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=capacity)
        self._dropped = 0
        self._closed = False

    @property
    def dropped(self) -> int:
        """Events dropped since the last LAGGED was delivered."""
        return self._dropped

    def _offer(self, name: str) -> None:
        try:
            self._queue.put_nowait(name)
        except asyncio.QueueFull:
            self._queue.get_nowait()
            self._dropped += 1
            self._queue.put_nowait(name)

    def _shutdown(self) -> None:
        self._closed = True
        # Wake a reader blocked on an empty queue
        if self._queue.empty():
            self._queue.put_nowait(CLOSED)

    async def get(self) -> str:
        """Wait for the next event name, LAGGED or CLOSED."""
        if self._dropped:
            self._dropped = 0
            return LAGGED
        if self._closed and self._queue.empty():
            return CLOSED
        return await self._queue.get()

    def close(self) -> None:
        """Stop receiving events."""
        self._bus._unsubscribe(self)
        self._closed = True

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> str:
        name = await self.get()
        if name == CLOSED:
            raise StopAsyncIteration
        return name

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class EventBus:
    """Broadcast event names to any number of subscribers."""

    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._subscribers: set[Subscription] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Register a new subscriber. Use as a context manager to unsubscribe."""
        sub = Subscription(self, self.capacity)
        if self._closed:
            sub._shutdown()
        else:
            self._subscribers.add(sub)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)

    def publish(self, *names: str) -> int:
        """Deliver each event name to every subscriber.

        Returns the number of subscribers that received the events.
        """
        if self._closed:
            return 0
        for name in names:
            for sub in self._subscribers:
                sub._offer(name)
        if names:
            logger.debug("Published %s to %d subscribers", ", ".join(names), len(self._subscribers))
        return len(self._subscribers)

    def close(self) -> None:
        """Close the bus; every subscriber's stream ends."""
        self._closed = True
        for sub in list(self._subscribers):
            sub._shutdown()
        self._subscribers.clear()
