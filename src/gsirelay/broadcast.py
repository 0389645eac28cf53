"""In-process fan-out of accepted payloads to live subscribers.

Two topics exist: ``full`` carries every accepted payload, ``updates``
carries only the ``added``/``previously`` delta of payloads that have one.

Delivery is at-most-once and best-effort per subscriber. Each subscriber
owns a bounded queue; publishing never awaits. When a subscriber's queue is
full its backlog is discarded and it resumes from the next message, so a
slow websocket can never stall ingestion.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from gsirelay._constants import DEFAULT_BROADCAST_CAPACITY

_logger = logging.getLogger(__name__)

FULL_TOPIC = "full"
UPDATES_TOPIC = "updates"

_UPDATE_KEYS = ("added", "previously")


def extract_updates(payload: Any) -> dict[str, Any] | None:
    """Build the delta object for the ``updates`` topic.

    Returns a dict holding only the ``added`` and/or ``previously`` entries
    of *payload*, or ``None`` when it has neither.
    """
    if not isinstance(payload, dict):
        return None
    delta = {key: payload[key] for key in _UPDATE_KEYS if key in payload}
    return delta or None


class Subscription:
    """One subscriber's view of a topic.

    Iterate with ``async for``; iteration ends once the subscription is
    closed. Usable as a context manager that closes on exit.
    """

    def __init__(self, topic: Topic, capacity: int) -> None:
        self._topic = topic
        # One extra slot so close() can always enqueue its sentinel.
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=capacity + 1)
        self._capacity = capacity
        self._closed = False
        self.lagged = 0

    @property
    def topic(self) -> str:
        return self._topic.name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _drain(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1

    def deliver(self, message: str) -> int:
        """Queue *message* without blocking.

        Returns the number of backlog messages dropped to make room (0 when
        the subscriber was keeping up).
        """
        if self._closed:
            return 0
        dropped = 0
        if self._queue.qsize() >= self._capacity:
            dropped = self._drain()
            self.lagged += dropped
        self._queue.put_nowait(message)
        return dropped

    async def get(self) -> str | None:
        """Next message, or ``None`` once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._topic.discard(self)
        self._drain()
        self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> str:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class Topic:
    """Named multi-subscriber stream with a per-subscriber retention cap."""

    def __init__(self, name: str, *, capacity: int = DEFAULT_BROADCAST_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.name = name
        self._capacity = capacity
        self._subscribers: list[Subscription] = []
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, *, replay: str | None = None) -> Subscription:
        """Register a subscriber that receives messages published from now on.

        *replay*, when given, is queued ahead of every live message.
        """
        subscription = Subscription(self, self._capacity)
        if replay is not None:
            subscription.deliver(replay)
        self._subscribers.append(subscription)
        _logger.debug("Subscriber joined topic=%s subscribers=%s", self.name, len(self._subscribers))
        return subscription

    def discard(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            return
        _logger.debug("Subscriber left topic=%s subscribers=%s", self.name, len(self._subscribers))

    def publish(self, message: str) -> int:
        """Deliver *message* to every current subscriber; returns how many."""
        self.published += 1
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            dropped = subscription.deliver(message)
            if dropped:
                _logger.warning(
                    "Subscriber lagging on topic=%s, dropped %s backlog messages",
                    self.name,
                    dropped,
                )
        return len(subscribers)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()


class Broadcaster:
    """The relay's two topics."""

    def __init__(self, *, capacity: int = DEFAULT_BROADCAST_CAPACITY) -> None:
        self.full = Topic(FULL_TOPIC, capacity=capacity)
        self.updates = Topic(UPDATES_TOPIC, capacity=capacity)

    def subscribe_full(self, snapshot_json: str | None = None) -> Subscription:
        """Join the full topic, replaying *snapshot_json* first when present."""
        return self.full.subscribe(replay=snapshot_json)

    def subscribe_updates(self) -> Subscription:
        return self.updates.subscribe()

    def publish_full(self, payload_json: str) -> int:
        return self.full.publish(payload_json)

    def publish_update(self, delta_json: str) -> int:
        return self.updates.publish(delta_json)

    def close(self) -> None:
        self.full.close()
        self.updates.close()
