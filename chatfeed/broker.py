"""
In-process publish/subscribe bus for live message events.

Each subscription owns an asyncio.Queue. Publishing is a non-blocking put
into every queue subscribed to the topic, so a given subscriber sees one
topic's events in publish order. Nothing is replayed: a subscriber only
receives events published after it subscribed.

Queues are unbounded unless `max_queue_size` is set. A subscriber whose
bounded queue is full is closed rather than silently losing events; its
consumer is expected to resync through pagination.
"""

import asyncio
import logging
from typing import Any, Optional

from chatfeed.errors import UnknownChannelError
from chatfeed.metrics import (
    record_event_published,
    record_subscriber_overflow,
    record_subscription_closed,
    record_subscription_opened,
)

logger = logging.getLogger(__name__)

MESSAGE_ADDED = "messageAdded"
MESSAGE_UPDATED = "messageUpdated"
CHANNELS = (MESSAGE_ADDED, MESSAGE_UPDATED)

_CLOSED = object()


class Subscription:
    """
    Live stream of payloads for one topic.

    Iterate with `async for`; iteration ends once `close()` is called, by the
    consumer or by the broker on overflow. Not restartable.
    """

    def __init__(self, broker: "EventBroker", topic: str, max_queue_size: int = 0):
        self.broker = broker
        self.topic = topic
        self.overflowed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def _offer(self, payload: Any) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(
                f"Subscriber queue full on {self.topic} "
                f"({self._queue.maxsize} pending), closing subscription"
            )
            self.overflowed = True
            record_subscriber_overflow(self.topic)
            self.close()
            return False
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.broker._unsubscribe(self)
        # Drop undelivered payloads so the close marker always fits
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def get(self) -> Any:
        """Next payload; raises StopAsyncIteration once closed."""
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is _CLOSED:
            raise StopAsyncIteration
        return payload

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Subscription {self.topic} closed={self._closed}>"


class EventBroker:
    """Fan-out of payloads to the active subscribers of a topic."""

    def __init__(self, topics: tuple[str, ...] = CHANNELS, max_queue_size: int = 0):
        self.topics = topics
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, list[Subscription]] = {topic: [] for topic in topics}

    def _check_topic(self, topic: str) -> None:
        if topic not in self._subscribers:
            raise UnknownChannelError(f"Unknown channel: {topic}")

    def subscribe(self, topic: str, max_queue_size: Optional[int] = None) -> Subscription:
        self._check_topic(topic)
        size = self.max_queue_size if max_queue_size is None else max_queue_size
        subscription = Subscription(self, topic, size)
        self._subscribers[topic].append(subscription)
        record_subscription_opened(topic)
        logger.debug(f"New subscriber on {topic} ({len(self._subscribers[topic])} active)")
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
            record_subscription_closed(subscription.topic)
            logger.debug(f"Subscriber left {subscription.topic} ({len(subscribers)} active)")

    def subscriber_count(self, topic: str) -> int:
        self._check_topic(topic)
        return len(self._subscribers[topic])

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver `payload` to every current subscriber of `topic`.

        Returns:
            Number of subscribers the payload was queued for
        """
        self._check_topic(topic)
        record_event_published(topic)
        delivered = 0
        # Copy: overflowing subscribers unsubscribe during the loop
        for subscription in list(self._subscribers[topic]):
            if subscription._offer(payload):
                delivered += 1
        logger.debug(f"Published on {topic} to {delivered} subscriber(s)")
        return delivered

    def close(self) -> None:
        """Close every open subscription."""
        for subscribers in self._subscribers.values():
            for subscription in list(subscribers):
                subscription.close()
