"""
Tests for the in-process event broker.

Tests cover:
- Fan-out to every subscriber of a topic
- No replay of events published before subscribing
- Per-topic publish order
- Closing a subscription ends iteration
- Bounded queue overflow policy
"""

import asyncio

import pytest

from chatfeed.broker import MESSAGE_ADDED, MESSAGE_UPDATED, EventBroker
from chatfeed.errors import UnknownChannelError


@pytest.fixture
def broker() -> EventBroker:
    return EventBroker()


class TestPublishSubscribe:
    """Test fan-out and ordering."""

    @pytest.mark.asyncio
    async def test_every_subscriber_receives_event(self, broker):
        first = broker.subscribe(MESSAGE_ADDED)
        second = broker.subscribe(MESSAGE_ADDED)

        delivered = broker.publish(MESSAGE_ADDED, "m1")

        assert delivered == 2
        assert await first.get() == "m1"
        assert await second.get() == "m1"

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, broker):
        broker.publish(MESSAGE_ADDED, "early")
        subscription = broker.subscribe(MESSAGE_ADDED)
        broker.publish(MESSAGE_ADDED, "late")

        assert subscription.pending() == 1
        assert await subscription.get() == "late"

    @pytest.mark.asyncio
    async def test_topics_are_independent(self, broker):
        added = broker.subscribe(MESSAGE_ADDED)
        updated = broker.subscribe(MESSAGE_UPDATED)

        broker.publish(MESSAGE_UPDATED, "u1")

        assert added.pending() == 0
        assert await updated.get() == "u1"

    @pytest.mark.asyncio
    async def test_publish_order_preserved(self, broker):
        subscription = broker.subscribe(MESSAGE_UPDATED)
        for index in range(5):
            broker.publish(MESSAGE_UPDATED, index)
        received = [await subscription.get() for _ in range(5)]
        assert received == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_close_discards_undelivered_events(self, broker):
        subscription = broker.subscribe(MESSAGE_UPDATED)
        broker.publish(MESSAGE_UPDATED, "pending")
        subscription.close()

        assert [payload async for payload in subscription] == []

    def test_publish_without_subscribers(self, broker):
        assert broker.publish(MESSAGE_ADDED, "nobody") == 0

    def test_unknown_topic(self, broker):
        with pytest.raises(UnknownChannelError):
            broker.subscribe("messageDeleted")
        with pytest.raises(UnknownChannelError):
            broker.publish("messageDeleted", "x")


class TestSubscriptionLifetime:
    """Test cancellation and backpressure."""

    @pytest.mark.asyncio
    async def test_close_ends_iteration_of_waiting_consumer(self, broker):
        subscription = broker.subscribe(MESSAGE_ADDED)
        received = []

        async def consume():
            async for payload in subscription:
                received.append(payload)

        consumer = asyncio.create_task(consume())
        broker.publish(MESSAGE_ADDED, "a")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        subscription.close()
        await asyncio.wait_for(consumer, timeout=1)

        assert received == ["a"]
        assert broker.subscriber_count(MESSAGE_ADDED) == 0

    @pytest.mark.asyncio
    async def test_closed_subscription_gets_no_more_events(self, broker):
        async with broker.subscribe(MESSAGE_ADDED) as subscription:
            pass

        assert subscription.closed
        assert broker.publish(MESSAGE_ADDED, "after") == 0
        with pytest.raises(StopAsyncIteration):
            await subscription.get()

    @pytest.mark.asyncio
    async def test_overflow_closes_slow_subscriber(self):
        broker = EventBroker(max_queue_size=2)
        slow = broker.subscribe(MESSAGE_ADDED)
        roomy = broker.subscribe(MESSAGE_ADDED, max_queue_size=0)

        for index in range(3):
            broker.publish(MESSAGE_ADDED, index)

        assert slow.closed
        assert slow.overflowed
        assert not roomy.closed
        assert roomy.pending() == 3
        assert broker.subscriber_count(MESSAGE_ADDED) == 1
        with pytest.raises(StopAsyncIteration):
            await slow.get()

    def test_broker_close_closes_everything(self, broker):
        subscriptions = [broker.subscribe(MESSAGE_ADDED), broker.subscribe(MESSAGE_UPDATED)]
        broker.close()

        assert all(s.closed for s in subscriptions)
        assert broker.subscriber_count(MESSAGE_ADDED) == 0
        assert broker.subscriber_count(MESSAGE_UPDATED) == 0
