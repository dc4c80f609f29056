"""
Tests for the event dispatcher.

Subscribers are fire-and-forget: a failing one is logged and never reaches
the publisher, async ones are scheduled and can be drained.
"""

import asyncio

from conftest import START
from homechef.domain import OrderStatus, TipStatus
from homechef.events import EventDispatcher, OrderEvent, TipEvent


def make_event(to_status=OrderStatus.ACCEPTED):
    return OrderEvent(
        order_id="ORD-1",
        from_status=OrderStatus.PENDING,
        to_status=to_status,
        timestamp=START,
    )


def test_sync_subscribers_receive_events_in_order():
    dispatcher = EventDispatcher()
    first, second = [], []
    dispatcher.subscribe(first.append)
    dispatcher.subscribe(second.append)

    event = make_event()
    dispatcher.publish(event)

    assert first == [event]
    assert second == [event]
    assert dispatcher.subscriber_count == 2


def test_failing_subscriber_does_not_block_others():
    dispatcher = EventDispatcher()
    received = []

    def broken(event):
        raise RuntimeError("push gateway down")

    dispatcher.subscribe(broken)
    dispatcher.subscribe(received.append)

    dispatcher.publish(make_event())

    assert len(received) == 1


def test_unsubscribe():
    dispatcher = EventDispatcher()
    received = []
    unsubscribe = dispatcher.subscribe(received.append)

    unsubscribe()
    unsubscribe()  # second call is harmless
    dispatcher.publish(make_event())

    assert received == []
    assert dispatcher.subscriber_count == 0


def test_async_subscribers_are_scheduled_and_drained():
    dispatcher = EventDispatcher()
    received = []

    async def slow(event):
        await asyncio.sleep(0.01)
        received.append(event)

    async def failing(event):
        raise RuntimeError("boom")

    dispatcher.subscribe(slow)
    dispatcher.subscribe(failing)

    async def scenario():
        dispatcher.publish(make_event())
        dispatcher.publish(TipEvent(tip_id="TIP-1", status=TipStatus.PENDING))
        assert received == []
        await dispatcher.drain()

    asyncio.run(scenario())

    assert [e.kind for e in received] == ["order", "tip"]


def test_async_subscriber_without_loop_is_dropped():
    dispatcher = EventDispatcher()
    received = []

    async def subscriber(event):
        received.append(event)

    dispatcher.subscribe(subscriber)
    dispatcher.publish(make_event())

    assert received == []


def test_event_serialization():
    event = OrderEvent(
        order_id="ORD-1",
        from_status=None,
        to_status=OrderStatus.PENDING,
        timestamp=START,
        total_amount=200.0,
    )
    data = event.to_dict()

    assert data["kind"] == "order"
    assert data["from_status"] is None
    assert data["to_status"] == "pending"
    assert data["timestamp"] == START.isoformat()

    tip = TipEvent(tip_id="TIP-1", status=TipStatus.COMPLETED, amount=50.0).to_dict()
    assert tip["status"] == "completed"
    assert tip["recipient_type"] is None
