"""
Tests for the notifier implementations and event wording.
"""

import asyncio
from types import SimpleNamespace

from conftest import START, deliver_order
from homechef.domain import OrderStatus, TipStatus
from homechef.events import OrderEvent, TipEvent
from homechef.services.notifications import MockNotifier, describe_event
from homechef.services.notifications.celery import CeleryNotifier


class FakeCelery:
    """Records send_task calls the way the broker client would receive them."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send_task(self, name, args=None, queue=None):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.sent.append((name, args, queue))
        return SimpleNamespace(id=f"task-{len(self.sent)}")


def test_describe_event_wording():
    accepted = OrderEvent("ORD-1", OrderStatus.PENDING, OrderStatus.ACCEPTED, START)
    assigned = OrderEvent("ORD-1", OrderStatus.ACCEPTED, OrderStatus.ACCEPTED, START, delivery_person_id="dp_1")
    tipped = TipEvent("TIP-1", TipStatus.COMPLETED)

    assert describe_event(accepted)[0] == "Order Accepted"
    assert describe_event(assigned)[0] == "Delivery Partner Assigned"
    assert describe_event(tipped)[0] == "You Received a Tip!"


def test_mock_notifier_records_every_order_event(machine, dispatcher):
    notifier = MockNotifier()
    dispatcher.subscribe(notifier.notify)

    async def scenario():
        await deliver_order(machine)
        await dispatcher.drain()

    asyncio.run(scenario())

    assert [e.to_status for e in notifier.events] == [
        OrderStatus.PENDING,
        OrderStatus.ACCEPTED,
        OrderStatus.ACCEPTED,  # delivery partner assigned
        OrderStatus.PREPARING,
        OrderStatus.READY,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
    ]

    notifier.clear()
    assert notifier.events == []


def test_mock_notifier_result():
    result = asyncio.run(MockNotifier().notify(TipEvent("TIP-1", TipStatus.PENDING)))

    assert result.success
    assert result.provider == "mock"
    assert result.message_id.startswith("notif_mock_")


def test_celery_notifier_queues_payload():
    app = FakeCelery()
    notifier = CeleryNotifier(celery_app=app)
    event = OrderEvent("ORD-1", OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY, START, customer_id="cust_1")

    result = asyncio.run(notifier.notify(event))

    assert result.success
    assert result.message_id == "task-1"
    name, args, queue = app.sent[0]
    assert name == "notifications.dispatch_event"
    assert queue == "notifications"
    assert args[0]["order_id"] == "ORD-1"
    assert args[0]["to_status"] == "out_for_delivery"
    assert args[0]["title"] == "Order On The Way!"


def test_celery_notifier_reports_broker_failure():
    notifier = CeleryNotifier(celery_app=FakeCelery(fail=True))

    result = asyncio.run(notifier.notify(TipEvent("TIP-1", TipStatus.FAILED)))

    assert not result.success
    assert "broker unavailable" in result.error_message
