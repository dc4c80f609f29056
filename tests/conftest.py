"""
Pytest configuration file.

Ensures the repo root is on sys.path so that 'import homechef...' works, pins
the environment to development mode and provides the shared fixtures: a
frozen clock, in-memory stores, an event recorder and a scripted payment
gateway.
"""
import asyncio
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

os.environ["ENV_MODE"] = "development"

from homechef.core.clock import FrozenClock  # noqa: E402
from homechef.domain import ActorRole, OrderStatus  # noqa: E402
from homechef.events import EventDispatcher  # noqa: E402
from homechef.fees import FeeConfig  # noqa: E402
from homechef.ledger import LedgerEngine  # noqa: E402
from homechef.orders import OrderStateMachine  # noqa: E402
from homechef.services.payment.base import (  # noqa: E402
    BasePaymentService,
    SettlementNotice,
    SettlementResult,
)
from homechef.stores.memory import InMemoryOrderStore, InMemoryTipStore  # noqa: E402

START = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

ITEMS = [
    {"menu_item_id": "menu_101", "name": "Paneer Butter Masala", "quantity": 2, "price": 60.0},
    {"menu_item_id": "menu_104", "name": "Butter Naan", "quantity": 2, "price": 40.0},
]


class ScriptedPaymentService(BasePaymentService):
    """
    Payment gateway double.

    settle() pops the next scripted result (COMPLETED when the script is
    empty); `delay` makes it slow enough to trip the settlement timeout.
    """

    def __init__(self, results: Optional[list] = None, delay: float = 0.0):
        self.results = list(results or [])
        self.delay = delay
        self.calls: list[tuple[str, float]] = []
        self.lookups: dict[str, SettlementResult] = {}

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def settle(self, tip_id, amount, currency=None, metadata=None):
        self.calls.append((tip_id, amount))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return SettlementResult.completed(f"txn_{tip_id}", amount=amount)

    async def lookup_settlement(self, tip_id):
        return self.lookups.get(tip_id)

    async def verify_webhook(self, payload, signature):
        try:
            return json.loads(payload)
        except ValueError:
            return None

    def parse_settlement_event(self, event):
        if "tip_id" not in event:
            return None
        if event.get("outcome") == "completed":
            result = SettlementResult.completed(event.get("reference"))
        else:
            result = SettlementResult.failed(event.get("error_message", "declined"))
        return SettlementNotice(tip_id=event["tip_id"], result=result)

    async def health_check(self):
        return True


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def fee_config():
    return FeeConfig()


@pytest.fixture
def events():
    return []


@pytest.fixture
def dispatcher(events):
    dispatcher = EventDispatcher()
    dispatcher.subscribe(events.append)
    return dispatcher


@pytest.fixture
def order_store():
    return InMemoryOrderStore()


@pytest.fixture
def tip_store():
    return InMemoryTipStore()


@pytest.fixture
def machine(order_store, fee_config, dispatcher, clock):
    return OrderStateMachine(order_store, fee_config, dispatcher, clock)


@pytest.fixture
def payment():
    return ScriptedPaymentService()


@pytest.fixture
def ledger(tip_store, order_store, payment, dispatcher, clock):
    return LedgerEngine(
        tip_store,
        order_store,
        payment,
        dispatcher=dispatcher,
        clock=clock,
        settlement_timeout=0.5,
    )


async def deliver_order(machine, chef_id="chef_1", customer_id="cust_1", delivery_person_id="dp_1"):
    """Create an order and walk it all the way to delivered."""
    order = await machine.create(ITEMS, chef_id=chef_id, customer_id=customer_id,
                                 delivery_address="12 MG Road, Pune")
    await machine.transition(order.id, OrderStatus.ACCEPTED, ActorRole.CHEF)
    await machine.assign_delivery_person(order.id, delivery_person_id)
    await machine.transition(order.id, OrderStatus.PREPARING, ActorRole.CHEF)
    await machine.transition(order.id, OrderStatus.READY, ActorRole.CHEF)
    await machine.transition(order.id, OrderStatus.OUT_FOR_DELIVERY, ActorRole.DELIVERY)
    result = await machine.transition(order.id, OrderStatus.DELIVERED, ActorRole.DELIVERY)
    return result.order
