"""
Tests for the rewards token ledger.

Covers:
  - Earning on delivered orders, once per order
  - Redemption against the balance
  - The dispatcher subscription that credits delivered orders
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import START, deliver_order
from homechef.domain import ActorRole, OrderStatus, RewardKind
from homechef.events import OrderEvent
from homechef.exceptions import InvalidRewardError
from homechef.rewards import RewardsLedger
from homechef.stores.memory import InMemoryRewardStore


@pytest.fixture
def rewards(clock):
    return RewardsLedger(InMemoryRewardStore(), clock=clock)


@pytest.mark.parametrize("amount, tokens", [
    (200.0, 20),
    (19.99, 1),
    (9.99, 0),
    (0.0, 0),
    (float("nan"), 0),
])
def test_tokens_for_amount(rewards, amount, tokens):
    assert rewards.tokens_for_amount(amount) == tokens


def test_multiplier_scales_tokens(clock):
    rewards = RewardsLedger(InMemoryRewardStore(), clock=clock, spend_per_token=5.0, multiplier=3)
    assert rewards.tokens_for_amount(26.0) == 15


@pytest.mark.parametrize("config", [
    {"spend_per_token": 0},
    {"spend_per_token": -1.0},
    {"multiplier": 0},
])
def test_rejects_bad_rates(config):
    with pytest.raises(InvalidRewardError):
        RewardsLedger(InMemoryRewardStore(), **config)


def test_discount_for_tokens():
    assert RewardsLedger.discount_for_tokens(9) == 4
    assert RewardsLedger.discount_for_tokens(0) == 0


def test_earn_once_per_order(rewards):
    async def scenario():
        first = await rewards.earn_for_order("cust_1", "ORD-1", 200.0)
        again = await rewards.earn_for_order("cust_1", "ORD-1", 200.0)
        small = await rewards.earn_for_order("cust_1", "ORD-2", 5.0)
        return first, again, small, await rewards.balance("cust_1")

    first, again, small, balance = asyncio.run(scenario())

    assert first.kind == RewardKind.EARNED
    assert first.tokens == 20
    assert first.order_id == "ORD-1"
    assert first.id.startswith("RWD-")
    assert again is None
    assert small is None
    assert balance.total_tokens == 20
    assert balance.lifetime_earned == 20


def test_redeem_debits_balance_and_records_history(rewards, clock):
    async def scenario():
        await rewards.earn_for_order("cust_1", "ORD-1", 200.0)
        clock.advance(seconds=30)
        spent = await rewards.redeem("cust_1", 8)
        return spent, await rewards.balance("cust_1"), await rewards.history("cust_1")

    spent, balance, history = asyncio.run(scenario())

    assert spent.kind == RewardKind.REDEEMED
    assert spent.description == "4 discount"
    assert (balance.total_tokens, balance.lifetime_earned, balance.lifetime_redeemed) == (12, 20, 8)
    assert [entry.kind for entry in history] == [RewardKind.REDEEMED, RewardKind.EARNED]
    assert history[0].created_at == START + timedelta(seconds=30)


def test_redeem_more_than_balance_leaves_it_untouched(rewards):
    async def scenario():
        await rewards.earn_for_order("cust_1", "ORD-1", 50.0)
        with pytest.raises(InvalidRewardError) as exc:
            await rewards.redeem("cust_1", 6)
        return exc.value, await rewards.balance("cust_1"), await rewards.history("cust_1")

    error, balance, history = asyncio.run(scenario())

    assert error.details == {"balance": 5, "requested": 6}
    assert balance.total_tokens == 5
    assert len(history) == 1


@pytest.mark.parametrize("tokens", [0, -3, 2.5, True, "4"])
def test_redeem_requires_positive_integer(rewards, tokens):
    with pytest.raises(InvalidRewardError):
        asyncio.run(rewards.redeem("cust_1", tokens))


def test_delivered_order_earns_through_dispatcher(machine, dispatcher, rewards):
    """
    Scenario:
        The ledger subscribes to order events and an order of 200 is
        delivered; the same delivered event is then replayed.
    Expected:
        20 tokens credited once; earlier transitions credit nothing.
    """
    dispatcher.subscribe(rewards.on_event)

    async def scenario():
        order = await deliver_order(machine)
        await dispatcher.drain()
        dispatcher.publish(OrderEvent(
            order_id=order.id,
            from_status=OrderStatus.OUT_FOR_DELIVERY,
            to_status=OrderStatus.DELIVERED,
            timestamp=START,
            actor_role=ActorRole.DELIVERY,
            customer_id=order.customer_id,
            total_amount=order.total_amount,
        ))
        await dispatcher.drain()
        return await rewards.balance("cust_1"), await rewards.history("cust_1")

    balance, history = asyncio.run(scenario())

    assert balance.total_tokens == 20
    assert len(history) == 1
    assert history[0].description.endswith("200.00")


def test_non_delivery_events_earn_nothing(machine, dispatcher, rewards):
    dispatcher.subscribe(rewards.on_event)

    async def scenario():
        order = await machine.create(
            [{"menu_item_id": "menu_101", "name": "Thali", "quantity": 1, "price": 150.0}],
            chef_id="chef_1", customer_id="cust_1", delivery_address="Pune",
        )
        await machine.transition(order.id, OrderStatus.ACCEPTED, ActorRole.CHEF)
        await dispatcher.drain()
        return await rewards.balance("cust_1")

    assert asyncio.run(scenario()).total_tokens == 0
