"""
Tests for the SQL stores against in-memory SQLite.

The same conditional-write guarantees as the in-memory stores must hold when
the check and the write happen in the database.
"""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

pytest.importorskip("aiosqlite")

from conftest import ITEMS, START, ScriptedPaymentService  # noqa: E402
from homechef.database import create_engine, create_session_maker, init_db  # noqa: E402
from homechef.domain import (  # noqa: E402
    ActorRole,
    OrderStatus,
    RecipientType,
    RewardKind,
    TipStatus,
    TipTransaction,
)
from homechef.exceptions import (  # noqa: E402
    ConcurrentModificationError,
    InvalidRewardError,
    InvalidTipError,
)
from homechef.ledger import LedgerEngine  # noqa: E402
from homechef.orders import OrderStateMachine  # noqa: E402
from homechef.rewards import RewardsLedger  # noqa: E402
from homechef.services.payment.accounts import PayoutAccounts, SqlPayoutAccountResolver  # noqa: E402
from homechef.stores.sql import SqlOrderStore, SqlRewardStore, SqlTipStore  # noqa: E402


def run_with_stores(scenario):
    """Create a fresh database, run the scenario with both stores, dispose."""
    async def runner():
        engine = create_engine("sqlite+aiosqlite:///:memory:", echo=False)
        try:
            await init_db(engine)
            session_maker = create_session_maker(engine)
            return await scenario(SqlOrderStore(session_maker), SqlTipStore(session_maker))
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def test_order_round_trip_keeps_timeline_and_timezone(fee_config, clock):
    async def scenario(orders, tips):
        machine = OrderStateMachine(orders, fee_config, clock=clock)
        order = await machine.create(ITEMS, chef_id="chef_1", customer_id="cust_1",
                                     delivery_address="12 MG Road, Pune")
        clock.advance(seconds=45)
        await machine.transition(order.id, OrderStatus.ACCEPTED, ActorRole.CHEF)
        await machine.assign_delivery_person(order.id, "dp_1")
        return await orders.get(order.id), await orders.list(delivery_person_id="dp_1")

    stored, by_partner = run_with_stores(scenario)

    assert stored.status == OrderStatus.ACCEPTED
    assert stored.version == 3
    assert stored.total_amount == pytest.approx(200.0)
    assert [item.menu_item_id for item in stored.items] == ["menu_101", "menu_104"]
    assert [entry.status for entry in stored.timeline] == [
        OrderStatus.PENDING, OrderStatus.ACCEPTED, OrderStatus.ACCEPTED,
    ]
    assert stored.created_at == START
    assert stored.status_changed_at == START + timedelta(seconds=45)
    assert [o.id for o in by_partner] == [stored.id]


def test_order_version_compare_and_set(fee_config, clock):
    async def scenario(orders, tips):
        machine = OrderStateMachine(orders, fee_config, clock=clock)
        order = await machine.create(ITEMS, chef_id="chef_1", customer_id="cust_1",
                                     delivery_address="Pune")
        stale = await orders.get(order.id)
        await machine.cancel(order.id, ActorRole.CUSTOMER)
        await orders.update(replace(stale, status=OrderStatus.ACCEPTED, version=2), expected_version=1)

    with pytest.raises(ConcurrentModificationError):
        run_with_stores(scenario)


def test_cancellation_details_persist(fee_config, clock):
    async def scenario(orders, tips):
        machine = OrderStateMachine(orders, fee_config, clock=clock)
        order = await machine.create(ITEMS, chef_id="chef_1", customer_id="cust_1",
                                     delivery_address="Pune")
        clock.advance(minutes=1)
        await machine.cancel(order.id, ActorRole.CHEF, reason="Out of paneer")
        return await orders.get(order.id)

    stored = run_with_stores(scenario)

    assert stored.status == OrderStatus.CANCELLED
    assert stored.cancellation_penalty == pytest.approx(80.0)
    assert stored.refund_amount == pytest.approx(120.0)
    assert stored.cancelled_by == ActorRole.CHEF
    assert stored.cancellation_reason == "Out of paneer"


def test_tip_settles_once_in_sql(fee_config, clock):
    async def scenario(orders, tips):
        machine = OrderStateMachine(orders, fee_config, clock=clock)
        ledger = LedgerEngine(tips, orders, ScriptedPaymentService(), clock=clock)

        order = await machine.create(ITEMS, chef_id="chef_1", customer_id="cust_1",
                                     delivery_address="Pune")
        await machine.transition(order.id, "accepted", "chef")
        await machine.assign_delivery_person(order.id, "dp_1")
        for target, actor in (("preparing", "chef"), ("ready", "chef"),
                              ("out_for_delivery", "delivery"), ("delivered", "delivery")):
            await machine.transition(order.id, target, actor)

        tip = await ledger.send_tip("cust_1", "dp_1", "delivery", 25.0, "Quick!", order.id)
        await ledger.wait_for_settlements()

        stored = await tips.get(tip.id)
        # A second conditional write from PENDING must not apply
        overwritten = await tips.update(replace(stored, status=TipStatus.FAILED), TipStatus.PENDING)
        return stored, overwritten, await ledger.get_total_tips_received("dp_1")

    stored, overwritten, total = run_with_stores(scenario)

    assert stored.status == TipStatus.COMPLETED
    assert stored.external_reference == f"txn_{stored.id}"
    assert stored.settled_at == START
    assert overwritten is False
    assert total == pytest.approx(25.0)


def test_database_allows_one_active_tip_per_recipient_type():
    """
    Two writers that both skipped the ledger check: the partial unique
    index still admits only one pending/completed tip per recipient type.
    """
    tip = TipTransaction(
        id="TIP-1", from_user_id="cust_1", recipient_id="chef_1",
        recipient_type=RecipientType.CHEF, amount=50.0, message="",
        order_id="ORD-1", created_at=START,
    )

    async def scenario(orders, tips):
        other_writer = SqlTipStore(tips._session_maker)
        await tips.add(tip)
        with pytest.raises(InvalidTipError):
            await other_writer.add(replace(tip, id="TIP-2"))
        await other_writer.add(replace(
            tip, id="TIP-3", recipient_id="dp_1", recipient_type=RecipientType.DELIVERY,
        ))
        await tips.update(replace(tip, status=TipStatus.FAILED, settled_at=START), TipStatus.PENDING)
        await other_writer.add(replace(tip, id="TIP-4"))
        return sorted(t.id for t in await tips.list(order_id="ORD-1"))

    assert run_with_stores(scenario) == ["TIP-1", "TIP-3", "TIP-4"]


def test_reward_tokens_in_sql(clock):
    async def scenario(orders, tips):
        rewards = RewardsLedger(SqlRewardStore(tips._session_maker), clock=clock)
        earned = await rewards.earn_for_order("cust_1", "ORD-1", 200.0)
        replayed = await rewards.earn_for_order("cust_1", "ORD-1", 200.0)
        clock.advance(seconds=10)
        spent = await rewards.redeem("cust_1", 6)
        with pytest.raises(InvalidRewardError):
            await rewards.redeem("cust_1", 15)
        return earned, replayed, spent, await rewards.balance("cust_1"), await rewards.history("cust_1")

    earned, replayed, spent, balance, history = run_with_stores(scenario)

    assert earned.tokens == 20
    assert replayed is None
    assert spent.tokens == 6
    assert (balance.total_tokens, balance.lifetime_earned, balance.lifetime_redeemed) == (14, 20, 6)
    assert [entry.kind for entry in history] == [RewardKind.REDEEMED, RewardKind.EARNED]
    assert history[0].created_at == START + timedelta(seconds=10)
    assert history[1].order_id == "ORD-1"


def test_redeem_without_balance_row_in_sql(clock):
    async def scenario(orders, tips):
        rewards = RewardsLedger(SqlRewardStore(tips._session_maker), clock=clock)
        with pytest.raises(InvalidRewardError):
            await rewards.redeem("cust_9", 1)
        return await rewards.balance("cust_9"), await rewards.history("cust_9")

    balance, history = run_with_stores(scenario)

    assert balance.total_tokens == 0
    assert history == []


def test_payout_accounts_in_sql():
    async def scenario(orders, tips):
        resolver = SqlPayoutAccountResolver(tips._session_maker)
        await resolver.save_payer("cust_1", "cus_1", "pm_1")
        await resolver.save_recipient("chef_1", "acct_chef_1")
        # A chef who also orders keeps their connected account
        await resolver.save_payer("chef_1", "cus_9", "pm_9")
        return (
            await resolver.resolve("cust_1", "chef_1"),
            await resolver.resolve("chef_1", "dp_1"),
        )

    to_chef, to_rider = run_with_stores(scenario)

    assert to_chef == PayoutAccounts(customer="cus_1", payment_method="pm_1", destination="acct_chef_1")
    assert to_chef.is_complete
    assert to_rider.customer == "cus_9"
    assert to_rider.missing == ["destination"]
