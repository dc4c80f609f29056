"""
In-Memory Stores

Used in development mode and in tests. State lives in plain dictionaries and
callers only ever see deep copies, so mutating a returned object never
changes the stored record behind the store's back.
"""

import copy
import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from homechef.domain import (
    Order,
    RewardBalance,
    RewardKind,
    RewardTransaction,
    TipStatus,
    TipTransaction,
)
from homechef.exceptions import (
    ConcurrentModificationError,
    InvalidTipError,
    OrderNotFoundError,
)
from homechef.stores.base import OrderStore, RewardStore, TipStore

logger = logging.getLogger(__name__)


class InMemoryOrderStore(OrderStore):
    """Order repository backed by a dict keyed by order id."""

    def __init__(self):
        self._orders: dict[str, Order] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    async def add(self, order: Order) -> None:
        if order.id in self._orders:
            raise ValueError(f"Order {order.id} already exists")
        self._orders[order.id] = copy.deepcopy(order)

    async def get(self, order_id: str) -> Optional[Order]:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def update(self, order: Order, expected_version: int) -> Order:
        stored = self._orders.get(order.id)
        if stored is None:
            raise OrderNotFoundError(order.id)
        if stored.version != expected_version:
            raise ConcurrentModificationError(
                f"Order {order.id} is at version {stored.version}, "
                f"expected {expected_version}",
                details={"order_id": order.id, "current_version": stored.version},
            )
        self._orders[order.id] = copy.deepcopy(order)
        return copy.deepcopy(order)

    async def list(
        self,
        customer_id: Optional[str] = None,
        chef_id: Optional[str] = None,
        delivery_person_id: Optional[str] = None,
    ) -> list[Order]:
        orders = [
            o for o in self._orders.values()
            if (customer_id is None or o.customer_id == customer_id)
            and (chef_id is None or o.chef_id == chef_id)
            and (delivery_person_id is None or o.delivery_person_id == delivery_person_id)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return [copy.deepcopy(o) for o in orders]


class InMemoryTipStore(TipStore):
    """Append-only tip ledger backed by an insertion-ordered dict."""

    def __init__(self):
        self._tips: dict[str, TipTransaction] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    async def add(self, tip: TipTransaction) -> None:
        if tip.id in self._tips:
            raise ValueError(f"Tip {tip.id} already exists")
        for other in self._tips.values():
            if (
                other.order_id == tip.order_id
                and other.recipient_type == tip.recipient_type
                and other.status != TipStatus.FAILED
            ):
                raise InvalidTipError(
                    f"Order {tip.order_id} already has a {other.status.value} "
                    f"{tip.recipient_type.value} tip",
                    details={"order_id": tip.order_id, "tip_id": other.id},
                )
        self._tips[tip.id] = copy.deepcopy(tip)

    async def get(self, tip_id: str) -> Optional[TipTransaction]:
        tip = self._tips.get(tip_id)
        return copy.deepcopy(tip) if tip else None

    async def update(self, tip: TipTransaction, expected_status: TipStatus) -> bool:
        stored = self._tips.get(tip.id)
        if stored is None or stored.status != expected_status:
            return False
        self._tips[tip.id] = copy.deepcopy(tip)
        return True

    async def list(
        self,
        recipient_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
        order_id: Optional[str] = None,
        status: Optional[TipStatus] = None,
        created_before: Optional[datetime] = None,
    ) -> list[TipTransaction]:
        tips = [
            t for t in self._tips.values()
            if (recipient_id is None or t.recipient_id == recipient_id)
            and (from_user_id is None or t.from_user_id == from_user_id)
            and (order_id is None or t.order_id == order_id)
            and (status is None or t.status == status)
            and (created_before is None or t.created_at < created_before)
        ]
        tips.sort(key=lambda t: t.created_at)
        return [copy.deepcopy(t) for t in tips]


class InMemoryRewardStore(RewardStore):
    """Token ledger backed by per-user balances and an append-only list."""

    def __init__(self):
        self._balances: dict[str, RewardBalance] = {}
        self._entries: list[RewardTransaction] = []

    @property
    def backend_name(self) -> str:
        return "memory"

    async def earn(self, entry: RewardTransaction) -> bool:
        for other in self._entries:
            if (
                other.kind == RewardKind.EARNED
                and other.user_id == entry.user_id
                and other.order_id == entry.order_id
            ):
                return False

        current = await self.balance(entry.user_id)
        self._balances[entry.user_id] = replace(
            current,
            total_tokens=current.total_tokens + entry.tokens,
            lifetime_earned=current.lifetime_earned + entry.tokens,
        )
        self._entries.append(entry)
        return True

    async def redeem(self, entry: RewardTransaction) -> bool:
        current = await self.balance(entry.user_id)
        if current.total_tokens < entry.tokens:
            return False

        self._balances[entry.user_id] = replace(
            current,
            total_tokens=current.total_tokens - entry.tokens,
            lifetime_redeemed=current.lifetime_redeemed + entry.tokens,
        )
        self._entries.append(entry)
        return True

    async def balance(self, user_id: str) -> RewardBalance:
        return self._balances.get(user_id) or RewardBalance(user_id=user_id)

    async def history(self, user_id: str) -> list[RewardTransaction]:
        entries = [e for e in self._entries if e.user_id == user_id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries
