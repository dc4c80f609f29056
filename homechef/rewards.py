"""
Rewards Token Ledger

Customers earn loyalty tokens on delivered orders and redeem them for
discounts at checkout.

Rates:
    - 1 token per `spend_per_token` of order value (10 by default), floored
    - 2 tokens buy 1 unit of discount

Every movement is an append-only RewardTransaction. Earning is keyed on the
order, so replaying a delivered event never credits twice; redemption is a
conditional debit in the store, so the balance never goes negative.
"""

import logging
import math
import uuid
from typing import Callable, Optional

from homechef.core.clock import Clock, SystemClock
from homechef.domain import (
    OrderStatus,
    RewardBalance,
    RewardKind,
    RewardTransaction,
)
from homechef.events import CoreEvent, OrderEvent
from homechef.exceptions import InvalidRewardError
from homechef.stores.base import RewardStore

logger = logging.getLogger(__name__)

TOKENS_PER_DISCOUNT_UNIT = 2


def generate_reward_id() -> str:
    return f"RWD-{uuid.uuid4().hex[:12].upper()}"


class RewardsLedger:
    """
    Earns and redeems loyalty tokens.

    Attributes:
        store: Token balances and movements
        clock: Time source for movement timestamps
        spend_per_token: Order value that earns one token
        multiplier: Token multiplier applied on every earn
    """

    def __init__(
        self,
        store: RewardStore,
        clock: Optional[Clock] = None,
        spend_per_token: float = 10.0,
        multiplier: int = 1,
        id_factory: Callable[[], str] = generate_reward_id,
    ):
        if spend_per_token <= 0 or multiplier < 1:
            raise InvalidRewardError(
                "spend_per_token must be positive and multiplier at least 1",
                details={"spend_per_token": spend_per_token, "multiplier": multiplier},
            )
        self.store = store
        self.clock = clock or SystemClock()
        self.spend_per_token = spend_per_token
        self.multiplier = multiplier
        self._id_factory = id_factory

    def tokens_for_amount(self, amount: float) -> int:
        if not math.isfinite(amount) or amount <= 0:
            return 0
        return math.floor(amount / self.spend_per_token) * self.multiplier

    @staticmethod
    def discount_for_tokens(tokens: int) -> int:
        return tokens // TOKENS_PER_DISCOUNT_UNIT if tokens > 0 else 0

    async def earn_for_order(
        self,
        user_id: str,
        order_id: str,
        order_amount: float,
    ) -> Optional[RewardTransaction]:
        """
        Credit tokens for a delivered order.

        Returns:
            The new movement, or None when the order earns nothing or was
            already credited
        """
        tokens = self.tokens_for_amount(order_amount)
        if tokens == 0:
            return None

        entry = RewardTransaction(
            id=self._id_factory(),
            user_id=user_id,
            kind=RewardKind.EARNED,
            tokens=tokens,
            description=f"Order #{order_id} - {order_amount:.2f}",
            created_at=self.clock.now(),
            order_id=order_id,
        )
        if not await self.store.earn(entry):
            logger.debug(f"Order {order_id} already credited to {user_id}")
            return None

        logger.info(f"{user_id} earned {tokens} tokens on order {order_id}")
        return entry

    async def redeem(self, user_id: str, tokens: int, description: str = "") -> RewardTransaction:
        """
        Spend tokens.

        Raises:
            InvalidRewardError: tokens not a positive integer, or more than
                the current balance
        """
        if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
            raise InvalidRewardError(
                "Tokens to redeem must be a positive integer",
                details={"tokens": tokens},
            )

        entry = RewardTransaction(
            id=self._id_factory(),
            user_id=user_id,
            kind=RewardKind.REDEEMED,
            tokens=tokens,
            description=description or f"{self.discount_for_tokens(tokens)} discount",
            created_at=self.clock.now(),
        )
        if not await self.store.redeem(entry):
            balance = await self.store.balance(user_id)
            raise InvalidRewardError(
                f"{user_id} has {balance.total_tokens} tokens, cannot redeem {tokens}",
                details={"balance": balance.total_tokens, "requested": tokens},
            )

        logger.info(f"{user_id} redeemed {tokens} tokens")
        return entry

    async def balance(self, user_id: str) -> RewardBalance:
        return await self.store.balance(user_id)

    async def history(self, user_id: str) -> list[RewardTransaction]:
        return await self.store.history(user_id)

    async def on_event(self, event: CoreEvent) -> None:
        """EventDispatcher subscriber: earn when an order is delivered."""
        if not isinstance(event, OrderEvent) or event.to_status != OrderStatus.DELIVERED:
            return
        if not event.customer_id or event.total_amount is None:
            logger.warning(f"Delivered event for order {event.order_id} lacks customer or total")
            return
        await self.earn_for_order(event.customer_id, event.order_id, event.total_amount)
