"""
Tip Ledger Engine

Append-only record of tips attached to delivered orders.

Flow:
    send_tip()        → validates, appends a PENDING record, returns it
    (background)      → payment gateway settle(), bounded by a timeout
    on_settlement()   → PENDING → COMPLETED (with reference) or FAILED
    reconcile_pending → asks the gateway about tips left pending

Settlement never raises into the send_tip() caller: outcomes surface through
TipEvents and the query methods. A FAILED tip stays failed; tipping again
means a new send_tip().
"""

import asyncio
import logging
import math
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional, Union

from homechef.core.clock import Clock, SystemClock
from homechef.domain import (
    HistoryDirection,
    Order,
    OrderStatus,
    RecipientType,
    TipAnalytics,
    TipHistoryPage,
    TipPeriod,
    TipStatus,
    TipTransaction,
    TopTipper,
)
from homechef.events import EventDispatcher, TipEvent
from homechef.exceptions import InvalidTipError, TipNotFoundError
from homechef.services.payment.accounts import BasePayoutAccountResolver, PayoutAccounts
from homechef.services.payment.base import BasePaymentService, SettlementResult
from homechef.stores.base import OrderStore, TipStore

logger = logging.getLogger(__name__)


def generate_tip_id() -> str:
    """Generate a tip id (TIP-XXXXXXXXXXXX)."""
    return f"TIP-{uuid.uuid4().hex[:12].upper()}"


def period_start(period: TipPeriod, now: datetime) -> datetime:
    """
    First instant of an aggregation window ending at `now`.

    today, month and year start at local midnight; week is a rolling 7 days.
    """
    if period == TipPeriod.WEEK:
        return now - timedelta(days=7)

    local_now = now.astimezone()
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == TipPeriod.MONTH:
        midnight = midnight.replace(day=1)
    elif period == TipPeriod.YEAR:
        midnight = midnight.replace(month=1, day=1)
    return midnight


class KeyedLocks:
    """One asyncio.Lock per key, discarded as soon as nobody holds or awaits it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class LedgerEngine:
    """
    Records tips and drives their settlement.

    Attributes:
        tip_store: Append-only tip repository
        order_store: Read access to orders, for tip validation
        payment_service: Gateway that settles tips
        dispatcher: Receives a TipEvent on creation and on settlement
        clock: Time source for timestamps and period windows
        settlement_timeout: Upper bound (seconds) on one settle() call
        account_resolver: Supplies payer and recipient gateway accounts;
            None for gateways that need none (the development simulator)
    """

    def __init__(
        self,
        tip_store: TipStore,
        order_store: OrderStore,
        payment_service: BasePaymentService,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Clock] = None,
        settlement_timeout: float = 10.0,
        currency: Optional[str] = None,
        id_factory: Callable[[], str] = generate_tip_id,
        account_resolver: Optional[BasePayoutAccountResolver] = None,
    ):
        self.tip_store = tip_store
        self.order_store = order_store
        self.payment_service = payment_service
        self.dispatcher = dispatcher or EventDispatcher()
        self.clock = clock or SystemClock()
        self.settlement_timeout = settlement_timeout
        self.currency = currency
        self._id_factory = id_factory
        self.account_resolver = account_resolver

        self._order_locks = KeyedLocks()
        self._tip_locks = KeyedLocks()
        self._settlements: set[asyncio.Task] = set()

    # ==========================================================================
    # SENDING
    # ==========================================================================

    async def send_tip(
        self,
        from_user_id: str,
        recipient_id: str,
        recipient_type: Union[RecipientType, str],
        amount: float,
        message: str,
        order_id: str,
    ) -> TipTransaction:
        """
        Record a tip and start settling it in the background.

        Returns the PENDING record immediately.

        Raises:
            InvalidTipError: Non-positive amount, unknown or undelivered
                order, recipient not on the order, the order already
                has a pending/completed tip for this recipient type, or no
                saved payment method / payout account is on file
        """
        try:
            recipient_type = RecipientType(recipient_type)
        except ValueError:
            raise InvalidTipError(f"Unknown recipient type: {recipient_type!r}")

        if (
            isinstance(amount, bool)
            or not isinstance(amount, (int, float))
            or not math.isfinite(amount)
            or amount <= 0
        ):
            raise InvalidTipError(
                "Tip amount must be greater than 0",
                details={"amount": amount},
            )
        if not from_user_id:
            raise InvalidTipError("Tip requires a sender")

        async with self._order_locks.hold(order_id):
            order = await self.order_store.get(order_id)
            if order is None:
                raise InvalidTipError(
                    f"Order {order_id} does not exist",
                    details={"order_id": order_id},
                )
            if order.status != OrderStatus.DELIVERED:
                raise InvalidTipError(
                    f"Order {order_id} is {order.status.value}; tips are accepted "
                    f"only after delivery",
                    details={"order_id": order_id, "status": order.status.value},
                )
            self._check_recipient(order, recipient_id, recipient_type)

            existing = await self.tip_store.list(order_id=order_id)
            for other in existing:
                if other.recipient_type == recipient_type and other.status != TipStatus.FAILED:
                    raise InvalidTipError(
                        f"Order {order_id} already has a {other.status.value} "
                        f"{recipient_type.value} tip",
                        details={"order_id": order_id, "tip_id": other.id},
                    )

            accounts = await self._resolve_accounts(from_user_id, recipient_id)

            tip = TipTransaction(
                id=self._id_factory(),
                from_user_id=from_user_id,
                recipient_id=recipient_id,
                recipient_type=recipient_type,
                amount=round(float(amount), 2),
                message=message or "",
                order_id=order_id,
                created_at=self.clock.now(),
            )
            await self.tip_store.add(tip)

        logger.info(
            f"Tip {tip.id} of {tip.amount:.2f} from {from_user_id} to "
            f"{recipient_type.value} {recipient_id} (order {order_id}) recorded"
        )
        self._publish(tip)
        self._start_settlement(tip, accounts)
        return tip

    async def _resolve_accounts(self, from_user_id: str, recipient_id: str) -> Optional[PayoutAccounts]:
        if self.account_resolver is None:
            return None

        accounts = await self.account_resolver.resolve(from_user_id, recipient_id)
        if not accounts.is_complete:
            raise InvalidTipError(
                f"Cannot settle a tip from {from_user_id} to {recipient_id}: "
                f"no {', '.join(accounts.missing)} on file",
                details={"missing": accounts.missing},
            )
        return accounts

    @staticmethod
    def _check_recipient(order: Order, recipient_id: str, recipient_type: RecipientType) -> None:
        if recipient_type == RecipientType.CHEF:
            expected = order.chef_id
        else:
            expected = order.delivery_person_id

        if not recipient_id or recipient_id != expected:
            raise InvalidTipError(
                f"{recipient_id!r} is not the {recipient_type.value} of order {order.id}",
                details={"order_id": order.id, "recipient_id": recipient_id},
            )

    # ==========================================================================
    # SETTLEMENT
    # ==========================================================================

    def _start_settlement(self, tip: TipTransaction, accounts: Optional[PayoutAccounts] = None) -> None:
        task = asyncio.get_running_loop().create_task(self._settle(tip, accounts))
        self._settlements.add(task)
        task.add_done_callback(self._settlements.discard)

    async def _settle(self, tip: TipTransaction, accounts: Optional[PayoutAccounts] = None) -> None:
        metadata = {
            "order_id": tip.order_id,
            "recipient_id": tip.recipient_id,
            "recipient_type": tip.recipient_type.value,
            "from_user_id": tip.from_user_id,
        }
        if accounts is not None:
            metadata.update(accounts.as_metadata())

        try:
            result = await asyncio.wait_for(
                self.payment_service.settle(
                    tip.id,
                    tip.amount,
                    currency=self.currency,
                    metadata=metadata,
                ),
                timeout=self.settlement_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Settlement of tip {tip.id} timed out after "
                f"{self.settlement_timeout}s; left pending for reconciliation"
            )
            return
        except Exception:
            logger.exception(f"Settlement of tip {tip.id} raised; left pending")
            return

        if not result.is_final:
            logger.info(f"Settlement of tip {tip.id} accepted, awaiting confirmation")
            return

        try:
            await self.on_settlement(tip.id, result)
        except Exception:
            logger.exception(f"Could not record settlement of tip {tip.id}")

    async def on_settlement(self, tip_id: str, result: SettlementResult) -> TipTransaction:
        """
        Apply a gateway verdict to a pending tip.

        Callbacks for tips that are already settled are ignored and the
        stored record is returned, so the gateway may deliver more than once.
        A "completed" verdict without a gateway reference is not applied.

        Raises:
            TipNotFoundError: Unknown tip id
        """
        async with self._tip_locks.hold(tip_id):
            tip = await self.tip_store.get(tip_id)
            if tip is None:
                raise TipNotFoundError(tip_id)
            if tip.status != TipStatus.PENDING:
                logger.debug(f"Tip {tip_id} already {tip.status.value}; ignoring callback")
                return tip
            if not result.is_final:
                return tip
            if result.success and not result.reference:
                logger.warning(f"Completed settlement for tip {tip_id} carries no reference; ignored")
                return tip

            now = self.clock.now()
            if result.success:
                updated = replace(
                    tip,
                    status=TipStatus.COMPLETED,
                    external_reference=result.reference,
                    settled_at=now,
                )
            else:
                updated = replace(
                    tip,
                    status=TipStatus.FAILED,
                    external_reference=None,
                    settled_at=now,
                    failure_reason=result.error_message or result.error_code or "Settlement failed",
                )

            if not await self.tip_store.update(updated, expected_status=TipStatus.PENDING):
                # Settled through another process between our read and write
                return await self.tip_store.get(tip_id)

        if updated.status == TipStatus.COMPLETED:
            logger.info(f"Tip {tip_id} completed ({updated.external_reference})")
        else:
            logger.warning(f"Tip {tip_id} failed: {updated.failure_reason}")
        self._publish(updated)
        return updated

    async def reconcile_pending(
        self,
        min_age_seconds: float,
        now: Optional[datetime] = None,
    ) -> list[TipTransaction]:
        """
        Resolve tips that have been pending for at least `min_age_seconds`.

        Only looks settlements up; never starts a new charge.

        Returns:
            Tips that reached COMPLETED or FAILED during this run
        """
        now = now or self.clock.now()
        cutoff = now - timedelta(seconds=min_age_seconds)
        stale = await self.tip_store.list(status=TipStatus.PENDING, created_before=cutoff)

        resolved = []
        for tip in stale:
            try:
                result = await asyncio.wait_for(
                    self.payment_service.lookup_settlement(tip.id),
                    timeout=self.settlement_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Lookup of tip {tip.id} timed out")
                continue
            except Exception:
                logger.exception(f"Lookup of tip {tip.id} raised")
                continue

            if result is None or not result.is_final:
                continue

            settled = await self.on_settlement(tip.id, result)
            if settled.status != TipStatus.PENDING:
                resolved.append(settled)

        logger.info(f"Reconciliation: {len(resolved)}/{len(stale)} pending tips resolved")
        return resolved

    @property
    def pending_settlements(self) -> int:
        return len(self._settlements)

    async def wait_for_settlements(self) -> None:
        """Wait until every background settlement has finished."""
        while self._settlements:
            await asyncio.gather(*list(self._settlements), return_exceptions=True)

    # ==========================================================================
    # QUERIES
    # ==========================================================================

    async def get_tip(self, tip_id: str) -> TipTransaction:
        async with self._tip_locks.hold(tip_id):
            tip = await self.tip_store.get(tip_id)
        if tip is None:
            raise TipNotFoundError(tip_id)
        return tip

    async def tips_for_order(self, order_id: str) -> list[TipTransaction]:
        """Every tip of an order, whatever its status."""
        return await self.tip_store.list(order_id=order_id)

    async def get_tips_received(self, user_id: str) -> list[TipTransaction]:
        """Completed tips received by a user, oldest first."""
        return await self.tip_store.list(recipient_id=user_id, status=TipStatus.COMPLETED)

    async def get_tips_sent(self, user_id: str) -> list[TipTransaction]:
        """Completed tips sent by a user, oldest first."""
        return await self.tip_store.list(from_user_id=user_id, status=TipStatus.COMPLETED)

    async def get_total_tips_received(
        self,
        user_id: str,
        period: Optional[Union[TipPeriod, str]] = None,
        now: Optional[datetime] = None,
    ) -> float:
        """
        Sum of completed tips received by a user.

        Args:
            user_id: Recipient
            period: today / week / month / year; None for all time
            now: End of the window (defaults to the clock)
        """
        tips = await self._received_in_period(user_id, period, now)
        return round(sum(tip.amount for tip in tips), 2)

    async def get_tip_analytics(
        self,
        user_id: str,
        period: Optional[Union[TipPeriod, str]] = None,
        now: Optional[datetime] = None,
        top: int = 5,
    ) -> TipAnalytics:
        """
        Count, total, average and top tippers of the completed tips a user
        received in a period (all time when period is None).
        """
        tips = await self._received_in_period(user_id, period, now)
        total = round(sum(tip.amount for tip in tips), 2)

        by_tipper: dict[str, list[TipTransaction]] = defaultdict(list)
        for tip in tips:
            by_tipper[tip.from_user_id].append(tip)
        ranked = sorted(
            (
                TopTipper(
                    from_user_id=tipper,
                    total_tips=round(sum(t.amount for t in received), 2),
                    tip_count=len(received),
                )
                for tipper, received in by_tipper.items()
            ),
            key=lambda t: (-t.total_tips, t.from_user_id),
        )

        return TipAnalytics(
            user_id=user_id,
            period=TipPeriod(period) if period is not None else None,
            total_tips=total,
            tip_count=len(tips),
            average_tip=round(total / len(tips), 2) if tips else 0.0,
            top_tippers=ranked[:top],
        )

    async def get_tip_history(
        self,
        user_id: str,
        direction: Optional[Union[HistoryDirection, str]] = None,
        recipient_type: Optional[Union[RecipientType, str]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> TipHistoryPage:
        """
        Tips a user sent and/or received, any status, newest first.

        Args:
            direction: sent / received; None for both
            recipient_type: Only chef or only delivery tips
            page: 1-based page number
            limit: Page size, 1 to 100

        Raises:
            InvalidTipError: Unknown direction / recipient type, or bad paging
        """
        try:
            direction = HistoryDirection(direction) if direction is not None else None
            recipient_type = RecipientType(recipient_type) if recipient_type is not None else None
        except ValueError as e:
            raise InvalidTipError(str(e))
        if page < 1 or not 1 <= limit <= 100:
            raise InvalidTipError(
                "page must be >= 1 and limit between 1 and 100",
                details={"page": page, "limit": limit},
            )

        tips: dict[str, TipTransaction] = {}
        if direction in (None, HistoryDirection.SENT):
            tips.update((t.id, t) for t in await self.tip_store.list(from_user_id=user_id))
        if direction in (None, HistoryDirection.RECEIVED):
            tips.update((t.id, t) for t in await self.tip_store.list(recipient_id=user_id))

        matching = [
            tip for tip in tips.values()
            if recipient_type is None or tip.recipient_type == recipient_type
        ]
        matching.sort(key=lambda t: (t.created_at, t.id), reverse=True)

        offset = (page - 1) * limit
        return TipHistoryPage(
            tips=matching[offset:offset + limit],
            total=len(matching),
            page=page,
            limit=limit,
        )

    async def _received_in_period(
        self,
        user_id: str,
        period: Optional[Union[TipPeriod, str]],
        now: Optional[datetime],
    ) -> list[TipTransaction]:
        tips = await self.get_tips_received(user_id)
        if period is None:
            return tips

        try:
            period = TipPeriod(period)
        except ValueError:
            raise InvalidTipError(f"Unknown period: {period!r}")
        now = now or self.clock.now()
        since = period_start(period, now)
        return [tip for tip in tips if since <= tip.created_at <= now]

    # ==========================================================================
    # INTERNALS
    # ==========================================================================

    def _publish(self, tip: TipTransaction) -> TipEvent:
        event = TipEvent(
            tip_id=tip.id,
            status=tip.status,
            order_id=tip.order_id,
            from_user_id=tip.from_user_id,
            recipient_id=tip.recipient_id,
            recipient_type=tip.recipient_type,
            amount=tip.amount,
            timestamp=tip.settled_at or tip.created_at,
        )
        self.dispatcher.publish(event)
        return event
