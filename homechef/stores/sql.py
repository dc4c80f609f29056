"""
SQL Stores

Async SQLAlchemy implementation of the storage contracts. Used in staging
and production. Conditional writes are single UPDATE statements so the
version / status check and the write happen atomically in the database.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from homechef.domain import (
    LineItem,
    Order,
    RewardBalance,
    RewardTransaction,
    StatusChange,
    TipStatus,
    TipTransaction,
)
from homechef.exceptions import (
    ConcurrentModificationError,
    InvalidTipError,
    OrderNotFoundError,
)
from homechef.models import (
    OrderItemRecord,
    OrderRecord,
    OrderStatusHistoryRecord,
    RewardBalanceRecord,
    RewardTransactionRecord,
    TipTransactionRecord,
)
from homechef.stores.base import OrderStore, RewardStore, TipStore

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers (SQLite) drop tzinfo; timestamps are always stored as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _order_from_record(record: OrderRecord) -> Order:
    return Order(
        id=record.id,
        customer_id=record.customer_id,
        chef_id=record.chef_id,
        delivery_person_id=record.delivery_person_id,
        items=[
            LineItem(
                menu_item_id=item.menu_item_id,
                quantity=item.quantity,
                price=item.price,
                name=item.name,
            )
            for item in record.items
        ],
        total_amount=record.total_amount,
        delivery_address=record.delivery_address,
        status=record.status,
        created_at=_aware(record.created_at),
        status_changed_at=_aware(record.status_changed_at),
        version=record.version,
        timeline=[
            StatusChange(
                status=entry.status,
                timestamp=_aware(entry.timestamp),
                actor_role=entry.actor_role,
                message=entry.message,
            )
            for entry in record.history
        ],
        cancellation_penalty=record.cancellation_penalty,
        refund_amount=record.refund_amount,
        cancellation_reason=record.cancellation_reason,
        cancelled_by=record.cancelled_by,
        cancelled_at=_aware(record.cancelled_at),
    )


def _history_record(order_id: str, sequence: int, change: StatusChange) -> OrderStatusHistoryRecord:
    return OrderStatusHistoryRecord(
        order_id=order_id,
        sequence=sequence,
        status=change.status,
        actor_role=change.actor_role,
        message=change.message,
        timestamp=change.timestamp,
    )


def _tip_from_record(record: TipTransactionRecord) -> TipTransaction:
    return TipTransaction(
        id=record.id,
        from_user_id=record.from_user_id,
        recipient_id=record.recipient_id,
        recipient_type=record.recipient_type,
        amount=record.amount,
        message=record.message,
        order_id=record.order_id,
        created_at=_aware(record.created_at),
        status=record.status,
        external_reference=record.external_reference,
        settled_at=_aware(record.settled_at),
        failure_reason=record.failure_reason,
    )


class SqlOrderStore(OrderStore):
    """Order repository on the orders / order_items / order_status_history tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def backend_name(self) -> str:
        return "sql"

    async def add(self, order: Order) -> None:
        record = OrderRecord(
            id=order.id,
            customer_id=order.customer_id,
            chef_id=order.chef_id,
            delivery_person_id=order.delivery_person_id,
            delivery_address=order.delivery_address,
            total_amount=order.total_amount,
            status=order.status,
            version=order.version,
            created_at=order.created_at,
            status_changed_at=order.status_changed_at,
            items=[
                OrderItemRecord(
                    position=position,
                    menu_item_id=item.menu_item_id,
                    name=item.name,
                    quantity=item.quantity,
                    price=item.price,
                )
                for position, item in enumerate(order.items)
            ],
            history=[
                _history_record(order.id, sequence, change)
                for sequence, change in enumerate(order.timeline)
            ],
        )
        async with self._session_maker() as session:
            async with session.begin():
                session.add(record)

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._session_maker() as session:
            record = await session.get(OrderRecord, order_id)
            return _order_from_record(record) if record else None

    async def update(self, order: Order, expected_version: int) -> Order:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(OrderRecord)
                    .where(
                        OrderRecord.id == order.id,
                        OrderRecord.version == expected_version,
                    )
                    .values(
                        status=order.status,
                        status_changed_at=order.status_changed_at,
                        delivery_person_id=order.delivery_person_id,
                        version=order.version,
                        cancellation_penalty=order.cancellation_penalty,
                        refund_amount=order.refund_amount,
                        cancellation_reason=order.cancellation_reason,
                        cancelled_by=order.cancelled_by,
                        cancelled_at=order.cancelled_at,
                    )
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount != 1:
                    current = await session.scalar(
                        select(OrderRecord.version).where(OrderRecord.id == order.id)
                    )
                    if current is None:
                        raise OrderNotFoundError(order.id)
                    raise ConcurrentModificationError(
                        f"Order {order.id} is at version {current}, "
                        f"expected {expected_version}",
                        details={"order_id": order.id, "current_version": current},
                    )

                stored_entries = await session.scalar(
                    select(func.count(OrderStatusHistoryRecord.id)).where(
                        OrderStatusHistoryRecord.order_id == order.id
                    )
                ) or 0
                for sequence, change in enumerate(order.timeline[stored_entries:], start=stored_entries):
                    session.add(_history_record(order.id, sequence, change))

        return order

    async def list(
        self,
        customer_id: Optional[str] = None,
        chef_id: Optional[str] = None,
        delivery_person_id: Optional[str] = None,
    ) -> list[Order]:
        query = select(OrderRecord).order_by(OrderRecord.created_at.desc())
        if customer_id is not None:
            query = query.where(OrderRecord.customer_id == customer_id)
        if chef_id is not None:
            query = query.where(OrderRecord.chef_id == chef_id)
        if delivery_person_id is not None:
            query = query.where(OrderRecord.delivery_person_id == delivery_person_id)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return [_order_from_record(r) for r in result.scalars().all()]

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Order store health check failed: {e}")
            return False


class SqlTipStore(TipStore):
    """Tip ledger on the tip_transactions table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def backend_name(self) -> str:
        return "sql"

    async def add(self, tip: TipTransaction) -> None:
        record = TipTransactionRecord(
            id=tip.id,
            from_user_id=tip.from_user_id,
            recipient_id=tip.recipient_id,
            recipient_type=tip.recipient_type,
            amount=tip.amount,
            message=tip.message,
            order_id=tip.order_id,
            status=tip.status,
            external_reference=tip.external_reference,
            failure_reason=tip.failure_reason,
            created_at=tip.created_at,
            settled_at=tip.settled_at,
        )
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    session.add(record)
        except IntegrityError as e:
            # Either a duplicate id or the one-active-tip-per-recipient index
            raise InvalidTipError(
                f"Order {tip.order_id} already has a pending or completed "
                f"{tip.recipient_type.value} tip",
                details={"order_id": tip.order_id, "tip_id": tip.id},
            ) from e

    async def get(self, tip_id: str) -> Optional[TipTransaction]:
        async with self._session_maker() as session:
            record = await session.get(TipTransactionRecord, tip_id)
            return _tip_from_record(record) if record else None

    async def update(self, tip: TipTransaction, expected_status: TipStatus) -> bool:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(TipTransactionRecord)
                    .where(
                        TipTransactionRecord.id == tip.id,
                        TipTransactionRecord.status == expected_status,
                    )
                    .values(
                        status=tip.status,
                        external_reference=tip.external_reference,
                        failure_reason=tip.failure_reason,
                        settled_at=tip.settled_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

    async def list(
        self,
        recipient_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
        order_id: Optional[str] = None,
        status: Optional[TipStatus] = None,
        created_before: Optional[datetime] = None,
    ) -> list[TipTransaction]:
        query = select(TipTransactionRecord).order_by(TipTransactionRecord.created_at)
        if recipient_id is not None:
            query = query.where(TipTransactionRecord.recipient_id == recipient_id)
        if from_user_id is not None:
            query = query.where(TipTransactionRecord.from_user_id == from_user_id)
        if order_id is not None:
            query = query.where(TipTransactionRecord.order_id == order_id)
        if status is not None:
            query = query.where(TipTransactionRecord.status == status)
        if created_before is not None:
            query = query.where(TipTransactionRecord.created_at < created_before)

        async with self._session_maker() as session:
            result = await session.execute(query)
            return [_tip_from_record(r) for r in result.scalars().all()]

    async def health_check(self) -> bool:
        try:
            async with self._session_maker() as session:
                await session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Tip store health check failed: {e}")
            return False


def _reward_from_record(record: RewardTransactionRecord) -> RewardTransaction:
    return RewardTransaction(
        id=record.id,
        user_id=record.user_id,
        kind=record.kind,
        tokens=record.tokens,
        description=record.description,
        created_at=_aware(record.created_at),
        order_id=record.order_id,
    )


def _reward_record(entry: RewardTransaction) -> RewardTransactionRecord:
    return RewardTransactionRecord(
        id=entry.id,
        user_id=entry.user_id,
        kind=entry.kind,
        tokens=entry.tokens,
        description=entry.description,
        order_id=entry.order_id,
        created_at=entry.created_at,
    )


class SqlRewardStore(RewardStore):
    """Token ledger on the reward_balances / reward_transactions tables."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    @property
    def backend_name(self) -> str:
        return "sql"

    async def _ensure_balance_row(self, user_id: str) -> None:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    if await session.get(RewardBalanceRecord, user_id) is None:
                        session.add(RewardBalanceRecord(
                            user_id=user_id, tokens=0, lifetime_earned=0, lifetime_redeemed=0,
                        ))
        except IntegrityError:
            # Created by another writer in the meantime
            pass

    async def earn(self, entry: RewardTransaction) -> bool:
        await self._ensure_balance_row(entry.user_id)
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    session.add(_reward_record(entry))
                    await session.flush()
                    await session.execute(
                        update(RewardBalanceRecord)
                        .where(RewardBalanceRecord.user_id == entry.user_id)
                        .values(
                            tokens=RewardBalanceRecord.tokens + entry.tokens,
                            lifetime_earned=RewardBalanceRecord.lifetime_earned + entry.tokens,
                        )
                        .execution_options(synchronize_session=False)
                    )
        except IntegrityError:
            logger.debug(f"Tokens for order {entry.order_id} already credited to {entry.user_id}")
            return False
        return True

    async def redeem(self, entry: RewardTransaction) -> bool:
        async with self._session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    update(RewardBalanceRecord)
                    .where(
                        RewardBalanceRecord.user_id == entry.user_id,
                        RewardBalanceRecord.tokens >= entry.tokens,
                    )
                    .values(
                        tokens=RewardBalanceRecord.tokens - entry.tokens,
                        lifetime_redeemed=RewardBalanceRecord.lifetime_redeemed + entry.tokens,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return False
                session.add(_reward_record(entry))
        return True

    async def balance(self, user_id: str) -> RewardBalance:
        async with self._session_maker() as session:
            record = await session.get(RewardBalanceRecord, user_id)
        if record is None:
            return RewardBalance(user_id=user_id)
        return RewardBalance(
            user_id=user_id,
            total_tokens=record.tokens,
            lifetime_earned=record.lifetime_earned,
            lifetime_redeemed=record.lifetime_redeemed,
        )

    async def history(self, user_id: str) -> list[RewardTransaction]:
        query = (
            select(RewardTransactionRecord)
            .where(RewardTransactionRecord.user_id == user_id)
            .order_by(RewardTransactionRecord.created_at.desc())
        )
        async with self._session_maker() as session:
            result = await session.execute(query)
            return [_reward_from_record(r) for r in result.scalars().all()]
