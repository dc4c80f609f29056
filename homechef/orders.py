"""
Order State Machine

Enforces the order lifecycle:

    pending → accepted → preparing → ready → out_for_delivery → delivered
         ╲         ╲           ╲         ╲
          cancelled (customer / chef; chef only once ready)

Every edge is checked against ALLOWED_TRANSITIONS together with the actor
role performing it. Writes for one order are serialized by a per-order lock
and land in the store as a compare-and-set on the order's version stamp, so
two concurrent requests can never race an order into different terminal
states.

Usage:
    machine = OrderStateMachine(store, fee_config, dispatcher, clock)
    order = await machine.create(items, chef_id="chef_1", customer_id="cust_1",
                                 delivery_address="12 MG Road, Pune")
    result = await machine.transition(order.id, OrderStatus.ACCEPTED, ActorRole.CHEF)
"""

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from homechef.core.clock import Clock, SystemClock
from homechef.domain import (
    ActorRole,
    CancellationQuote,
    CancellationResult,
    LineItem,
    Order,
    OrderStatus,
    StatusChange,
)
from homechef.events import EventDispatcher, OrderEvent
from homechef.exceptions import (
    AlreadyTerminalError,
    ConcurrentModificationError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderNotFoundError,
    UnauthorizedActorError,
)
from homechef.fees import FeeConfig, compute_cancellation_penalty
from homechef.stores.base import OrderStore

logger = logging.getLogger(__name__)


# (from, to) -> roles allowed to drive that edge. Anything missing is rejected.
ALLOWED_TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[ActorRole]] = {
    (OrderStatus.PENDING, OrderStatus.ACCEPTED): frozenset({ActorRole.CHEF}),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): frozenset({ActorRole.CUSTOMER, ActorRole.CHEF}),
    (OrderStatus.ACCEPTED, OrderStatus.PREPARING): frozenset({ActorRole.CHEF}),
    (OrderStatus.ACCEPTED, OrderStatus.CANCELLED): frozenset({ActorRole.CUSTOMER, ActorRole.CHEF}),
    (OrderStatus.PREPARING, OrderStatus.READY): frozenset({ActorRole.CHEF}),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED): frozenset({ActorRole.CUSTOMER, ActorRole.CHEF}),
    (OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY): frozenset({ActorRole.DELIVERY}),
    (OrderStatus.READY, OrderStatus.CANCELLED): frozenset({ActorRole.CHEF}),
    (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED): frozenset({ActorRole.DELIVERY}),
}

# Statuses in which a delivery person may be (re)assigned
ASSIGNABLE_STATUSES = frozenset({
    OrderStatus.ACCEPTED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
})

STATUS_MESSAGES = {
    OrderStatus.PENDING: "Order placed",
    OrderStatus.ACCEPTED: "Chef accepted the order",
    OrderStatus.PREPARING: "Chef started preparing the order",
    OrderStatus.READY: "Order is ready for pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Order is out for delivery",
    OrderStatus.DELIVERED: "Order delivered successfully",
    OrderStatus.CANCELLED: "Order cancelled",
}


@dataclass(frozen=True)
class TransitionResult:
    """Updated order plus the event handed to the notification dispatcher."""
    order: Order
    event: OrderEvent


def generate_order_id() -> str:
    """Generate a short, human-readable order id (ORD-XXXXXXXXXXXX)."""
    return f"ORD-{uuid.uuid4().hex[:12].upper()}"


def _coerce_status(value: Union[OrderStatus, str]) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown order status: {value!r}")


def _coerce_role(value: Union[ActorRole, str]) -> ActorRole:
    try:
        return ActorRole(value)
    except ValueError:
        raise UnauthorizedActorError(f"Unknown actor role: {value!r}")


def _coerce_item(raw: Union[LineItem, Mapping[str, Any]]) -> LineItem:
    if isinstance(raw, LineItem):
        return raw
    try:
        return LineItem(
            menu_item_id=str(raw["menu_item_id"]),
            quantity=raw["quantity"],
            price=raw["price"],
            name=raw.get("name"),
        )
    except (KeyError, TypeError) as e:
        raise InvalidOrderError(f"Malformed line item: {e}")


class OrderStateMachine:
    """
    Single entry point for creating and mutating orders.

    Attributes:
        store: Order repository
        config: Platform fee / cancellation configuration
        dispatcher: Receives an OrderEvent for every successful mutation
        clock: Time source for timestamps and cancellation windows
    """

    def __init__(
        self,
        store: OrderStore,
        config: FeeConfig,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = generate_order_id,
    ):
        self.store = store
        self.config = config
        self.dispatcher = dispatcher or EventDispatcher()
        self.clock = clock or SystemClock()
        self._id_factory = id_factory
        self._locks: dict[str, asyncio.Lock] = {}

    # ==========================================================================
    # QUERIES
    # ==========================================================================

    async def get(self, order_id: str) -> Order:
        """
        Fetch an order.

        Raises:
            OrderNotFoundError: If no such order exists
        """
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def orders_for_customer(self, customer_id: str) -> list[Order]:
        return await self.store.list(customer_id=customer_id)

    async def orders_for_chef(self, chef_id: str) -> list[Order]:
        return await self.store.list(chef_id=chef_id)

    async def orders_for_delivery_person(self, delivery_person_id: str) -> list[Order]:
        return await self.store.list(delivery_person_id=delivery_person_id)

    async def cancellation_quote(
        self,
        order_id: str,
        now: Optional[datetime] = None,
    ) -> CancellationQuote:
        """Preview what cancelling the order would cost at `now`."""
        order = await self.get(order_id)
        now = now or self.clock.now()
        elapsed = (now - order.created_at).total_seconds()
        can_cancel = (
            not order.is_terminal
            and (order.status, OrderStatus.CANCELLED) in ALLOWED_TRANSITIONS
        )
        penalty = compute_cancellation_penalty(order.total_amount, elapsed, self.config)

        return CancellationQuote(
            order_id=order.id,
            can_cancel=can_cancel,
            is_free=elapsed <= self.config.free_cancellation_window_seconds,
            seconds_since_placed=elapsed,
            free_window_seconds=self.config.free_cancellation_window_seconds,
            penalty_amount=penalty,
            refund_amount=round(max(order.total_amount - penalty, 0.0), 2),
        )

    # ==========================================================================
    # MUTATIONS
    # ==========================================================================

    async def create(
        self,
        items: Iterable[Union[LineItem, Mapping[str, Any]]],
        chef_id: str,
        customer_id: str,
        delivery_address: str,
    ) -> Order:
        """
        Create a new order in `pending`.

        Raises:
            InvalidOrderError: No items, a non-positive quantity or price,
                or missing participant / address
        """
        line_items = [_coerce_item(item) for item in (items or [])]

        if not line_items:
            raise InvalidOrderError("Order must contain at least one item")
        for item in line_items:
            if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity <= 0:
                raise InvalidOrderError(
                    f"Quantity must be a positive integer (item {item.menu_item_id})",
                    details={"menu_item_id": item.menu_item_id},
                )
            if (
                isinstance(item.price, bool)
                or not isinstance(item.price, (int, float))
                or not math.isfinite(item.price)
                or item.price <= 0
            ):
                raise InvalidOrderError(
                    f"Price must be a finite number greater than 0 (item {item.menu_item_id})",
                    details={"menu_item_id": item.menu_item_id},
                )
        if not chef_id or not customer_id:
            raise InvalidOrderError("Order requires both a chef and a customer")
        if not delivery_address or not delivery_address.strip():
            raise InvalidOrderError("Delivery address is required")

        now = self.clock.now()
        total = round(sum(item.price * item.quantity for item in line_items), 2)

        order = Order(
            id=self._id_factory(),
            customer_id=customer_id,
            chef_id=chef_id,
            items=line_items,
            total_amount=total,
            delivery_address=delivery_address.strip(),
            status=OrderStatus.PENDING,
            created_at=now,
            status_changed_at=now,
            timeline=[
                StatusChange(
                    status=OrderStatus.PENDING,
                    timestamp=now,
                    actor_role=ActorRole.CUSTOMER,
                    message=STATUS_MESSAGES[OrderStatus.PENDING],
                )
            ],
        )
        await self.store.add(order)

        logger.info(
            f"Order {order.id} created for customer {customer_id} "
            f"(chef={chef_id}, total={total:.2f})"
        )
        self._publish(order, from_status=None, actor_role=ActorRole.CUSTOMER)
        return order

    async def transition(
        self,
        order_id: str,
        target_status: Union[OrderStatus, str],
        actor_role: Union[ActorRole, str],
        expected_version: Optional[int] = None,
    ) -> TransitionResult:
        """
        Move an order along one edge of the transition table.

        A transition to `cancelled` goes through cancel() so the penalty is
        computed and recorded.

        Args:
            order_id: Order to move
            target_status: Desired status
            actor_role: Role performing the change
            expected_version: Version the caller last read; when given, a
                mismatch is rejected instead of overwritten

        Raises:
            OrderNotFoundError: Unknown order
            InvalidTransitionError: Edge not in the table
            AlreadyTerminalError: Order already delivered or cancelled
            UnauthorizedActorError: Role may not drive this edge
            ConcurrentModificationError: Order changed since the caller read it
        """
        target = _coerce_status(target_status)
        actor = _coerce_role(actor_role)

        if target == OrderStatus.CANCELLED:
            result, event = await self._cancel(
                order_id, actor, now=None, reason=None, expected_version=expected_version
            )
            return TransitionResult(order=result.order, event=event)

        async with self._lock_for(order_id):
            order = await self.get(order_id)
            self._check_version(order, expected_version)
            self._check_edge(order, target, actor)

            now = self.clock.now()
            updated = replace(
                order,
                status=target,
                status_changed_at=now,
                version=order.version + 1,
                timeline=order.timeline + [
                    StatusChange(
                        status=target,
                        timestamp=now,
                        actor_role=actor,
                        message=STATUS_MESSAGES[target],
                    )
                ],
            )
            saved = await self.store.update(updated, expected_version=order.version)
            self._release_if_terminal(saved)

        logger.info(
            f"Order {order_id}: {order.status.value} → {target.value} "
            f"by {actor.value} (v{saved.version})"
        )
        event = self._publish(saved, from_status=order.status, actor_role=actor)
        return TransitionResult(order=saved, event=event)

    async def cancel(
        self,
        order_id: str,
        actor_role: Union[ActorRole, str],
        now: Optional[datetime] = None,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> CancellationResult:
        """
        Cancel an order, charging a penalty once the free window has passed.

        elapsed ≤ window (inclusive) → penalty 0; otherwise
        clamp(total × rate, min, max).

        Raises:
            AlreadyTerminalError: Order already delivered or cancelled
            InvalidTransitionError: Order is out for delivery
            UnauthorizedActorError: Role may not cancel in the current status
        """
        result, _ = await self._cancel(
            order_id,
            _coerce_role(actor_role),
            now=now,
            reason=reason,
            expected_version=expected_version,
        )
        return result

    async def assign_delivery_person(
        self,
        order_id: str,
        delivery_person_id: str,
        expected_version: Optional[int] = None,
    ) -> Order:
        """
        Attach a delivery person to an accepted / preparing / ready order.

        Raises:
            InvalidOrderError: Empty delivery person id
            InvalidTransitionError: Order is not in an assignable status
        """
        if not delivery_person_id:
            raise InvalidOrderError("Delivery person id is required")

        async with self._lock_for(order_id):
            order = await self.get(order_id)
            self._check_version(order, expected_version)
            if order.is_terminal:
                raise AlreadyTerminalError(
                    f"Order {order_id} is already {order.status.value}",
                    details={"order_id": order_id, "status": order.status.value},
                )
            if order.status not in ASSIGNABLE_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot assign a delivery person while order is {order.status.value}",
                    details={"order_id": order_id, "status": order.status.value},
                )

            now = self.clock.now()
            updated = replace(
                order,
                delivery_person_id=delivery_person_id,
                version=order.version + 1,
                timeline=order.timeline + [
                    StatusChange(
                        status=order.status,
                        timestamp=now,
                        message=f"Delivery partner {delivery_person_id} assigned",
                    )
                ],
            )
            saved = await self.store.update(updated, expected_version=order.version)

        logger.info(f"Order {order_id}: delivery person {delivery_person_id} assigned")
        self._publish(saved, from_status=order.status, actor_role=None)
        return saved

    # ==========================================================================
    # INTERNALS
    # ==========================================================================

    async def _cancel(
        self,
        order_id: str,
        actor: ActorRole,
        now: Optional[datetime],
        reason: Optional[str],
        expected_version: Optional[int],
    ) -> tuple[CancellationResult, OrderEvent]:
        async with self._lock_for(order_id):
            order = await self.get(order_id)
            self._check_version(order, expected_version)
            self._check_edge(order, OrderStatus.CANCELLED, actor)

            now = now or self.clock.now()
            elapsed = (now - order.created_at).total_seconds()
            penalty = compute_cancellation_penalty(order.total_amount, elapsed, self.config)
            refund = round(max(order.total_amount - penalty, 0.0), 2)

            message = STATUS_MESSAGES[OrderStatus.CANCELLED]
            if reason:
                message = f"{message}: {reason}"

            updated = replace(
                order,
                status=OrderStatus.CANCELLED,
                status_changed_at=now,
                version=order.version + 1,
                cancellation_penalty=penalty,
                refund_amount=refund,
                cancellation_reason=reason,
                cancelled_by=actor,
                cancelled_at=now,
                timeline=order.timeline + [
                    StatusChange(
                        status=OrderStatus.CANCELLED,
                        timestamp=now,
                        actor_role=actor,
                        message=message,
                    )
                ],
            )
            saved = await self.store.update(updated, expected_version=order.version)
            self._release_if_terminal(saved)

        logger.info(
            f"Order {order_id} cancelled by {actor.value} after {elapsed:.0f}s "
            f"(penalty={penalty:.2f}, refund={refund:.2f})"
        )
        event = self._publish(saved, from_status=order.status, actor_role=actor)
        result = CancellationResult(
            order=saved,
            penalty_amount=penalty,
            refund_amount=refund,
            is_free=elapsed <= self.config.free_cancellation_window_seconds,
            elapsed_seconds=elapsed,
        )
        return result, event

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = self._locks[order_id] = asyncio.Lock()
        return lock

    def _release_if_terminal(self, order: Order) -> None:
        # Terminal orders reject every write, so their lock is no longer needed.
        if order.is_terminal:
            self._locks.pop(order.id, None)

    @staticmethod
    def _check_version(order: Order, expected_version: Optional[int]) -> None:
        if expected_version is not None and order.version != expected_version:
            raise ConcurrentModificationError(
                f"Order {order.id} is at version {order.version}, "
                f"expected {expected_version}",
                details={"order_id": order.id, "current_version": order.version},
            )

    @staticmethod
    def _check_edge(order: Order, target: OrderStatus, actor: ActorRole) -> None:
        if order.is_terminal:
            raise AlreadyTerminalError(
                f"Order {order.id} is already {order.status.value}",
                details={"order_id": order.id, "status": order.status.value},
            )

        allowed_roles = ALLOWED_TRANSITIONS.get((order.status, target))
        if allowed_roles is None:
            raise InvalidTransitionError(
                f"Cannot move order {order.id} from {order.status.value} to {target.value}",
                details={
                    "order_id": order.id,
                    "from_status": order.status.value,
                    "to_status": target.value,
                },
            )
        if actor not in allowed_roles:
            raise UnauthorizedActorError(
                f"{actor.value} may not move order {order.id} "
                f"from {order.status.value} to {target.value}",
                details={
                    "order_id": order.id,
                    "actor_role": actor.value,
                    "allowed_roles": sorted(r.value for r in allowed_roles),
                },
            )

    def _publish(
        self,
        order: Order,
        from_status: Optional[OrderStatus],
        actor_role: Optional[ActorRole],
    ) -> OrderEvent:
        event = OrderEvent(
            order_id=order.id,
            from_status=from_status,
            to_status=order.status,
            timestamp=order.timeline[-1].timestamp if order.timeline else order.status_changed_at,
            actor_role=actor_role,
            customer_id=order.customer_id,
            chef_id=order.chef_id,
            delivery_person_id=order.delivery_person_id,
            total_amount=order.total_amount,
            penalty_amount=order.cancellation_penalty,
        )
        self.dispatcher.publish(event)
        return event
