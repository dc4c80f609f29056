"""
Notification Dispatch Interface

The core emits a typed event for every successful mutation:
    - OrderEvent: order created or moved to a new status
    - TipEvent: tip created or settled

Subscribers (notifiers) receive events fire-and-forget. A failing subscriber
is logged and never affects the mutation that produced the event; retry
policy belongs to the subscriber.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Union

from homechef.domain import ActorRole, OrderStatus, RecipientType, TipStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    """An order was created (from_status is None) or changed status."""
    order_id: str
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    timestamp: datetime
    actor_role: Optional[ActorRole] = None
    customer_id: Optional[str] = None
    chef_id: Optional[str] = None
    delivery_person_id: Optional[str] = None
    total_amount: Optional[float] = None
    penalty_amount: Optional[float] = None

    @property
    def kind(self) -> str:
        return "order"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "order_id": self.order_id,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "timestamp": self.timestamp.isoformat(),
            "actor_role": self.actor_role.value if self.actor_role else None,
            "customer_id": self.customer_id,
            "chef_id": self.chef_id,
            "delivery_person_id": self.delivery_person_id,
            "total_amount": self.total_amount,
            "penalty_amount": self.penalty_amount,
        }


@dataclass(frozen=True)
class TipEvent:
    """A tip was created (pending) or settled (completed / failed)."""
    tip_id: str
    status: TipStatus
    order_id: Optional[str] = None
    from_user_id: Optional[str] = None
    recipient_id: Optional[str] = None
    recipient_type: Optional[RecipientType] = None
    amount: Optional[float] = None
    timestamp: Optional[datetime] = None

    @property
    def kind(self) -> str:
        return "tip"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "kind": self.kind,
            "tip_id": self.tip_id,
            "status": self.status.value,
            "order_id": self.order_id,
            "from_user_id": self.from_user_id,
            "recipient_id": self.recipient_id,
            "recipient_type": self.recipient_type.value if self.recipient_type else None,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


CoreEvent = Union[OrderEvent, TipEvent]
Subscriber = Callable[[CoreEvent], Any]


class EventDispatcher:
    """
    Fan-out of core events to subscribers.

    Synchronous subscribers run inline; coroutine subscribers are scheduled
    on the running loop. Either way, publish() returns immediately and never
    raises because of a subscriber.

    Example:
        >>> dispatcher = EventDispatcher()
        >>> received = []
        >>> dispatcher.subscribe(received.append)
        >>> dispatcher.publish(event)
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self._in_flight: set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: CoreEvent) -> None:
        """Deliver an event to every subscriber, at most once each."""
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
            except Exception:
                logger.exception(
                    f"Subscriber {subscriber!r} failed on {event.kind} event"
                )
                continue

            if inspect.isawaitable(result):
                self._schedule(subscriber, event, result)

    def _schedule(self, subscriber: Subscriber, event: CoreEvent, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(
                f"No running event loop; dropping async delivery of {event.kind} "
                f"event to {subscriber!r}"
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(self._guard(subscriber, event, awaitable))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _guard(self, subscriber: Subscriber, event: CoreEvent, awaitable) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(
                f"Async subscriber {subscriber!r} failed on {event.kind} event"
            )

    async def drain(self) -> None:
        """Wait for every scheduled async delivery to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
