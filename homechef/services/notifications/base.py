"""
Notifier Abstract Base Class

Defines the interface of the services that subscribe to core events and
turn them into customer, chef and delivery-partner notifications.
Supports both Mock (development) and Celery-backed (production) implementations.

Version: 4.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from homechef.domain import OrderStatus, TipStatus
from homechef.events import CoreEvent, OrderEvent


@dataclass
class NotificationResult:
    """Result from handing an event to a notifier."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


# Titles and messages shown to the person the event concerns
ORDER_NOTIFICATIONS = {
    OrderStatus.PENDING: ("New Order Received", "You have received a new order!"),
    OrderStatus.ACCEPTED: ("Order Accepted", "Your order has been accepted by the chef"),
    OrderStatus.PREPARING: ("Order Update", "Your order is being prepared"),
    OrderStatus.READY: ("Order Update", "Your order is ready for pickup"),
    OrderStatus.OUT_FOR_DELIVERY: ("Order On The Way!", "Your order has been picked up and is on its way to you!"),
    OrderStatus.DELIVERED: ("Order Delivered", "Your order has been delivered! Enjoy your meal!"),
    OrderStatus.CANCELLED: ("Order Cancelled", "Order has been cancelled"),
}

TIP_NOTIFICATIONS = {
    TipStatus.PENDING: ("Tip Sent", "Your tip is being processed"),
    TipStatus.COMPLETED: ("You Received a Tip!", "A customer sent you a tip. Thank you for the great service!"),
    TipStatus.FAILED: ("Tip Failed", "Your tip could not be processed"),
}


def describe_event(event: CoreEvent) -> tuple[str, str]:
    """Return the (title, message) pair for an event."""
    if isinstance(event, OrderEvent):
        if event.from_status is not None and event.from_status == event.to_status:
            return ("Delivery Partner Assigned", "A delivery partner has been assigned to your order")
        return ORDER_NOTIFICATIONS[event.to_status]
    return TIP_NOTIFICATIONS[event.status]


class BaseNotifier(ABC):
    """Abstract base class for notifier services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def notify(self, event: CoreEvent) -> NotificationResult:
        """Deliver one core event."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
