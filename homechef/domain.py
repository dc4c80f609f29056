"""
Domain Entities

Plain dataclasses shared by the state machine, the ledger, the stores and the
HTTP layer. Only the core services mutate them; stores hand out copies.

Version: 4.0.0
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class ActorRole(str, enum.Enum):
    """Who is asking for a transition."""
    CUSTOMER = "customer"
    CHEF = "chef"
    DELIVERY = "delivery"


class RecipientType(str, enum.Enum):
    """Who a tip is for."""
    CHEF = "chef"
    DELIVERY = "delivery"


class TipStatus(str, enum.Enum):
    """Tip settlement lifecycle."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TipPeriod(str, enum.Enum):
    """Aggregation windows for tip totals."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class HistoryDirection(str, enum.Enum):
    """Which side of a tip the history is about."""
    SENT = "sent"
    RECEIVED = "received"


class RewardKind(str, enum.Enum):
    """Loyalty token movement."""
    EARNED = "earned"
    REDEEMED = "redeemed"


@dataclass(frozen=True)
class LineItem:
    """A menu item as it was priced when the order was placed."""
    menu_item_id: str
    quantity: int
    price: float
    name: Optional[str] = None

    @property
    def line_total(self) -> float:
        return round(self.quantity * self.price, 2)


@dataclass(frozen=True)
class StatusChange:
    """One entry of an order's timeline."""
    status: OrderStatus
    timestamp: datetime
    actor_role: Optional[ActorRole] = None
    message: str = ""


@dataclass
class Order:
    """
    Customer order tracked from placement to delivery or cancellation.

    `version` is the optimistic-concurrency stamp; every successful write
    increments it by one.
    """
    id: str
    customer_id: str
    chef_id: str
    items: list[LineItem]
    total_amount: float
    delivery_address: str
    status: OrderStatus
    created_at: datetime
    status_changed_at: datetime
    delivery_person_id: Optional[str] = None
    version: int = 1
    timeline: list[StatusChange] = field(default_factory=list)

    # Cancellation details
    cancellation_penalty: Optional[float] = None
    refund_amount: Optional[float] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[ActorRole] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "chef_id": self.chef_id,
            "delivery_person_id": self.delivery_person_id,
            "items": [
                {
                    "menu_item_id": item.menu_item_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": item.price,
                }
                for item in self.items
            ],
            "total_amount": self.total_amount,
            "delivery_address": self.delivery_address,
            "status": self.status.value,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "status_changed_at": self.status_changed_at.isoformat(),
            "cancellation_penalty": self.cancellation_penalty,
            "refund_amount": self.refund_amount,
            "cancellation_reason": self.cancellation_reason,
        }


@dataclass
class TipTransaction:
    """
    Tip from a customer to the chef or delivery person of an order.

    `external_reference` is only ever set on completed tips.
    """
    id: str
    from_user_id: str
    recipient_id: str
    recipient_type: RecipientType
    amount: float
    message: str
    order_id: str
    created_at: datetime
    status: TipStatus = TipStatus.PENDING
    external_reference: Optional[str] = None
    settled_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "from_user_id": self.from_user_id,
            "recipient_id": self.recipient_id,
            "recipient_type": self.recipient_type.value,
            "amount": self.amount,
            "message": self.message,
            "order_id": self.order_id,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "external_reference": self.external_reference,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class CancellationResult:
    """Outcome of a successful cancellation."""
    order: Order
    penalty_amount: float
    refund_amount: float
    is_free: bool
    elapsed_seconds: float


@dataclass(frozen=True)
class CancellationQuote:
    """What cancelling the order would cost right now."""
    order_id: str
    can_cancel: bool
    is_free: bool
    seconds_since_placed: float
    free_window_seconds: int
    penalty_amount: float
    refund_amount: float


@dataclass(frozen=True)
class TopTipper:
    """A customer ranked by how much they tipped one recipient."""
    from_user_id: str
    total_tips: float
    tip_count: int


@dataclass(frozen=True)
class TipAnalytics:
    """Completed tips received by a user over a period."""
    user_id: str
    period: Optional[TipPeriod]
    total_tips: float
    tip_count: int
    average_tip: float
    top_tippers: list[TopTipper] = field(default_factory=list)


@dataclass(frozen=True)
class TipHistoryPage:
    """One page of a user's tips, newest first, any status."""
    tips: list[TipTransaction]
    total: int
    page: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.page * self.limit < self.total


@dataclass(frozen=True)
class RewardTransaction:
    """Tokens earned on an order or redeemed for a discount."""
    id: str
    user_id: str
    kind: RewardKind
    tokens: int
    description: str
    created_at: datetime
    order_id: Optional[str] = None


@dataclass(frozen=True)
class RewardBalance:
    user_id: str
    total_tokens: int = 0
    lifetime_earned: int = 0
    lifetime_redeemed: int = 0
