"""
SQLAlchemy Database Models

Tables backing the SQL stores:
- orders: order header, status, version stamp, cancellation details
- order_items: line items priced at order time
- order_status_history: the order timeline
- tip_transactions: append-only tip ledger
- payout_accounts: Stripe customer, payment method and connected account per user
- reward_balances / reward_transactions: loyalty token ledger

Version: 4.0.0
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from homechef.database import Base
from homechef.domain import ActorRole, OrderStatus, RecipientType, RewardKind, TipStatus


class OrderRecord(Base):
    """
    Main Order table.

    Tracks the complete lifecycle from placement to delivery or cancellation.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)

    # =========================================================================
    # PARTICIPANTS
    # =========================================================================
    customer_id = Column(String(64), nullable=False, index=True)
    chef_id = Column(String(64), nullable=False, index=True)
    delivery_person_id = Column(String(64), nullable=True, index=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    delivery_address = Column(String(255), nullable=False)
    total_amount = Column(Float, nullable=False)

    # =========================================================================
    # ORDER STATUS
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )
    version = Column(Integer, nullable=False, default=1)

    # =========================================================================
    # CANCELLATION
    # =========================================================================
    cancellation_penalty = Column(Float, nullable=True)
    refund_amount = Column(Float, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_by = Column(Enum(ActorRole), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False)
    status_changed_at = Column(DateTime(timezone=True), nullable=False)

    items = relationship(
        "OrderItemRecord",
        order_by="OrderItemRecord.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    history = relationship(
        "OrderStatusHistoryRecord",
        order_by="OrderStatusHistoryRecord.sequence",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Order {self.id} - {self.status.value} - v{self.version}>"


class OrderItemRecord(Base):
    """Line item priced at order time."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    menu_item_id = Column(String(64), nullable=False)
    name = Column(String(100), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)


class OrderStatusHistoryRecord(Base):
    """One timeline entry per status change."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(Enum(OrderStatus), nullable=False)
    actor_role = Column(Enum(ActorRole), nullable=True)
    message = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False)


class TipTransactionRecord(Base):
    """
    Append-only tip ledger.

    Rows are inserted as pending and updated exactly once on settlement.
    """
    __tablename__ = "tip_transactions"

    id = Column(String(36), primary_key=True)
    from_user_id = Column(String(64), nullable=False, index=True)
    recipient_id = Column(String(64), nullable=False, index=True)
    recipient_type = Column(Enum(RecipientType), nullable=False)
    amount = Column(Float, nullable=False)
    message = Column(Text, nullable=False, default="")
    order_id = Column(String(36), nullable=False, index=True)
    status = Column(
        Enum(TipStatus),
        default=TipStatus.PENDING,
        nullable=False,
        index=True
    )
    external_reference = Column(String(100), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Tip {self.id} - {self.amount} - {self.status.value}>"


# At most one pending or completed tip per recipient type on an order, enforced
# across every process writing to the table.
Index(
    "uq_tip_transactions_order_recipient_active",
    TipTransactionRecord.order_id,
    TipTransactionRecord.recipient_type,
    unique=True,
    postgresql_where=text("status <> 'FAILED'"),
    sqlite_where=text("status <> 'FAILED'"),
)


class PayoutAccountRecord(Base):
    """Stripe identifiers of a user: as a payer, as a tip recipient, or both."""
    __tablename__ = "payout_accounts"

    user_id = Column(String(64), primary_key=True)
    stripe_customer_id = Column(String(64), nullable=True)
    default_payment_method = Column(String(64), nullable=True)
    connected_account_id = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class RewardBalanceRecord(Base):
    """Running token balance; decremented only by a conditional UPDATE."""
    __tablename__ = "reward_balances"

    user_id = Column(String(64), primary_key=True)
    tokens = Column(Integer, nullable=False, default=0)
    lifetime_earned = Column(Integer, nullable=False, default=0)
    lifetime_redeemed = Column(Integer, nullable=False, default=0)


class RewardTransactionRecord(Base):
    """Append-only token movements. One earn per customer and order."""
    __tablename__ = "reward_transactions"
    __table_args__ = (
        UniqueConstraint("user_id", "order_id", "kind", name="uq_reward_transactions_order_kind"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    kind = Column(Enum(RewardKind), nullable=False)
    tokens = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="")
    order_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
