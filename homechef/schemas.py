"""
Pydantic Schemas for Request/Response Validation

Request bodies carry raw strings for statuses and roles so the core decides
what is valid and the HTTP layer reports its error codes unchanged.

Version: 4.0.0
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from homechef.domain import (
    ActorRole,
    OrderStatus,
    RecipientType,
    RewardKind,
    TipPeriod,
    TipStatus,
)
from homechef.fees import FeeCalculationMethod


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class LineItemCreate(BaseModel):
    """Single item in an order, priced at checkout."""
    menu_item_id: str = Field(..., min_length=1, examples=["menu_101"])
    quantity: int = Field(..., examples=[2])
    price: float = Field(..., examples=[120.0])
    name: Optional[str] = Field(None, max_length=100, examples=["Paneer Butter Masala"])


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    customer_id: str = Field(..., min_length=1, examples=["cust_42"])
    chef_id: str = Field(..., min_length=1, examples=["chef_7"])
    delivery_address: str = Field(..., max_length=255, examples=["12 MG Road, Pune"])
    items: List[LineItemCreate]


class TransitionRequest(BaseModel):
    """Move an order to another status."""
    target_status: str = Field(..., examples=["accepted"])
    actor_role: str = Field(..., examples=["chef"])
    expected_version: Optional[int] = Field(None, ge=1)


class CancelRequest(BaseModel):
    """Cancel an order."""
    actor_role: str = Field(..., examples=["customer"])
    reason: Optional[str] = Field(None, max_length=500)
    expected_version: Optional[int] = Field(None, ge=1)


class AssignDeliveryRequest(BaseModel):
    """Attach a delivery partner to an order."""
    delivery_person_id: str = Field(..., min_length=1, examples=["dp_3"])
    expected_version: Optional[int] = Field(None, ge=1)


class TipCreate(BaseModel):
    """Request schema for tipping the chef or delivery partner of an order."""
    from_user_id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    recipient_type: str = Field(..., examples=["chef", "delivery"])
    amount: float = Field(..., examples=[50.0])
    message: str = Field(default="", max_length=500)
    order_id: str = Field(..., min_length=1)


class RewardRedeemRequest(BaseModel):
    """Spend loyalty tokens for a checkout discount."""
    tokens: int = Field(..., examples=[100])
    description: str = Field(default="", max_length=200)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class LineItemResponse(BaseModel):
    menu_item_id: str
    name: Optional[str]
    quantity: int
    price: float

    class Config:
        from_attributes = True


class StatusChangeResponse(BaseModel):
    status: OrderStatus
    timestamp: datetime
    actor_role: Optional[ActorRole]
    message: str

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    customer_id: str
    chef_id: str
    delivery_person_id: Optional[str]
    items: List[LineItemResponse]
    total_amount: float
    delivery_address: str
    status: OrderStatus
    version: int
    created_at: datetime
    status_changed_at: datetime
    timeline: List[StatusChangeResponse]
    cancellation_penalty: Optional[float]
    refund_amount: Optional[float]
    cancellation_reason: Optional[str]
    cancelled_by: Optional[ActorRole]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class TransitionResponse(BaseModel):
    """Updated order plus the event sent to notifiers."""
    order: OrderResponse
    event: dict[str, Any]


class CancellationResponse(BaseModel):
    """Response after cancelling an order."""
    order: OrderResponse
    penalty_amount: float
    refund_amount: float
    is_free: bool
    elapsed_seconds: float

    class Config:
        from_attributes = True


class CancellationQuoteResponse(BaseModel):
    """What cancelling would cost right now."""
    order_id: str
    can_cancel: bool
    is_free: bool
    seconds_since_placed: float
    free_window_seconds: int
    penalty_amount: float
    refund_amount: float

    class Config:
        from_attributes = True


class TipResponse(BaseModel):
    """Response schema for a tip transaction."""
    id: str
    from_user_id: str
    recipient_id: str
    recipient_type: RecipientType
    amount: float
    message: str
    order_id: str
    created_at: datetime
    status: TipStatus
    external_reference: Optional[str]
    settled_at: Optional[datetime]
    failure_reason: Optional[str]

    class Config:
        from_attributes = True


class TipListResponse(BaseModel):
    user_id: str
    total: int
    tips: List[TipResponse]


class TipTotalResponse(BaseModel):
    user_id: str
    period: Optional[str]
    total: float


class TopTipperResponse(BaseModel):
    from_user_id: str
    total_tips: float
    tip_count: int

    class Config:
        from_attributes = True


class TipAnalyticsResponse(BaseModel):
    """Completed tips received over a period."""
    user_id: str
    period: Optional[TipPeriod]
    total_tips: float
    tip_count: int
    average_tip: float
    top_tippers: List[TopTipperResponse]

    class Config:
        from_attributes = True


class TipHistoryResponse(BaseModel):
    """One page of sent and received tips, newest first."""
    user_id: str
    total: int
    page: int
    limit: int
    has_more: bool
    tips: List[TipResponse]


class RewardTransactionResponse(BaseModel):
    id: str
    kind: RewardKind
    tokens: int
    description: str
    order_id: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RewardSummaryResponse(BaseModel):
    """Token balance with every movement, newest first."""
    user_id: str
    total_tokens: int
    lifetime_earned: int
    lifetime_redeemed: int
    discount_available: int
    transactions: List[RewardTransactionResponse]


class FeeBreakdownResponse(BaseModel):
    """Platform fees for an order value."""
    order_total: float
    commission: float
    payment_processing_fee: float
    tax: float
    net_payout: float
    method: FeeCalculationMethod

    class Config:
        from_attributes = True


class SettlementWebhookResponse(BaseModel):
    received: bool = True
    tip_id: Optional[str] = None
    status: Optional[TipStatus] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None
    context: Optional[dict[str, Any]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    environment: str
    order_store: str
    tip_store: str
    payment_service: str
    notifier: str
    timestamp: datetime
