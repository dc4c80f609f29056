"""
FastAPI Application Entry Point

HomeChef Order & Ledger Core - Hybrid Architecture
Supports both Mock services (development) and Real APIs (production).

Endpoints:
    - POST /api/orders: Create an order (checkout)
    - GET  /api/orders, /api/orders/{id}: Read orders
    - POST /api/orders/{id}/transitions: Chef / delivery status updates
    - POST /api/orders/{id}/delivery-person: Assign a delivery partner
    - POST /api/orders/{id}/cancel: Cancel with penalty
    - GET  /api/orders/{id}/cancellation-quote: Preview the penalty
    - POST /api/tips, GET /api/tips/{id}: Tip a chef or delivery partner
    - GET  /api/users/{id}/tips/...: Earnings views, analytics and history
    - GET  /api/users/{id}/rewards, POST .../rewards/redeem: Loyalty tokens
    - GET  /api/fees: Platform fee preview
    - POST /webhook/settlement: Payment gateway callback
    - GET  /health: System health check

Version: 4.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from homechef.core.clock import SystemClock
from homechef.core.config import get_settings, setup_logging
from homechef.events import EventDispatcher
from homechef.exceptions import (
    ConcurrentModificationError,
    InvalidConfigError,
    InvalidOrderError,
    InvalidRewardError,
    InvalidTipError,
    InvalidTransitionError,
    OrderCoreError,
    OrderNotFoundError,
    TipNotFoundError,
    UnauthorizedActorError,
)
from homechef.fees import compute_fees
from homechef.ledger import LedgerEngine
from homechef.orders import OrderStateMachine
from homechef.rewards import RewardsLedger
from homechef.schemas import (
    AssignDeliveryRequest,
    CancellationQuoteResponse,
    CancellationResponse,
    CancelRequest,
    ErrorResponse,
    FeeBreakdownResponse,
    HealthResponse,
    OrderCreate,
    OrderListResponse,
    OrderResponse,
    RewardRedeemRequest,
    RewardSummaryResponse,
    RewardTransactionResponse,
    SettlementWebhookResponse,
    TipAnalyticsResponse,
    TipCreate,
    TipHistoryResponse,
    TipListResponse,
    TipResponse,
    TipTotalResponse,
    TransitionRequest,
    TransitionResponse,
)
from homechef.services.notifications import BaseNotifier, get_notifier
from homechef.services.payment import get_payment_service, get_payout_account_resolver
from homechef.stores import get_order_store, get_reward_store, get_tip_store

settings = get_settings()
logger = logging.getLogger(__name__)

# Most specific class wins (looked up along the exception's MRO)
ERROR_STATUS_CODES: dict[type, int] = {
    InvalidOrderError: 400,
    InvalidTipError: 400,
    InvalidRewardError: 400,
    UnauthorizedActorError: 403,
    OrderNotFoundError: 404,
    TipNotFoundError: 404,
    InvalidTransitionError: 409,
    ConcurrentModificationError: 409,
    InvalidConfigError: 500,
}


def status_code_for(exc: OrderCoreError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Wire the core on startup, drain background work on shutdown.

    Components handed to create_app() are used as-is; the rest come from
    the environment-mode factories.
    """
    setup_logging()

    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    owns_database = False
    state = app.state

    if state.state_machine is None or state.ledger is None:
        # Fatal on a bad fee / cancellation policy
        fee_config = settings.fee_config()

        if settings.use_real_services:
            missing = settings.validate_production_config()
            if missing:
                logger.warning(f"Missing production config: {missing}")

        order_store = get_order_store()
        tip_store = get_tip_store()
        if order_store.backend_name == "sql":
            from homechef.database import init_db

            await init_db()
            owns_database = True
            logger.info("Database initialized")

        dispatcher = EventDispatcher()
        clock = SystemClock()
        state.state_machine = OrderStateMachine(order_store, fee_config, dispatcher, clock)
        state.ledger = LedgerEngine(
            tip_store,
            order_store,
            get_payment_service(),
            dispatcher=dispatcher,
            clock=clock,
            settlement_timeout=settings.settlement_timeout_seconds,
            currency=settings.stripe_currency,
            account_resolver=get_payout_account_resolver(),
        )
        if settings.rewards_enabled and state.rewards is None:
            state.rewards = RewardsLedger(
                get_reward_store(),
                clock=clock,
                spend_per_token=settings.reward_spend_per_token,
                multiplier=settings.reward_token_multiplier,
            )

    if state.notifier is None:
        state.notifier = get_notifier()
    dispatcher = state.state_machine.dispatcher
    unsubscribers = [dispatcher.subscribe(state.notifier.notify)]
    if state.rewards is not None:
        unsubscribers.append(dispatcher.subscribe(state.rewards.on_event))

    logger.info(f"Order store: {state.state_machine.store.backend_name}")
    logger.info(f"Payment Service: {state.ledger.payment_service.provider_name}")
    logger.info(f"Notifier: {state.notifier.provider_name}")
    logger.info(f"Rewards: {'enabled' if state.rewards is not None else 'disabled'}")
    logger.info("Application ready!")

    yield

    logger.info("Shutting down...")
    await state.ledger.wait_for_settlements()
    await dispatcher.drain()
    for unsubscribe in unsubscribers:
        unsubscribe()

    if owns_database:
        from homechef.database import get_engine

        await get_engine().dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

def create_app(
    state_machine: Optional[OrderStateMachine] = None,
    ledger: Optional[LedgerEngine] = None,
    notifier: Optional[BaseNotifier] = None,
    rewards: Optional[RewardsLedger] = None,
) -> FastAPI:
    """
    Build the API application.

    The state machine and the ledger should share one EventDispatcher so
    the notifier sees both order and tip events.
    """
    application = FastAPI(
        title=settings.app_name,
        description=(
            "Order state machine, tip ledger and platform fee calculator "
            "for the HomeChef apps."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    application.state.state_machine = state_machine
    application.state.ledger = ledger
    application.state.notifier = notifier
    application.state.rewards = rewards

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.add_exception_handler(OrderCoreError, order_core_exception_handler)
    application.add_exception_handler(Exception, global_exception_handler)
    return application


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_state_machine(request: Request) -> OrderStateMachine:
    return request.app.state.state_machine


def get_ledger(request: Request) -> LedgerEngine:
    return request.app.state.ledger


def get_app_notifier(request: Request) -> BaseNotifier:
    return request.app.state.notifier


def get_rewards(request: Request) -> Optional[RewardsLedger]:
    return request.app.state.rewards


# =============================================================================
# ROUTES
# =============================================================================

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@router.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    machine: OrderStateMachine = Depends(get_state_machine),
    ledger: LedgerEngine = Depends(get_ledger),
    notifier: BaseNotifier = Depends(get_app_notifier),
) -> HealthResponse:
    """Verify all system components are operational."""

    async def check_component(name: str, check) -> str:
        try:
            return "healthy" if await check() else "unhealthy"
        except Exception as e:
            logger.error(f"{name} health check failed: {e}")
            return f"unhealthy: {e}"

    statuses = {
        "order_store": await check_component("Order store", machine.store.health_check),
        "tip_store": await check_component("Tip store", ledger.tip_store.health_check),
        "payment_service": await check_component("Payment service", ledger.payment_service.health_check),
        "notifier": await check_component("Notifier", notifier.health_check),
    }
    overall = "operational" if all(s == "healthy" for s in statuses.values()) else "degraded"

    return HealthResponse(
        status=overall,
        environment=settings.env_mode.value,
        timestamp=datetime.now(),
        **statuses,
    )


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------

@router.post(
    "/api/orders",
    response_model=OrderResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> OrderResponse:
    """Create a new order in `pending` from the checkout cart."""
    logger.info(f"Creating order for customer {order_data.customer_id}")
    order = await machine.create(
        items=[item.model_dump() for item in order_data.items],
        chef_id=order_data.chef_id,
        customer_id=order_data.customer_id,
        delivery_address=order_data.delivery_address,
    )
    return OrderResponse.model_validate(order)


@router.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    customer_id: Optional[str] = Query(None),
    chef_id: Optional[str] = Query(None),
    delivery_person_id: Optional[str] = Query(None),
    machine: OrderStateMachine = Depends(get_state_machine),
) -> OrderListResponse:
    """Orders of a customer, chef or delivery partner, newest first."""
    orders = await machine.store.list(
        customer_id=customer_id,
        chef_id=chef_id,
        delivery_person_id=delivery_person_id,
    )
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.model_validate(order) for order in orders],
    )


@router.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.model_validate(await machine.get(order_id))


@router.post(
    "/api/orders/{order_id}/transitions",
    response_model=TransitionResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Change Order Status",
)
async def transition_order(
    order_id: str,
    body: TransitionRequest,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> TransitionResponse:
    result = await machine.transition(
        order_id,
        body.target_status,
        body.actor_role,
        expected_version=body.expected_version,
    )
    return TransitionResponse(
        order=OrderResponse.model_validate(result.order),
        event=result.event.to_dict(),
    )


@router.post(
    "/api/orders/{order_id}/delivery-person",
    response_model=OrderResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Assign Delivery Partner",
)
async def assign_delivery_person(
    order_id: str,
    body: AssignDeliveryRequest,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> OrderResponse:
    order = await machine.assign_delivery_person(
        order_id,
        body.delivery_person_id,
        expected_version=body.expected_version,
    )
    return OrderResponse.model_validate(order)


@router.post(
    "/api/orders/{order_id}/cancel",
    response_model=CancellationResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Cancel Order",
)
async def cancel_order(
    order_id: str,
    body: CancelRequest,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> CancellationResponse:
    """Cancel an order; a penalty applies once the free window has passed."""
    result = await machine.cancel(
        order_id,
        body.actor_role,
        reason=body.reason,
        expected_version=body.expected_version,
    )
    return CancellationResponse.model_validate(result)


@router.get(
    "/api/orders/{order_id}/cancellation-quote",
    response_model=CancellationQuoteResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def cancellation_quote(
    order_id: str,
    machine: OrderStateMachine = Depends(get_state_machine),
) -> CancellationQuoteResponse:
    return CancellationQuoteResponse.model_validate(await machine.cancellation_quote(order_id))


@router.get(
    "/api/orders/{order_id}/tips",
    response_model=list[TipResponse],
    tags=["Tips"],
)
async def order_tips(
    order_id: str,
    ledger: LedgerEngine = Depends(get_ledger),
) -> list[TipResponse]:
    return [TipResponse.model_validate(tip) for tip in await ledger.tips_for_order(order_id)]


# -----------------------------------------------------------------------------
# Tips
# -----------------------------------------------------------------------------

@router.post(
    "/api/tips",
    response_model=TipResponse,
    status_code=202,
    responses=ERROR_RESPONSES,
    tags=["Tips"],
    summary="Send Tip",
)
async def send_tip(
    body: TipCreate,
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipResponse:
    """Record a tip; settlement continues in the background."""
    tip = await ledger.send_tip(
        from_user_id=body.from_user_id,
        recipient_id=body.recipient_id,
        recipient_type=body.recipient_type,
        amount=body.amount,
        message=body.message,
        order_id=body.order_id,
    )
    return TipResponse.model_validate(tip)


@router.get(
    "/api/tips/{tip_id}",
    response_model=TipResponse,
    responses=ERROR_RESPONSES,
    tags=["Tips"],
)
async def get_tip(
    tip_id: str,
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipResponse:
    return TipResponse.model_validate(await ledger.get_tip(tip_id))


@router.get(
    "/api/users/{user_id}/tips/received",
    response_model=TipListResponse,
    tags=["Tips"],
)
async def tips_received(
    user_id: str,
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipListResponse:
    tips = await ledger.get_tips_received(user_id)
    return TipListResponse(
        user_id=user_id,
        total=len(tips),
        tips=[TipResponse.model_validate(tip) for tip in tips],
    )


@router.get(
    "/api/users/{user_id}/tips/sent",
    response_model=TipListResponse,
    tags=["Tips"],
)
async def tips_sent(
    user_id: str,
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipListResponse:
    tips = await ledger.get_tips_sent(user_id)
    return TipListResponse(
        user_id=user_id,
        total=len(tips),
        tips=[TipResponse.model_validate(tip) for tip in tips],
    )


@router.get(
    "/api/users/{user_id}/tips/total",
    response_model=TipTotalResponse,
    responses=ERROR_RESPONSES,
    tags=["Tips"],
)
async def tips_total(
    user_id: str,
    period: Optional[str] = Query(None, examples=["today", "week", "month"]),
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipTotalResponse:
    total = await ledger.get_total_tips_received(user_id, period=period)
    return TipTotalResponse(user_id=user_id, period=period, total=total)


@router.get(
    "/api/users/{user_id}/tips/analytics",
    response_model=TipAnalyticsResponse,
    responses=ERROR_RESPONSES,
    tags=["Tips"],
    summary="Tip Analytics",
)
async def tips_analytics(
    user_id: str,
    period: Optional[str] = Query(None, examples=["today", "week", "month", "year"]),
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipAnalyticsResponse:
    """Count, total, average and top tippers of completed tips received."""
    analytics = await ledger.get_tip_analytics(user_id, period=period)
    return TipAnalyticsResponse.model_validate(analytics)


@router.get(
    "/api/users/{user_id}/tips/history",
    response_model=TipHistoryResponse,
    responses=ERROR_RESPONSES,
    tags=["Tips"],
    summary="Tip History",
)
async def tips_history(
    user_id: str,
    direction: Optional[str] = Query(None, alias="type", examples=["sent", "received"]),
    recipient_type: Optional[str] = Query(None, examples=["chef", "delivery"]),
    page: int = Query(1),
    limit: int = Query(20),
    ledger: LedgerEngine = Depends(get_ledger),
) -> TipHistoryResponse:
    """Sent and received tips of every status, newest first."""
    history = await ledger.get_tip_history(
        user_id,
        direction=direction,
        recipient_type=recipient_type,
        page=page,
        limit=limit,
    )
    return TipHistoryResponse(
        user_id=user_id,
        total=history.total,
        page=history.page,
        limit=history.limit,
        has_more=history.has_more,
        tips=[TipResponse.model_validate(tip) for tip in history.tips],
    )


# -----------------------------------------------------------------------------
# Rewards
# -----------------------------------------------------------------------------

def rewards_disabled() -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"success": False, "error": "rewards_disabled", "detail": "Rewards are not enabled"},
    )


@router.get(
    "/api/users/{user_id}/rewards",
    response_model=RewardSummaryResponse,
    responses=ERROR_RESPONSES,
    tags=["Rewards"],
)
async def rewards_summary(
    user_id: str,
    rewards: Optional[RewardsLedger] = Depends(get_rewards),
) -> Any:
    if rewards is None:
        return rewards_disabled()

    balance = await rewards.balance(user_id)
    return RewardSummaryResponse(
        user_id=user_id,
        total_tokens=balance.total_tokens,
        lifetime_earned=balance.lifetime_earned,
        lifetime_redeemed=balance.lifetime_redeemed,
        discount_available=rewards.discount_for_tokens(balance.total_tokens),
        transactions=[
            RewardTransactionResponse.model_validate(entry)
            for entry in await rewards.history(user_id)
        ],
    )


@router.post(
    "/api/users/{user_id}/rewards/redeem",
    response_model=RewardTransactionResponse,
    responses=ERROR_RESPONSES,
    tags=["Rewards"],
    summary="Redeem Tokens",
)
async def redeem_rewards(
    user_id: str,
    body: RewardRedeemRequest,
    rewards: Optional[RewardsLedger] = Depends(get_rewards),
) -> Any:
    if rewards is None:
        return rewards_disabled()

    entry = await rewards.redeem(user_id, body.tokens, body.description)
    return RewardTransactionResponse.model_validate(entry)


# -----------------------------------------------------------------------------
# Fees
# -----------------------------------------------------------------------------

@router.get(
    "/api/fees",
    response_model=FeeBreakdownResponse,
    tags=["Fees"],
    summary="Fee Preview",
)
async def fee_preview(
    order_total: float = Query(..., ge=0),
    machine: OrderStateMachine = Depends(get_state_machine),
) -> FeeBreakdownResponse:
    return FeeBreakdownResponse.model_validate(compute_fees(order_total, machine.config))


# -----------------------------------------------------------------------------
# Payment gateway webhook
# -----------------------------------------------------------------------------

@router.post(
    "/webhook/settlement",
    response_model=SettlementWebhookResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Webhooks"],
    summary="Tip Settlement Callback",
)
async def settlement_webhook(
    request: Request,
    ledger: LedgerEngine = Depends(get_ledger),
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
) -> Any:
    """
    Receive settlement outcomes from the payment gateway.

    Configure this URL in the gateway dashboard:
        https://your-domain.com/webhook/settlement
    """
    body = await request.body()
    payment_service = ledger.payment_service

    event = await payment_service.verify_webhook(body, stripe_signature)
    if event is None:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "invalid_webhook", "detail": "Invalid webhook payload"},
        )

    notice = payment_service.parse_settlement_event(event)
    if notice is None:
        logger.debug("Settlement webhook ignored: not a tip settlement event")
        return SettlementWebhookResponse()

    tip = await ledger.on_settlement(notice.tip_id, notice.result)
    logger.info(f"Settlement webhook for tip {tip.id}: {tip.status.value}")
    return SettlementWebhookResponse(tip_id=tip.id, status=tip.status)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

async def order_core_exception_handler(request: Request, exc: OrderCoreError) -> JSONResponse:
    """Map core errors to HTTP status codes."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    return JSONResponse(
        status_code=status_code,
        content={"success": False, **exc.to_dict()},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


app = create_app()
