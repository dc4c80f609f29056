"""
Settlement Gateway Factory

The ledger asks this module for "the" payment gateway and never learns
whether tips are settled by the local simulator or by Stripe.

Usage:
    from homechef.services.payment import get_payment_service

    gateway = get_payment_service()
    result = await gateway.settle("TIP-3F2A91C07B1D", 50.0)

Gateway per ENV_MODE:
    - development → MockPaymentService (simulated latency and declines)
    - staging     → StripePaymentService with test keys
    - production  → StripePaymentService with live keys
"""

import logging
from functools import lru_cache
from typing import Optional

from homechef.core.config import get_settings
from homechef.services.payment.accounts import (
    BasePayoutAccountResolver,
    InMemoryPayoutAccountResolver,
    PayoutAccounts,
    SqlPayoutAccountResolver,
)
from homechef.services.payment.base import (
    BasePaymentService,
    SettlementNotice,
    SettlementOutcome,
    SettlementResult,
)
from homechef.services.payment.mock import MockPaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Return the process-wide settlement gateway.

    Cached so the webhook endpoint and the ledger talk to the same client.

    Raises:
        ValueError: Stripe selected but STRIPE_SECRET_KEY missing
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Settlement gateway: MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=0.10,
            min_latency=0.2,
            max_latency=0.8,
            currency=settings.stripe_currency,
        )

    from homechef.services.payment.stripe import StripePaymentService

    logger.info(f"Settlement gateway: StripePaymentService ({settings.env_mode.value} mode)")
    return StripePaymentService()


@lru_cache()
def get_payout_account_resolver() -> Optional[BasePayoutAccountResolver]:
    """
    Return where Stripe customers, saved cards and connected accounts are read.

    The simulator charges nobody, so development runs without a resolver.
    """
    settings = get_settings()

    if settings.is_development:
        return None

    from homechef.database import get_session_maker

    logger.info("Payout accounts: SqlPayoutAccountResolver")
    return SqlPayoutAccountResolver(get_session_maker())


def reset_payment_service() -> None:
    """Forget the cached gateway so the next call rebuilds it from settings."""
    get_payment_service.cache_clear()
    get_payout_account_resolver.cache_clear()
    logger.debug("Settlement gateway cache cleared")


__all__ = [
    "get_payment_service",
    "get_payout_account_resolver",
    "reset_payment_service",
    "BasePayoutAccountResolver",
    "InMemoryPayoutAccountResolver",
    "PayoutAccounts",
    "SqlPayoutAccountResolver",
    "BasePaymentService",
    "SettlementNotice",
    "SettlementOutcome",
    "SettlementResult",
    "MockPaymentService",
]
