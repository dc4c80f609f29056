"""
Stripe Settlement Gateway

Settles tips through the Stripe SDK whenever ENV_MODE is staging or
production.

Each tip becomes a confirmed PaymentIntent on the customer's saved payment
method, routed to the recipient's connected account. The tip id is the
idempotency key, so repeated settle() calls for one tip never charge twice.

Configuration:
    - STRIPE_SECRET_KEY (required)
    - STRIPE_WEBHOOK_SECRET (without it, webhook signatures go unchecked)
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

import stripe

from homechef.core.config import get_settings
from homechef.services.payment.base import (
    BasePaymentService,
    SettlementNotice,
    SettlementResult,
)

logger = logging.getLogger(__name__)

# PaymentIntent statuses that are still undecided
_UNDECIDED_STATUSES = {"processing", "requires_action", "requires_confirmation", "requires_capture"}

# Settlement metadata keys that become PaymentIntent parameters
PAYOUT_KEYS = ("customer", "payment_method", "destination")


class StripePaymentService(BasePaymentService):
    """
    Production Stripe payment service implementation.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Optionally uses STRIPE_WEBHOOK_SECRET for webhook verification.

    The ledger resolves `customer`, `payment_method` (the payer's saved
    card) and `destination` (the recipient's connected account) through a
    payout account resolver and passes them in the settlement metadata.
    They become PaymentIntent parameters, not Stripe metadata.
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = "2023-10-16"  # Pin API version for stability

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(
            f"StripePaymentService initialized "
            f"(api_version={stripe.api_version})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "stripe"

    def _convert_to_minor_units(self, amount: float) -> int:
        """
        Convert an amount to the smallest currency unit (paise, cents).

        Args:
            amount: Amount in major units (e.g., 49.50)

        Returns:
            int: Amount in minor units (e.g., 4950)
        """
        return int(round(amount * 100))

    def _convert_from_minor_units(self, value: int) -> float:
        return value / 100.0

    def _result_from_intent(self, intent, elapsed_ms: float = 0.0) -> SettlementResult:
        amount = self._convert_from_minor_units(intent.amount)
        if intent.status == "succeeded":
            return SettlementResult.completed(
                intent.id,
                amount=amount,
                currency=intent.currency,
                response_time_ms=elapsed_ms,
                metadata={"status": intent.status},
            )
        if intent.status in _UNDECIDED_STATUSES:
            return SettlementResult.processing(
                amount=amount,
                currency=intent.currency,
                response_time_ms=elapsed_ms,
                metadata={"status": intent.status, "payment_intent": intent.id},
            )

        last_error = getattr(intent, "last_payment_error", None)
        return SettlementResult.failed(
            getattr(last_error, "message", None) or f"Payment {intent.status}",
            error_code=getattr(last_error, "code", None) or intent.status,
            amount=amount,
            currency=intent.currency,
            response_time_ms=elapsed_ms,
        )

    async def settle(
        self,
        tip_id: str,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> SettlementResult:
        """
        Settle a tip through Stripe.

        Declines and missing payout details come back as FAILED; network
        trouble comes back as PROCESSING because the charge may or may not
        have happened.
        """
        start_time = datetime.now()
        metadata = dict(metadata or {})
        currency = currency or self._currency
        accounts = {key: metadata.pop(key, None) for key in PAYOUT_KEYS}

        logger.info(f"Stripe: Settling tip {tip_id} of {amount:.2f} {currency.upper()}")

        if amount <= 0:
            return SettlementResult.failed(
                "Amount must be greater than 0",
                error_code="invalid_amount",
            )

        missing = [key for key in PAYOUT_KEYS if not accounts[key]]
        if missing:
            logger.error(f"Stripe: Tip {tip_id} has no {', '.join(missing)}; not charged")
            return SettlementResult.failed(
                f"Missing payout details: {', '.join(missing)}",
                error_code="missing_payout_account",
            )

        params = {
            "amount": self._convert_to_minor_units(amount),
            "currency": currency,
            "description": f"Tip {tip_id}",
            "confirm": True,
            "off_session": True,
            "customer": accounts["customer"],
            "payment_method": accounts["payment_method"],
            "transfer_data": {"destination": accounts["destination"]},
            "metadata": {
                "tip_id": tip_id,
                "source": "homechef_tips",
                **{k: str(v) for k, v in metadata.items() if v is not None},
            },
        }

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                idempotency_key=f"tip-{tip_id}",
                **params,
            )
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

            logger.info(
                f"Stripe: PaymentIntent {intent.id} for tip {tip_id} - "
                f"status={intent.status}"
            )
            return self._result_from_intent(intent, elapsed_ms)

        except stripe.CardError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.warning(f"Stripe: Card declined - {e.code}: {e.user_message}")

            return SettlementResult.failed(
                e.user_message or "Card declined",
                error_code=e.code,
                response_time_ms=elapsed_ms,
            )

        except stripe.InvalidRequestError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Invalid request - {e}")

            return SettlementResult.failed(
                str(e),
                error_code="invalid_request",
                response_time_ms=elapsed_ms,
            )

        except stripe.AuthenticationError as e:
            logger.critical(f"Stripe: Authentication failed - {e}")

            return SettlementResult.failed(
                "Payment service configuration error",
                error_code="authentication_error",
            )

        except stripe.APIConnectionError as e:
            # Outcome unknown; reconciliation will ask Stripe later.
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Connection error - {e}")

            return SettlementResult.processing(
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=elapsed_ms,
            )

        except stripe.StripeError as e:
            elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000
            logger.error(f"Stripe: Error - {e}")

            return SettlementResult.processing(
                error_message="Payment processing error",
                error_code="stripe_error",
                response_time_ms=elapsed_ms,
            )

    async def lookup_settlement(self, tip_id: str) -> Optional[SettlementResult]:
        """Find the PaymentIntent created for a tip and report its status."""
        try:
            found = await asyncio.to_thread(
                stripe.PaymentIntent.search,
                query=f"metadata['tip_id']:'{tip_id}'",
                limit=1,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe: Lookup for tip {tip_id} failed - {e}")
            return None

        if not found.data:
            return None
        return self._result_from_intent(found.data[0])

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a Stripe webhook event.

        SECURITY: Always verify webhook signatures in production
        to prevent spoofed events.
        """
        if not self._webhook_secret:
            logger.warning(
                "Stripe: Webhook secret not configured, skipping verification"
            )
            try:
                event = json.loads(payload)
            except ValueError:
                return None
            return event if isinstance(event, dict) else None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )

            logger.debug(f"Stripe: Webhook verified - {event['type']}")
            return event

        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None

        except ValueError as e:
            logger.error(f"Stripe: Webhook payload invalid - {e}")
            return None

    def parse_settlement_event(self, event: dict) -> Optional[SettlementNotice]:
        """Map payment_intent.succeeded / payment_failed to a settlement notice."""
        event_type = event.get("type")
        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            return None

        intent = event.get("data", {}).get("object", {})
        tip_id = (intent.get("metadata") or {}).get("tip_id")
        if not tip_id:
            return None

        amount = self._convert_from_minor_units(intent.get("amount", 0))
        if event_type == "payment_intent.succeeded":
            result = SettlementResult.completed(
                intent.get("id"),
                amount=amount,
                currency=intent.get("currency", self._currency),
            )
        else:
            last_error = intent.get("last_payment_error") or {}
            result = SettlementResult.failed(
                last_error.get("message") or "Payment failed",
                error_code=last_error.get("code") or "payment_failed",
                amount=amount,
                currency=intent.get("currency", self._currency),
            )
        return SettlementNotice(tip_id=tip_id, result=result)

    async def health_check(self) -> bool:
        """
        Verify Stripe API connectivity.

        Makes a lightweight API call to verify credentials and connectivity.
        """
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            logger.debug("Stripe: Health check passed")
            return True

        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
