"""
Simulated Settlement Gateway

Stands in for Stripe when ENV_MODE=development, so the whole tipping flow
(pending, then completed or failed) runs offline.

Behavior:
    - Sleeps a random latency between min_latency and max_latency
    - Declines a configurable share of tips with realistic reasons
    - Hands out txn_mock_xxx references
    - Remembers every outcome: settling a tip again replays the first verdict,
      and lookup_settlement() answers from the same record
"""

import asyncio
import json
import logging
import random
import uuid
from datetime import datetime
from typing import Optional

from homechef.services.payment.base import (
    BasePaymentService,
    SettlementNotice,
    SettlementOutcome,
    SettlementResult,
)

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Offline gateway with seeded, reproducible declines.

    Attributes:
        failure_rate: Probability of simulated settlement failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> gateway = MockPaymentService(failure_rate=0.0, min_latency=0, max_latency=0)
        >>> result = await gateway.settle("TIP-1", 50.0)
        >>> result.reference[:9]
        'txn_mock_'
    """

    # Decline messages modelled on Stripe card errors
    DECLINE_REASONS = [
        ("account_closed", "The recipient's bank account is closed."),
        ("insufficient_funds", "The payer's account has insufficient funds."),
        ("invalid_account", "The recipient's account details are invalid."),
        ("processing_error", "An error occurred while processing the transfer."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.2,
        max_latency: float = 0.8,
        currency: str = "inr",
        seed: Optional[int] = None,
    ):
        """
        Configure the simulator.

        Args:
            failure_rate: Probability of settlement failure (default: 10%)
            min_latency: Shortest simulated round trip (seconds)
            max_latency: Longest simulated round trip (seconds)
            currency: Default currency
            seed: Seed for the random generator (reproducible demos)
        """
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.currency = currency
        self._random = random.Random(seed)
        self._settlements: dict[str, SettlementResult] = {}

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def _generate_reference(self) -> str:
        """Generate a gateway-like transaction reference."""
        return f"txn_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> float:
        """
        Sleep for a random round-trip time.

        Returns:
            float: Actual latency in milliseconds
        """
        latency = self._random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000  # Convert to milliseconds

    def _should_fail(self) -> bool:
        """Determine if this request should simulate a failure."""
        return self._random.random() < self.failure_rate

    async def settle(
        self,
        tip_id: str,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> SettlementResult:
        """
        Simulate settling a tip.

        Behavior:
            - Validates amount is positive
            - Replays the earlier result for an already settled tip
            - Simulates network latency
            - Randomly fails based on failure_rate
        """
        currency = currency or self.currency

        if tip_id in self._settlements:
            logger.debug(f"Mock: Replaying settlement for tip {tip_id}")
            return self._settlements[tip_id]

        logger.debug(f"Mock: Settling tip {tip_id} of {amount:.2f} {currency.upper()}")

        if amount <= 0:
            return SettlementResult.failed(
                "Amount must be greater than 0",
                error_code="invalid_amount",
                currency=currency,
            )

        latency_ms = await self._simulate_latency()

        if self._should_fail():
            error_code, error_message = self._random.choice(self.DECLINE_REASONS)
            logger.debug(f"Mock: Settlement declined - {error_code}")
            result = SettlementResult.failed(
                error_message,
                error_code=error_code,
                amount=amount,
                currency=currency,
                response_time_ms=latency_ms,
            )
        else:
            reference = self._generate_reference()
            logger.info(f"Mock: Settlement successful - {reference} - {amount:.2f}")
            result = SettlementResult.completed(
                reference,
                amount=amount,
                currency=currency,
                response_time_ms=latency_ms,
                metadata={
                    "tip_id": tip_id,
                    "settled_at": datetime.now().isoformat(),
                    "mock": True,
                    **(metadata or {}),
                },
            )

        self._settlements[tip_id] = result
        return result

    async def lookup_settlement(self, tip_id: str) -> Optional[SettlementResult]:
        """Return the recorded outcome of an earlier settle() call."""
        return self._settlements.get(tip_id)

    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Parse a simulated webhook body.

        There is no signature to check offline, so any JSON object is accepted.
        """
        try:
            event = json.loads(payload)
        except ValueError:
            logger.warning("Mock: Invalid webhook payload")
            return None
        if not isinstance(event, dict):
            logger.warning(f"Mock: Webhook payload is a {type(event).__name__}, not an object")
            return None
        return event

    def parse_settlement_event(self, event: dict) -> Optional[SettlementNotice]:
        """
        Mock webhook events look like:
            {"tip_id": "...", "outcome": "completed", "reference": "..."}
        """
        tip_id = event.get("tip_id")
        if not tip_id:
            return None
        try:
            outcome = SettlementOutcome(event.get("outcome", ""))
        except ValueError:
            logger.warning(f"Mock: Unknown settlement outcome in event for tip {tip_id}")
            return None
        if outcome == SettlementOutcome.COMPLETED and not event.get("reference"):
            logger.warning(f"Mock: Completed event for tip {tip_id} has no reference")
            return None

        return SettlementNotice(
            tip_id=tip_id,
            result=SettlementResult(
                outcome=outcome,
                reference=event.get("reference"),
                amount=event.get("amount"),
                currency=event.get("currency", self.currency),
                error_message=event.get("error_message"),
                error_code=event.get("error_code"),
            ),
        )

    async def health_check(self) -> bool:
        """
        The simulator has no upstream, so it is always reachable.
        """
        logger.debug("Mock: Health check passed")
        return True
