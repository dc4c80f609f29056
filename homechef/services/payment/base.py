"""
Payment Service Abstract Base Class

Defines the contract between the tip ledger and the payment gateway.
Both MockPaymentService and StripePaymentService implement these methods,
so the ledger behaves identically regardless of which gateway is active.

Design Pattern: Strategy Pattern
    - Allows runtime switching between payment providers
    - New providers can be added without modifying the ledger
    - Facilitates testing with scripted implementations

Settlement contract:
    - settle() never raises for declines; it returns a SettlementResult
    - PROCESSING means the gateway accepted the request but has not decided
      yet; the final outcome arrives through the webhook or lookup_settlement()
    - settle() must be idempotent per tip id (at-least-once callers)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SettlementOutcome(str, Enum):
    """Gateway verdict for a tip settlement."""
    COMPLETED = "completed"
    FAILED = "failed"
    PROCESSING = "processing"


@dataclass
class SettlementResult:
    """
    Standardized result from settling a tip.

    Attributes:
        outcome: completed / failed / processing
        reference: Gateway transaction id (only meaningful when completed)
        amount: Amount settled
        currency: Currency code (e.g., "inr")
        error_message: Error description if settlement failed
        error_code: Machine-readable error code
        response_time_ms: Time taken by the gateway call
        metadata: Additional data from the payment provider
    """
    outcome: SettlementOutcome
    reference: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "inr"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: Optional[dict] = None

    @property
    def success(self) -> bool:
        return self.outcome == SettlementOutcome.COMPLETED

    @property
    def is_final(self) -> bool:
        return self.outcome != SettlementOutcome.PROCESSING

    @classmethod
    def completed(cls, reference: str, **kwargs) -> "SettlementResult":
        return cls(outcome=SettlementOutcome.COMPLETED, reference=reference, **kwargs)

    @classmethod
    def failed(cls, error_message: str, error_code: Optional[str] = None, **kwargs) -> "SettlementResult":
        return cls(
            outcome=SettlementOutcome.FAILED,
            error_message=error_message,
            error_code=error_code,
            **kwargs,
        )

    @classmethod
    def processing(cls, **kwargs) -> "SettlementResult":
        return cls(outcome=SettlementOutcome.PROCESSING, **kwargs)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "reference": self.reference,
            "amount": self.amount,
            "currency": self.currency,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
            "metadata": self.metadata,
        }


@dataclass
class SettlementNotice:
    """A gateway callback resolved to the tip it concerns."""
    tip_id: str
    result: SettlementResult


class BasePaymentService(ABC):
    """
    Abstract base class for payment services.

    Example:
        >>> service = get_payment_service()  # Returns Mock or Stripe
        >>> result = await service.settle("tip_123", amount=50.0)
        >>> if result.success:
        ...     print(f"Reference: {result.reference}")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the payment provider.

        Returns:
            str: Provider name (e.g., "mock", "stripe")
        """
        pass

    @abstractmethod
    async def settle(
        self,
        tip_id: str,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> SettlementResult:
        """
        Transfer a tip to its recipient.

        Args:
            tip_id: Ledger id, also used as the idempotency key
            amount: Amount in major currency units (e.g., 50.0)
            currency: Three-letter currency code
            metadata: Additional key-value data to attach

        Returns:
            SettlementResult: Standardized result object
        """
        pass

    @abstractmethod
    async def lookup_settlement(self, tip_id: str) -> Optional[SettlementResult]:
        """
        Ask the gateway what happened to an earlier settle() call.

        Never starts a new charge. Returns None when the gateway has no
        record of the tip.
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> Optional[dict]:
        """
        Verify and parse a webhook from the payment provider.

        Returns:
            dict: Parsed webhook event if valid, None if invalid
        """
        pass

    @abstractmethod
    def parse_settlement_event(self, event: dict) -> Optional[SettlementNotice]:
        """
        Turn a verified webhook event into a settlement notice.

        Returns None for event types that do not concern tip settlement.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the payment service.

        Returns:
            bool: True if service is reachable and operational
        """
        pass
