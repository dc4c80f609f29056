"""
Order & Ledger Core Errors

Every error raised by the core derives from OrderCoreError and carries a
stable machine-readable code. The HTTP layer maps them to status codes;
callers inside the process can catch the precise subclass.
"""

from typing import Optional


class OrderCoreError(Exception):
    """Base class for all errors raised by the order and ledger core."""

    code = "order_core_error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "detail": self.message,
            **({"context": self.details} if self.details else {}),
        }


class InvalidConfigError(OrderCoreError):
    """Platform configuration is invalid. Fatal at startup."""

    code = "invalid_config"


class InvalidOrderError(OrderCoreError):
    """Malformed order creation input."""

    code = "invalid_order"


class OrderNotFoundError(OrderCoreError):
    """No order exists with the requested id."""

    code = "order_not_found"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", details={"order_id": order_id})
        self.order_id = order_id


class InvalidTransitionError(OrderCoreError):
    """The requested status edge is not in the transition table."""

    code = "invalid_transition"


class AlreadyTerminalError(InvalidTransitionError):
    """
    The order is already delivered or cancelled.

    Subclasses InvalidTransitionError because no edge leaves a terminal
    state; retrying clients may treat it as a no-op success.
    """

    code = "already_terminal"


class UnauthorizedActorError(OrderCoreError):
    """The actor role may not perform the requested edge."""

    code = "unauthorized_actor"


class ConcurrentModificationError(OrderCoreError):
    """The order changed between the caller's read and this write."""

    code = "concurrent_modification"


class InvalidTipError(OrderCoreError):
    """Tip request failed validation."""

    code = "invalid_tip"


class TipNotFoundError(OrderCoreError):
    """No tip transaction exists with the requested id."""

    code = "tip_not_found"

    def __init__(self, tip_id: str):
        super().__init__(f"Tip {tip_id} not found", details={"tip_id": tip_id})
        self.tip_id = tip_id


class InvalidRewardError(OrderCoreError):
    """Token redemption or earn request failed validation."""

    code = "invalid_reward"
