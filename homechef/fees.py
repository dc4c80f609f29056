"""
Platform Fee Calculator

Derives platform commission, payment-processing fee and GST from an order's
value. Everything here is a pure function of its inputs: no clock, no store,
no logging side effects.

Example:
    >>> breakdown = compute_fees(200, FeeConfig())
    >>> breakdown.commission, breakdown.tax, breakdown.net_payout
    (30.0, 6.3, 158.7)
"""

from dataclasses import dataclass
from enum import Enum

from homechef.exceptions import InvalidConfigError


class FeeCalculationMethod(str, Enum):
    """Base the chef commission is charged on."""
    ORDER_VALUE = "order_value"
    CHEF_EARNINGS = "chef_earnings"


@dataclass(frozen=True)
class FeeConfig:
    """
    Read-only platform configuration for fees and cancellation policy.

    Attributes:
        chef_commission_rate: Platform commission rate
        payment_processing_fee: Payment processing rate on the order total
        gst_rate: GST applied to commission plus processing fee
        minimum_order_for_fee: Orders below this value pay no commission
        fee_calculation_method: Commission base (order value or chef earnings)
        free_cancellation_window_seconds: Grace period after placement
        cancellation_penalty_rate: Share of the total kept after the window
        min_cancellation_penalty: Lower clamp for the penalty
        max_cancellation_penalty: Upper clamp for the penalty
    """
    chef_commission_rate: float = 0.15
    payment_processing_fee: float = 0.025
    gst_rate: float = 0.18
    minimum_order_for_fee: float = 100.0
    fee_calculation_method: FeeCalculationMethod = FeeCalculationMethod.ORDER_VALUE
    free_cancellation_window_seconds: int = 30
    cancellation_penalty_rate: float = 0.40
    min_cancellation_penalty: float = 20.0
    max_cancellation_penalty: float = 500.0

    def __post_init__(self):
        validate_fee_config(self)


@dataclass(frozen=True)
class FeeBreakdown:
    """Fees derived from an order total. Never persisted."""
    order_total: float
    commission: float
    payment_processing_fee: float
    tax: float
    net_payout: float
    method: FeeCalculationMethod

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "order_total": self.order_total,
            "commission": self.commission,
            "payment_processing_fee": self.payment_processing_fee,
            "tax": self.tax,
            "net_payout": self.net_payout,
            "method": self.method.value,
        }


def validate_fee_config(config: FeeConfig) -> None:
    """
    Reject configurations the core cannot enforce.

    Raises:
        InvalidConfigError: Negative rate or amount, unknown method,
            or a minimum penalty above the maximum
    """
    rates = {
        "chef_commission_rate": config.chef_commission_rate,
        "payment_processing_fee": config.payment_processing_fee,
        "gst_rate": config.gst_rate,
        "cancellation_penalty_rate": config.cancellation_penalty_rate,
        "minimum_order_for_fee": config.minimum_order_for_fee,
        "free_cancellation_window_seconds": config.free_cancellation_window_seconds,
        "min_cancellation_penalty": config.min_cancellation_penalty,
        "max_cancellation_penalty": config.max_cancellation_penalty,
    }
    negative = sorted(name for name, value in rates.items() if value < 0)
    if negative:
        raise InvalidConfigError(
            f"Negative values are not allowed: {', '.join(negative)}",
            details={"fields": negative},
        )

    try:
        FeeCalculationMethod(config.fee_calculation_method)
    except ValueError:
        raise InvalidConfigError(
            f"Unknown fee calculation method: {config.fee_calculation_method}"
        )

    if config.min_cancellation_penalty > config.max_cancellation_penalty:
        raise InvalidConfigError(
            "min_cancellation_penalty cannot exceed max_cancellation_penalty"
        )


def compute_fees(order_total: float, config: FeeConfig) -> FeeBreakdown:
    """
    Compute the platform fee breakdown for an order total.

    Args:
        order_total: Order value (sum of line items)
        config: Platform fee configuration

    Returns:
        FeeBreakdown with every amount rounded to 2 decimals

    Raises:
        InvalidConfigError: If order_total is negative or the config is invalid
    """
    validate_fee_config(config)
    if order_total < 0:
        raise InvalidConfigError(
            f"Order total cannot be negative: {order_total}",
            details={"order_total": order_total},
        )

    method = FeeCalculationMethod(config.fee_calculation_method)
    processing_fee = order_total * config.payment_processing_fee

    if order_total < config.minimum_order_for_fee:
        commission = 0.0
    elif method == FeeCalculationMethod.CHEF_EARNINGS:
        # Chef earnings before commission: what is left after processing.
        commission = (order_total - processing_fee) * config.chef_commission_rate
    else:
        commission = order_total * config.chef_commission_rate

    commission = round(commission, 2)
    processing_fee = round(processing_fee, 2)
    tax = round((commission + processing_fee) * config.gst_rate, 2)
    net_payout = round(order_total - commission - processing_fee - tax, 2)

    return FeeBreakdown(
        order_total=round(float(order_total), 2),
        commission=commission,
        payment_processing_fee=processing_fee,
        tax=tax,
        net_payout=net_payout,
        method=method,
    )


def compute_cancellation_penalty(
    order_total: float,
    elapsed_seconds: float,
    config: FeeConfig,
) -> float:
    """
    Penalty owed for cancelling an order `elapsed_seconds` after placement.

    Free up to and including the end of the window; afterwards the penalty
    rate applied to the total, clamped to [min, max].
    """
    if elapsed_seconds <= config.free_cancellation_window_seconds:
        return 0.0

    penalty = order_total * config.cancellation_penalty_rate
    penalty = min(
        max(penalty, config.min_cancellation_penalty),
        config.max_cancellation_penalty,
    )
    return round(penalty, 2)
