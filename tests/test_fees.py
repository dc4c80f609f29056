"""
Tests for the platform fee calculator and the cancellation penalty helper.

All expected values are hand-calculated from the default platform
configuration (15% commission, 2.5% processing, 18% GST, minimum order 100).
"""

import pytest

from homechef.exceptions import InvalidConfigError
from homechef.fees import (
    FeeCalculationMethod,
    FeeConfig,
    compute_cancellation_penalty,
    compute_fees,
)


def test_order_value_breakdown_for_200():
    """
    Scenario:
      - Order total 200, default config

    Expected:
      - commission 30, processing 5, tax (30 + 5) * 0.18 = 6.3
      - net payout 200 - 30 - 5 - 6.3 = 158.7
    """
    breakdown = compute_fees(200, FeeConfig())

    assert breakdown.commission == pytest.approx(30.0)
    assert breakdown.payment_processing_fee == pytest.approx(5.0)
    assert breakdown.tax == pytest.approx(6.3)
    assert breakdown.net_payout == pytest.approx(158.7)
    assert breakdown.method == FeeCalculationMethod.ORDER_VALUE


def test_no_commission_below_minimum_order():
    breakdown = compute_fees(99.99, FeeConfig())

    assert breakdown.commission == 0.0
    # Processing fee and its GST still apply
    assert breakdown.payment_processing_fee == pytest.approx(2.5)
    assert breakdown.tax == pytest.approx(0.45)
    assert breakdown.net_payout == pytest.approx(97.04)


def test_high_rate_ignored_below_minimum_order():
    breakdown = compute_fees(50, FeeConfig(chef_commission_rate=0.9))

    assert breakdown.commission == 0.0
    assert breakdown.payment_processing_fee == pytest.approx(1.25)


def test_commission_charged_at_exactly_the_minimum():
    breakdown = compute_fees(100, FeeConfig())
    assert breakdown.commission == pytest.approx(15.0)


def test_chef_earnings_method_charges_commission_after_processing():
    """
    Scenario:
      - Order total 200 with chef_earnings method

    Expected:
      - processing 5, commission (200 - 5) * 0.15 = 29.25
    """
    config = FeeConfig(fee_calculation_method=FeeCalculationMethod.CHEF_EARNINGS)
    breakdown = compute_fees(200, config)

    assert breakdown.payment_processing_fee == pytest.approx(5.0)
    assert breakdown.commission == pytest.approx(29.25)
    assert breakdown.tax == pytest.approx(6.17, abs=0.01)
    assert breakdown.net_payout == pytest.approx(
        200 - breakdown.commission - breakdown.payment_processing_fee - breakdown.tax
    )


def test_zero_total_is_all_zero():
    breakdown = compute_fees(0, FeeConfig())
    assert breakdown.to_dict() == {
        "order_total": 0.0,
        "commission": 0.0,
        "payment_processing_fee": 0.0,
        "tax": 0.0,
        "net_payout": 0.0,
        "method": "order_value",
    }


def test_negative_total_rejected():
    with pytest.raises(InvalidConfigError):
        compute_fees(-1, FeeConfig())


@pytest.mark.parametrize("field", [
    "chef_commission_rate",
    "payment_processing_fee",
    "gst_rate",
    "cancellation_penalty_rate",
])
def test_negative_rates_rejected_at_construction(field):
    with pytest.raises(InvalidConfigError) as exc_info:
        FeeConfig(**{field: -0.01})
    assert field in exc_info.value.details["fields"]


def test_unknown_method_rejected():
    with pytest.raises(InvalidConfigError):
        FeeConfig(fee_calculation_method="per_item")


def test_min_penalty_above_max_rejected():
    with pytest.raises(InvalidConfigError):
        FeeConfig(min_cancellation_penalty=600, max_cancellation_penalty=500)


# =============================================================================
# CANCELLATION PENALTY
# =============================================================================

def test_penalty_free_up_to_and_including_the_window():
    config = FeeConfig()
    assert compute_cancellation_penalty(200, 0, config) == 0.0
    assert compute_cancellation_penalty(200, 30, config) == 0.0


def test_penalty_after_the_window():
    # 200 * 0.40 = 80, inside [20, 500]
    assert compute_cancellation_penalty(200, 31, FeeConfig()) == pytest.approx(80.0)


def test_penalty_clamped_to_minimum_and_maximum():
    config = FeeConfig()
    # 30 * 0.40 = 12 → raised to 20
    assert compute_cancellation_penalty(30, 60, config) == pytest.approx(20.0)
    # 2000 * 0.40 = 800 → capped at 500
    assert compute_cancellation_penalty(2000, 60, config) == pytest.approx(500.0)


def test_penalty_rounded_to_two_decimals():
    assert compute_cancellation_penalty(123.456, 45, FeeConfig()) == 49.38
