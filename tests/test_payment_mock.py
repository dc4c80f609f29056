"""
Tests for the mock payment gateway used in development mode.
"""

import asyncio
import json

import pytest

from homechef.services.payment import MockPaymentService, SettlementOutcome


def instant(**kwargs):
    return MockPaymentService(min_latency=0, max_latency=0, **kwargs)


def test_settle_success():
    service = instant(failure_rate=0.0)

    result = asyncio.run(service.settle("TIP-1", 50.0))

    assert result.success
    assert result.outcome == SettlementOutcome.COMPLETED
    assert result.reference.startswith("txn_mock_")
    assert result.amount == pytest.approx(50.0)
    assert result.currency == "inr"


def test_settle_failure_uses_decline_reason():
    service = instant(failure_rate=1.0)

    result = asyncio.run(service.settle("TIP-1", 50.0))

    assert not result.success
    assert result.is_final
    assert result.reference is None
    assert (result.error_code, result.error_message) in MockPaymentService.DECLINE_REASONS


def test_settle_rejects_non_positive_amount():
    result = asyncio.run(instant(failure_rate=0.0).settle("TIP-1", 0))

    assert result.error_code == "invalid_amount"


def test_settle_replays_result_for_same_tip():
    """Settling one tip twice never produces a second charge."""
    service = instant(failure_rate=0.5, seed=7)

    async def scenario():
        first = await service.settle("TIP-1", 50.0)
        second = await service.settle("TIP-1", 50.0)
        return first, second, await service.lookup_settlement("TIP-1")

    first, second, looked_up = asyncio.run(scenario())

    assert second is first
    assert looked_up is first


def test_seed_makes_outcomes_reproducible():
    async def outcomes(seed):
        service = instant(failure_rate=0.5, seed=seed)
        return [(await service.settle(f"TIP-{i}", 10.0)).outcome for i in range(20)]

    assert asyncio.run(outcomes(3)) == asyncio.run(outcomes(3))


def test_lookup_unknown_tip():
    assert asyncio.run(instant().lookup_settlement("TIP-404")) is None


def test_webhook_parsing():
    service = instant()
    payload = json.dumps({"tip_id": "TIP-1", "outcome": "completed", "reference": "txn_9"}).encode()

    event = asyncio.run(service.verify_webhook(payload, None))
    notice = service.parse_settlement_event(event)

    assert notice.tip_id == "TIP-1"
    assert notice.result.success
    assert notice.result.reference == "txn_9"

    assert asyncio.run(service.verify_webhook(b"not json", None)) is None
    assert service.parse_settlement_event({"type": "ping"}) is None
    assert service.parse_settlement_event({"tip_id": "TIP-1", "outcome": "refunded"}) is None


@pytest.mark.parametrize("payload", [
    b"{\"tip_id\": \"\xc3\x28\"}",
    b"[1, 2, 3]",
    b"42",
    b'"completed"',
])
def test_webhook_rejects_non_object_payloads(payload):
    assert asyncio.run(instant().verify_webhook(payload, None)) is None


def test_completed_event_without_reference_is_ignored():
    service = instant()

    assert service.parse_settlement_event({"tip_id": "TIP-1", "outcome": "completed"}) is None
    failed = service.parse_settlement_event({"tip_id": "TIP-1", "outcome": "failed"})
    assert failed.result.outcome == SettlementOutcome.FAILED
