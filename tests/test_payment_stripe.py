"""
Tests for the Stripe settlement gateway.

The Stripe SDK is never reached: stripe.PaymentIntent.create is replaced by
a recorder so the PaymentIntent parameters can be checked.
"""

import asyncio
from types import SimpleNamespace

import pytest
import stripe

from conftest import deliver_order
from homechef.core.config import get_settings
from homechef.domain import RecipientType, TipStatus
from homechef.exceptions import InvalidTipError
from homechef.ledger import LedgerEngine
from homechef.services.payment import InMemoryPayoutAccountResolver
from homechef.services.payment.stripe import StripePaymentService


class RecordedIntents:
    """Stands in for stripe.PaymentIntent.create."""

    def __init__(self, status="succeeded", last_payment_error=None):
        self.status = status
        self.last_payment_error = last_payment_error
        self.calls: list[dict] = []

    def create(self, **params):
        self.calls.append(params)
        return SimpleNamespace(
            id=f"pi_test_{len(self.calls)}",
            status=self.status,
            amount=params["amount"],
            currency=params["currency"],
            last_payment_error=self.last_payment_error,
        )


@pytest.fixture
def stripe_service(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_homechef")
    get_settings.cache_clear()
    service = StripePaymentService()
    service._webhook_secret = None
    yield service
    get_settings.cache_clear()


@pytest.fixture
def intents(monkeypatch):
    recorder = RecordedIntents()
    monkeypatch.setattr(stripe.PaymentIntent, "create", recorder.create)
    return recorder


@pytest.fixture
def accounts():
    resolver = InMemoryPayoutAccountResolver()
    asyncio.run(resolver.save_payer("cust_1", "cus_123", "pm_card_visa"))
    asyncio.run(resolver.save_recipient("chef_1", "acct_chef_1"))
    return resolver


@pytest.fixture
def stripe_ledger(tip_store, order_store, stripe_service, accounts, dispatcher, clock):
    return LedgerEngine(
        tip_store,
        order_store,
        stripe_service,
        dispatcher=dispatcher,
        clock=clock,
        settlement_timeout=1.0,
        account_resolver=accounts,
    )


def test_tip_charges_saved_card_into_connected_account(machine, stripe_ledger, intents):
    async def scenario():
        order = await deliver_order(machine)
        tip = await stripe_ledger.send_tip("cust_1", "chef_1", RecipientType.CHEF, 50.0, "Thanks", order.id)
        await stripe_ledger.wait_for_settlements()
        return order, await stripe_ledger.get_tip(tip.id)

    order, tip = asyncio.run(scenario())

    assert len(intents.calls) == 1
    params = intents.calls[0]
    assert params["amount"] == 5000
    assert params["currency"] == "inr"
    assert params["customer"] == "cus_123"
    assert params["payment_method"] == "pm_card_visa"
    assert params["transfer_data"] == {"destination": "acct_chef_1"}
    assert params["confirm"] is True
    assert params["off_session"] is True
    assert params["idempotency_key"] == f"tip-{tip.id}"

    assert params["metadata"]["tip_id"] == tip.id
    assert params["metadata"]["order_id"] == order.id
    for key in ("customer", "payment_method", "destination"):
        assert key not in params["metadata"]

    assert tip.status == TipStatus.COMPLETED
    assert tip.external_reference == "pi_test_1"


def test_tip_without_recipient_account_is_rejected(machine, stripe_ledger, tip_store, intents):
    async def scenario():
        order = await deliver_order(machine)
        await stripe_ledger.send_tip("cust_1", "dp_1", RecipientType.DELIVERY, 20.0, "", order.id)

    with pytest.raises(InvalidTipError) as exc:
        asyncio.run(scenario())

    assert exc.value.details["missing"] == ["destination"]
    assert tip_store._tips == {}
    assert intents.calls == []


def test_settle_without_payout_details_never_calls_stripe(stripe_service, intents):
    result = asyncio.run(stripe_service.settle(
        "TIP-1", 50.0, metadata={"customer": "cus_123", "order_id": "ORD-1"},
    ))

    assert not result.success
    assert result.is_final
    assert result.error_code == "missing_payout_account"
    assert "payment_method" in result.error_message
    assert "destination" in result.error_message
    assert intents.calls == []


def test_declined_intent_fails_with_stripe_reason(stripe_service, intents):
    intents.status = "requires_payment_method"
    intents.last_payment_error = SimpleNamespace(message="Your card was declined.", code="card_declined")

    result = asyncio.run(stripe_service.settle("TIP-1", 12.5, metadata={
        "customer": "cus_123", "payment_method": "pm_card_visa", "destination": "acct_chef_1",
    }))

    assert intents.calls[0]["amount"] == 1250
    assert not result.success
    assert result.error_code == "card_declined"
    assert result.error_message == "Your card was declined."


def test_unverified_webhook_requires_json_object(stripe_service):
    assert asyncio.run(stripe_service.verify_webhook(b"[1, 2]", None)) is None
    assert asyncio.run(stripe_service.verify_webhook(b"\xff\xfe", None)) is None
    event = asyncio.run(stripe_service.verify_webhook(b'{"type": "ping"}', None))
    assert event == {"type": "ping"}


def test_succeeded_event_becomes_completed_notice(stripe_service):
    notice = stripe_service.parse_settlement_event({
        "type": "payment_intent.succeeded",
        "data": {"object": {
            "id": "pi_test_9", "amount": 5000, "currency": "inr",
            "metadata": {"tip_id": "TIP-9"},
        }},
    })

    assert notice.tip_id == "TIP-9"
    assert notice.result.success
    assert notice.result.reference == "pi_test_9"
    assert notice.result.amount == pytest.approx(50.0)
