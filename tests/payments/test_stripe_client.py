import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest

stripe = pytest.importorskip("stripe")

from core.settings import PaymentRetry, PaymentSettings, StripeSettings  # noqa: E402
from domain.common.exceptions import GatewayError, GatewayNotConfigured, WebhookSignatureError  # noqa: E402
from domain.pricing import calculate_commission  # noqa: E402
from infrastructure.external.payments.stripe_client import StripeClient  # noqa: E402


WEBHOOK_SECRET = "whsec_test"


def _client(secret_key="sk_test_123", **overrides):
    config = PaymentSettings(
        stripe=StripeSettings(secret_key=secret_key, webhook_secret=WEBHOOK_SECRET),
        **overrides,
    )
    return StripeClient(config)


def _pi(status="requires_capture", amount=2000):
    return {"id": "pi_123", "status": status, "amount": amount, "amount_received": 0, "client_secret": "pi_123_secret"}


def test_client_does_not_touch_sdk_globals():
    retries, http_client = stripe.max_network_retries, stripe.default_http_client

    client = _client()

    assert isinstance(client.sdk, stripe.StripeClient)
    assert stripe.max_network_retries == retries
    assert stripe.default_http_client is http_client


@pytest.mark.asyncio
async def test_create_hold_sends_cents_and_application_fee(monkeypatch):
    sent = {}

    def fake_create(self, params=None, options=None):
        sent.update(params=params, options=options)
        return _pi()

    monkeypatch.setattr(stripe.PaymentIntentService, "create", fake_create)
    client = _client()

    intent = await client.create_hold(
        Decimal("20.00"),
        "pm_card",
        "cus_1",
        "acct_driver",
        commission=calculate_commission(Decimal("20.00"), Decimal("15")),
        metadata={"booking_id": "1"},
        idempotency_key="key-1",
    )

    params = sent["params"]
    assert params["amount"] == 2000
    assert params["currency"] == "eur"
    assert params["capture_method"] == "manual"
    assert params["confirm"] is True
    assert params["customer"] == "cus_1"
    assert params["transfer_data"] == {"destination": "acct_driver"}
    assert params["application_fee_amount"] == 300
    assert sent["options"] == {"idempotency_key": "key-1"}
    assert intent.status == "authorized"
    assert intent.amount == Decimal("20")


@pytest.mark.asyncio
async def test_hold_without_destination_has_no_fee(monkeypatch):
    sent = {}

    def fake_create(self, params=None, options=None):
        sent.update(params)
        return _pi()

    monkeypatch.setattr(stripe.PaymentIntentService, "create", fake_create)
    await _client().create_hold(Decimal("20.00"), "pm_card", None, None, idempotency_key="k")

    assert "transfer_data" not in sent
    assert "application_fee_amount" not in sent
    assert "customer" not in sent


@pytest.mark.asyncio
async def test_missing_secret_key_raises_not_configured(monkeypatch):
    def fail(self, *args, **kwargs):
        raise AssertionError("stripe must not be called")

    monkeypatch.setattr(stripe.PaymentIntentService, "capture", fail)
    client = _client(secret_key=None)

    assert client.configured is False
    with pytest.raises(GatewayNotConfigured):
        await client.capture("pi_123", idempotency_key="k")


@pytest.mark.asyncio
async def test_partial_capture_amount(monkeypatch):
    sent = {}

    def fake_capture(self, intent, params=None, options=None):
        sent.update(intent=intent, params=params, options=options)
        return _pi(status="succeeded")

    monkeypatch.setattr(stripe.PaymentIntentService, "capture", fake_capture)

    intent = await _client().capture("pi_123", Decimal("6.00"), idempotency_key="cap")

    assert sent == {"intent": "pi_123", "params": {"amount_to_capture": 600}, "options": {"idempotency_key": "cap"}}
    assert intent.status == "captured"


@pytest.mark.asyncio
async def test_card_error_becomes_gateway_error(monkeypatch):
    def declined(self, intent, params=None, options=None):
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    monkeypatch.setattr(stripe.PaymentIntentService, "capture", declined)

    with pytest.raises(GatewayError) as exc:
        await _client().capture("pi_123", idempotency_key="k")
    assert exc.value.provider_code == "card_declined"
    assert exc.value.operation == "capture"
    assert "declined" in exc.value.message


@pytest.mark.asyncio
async def test_connection_errors_retried_with_same_key(monkeypatch):
    keys = []

    def flaky(self, intent, params=None, options=None):
        keys.append(options["idempotency_key"])
        if len(keys) < 3:
            raise stripe.APIConnectionError("connection reset")
        return _pi(status="canceled")

    monkeypatch.setattr(stripe.PaymentIntentService, "cancel", flaky)
    client = _client(retry=PaymentRetry(max=2, base_backoff=0.01))

    intent = await client.void_hold("pi_123", idempotency_key="void-key")

    assert intent.status == "cancelled"
    assert keys == ["void-key"] * 3


@pytest.mark.asyncio
async def test_no_retry_by_default(monkeypatch):
    calls = []

    def down(self, intent, params=None, options=None):
        calls.append(intent)
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.PaymentIntentService, "cancel", down)
    with pytest.raises(GatewayError):
        await _client().void_hold("pi_123", idempotency_key="k")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_refund_and_payout_params(monkeypatch):
    refund_sent, payout_sent = {}, {}

    def fake_refund(self, params=None, options=None):
        refund_sent.update(params)
        return {"id": "re_1", "status": "succeeded", "amount": params["amount"]}

    def fake_payout(self, params=None, options=None):
        payout_sent.update(params=params, options=options)
        return {"id": "po_1", "status": "pending"}

    monkeypatch.setattr(stripe.RefundService, "create", fake_refund)
    monkeypatch.setattr(stripe.PayoutService, "create", fake_payout)
    client = _client()

    refund = await client.refund("pi_123", Decimal("14.00"), idempotency_key="r")
    payout = await client.payout(Decimal("17.00"), "acct_driver", idempotency_key="p")

    assert refund_sent == {"payment_intent": "pi_123", "amount": 1400}
    assert refund.amount == Decimal("14")
    assert payout_sent["params"]["amount"] == 1700
    assert payout_sent["options"] == {"idempotency_key": "p", "stripe_account": "acct_driver"}
    assert payout.payout_id == "po_1"


@pytest.mark.asyncio
async def test_refund_of_destination_charge_reverses_transfer(monkeypatch):
    sent = {}

    def fake_refund(self, params=None, options=None):
        sent.update(params)
        return {"id": "re_2", "status": "succeeded", "amount": params["amount"]}

    monkeypatch.setattr(stripe.RefundService, "create", fake_refund)

    await _client().refund("pi_123", Decimal("14.00"), idempotency_key="r", reverse_transfer=True)

    assert sent["reverse_transfer"] is True
    assert sent["refund_application_fee"] is True


@pytest.mark.asyncio
async def test_transfer_params(monkeypatch):
    sent = {}

    def fake_transfer(self, params=None, options=None):
        sent.update(params=params, options=options)
        return {"id": "tr_1"}

    monkeypatch.setattr(stripe.TransferService, "create", fake_transfer)

    transfer = await _client().transfer(Decimal("17.00"), "acct_driver", {"booking_id": "1"}, idempotency_key="t")

    assert sent["params"] == {"amount": 1700, "currency": "eur", "destination": "acct_driver", "metadata": {"booking_id": "1"}}
    assert sent["options"] == {"idempotency_key": "t"}
    assert transfer.transfer_id == "tr_1"


def _signed(payload: bytes, secret: str = WEBHOOK_SECRET) -> dict:
    ts = int(time.time())
    signature = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={ts},v1={signature}"}


def test_parse_webhook_verifies_signature():
    body = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_123", "object": "payment_intent", "status": "succeeded"}},
        }
    ).encode()

    event = _client().parse_webhook(_signed(body), body)

    assert event.id == "evt_1"
    assert event.type == "payment_intent.succeeded"
    assert event.data["object"]["id"] == "pi_123"


def test_parse_webhook_rejects_bad_signature():
    body = b'{"id": "evt_1", "object": "event", "type": "payment_intent.succeeded", "data": {}}'
    with pytest.raises(WebhookSignatureError):
        _client().parse_webhook(_signed(body, secret="whsec_other"), body)


def test_parse_webhook_requires_header():
    with pytest.raises(WebhookSignatureError):
        _client().parse_webhook({}, b"{}")
