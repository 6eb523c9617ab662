import json

import pytest

from application.services.payment_service import PaymentService
from application.services.webhook_service import PaymentWebhookService
from domain.booking import BookingStatus
from domain.common.exceptions import WebhookSignatureError
from domain.payment.entity import PaymentStatus
from tests.conftest import seed_booking, seed_intent, seed_ride


HEADERS = {"Stripe-Signature": "t=1,v1=stub"}


@pytest.fixture
def webhooks(uow_factory, gateway):
    return PaymentWebhookService(uow_factory, PaymentService(gateway=gateway))


def _event(event_type: str, intent_id: str, **obj) -> bytes:
    return json.dumps(
        {"id": "evt_1", "type": event_type, "data": {"object": {"id": intent_id, **obj}}}
    ).encode()


@pytest.mark.asyncio
async def test_authorization_after_customer_action(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride, payment_status=PaymentStatus.PENDING)

    result = await webhooks.handle(HEADERS, _event("payment_intent.amount_capturable_updated", payment.payment_intent_id))

    assert result["updated"] is True
    assert result["status"] == "authorized"
    assert store.tables["payments"][payment.id].status == PaymentStatus.AUTHORIZED


@pytest.mark.asyncio
async def test_succeeded_marks_captured(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride, status=BookingStatus.CONFIRMED)

    await webhooks.handle(HEADERS, _event("payment_intent.succeeded", payment.payment_intent_id))

    stored = store.tables["payments"][payment.id]
    assert stored.status == PaymentStatus.CAPTURED
    assert stored.captured_at is not None


@pytest.mark.asyncio
async def test_payment_failed_keeps_reason(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride, payment_status=PaymentStatus.PENDING)

    body = _event(
        "payment_intent.payment_failed",
        payment.payment_intent_id,
        last_payment_error={"message": "Authentication failed"},
    )
    await webhooks.handle(HEADERS, body)

    stored = store.tables["payments"][payment.id]
    assert stored.status == PaymentStatus.FAILED
    assert stored.failure_reason == "Authentication failed"


@pytest.mark.asyncio
async def test_canceled_event_and_replay(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride)
    body = _event("payment_intent.canceled", payment.payment_intent_id)

    first = await webhooks.handle(HEADERS, body)
    second = await webhooks.handle(HEADERS, body)

    assert first["updated"] is True
    assert second["updated"] is False
    assert store.tables["payments"][payment.id].status == PaymentStatus.CANCELLED
    assert first["booking_status"] == "cancelled"
    assert "booking_status" not in second


@pytest.mark.asyncio
async def test_stale_event_does_not_move_backwards(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride, status=BookingStatus.CONFIRMED, payment_status=PaymentStatus.CAPTURED)

    result = await webhooks.handle(HEADERS, _event("payment_intent.amount_capturable_updated", payment.payment_intent_id))

    assert result["updated"] is False
    assert store.tables["payments"][payment.id].status == PaymentStatus.CAPTURED


@pytest.mark.asyncio
async def test_unknown_intent_is_acknowledged(store, webhooks):
    result = await webhooks.handle(HEADERS, _event("payment_intent.succeeded", "pi_unknown"))

    assert result == {"event_id": "evt_1", "type": "payment_intent.succeeded", "updated": False}


@pytest.mark.asyncio
async def test_unhandled_event_type_ignored(store, webhooks):
    ride = seed_ride(store)
    _, payment = seed_booking(store, ride)

    result = await webhooks.handle(HEADERS, _event("charge.refunded", payment.payment_intent_id))

    assert result["updated"] is False
    assert store.tables["payments"][payment.id].status == PaymentStatus.AUTHORIZED


@pytest.mark.asyncio
async def test_unsigned_webhook_rejected(webhooks):
    with pytest.raises(WebhookSignatureError):
        await webhooks.handle({}, _event("payment_intent.succeeded", "pi_1"))


@pytest.mark.asyncio
async def test_failed_hold_cancels_pending_booking(store, webhooks):
    ride = seed_ride(store)
    booking, payment = seed_booking(store, ride, payment_status=PaymentStatus.PENDING)

    result = await webhooks.handle(HEADERS, _event("payment_intent.payment_failed", payment.payment_intent_id))

    assert result["booking_status"] == "cancelled"
    assert store.tables["bookings"][booking.id].status == BookingStatus.CANCELLED
    # the seats were never reserved
    assert store.tables["rides"][ride.id].available_seats == 3


@pytest.mark.asyncio
async def test_cancelled_hold_leaves_confirmed_booking(store, webhooks):
    ride = seed_ride(store)
    booking, payment = seed_booking(store, ride, status=BookingStatus.CONFIRMED)

    result = await webhooks.handle(HEADERS, _event("payment_intent.canceled", payment.payment_intent_id))

    assert result["updated"] is True
    assert "booking_status" not in result
    assert store.tables["bookings"][booking.id].status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_pending_transition_keeps_booking(store, webhooks):
    ride = seed_ride(store)
    booking, payment = seed_booking(store, ride)
    seed_intent(store, booking, payment, action="reject", operation="void")

    result = await webhooks.handle(HEADERS, _event("payment_intent.canceled", payment.payment_intent_id))

    assert result["updated"] is True
    assert "booking_status" not in result
    assert store.tables["bookings"][booking.id].status == BookingStatus.PENDING
