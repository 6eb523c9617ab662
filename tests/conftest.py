"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

import copy
import itertools
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest

from application.dtos.payments import (
    GatewayIntent,
    GatewayPayout,
    GatewayRefund,
    GatewayTransfer,
    WebhookEvent,
)
from application.services.booking_service import BookingLifecycleService
from application.services.payment_service import PaymentService
from domain.booking import Booking, BookingStatus, IntentStatus, TransitionIntent
from domain.booking.repository import BookingRepository, TransitionIntentRepository
from domain.common.clock import utcnow
from domain.common.exceptions import ConcurrentModification, WebhookSignatureError
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import ACTIVE_STATUSES, Payment, PaymentStatus
from domain.payment.repository import PaymentRepository
from domain.pricing import calculate_commission
from domain.ride.entity import Ride
from domain.ride.repository import RideRepository
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
DRIVER_ID = 10
PASSENGER_ID = 20


# ----------------------------------------------------------------------
# Fake payment gateway
# ----------------------------------------------------------------------
class StubGateway:
    """In-process stand-in for the Stripe adapter.

    Replays the first result for a repeated idempotency key, like the
    processor does, and records every call for assertions.
    """

    provider = "stripe"

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.hold_status = "requires_capture"
        self.failures: dict[str, Exception] = {}
        self.hooks: dict[str, Any] = {}
        self.intents: dict[str, str] = {}
        self._seen: dict[tuple[str, str], Any] = {}
        self._seq = itertools.count(1)

    def _intent(self, pi_id: str, amount: Optional[Decimal] = None) -> GatewayIntent:
        raw = self.intents[pi_id]
        return GatewayIntent(
            intent_id=pi_id,
            status=PROVIDER_STATUS_TO_INTERNAL["stripe"].get(raw, raw),
            raw_status=raw,
            provider=self.provider,
            amount=amount,
        )

    def _enter(self, op: str, **kwargs: Any) -> Optional[Any]:
        self.calls.append((op, kwargs))
        hook = self.hooks.get(op)
        if hook is not None:
            hook()
        if op in self.failures:
            raise self.failures[op]
        key = kwargs.get("idempotency_key")
        if key is not None:
            return self._seen.get((op, key))
        return None

    def _remember(self, op: str, key: Optional[str], result: Any) -> Any:
        if key is not None:
            self._seen[(op, key)] = result
        return result

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    async def create_hold(
        self,
        amount,
        payment_method_id,
        customer_id,
        destination_account_id=None,
        *,
        commission=None,
        metadata=None,
        idempotency_key=None,
    ) -> GatewayIntent:
        replay = self._enter(
            "create_hold",
            amount=amount,
            payment_method_id=payment_method_id,
            customer_id=customer_id,
            destination_account_id=destination_account_id,
            commission=commission,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if replay is not None:
            return replay
        pi_id = f"pi_{next(self._seq)}"
        self.intents[pi_id] = self.hold_status
        return self._remember("create_hold", idempotency_key, self._intent(pi_id, Decimal(str(amount))))

    async def confirm(self, payment_intent_id, idempotency_key=None) -> GatewayIntent:
        self._enter("confirm", payment_intent_id=payment_intent_id, idempotency_key=idempotency_key)
        self.intents[payment_intent_id] = "requires_capture"
        return self._intent(payment_intent_id)

    async def void_hold(self, payment_intent_id, idempotency_key=None) -> GatewayIntent:
        replay = self._enter("void_hold", payment_intent_id=payment_intent_id, idempotency_key=idempotency_key)
        if replay is not None:
            return replay
        self.intents[payment_intent_id] = "canceled"
        return self._remember("void_hold", idempotency_key, self._intent(payment_intent_id))

    async def capture(self, payment_intent_id, amount_to_capture=None, idempotency_key=None) -> GatewayIntent:
        replay = self._enter(
            "capture",
            payment_intent_id=payment_intent_id,
            amount_to_capture=amount_to_capture,
            idempotency_key=idempotency_key,
        )
        if replay is not None:
            return replay
        self.intents[payment_intent_id] = "succeeded"
        return self._remember("capture", idempotency_key, self._intent(payment_intent_id))

    async def refund(self, payment_intent_id, amount=None, idempotency_key=None, *, reverse_transfer=False) -> GatewayRefund:
        replay = self._enter(
            "refund",
            payment_intent_id=payment_intent_id,
            amount=amount,
            idempotency_key=idempotency_key,
            reverse_transfer=reverse_transfer,
        )
        if replay is not None:
            return replay
        if self.intents.get(payment_intent_id) == "requires_capture":
            # the processor cancels an uncaptured intent instead of refunding it
            self.intents[payment_intent_id] = "canceled"
        refund = GatewayRefund(
            refund_id=f"re_{next(self._seq)}",
            status="succeeded",
            provider=self.provider,
            payment_intent_id=payment_intent_id,
            amount=amount,
        )
        return self._remember("refund", idempotency_key, refund)

    async def transfer(self, amount, destination_account_id, metadata=None, idempotency_key=None) -> GatewayTransfer:
        replay = self._enter(
            "transfer",
            amount=amount,
            destination_account_id=destination_account_id,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if replay is not None:
            return replay
        transfer = GatewayTransfer(
            transfer_id=f"tr_{next(self._seq)}",
            provider=self.provider,
            destination=destination_account_id,
            amount=Decimal(str(amount)),
        )
        return self._remember("transfer", idempotency_key, transfer)

    async def payout(self, amount, stripe_account_id, idempotency_key=None) -> GatewayPayout:
        self._enter("payout", amount=amount, stripe_account_id=stripe_account_id, idempotency_key=idempotency_key)
        return GatewayPayout(payout_id=f"po_{next(self._seq)}", status="pending", provider=self.provider, amount=amount)

    async def retrieve(self, payment_intent_id) -> GatewayIntent:
        self._enter("retrieve", payment_intent_id=payment_intent_id)
        return self._intent(payment_intent_id)

    def parse_webhook(self, headers: dict, body: bytes) -> WebhookEvent:
        if "stripe-signature" not in {k.lower() for k in headers}:
            raise WebhookSignatureError("Missing Stripe-Signature header", provider=self.provider)
        event = json.loads(body)
        return WebhookEvent(id=event["id"], type=event["type"], provider=self.provider, data=event.get("data") or {})

    async def aclose(self) -> None:
        return None


# ----------------------------------------------------------------------
# In-memory persistence with the same optimistic-lock semantics as SQL
# ----------------------------------------------------------------------
class InMemoryStore:
    def __init__(self) -> None:
        self.tables: dict[str, dict[int, Any]] = {"rides": {}, "bookings": {}, "payments": {}, "intents": {}}
        self.ids = itertools.count(1)

    def bump_booking_version(self, booking_id: int) -> None:
        self.tables["bookings"][booking_id].version += 1


def _versioned_update(rows: dict, entity, name: str):
    current = rows.get(entity.id)
    if current is None or current.version != entity.version:
        raise ConcurrentModification(name, entity.id, entity.version)
    entity.version += 1
    rows[entity.id] = copy.deepcopy(entity)
    return entity


def _insert(rows: dict, ids, entity):
    entity = copy.deepcopy(entity)
    entity.id = next(ids)
    if hasattr(entity, "created_at") and entity.created_at is None:
        entity.created_at = utcnow()
    rows[entity.id] = entity
    return copy.deepcopy(entity)


class InMemoryRideRepository(RideRepository):
    def __init__(self, tables, ids):
        self._rows = tables["rides"]
        self._ids = ids

    async def create(self, ride):
        return _insert(self._rows, self._ids, ride)

    async def get_by_id(self, ride_id):
        return copy.deepcopy(self._rows.get(ride_id))

    async def update(self, ride):
        return _versioned_update(self._rows, ride, "Ride")


class InMemoryBookingRepository(BookingRepository):
    def __init__(self, tables, ids):
        self._rows = tables["bookings"]
        self._ids = ids

    async def create(self, booking):
        return _insert(self._rows, self._ids, booking)

    async def get_by_id(self, booking_id):
        return copy.deepcopy(self._rows.get(booking_id))

    async def find_active_for_passenger(self, ride_id, passenger_id):
        for b in self._rows.values():
            if (
                b.ride_id == ride_id
                and b.passenger_id == passenger_id
                and b.status in (BookingStatus.PENDING, BookingStatus.CONFIRMED)
            ):
                return copy.deepcopy(b)
        return None

    async def list_by_ride(self, ride_id, status=None):
        return [
            copy.deepcopy(b)
            for b in sorted(self._rows.values(), key=lambda b: b.id)
            if b.ride_id == ride_id and (status is None or b.status == status)
        ]

    async def update(self, booking):
        return _versioned_update(self._rows, booking, "Booking")


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self, tables, ids):
        self._rows = tables["payments"]
        self._ids = ids

    def _latest(self, pred):
        matches = [p for p in self._rows.values() if pred(p)]
        return copy.deepcopy(max(matches, key=lambda p: p.id)) if matches else None

    async def create(self, payment):
        return _insert(self._rows, self._ids, payment)

    async def get_by_id(self, payment_id):
        return copy.deepcopy(self._rows.get(payment_id))

    async def get_active_for_booking(self, booking_id):
        return self._latest(lambda p: p.booking_id == booking_id and p.status in ACTIVE_STATUSES)

    async def get_latest_for_booking(self, booking_id):
        return self._latest(lambda p: p.booking_id == booking_id)

    async def get_by_payment_intent(self, payment_intent_id):
        return self._latest(lambda p: p.payment_intent_id == payment_intent_id)

    async def list_by_booking(self, booking_id):
        return [copy.deepcopy(p) for p in self._rows.values() if p.booking_id == booking_id]

    async def update(self, payment):
        if payment.id not in self._rows:
            raise ValueError(f"Payment with id {payment.id} not found")
        self._rows[payment.id] = copy.deepcopy(payment)
        return payment


class InMemoryIntentRepository(TransitionIntentRepository):
    def __init__(self, tables, ids):
        self._rows = tables["intents"]
        self._ids = ids

    async def create(self, intent):
        return _insert(self._rows, self._ids, intent)

    async def get_by_id(self, intent_id):
        return copy.deepcopy(self._rows.get(intent_id))

    async def get_pending_for_booking(self, booking_id):
        pending = [i for i in self._rows.values() if i.booking_id == booking_id and i.status == IntentStatus.PENDING]
        return copy.deepcopy(max(pending, key=lambda i: i.id)) if pending else None

    async def list_pending(self, older_than, limit=100):
        pending = [i for i in self._rows.values() if i.status == IntentStatus.PENDING and i.created_at < older_than]
        return [copy.deepcopy(i) for i in sorted(pending, key=lambda i: i.created_at)[:limit]]

    async def update(self, intent):
        self._rows[intent.id] = copy.deepcopy(intent)
        return intent


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """Works on a snapshot of the store; the snapshot replaces the store on commit."""

    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self._store = store

    async def __aenter__(self):
        self._tables = copy.deepcopy(self._store.tables)
        self.ride_repository = InMemoryRideRepository(self._tables, self._store.ids)
        self.booking_repository = InMemoryBookingRepository(self._tables, self._store.ids)
        self.payment_repository = InMemoryPaymentRepository(self._tables, self._store.ids)
        self.intent_repository = InMemoryIntentRepository(self._tables, self._store.ids)
        return self

    async def commit(self) -> None:
        self._store.tables = self._tables
        self._committed = True

    async def rollback(self) -> None:
        self._committed = False


# ----------------------------------------------------------------------
# Fixtures and seed helpers
# ----------------------------------------------------------------------
@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def uow_factory(store):
    def factory(*, readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)
    return factory


@pytest.fixture
def scheduled() -> list:
    return []


@pytest.fixture
def lifecycle(uow_factory, gateway, scheduled) -> BookingLifecycleService:
    return BookingLifecycleService(
        uow_factory,
        PaymentService(gateway=gateway),
        payout_scheduler=scheduled.append,
        clock=lambda: NOW,
    )


def seed_ride(store: InMemoryStore, **overrides) -> Ride:
    fields = dict(
        id=None,
        driver_id=DRIVER_ID,
        departure_time=NOW + timedelta(days=3),
        available_seats=3,
        price_per_seat=Decimal("20.00"),
        origin="Campus North",
        destination="Central Station",
        driver_payout_account="acct_driver",
    )
    fields.update(overrides)
    ride = Ride(**fields)
    ride.id = next(store.ids)
    store.tables["rides"][ride.id] = ride
    return copy.deepcopy(ride)


def seed_booking(
    store: InMemoryStore,
    ride: Ride,
    *,
    status: BookingStatus = BookingStatus.PENDING,
    seats: int = 1,
    passenger_id: int = PASSENGER_ID,
    payment_status: Optional[PaymentStatus] = PaymentStatus.AUTHORIZED,
    destination_account_id: Optional[str] = "acct_driver",
    gateway: Optional[StubGateway] = None,
) -> tuple[Booking, Optional[Payment]]:
    """Insert a booking (and optionally its payment) directly, bypassing the service."""
    booking = Booking(id=next(store.ids), ride_id=ride.id, passenger_id=passenger_id, seats=seats, status=status)
    booking.created_at = NOW
    store.tables["bookings"][booking.id] = booking
    if status == BookingStatus.CONFIRMED:
        store.tables["rides"][ride.id].available_seats -= seats

    payment = None
    if payment_status is not None:
        breakdown = calculate_commission(ride.total_price(seats), Decimal("15"))
        payment = Payment.from_breakdown(
            breakdown,
            booking_id=booking.id,
            passenger_id=passenger_id,
            driver_id=ride.driver_id,
            destination_account_id=destination_account_id,
        )
        payment.id = next(store.ids)
        payment.status = payment_status
        payment.payment_intent_id = f"pi_seed_{payment.id}"
        store.tables["payments"][payment.id] = payment
        if gateway is not None:
            raw = {
                PaymentStatus.PENDING: "requires_action",
                PaymentStatus.AUTHORIZED: "requires_capture",
                PaymentStatus.CAPTURED: "succeeded",
            }.get(payment_status, "canceled")
            gateway.intents[payment.payment_intent_id] = raw
    return copy.deepcopy(booking), copy.deepcopy(payment)


def seed_intent(store: InMemoryStore, booking: Booking, payment: Payment, **overrides) -> TransitionIntent:
    fields = dict(
        id=next(store.ids),
        booking_id=booking.id,
        action="complete",
        operation="capture",
        idempotency_key="k" * 64,
        payment_id=payment.id,
        payment_intent_id=payment.payment_intent_id,
        created_at=NOW - timedelta(hours=1),
    )
    fields.update(overrides)
    intent = TransitionIntent(**fields)
    store.tables["intents"][intent.id] = intent
    return copy.deepcopy(intent)
