"""
Resolve transition intents left pending by a crash between the gateway call
and the local commit.

Hold, refund and settle intents are replayed with their stored idempotency
key, so the processor returns the original result if the call already went
through.
Void and capture intents are checked against the PaymentIntent's current
status.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from application.services.booking_service import BookingLifecycleService
from application.services.payment_service import PaymentService
from core.config import settings
from core.logging_config import get_logger
from domain.booking import GatewayOperation, TransitionIntent
from domain.common.clock import utcnow
from domain.common.exceptions import GatewayError, GatewayNotConfigured
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentStatus


logger = get_logger(__name__)

# replayed with the stored idempotency key; the processor returns the original result
REPLAYED = frozenset({GatewayOperation.HOLD, GatewayOperation.REFUND, GatewayOperation.SETTLE})

EXPECTED_STATUS = {
    GatewayOperation.VOID: PaymentStatus.CANCELLED.value,
    GatewayOperation.CAPTURE: PaymentStatus.CAPTURED.value,
}


class ReconciliationService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        payments: PaymentService,
        lifecycle: BookingLifecycleService,
        *,
        grace_seconds: Optional[int] = None,
        batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._uow_factory = uow_factory
        self._payments = payments
        self._lifecycle = lifecycle
        self._grace = timedelta(seconds=grace_seconds or settings.booking.reconcile_grace_seconds)
        self._batch_size = batch_size or settings.booking.reconcile_batch_size
        self._clock = clock

    async def run_once(self) -> dict[str, int]:
        cutoff = self._clock() - self._grace
        async with self._uow_factory(readonly=True) as uow:
            intents = await uow.intent_repository.list_pending(cutoff, limit=self._batch_size)

        summary = {"checked": len(intents), "resolved": 0, "failed": 0}
        for intent in intents:
            if await self._reconcile(intent):
                summary["resolved"] += 1
            else:
                summary["failed"] += 1
        logger.info("intent_reconciliation_finished", **summary)
        return summary

    async def _reconcile(self, intent: TransitionIntent) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(intent.payment_id) if intent.payment_id else None
        if payment is None:
            await self._lifecycle.abandon_intent(intent.id, "Payment record missing")
            return False

        try:
            if intent.operation in REPLAYED:
                outcome = await self._lifecycle.call_gateway(intent, payment)
            else:
                outcome = await self._payments.retrieve(intent.payment_intent_id)
                expected = EXPECTED_STATUS[intent.operation]
                if outcome.status != expected:
                    error = f"PaymentIntent is '{outcome.raw_status}', expected {expected} after {intent.operation.value}"
                    logger.warning(
                        "intent_reconcile_mismatch",
                        intent_id=intent.id,
                        booking_id=intent.booking_id,
                        gateway_status=outcome.raw_status,
                    )
                    await self._lifecycle.abandon_intent(intent.id, error)
                    return False
        except (GatewayError, GatewayNotConfigured) as exc:
            logger.warning("intent_reconcile_gateway_error", intent_id=intent.id, error=exc.message)
            await self._lifecycle.abandon_intent(intent.id, exc.message)
            return False

        await self._lifecycle.resolve_intent(intent.id, outcome)
        logger.info(
            "intent_reconciled",
            intent_id=intent.id,
            booking_id=intent.booking_id,
            operation=intent.operation.value,
        )
        return True
