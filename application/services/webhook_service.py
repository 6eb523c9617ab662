"""
Apply processor webhook events to local payment records.

A hold that fails or is cancelled after the booking was requested (e.g. the
customer abandons 3-D Secure) also cancels the booking while it is still
pending, so it cannot be confirmed without an authorized hold.
"""
from __future__ import annotations

from typing import Any, Callable

from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from domain.booking import BookingAction, BookingStatus
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus


logger = get_logger(__name__)

EVENT_TO_STATUS = {
    "payment_intent.amount_capturable_updated": PaymentStatus.AUTHORIZED,
    "payment_intent.succeeded": PaymentStatus.CAPTURED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
}

HOLD_LOST = frozenset({PaymentStatus.FAILED, PaymentStatus.CANCELLED})


class PaymentWebhookService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], payments: PaymentService) -> None:
        self._uow_factory = uow_factory
        self._payments = payments

    async def handle(self, headers: dict[str, Any], body: bytes) -> dict[str, Any]:
        event = self._payments.handle_webhook(headers, body)
        result = {"event_id": event.id, "type": event.type, "updated": False}

        status = EVENT_TO_STATUS.get(event.type)
        obj = event.data.get("object") or {}
        intent_id = obj.get("id")
        if status is None or not intent_id:
            logger.info("payment_webhook_ignored", event_id=event.id, event_type=event.type)
            return result

        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_payment_intent(intent_id)
            if payment is None:
                logger.warning("payment_webhook_unknown_intent", event_id=event.id, payment_intent_id=intent_id)
                return result
            reason = None
            if status == PaymentStatus.FAILED:
                reason = (obj.get("last_payment_error") or {}).get("message")
            if payment.sync_from_gateway(status, reason):
                await uow.payment_repository.update(payment)
                result["updated"] = True
                if status in HOLD_LOST:
                    booking_status = await self._cancel_pending_booking(uow, payment)
                    if booking_status is not None:
                        result["booking_status"] = booking_status
            result["payment_id"] = payment.id
            result["status"] = payment.status.value

        logger.info(
            "payment_webhook_applied",
            event_id=event.id,
            event_type=event.type,
            payment_intent_id=intent_id,
            updated=result["updated"],
        )
        return result

    @staticmethod
    async def _cancel_pending_booking(uow: AbstractUnitOfWork, payment: Payment):
        booking = await uow.booking_repository.get_by_id(payment.booking_id)
        if booking is None or booking.status != BookingStatus.PENDING:
            return None
        # a transition in flight owns the booking; its own resolution decides
        if await uow.intent_repository.get_pending_for_booking(booking.id) is not None:
            return None
        booking.apply(BookingAction.CANCEL)
        await uow.booking_repository.update(booking)
        logger.info(
            "booking_cancelled_hold_lost",
            booking_id=booking.id,
            payment_id=payment.id,
            payment_status=payment.status.value,
        )
        return booking.status.value
