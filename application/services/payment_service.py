"""
Application service wrapping the payment gateway.

This class depends only on the application PaymentGateway port and DTOs.
Gateway implementations are provided by infrastructure and must be injected
from the composition root (API/tasks), keeping dependencies one-way.

Every state-changing call carries an idempotency key derived from the
booking id, the action and the current attempt window, so a retried request
inside the window is deduplicated by the processor.
"""
from __future__ import annotations

import hashlib
import time
from decimal import Decimal
from typing import Any, Optional, Union

from application.dtos.payments import (
    GatewayIntent,
    GatewayPayout,
    GatewayRefund,
    GatewayTransfer,
    WebhookEvent,
)
from application.ports.payment_gateway import PaymentGateway
from core.config import settings
from core.logging_config import get_logger
from domain.pricing.commission import CommissionBreakdown


logger = get_logger(__name__)


def booking_idempotency_key(
    booking_id: int,
    action: str,
    *,
    now: Optional[float] = None,
    window_seconds: Optional[int] = None,
) -> str:
    """sha256("booking|{id}|{action}|{window}") with window = floor(epoch / window_seconds)."""
    window_seconds = window_seconds or settings.booking.idempotency_window_seconds
    epoch = time.time() if now is None else now
    window = int(epoch // window_seconds)
    base = f"booking|{booking_id}|{action}|{window}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def payout_idempotency_key(transfer_id: str) -> str:
    """One payout per driver transfer."""
    return hashlib.sha256(f"payout|{transfer_id}".encode("utf-8")).hexdigest()


def _derived_key(idempotency_key: str, suffix: str) -> str:
    # one booking action may issue several processor calls (e.g. capture + transfer)
    return hashlib.sha256(f"{idempotency_key}|{suffix}".encode("utf-8")).hexdigest()


class PaymentService:
    def __init__(self, gateway: PaymentGateway) -> None:
        self.gateway = gateway

    @property
    def provider(self) -> str:
        return self.gateway.provider

    async def create_hold(
        self,
        *,
        booking_id: int,
        amount: Decimal,
        payment_method_id: str,
        customer_id: Optional[str],
        destination_account_id: Optional[str],
        commission: CommissionBreakdown,
        idempotency_key: str,
    ) -> GatewayIntent:
        logger.info(
            "payment_hold_request",
            booking_id=booking_id,
            amount=str(amount),
            destination=destination_account_id,
            idempotency_key=idempotency_key,
        )
        intent = await self.gateway.create_hold(
            amount,
            payment_method_id,
            customer_id,
            destination_account_id,
            commission=commission,
            metadata={"booking_id": str(booking_id)},
            idempotency_key=idempotency_key,
        )
        logger.info(
            "payment_hold_created",
            booking_id=booking_id,
            payment_intent_id=intent.intent_id,
            status=intent.status,
        )
        return intent

    async def void_hold(self, *, booking_id: int, payment_intent_id: str, idempotency_key: str) -> GatewayIntent:
        logger.info("payment_void_request", booking_id=booking_id, payment_intent_id=payment_intent_id)
        intent = await self.gateway.void_hold(payment_intent_id, idempotency_key=idempotency_key)
        logger.info("payment_hold_voided", booking_id=booking_id, payment_intent_id=payment_intent_id)
        return intent

    async def capture(
        self,
        *,
        booking_id: int,
        payment_intent_id: str,
        idempotency_key: str,
        amount_to_capture: Optional[Decimal] = None,
    ) -> GatewayIntent:
        logger.info(
            "payment_capture_request",
            booking_id=booking_id,
            payment_intent_id=payment_intent_id,
            amount_to_capture=str(amount_to_capture) if amount_to_capture is not None else None,
        )
        intent = await self.gateway.capture(
            payment_intent_id,
            amount_to_capture,
            idempotency_key=idempotency_key,
        )
        logger.info(
            "payment_captured",
            booking_id=booking_id,
            payment_intent_id=payment_intent_id,
            status=intent.status,
        )
        return intent

    async def refund(
        self,
        *,
        booking_id: int,
        payment_intent_id: str,
        amount: Optional[Decimal],
        idempotency_key: str,
        reverse_transfer: bool = False,
    ) -> GatewayRefund:
        logger.info(
            "payment_refund_request",
            booking_id=booking_id,
            payment_intent_id=payment_intent_id,
            amount=str(amount) if amount is not None else None,
            reverse_transfer=reverse_transfer,
        )
        refund = await self.gateway.refund(
            payment_intent_id,
            amount,
            idempotency_key=idempotency_key,
            reverse_transfer=reverse_transfer,
        )
        logger.info(
            "payment_refunded",
            booking_id=booking_id,
            refund_id=refund.refund_id,
            status=refund.status,
        )
        return refund

    async def settle_penalty(
        self,
        *,
        booking_id: int,
        payment_intent_id: str,
        refund_amount: Decimal,
        idempotency_key: str,
        reverse_transfer: bool = False,
    ) -> Union[GatewayIntent, GatewayRefund]:
        """Capture an authorized hold, then refund everything above the penalty.

        The capture runs under a key derived from the action key and the refund
        under the action key itself, so replaying the pair is safe.
        Returns the refund, or the captured intent when nothing is refunded.
        """
        captured = await self.capture(
            booking_id=booking_id,
            payment_intent_id=payment_intent_id,
            idempotency_key=_derived_key(idempotency_key, "capture"),
        )
        if refund_amount <= 0:
            return captured
        return await self.refund(
            booking_id=booking_id,
            payment_intent_id=payment_intent_id,
            amount=refund_amount,
            idempotency_key=idempotency_key,
            reverse_transfer=reverse_transfer,
        )

    async def transfer_driver_share(
        self,
        *,
        booking_id: int,
        amount: Decimal,
        destination_account_id: str,
        idempotency_key: str,
    ) -> GatewayTransfer:
        logger.info(
            "payment_transfer_request",
            booking_id=booking_id,
            amount=str(amount),
            destination=destination_account_id,
        )
        transfer = await self.gateway.transfer(
            amount,
            destination_account_id,
            metadata={"booking_id": str(booking_id)},
            idempotency_key=_derived_key(idempotency_key, "transfer"),
        )
        logger.info("payment_transferred", booking_id=booking_id, transfer_id=transfer.transfer_id)
        return transfer

    async def payout(self, *, amount: Decimal, stripe_account_id: str, idempotency_key: str) -> GatewayPayout:
        logger.info("payment_payout_request", amount=str(amount), stripe_account=stripe_account_id)
        payout = await self.gateway.payout(amount, stripe_account_id, idempotency_key=idempotency_key)
        logger.info("payment_payout_created", payout_id=payout.payout_id, status=payout.status)
        return payout

    async def retrieve(self, payment_intent_id: str) -> GatewayIntent:
        return await self.gateway.retrieve(payment_intent_id)

    def handle_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        event = self.gateway.parse_webhook(headers, body)
        logger.info("payment_webhook_parsed", provider=self.gateway.provider, event_type=event.type, event_id=event.id)
        return event

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
