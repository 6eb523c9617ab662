"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- Holds are manual-capture PaymentIntents confirmed off-session against a
  saved payment method. With a Connect destination the platform fee is taken
  up front via ``application_fee_amount``.
- The SDK is synchronous; each call runs in a worker thread through
  ``anyio.to_thread.run_sync`` so the event loop is never blocked.
- Each adapter owns a ``stripe.StripeClient`` instance (key, timeout, no SDK
  retries); module-level ``stripe.*`` globals are never touched. Idempotency
  keys and the Connect account go in per-request options.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header.
"""
from __future__ import annotations

import functools
import json
from decimal import Decimal
from typing import Any, Callable, Optional

import anyio
import stripe

from application.dtos.payments import (
    GatewayIntent,
    GatewayPayout,
    GatewayRefund,
    GatewayTransfer,
    WebhookEvent,
)
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import GatewayError, GatewayNotConfigured, WebhookSignatureError
from domain.pricing.commission import CommissionBreakdown, to_minor_units
from infrastructure.external.payments.base import BasePaymentClient


logger = get_logger(__name__)


class StripeClient(BasePaymentClient):
    provider = "stripe"
    retryable = (stripe.APIConnectionError, stripe.RateLimitError)

    def __init__(self, config: Optional[PaymentSettings] = None):
        config = config or payment_settings
        super().__init__(retry={"max": config.retry.max, "base": config.retry.base_backoff})
        self._secret_key = config.stripe.secret_key
        self._webhook_secret = config.stripe.webhook_secret
        self._currency = config.currency.lower()
        self._webhook_tolerance = config.webhook.tolerance_seconds
        self._stripe: Optional[stripe.StripeClient] = None
        if self._secret_key:
            # retries are owned by tenacity above, never by the SDK
            self._stripe = stripe.StripeClient(
                self._secret_key,
                stripe_version=config.stripe.api_version,
                http_client=stripe.RequestsClient(timeout=config.timeouts.total),
                max_network_retries=0,
            )

    @property
    def configured(self) -> bool:
        return self._stripe is not None

    @property
    def sdk(self) -> stripe.StripeClient:
        if self._stripe is None:
            raise GatewayNotConfigured(self.provider, "STRIPE__SECRET_KEY not configured")
        return self._stripe

    @staticmethod
    def _options(idempotency_key: Optional[str] = None, **extra: Any) -> dict[str, Any]:
        opts: dict[str, Any] = {}
        if idempotency_key:
            opts["idempotency_key"] = idempotency_key
        opts.update({k: v for k, v in extra.items() if v is not None})
        return opts

    async def _call(self, operation: str, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
        call = functools.partial(fn, *args, **kwargs)

        async def run():
            return await anyio.to_thread.run_sync(call)

        try:
            return await self._retry(run)
        except stripe.StripeError as exc:
            code = getattr(exc, "code", None)
            message = getattr(exc, "user_message", None) or str(exc)
            logger.warning(
                "stripe_call_failed",
                operation=operation,
                provider_code=code,
                http_status=getattr(exc, "http_status", None),
                error=message,
            )
            raise GatewayError(
                message,
                provider=self.provider,
                provider_code=code,
                operation=operation,
                details={"request_id": getattr(exc, "request_id", None)},
            ) from exc

    def _intent(self, pi: Any) -> GatewayIntent:
        raw = str(pi["status"])
        return GatewayIntent(
            intent_id=str(pi["id"]),
            status=self._map_status(raw),
            raw_status=raw,
            provider=self.provider,
            amount=self._from_minor(pi.get("amount")),
            amount_received=self._from_minor(pi.get("amount_received")),
            client_secret=pi.get("client_secret"),
        )

    async def create_hold(
        self,
        amount: Decimal,
        payment_method_id: str,
        customer_id: Optional[str],
        destination_account_id: Optional[str] = None,
        *,
        commission: Optional[CommissionBreakdown] = None,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        params: dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": self._currency,
            "payment_method": payment_method_id,
            "confirm": True,
            "off_session": True,
            "capture_method": "manual",
            "metadata": metadata or {},
        }
        if customer_id:
            params["customer"] = customer_id
        if destination_account_id:
            params["transfer_data"] = {"destination": destination_account_id}
            if commission is not None:
                params["application_fee_amount"] = to_minor_units(commission.commission_amount)
        pi = await self._call(
            "create_hold",
            self.sdk.payment_intents.create,
            params=params,
            options=self._options(idempotency_key),
        )
        self._log("stripe_hold_created", payment_intent_id=pi["id"], status=pi["status"])
        return self._intent(pi)

    async def confirm(self, payment_intent_id: str, idempotency_key: Optional[str] = None) -> GatewayIntent:
        pi = await self._call(
            "confirm",
            self.sdk.payment_intents.confirm,
            payment_intent_id,
            options=self._options(idempotency_key),
        )
        return self._intent(pi)

    async def void_hold(self, payment_intent_id: str, idempotency_key: Optional[str] = None) -> GatewayIntent:
        pi = await self._call(
            "void_hold",
            self.sdk.payment_intents.cancel,
            payment_intent_id,
            options=self._options(idempotency_key),
        )
        self._log("stripe_hold_voided", payment_intent_id=payment_intent_id)
        return self._intent(pi)

    async def capture(
        self,
        payment_intent_id: str,
        amount_to_capture: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        params: dict[str, Any] = {}
        if amount_to_capture is not None:
            params["amount_to_capture"] = to_minor_units(amount_to_capture)
        pi = await self._call(
            "capture",
            self.sdk.payment_intents.capture,
            payment_intent_id,
            params=params,
            options=self._options(idempotency_key),
        )
        self._log("stripe_intent_captured", payment_intent_id=payment_intent_id, status=pi["status"])
        return self._intent(pi)

    async def refund(
        self,
        payment_intent_id: str,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
        *,
        reverse_transfer: bool = False,
    ) -> GatewayRefund:
        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)
        if reverse_transfer:
            # destination charge: pull the driver's and the platform's share back pro rata
            params["reverse_transfer"] = True
            params["refund_application_fee"] = True
        refund = await self._call(
            "refund",
            self.sdk.refunds.create,
            params=params,
            options=self._options(idempotency_key),
        )
        self._log("stripe_refund_created", refund_id=refund["id"], payment_intent_id=payment_intent_id)
        return GatewayRefund(
            refund_id=str(refund["id"]),
            status=str(refund.get("status") or ""),
            provider=self.provider,
            payment_intent_id=payment_intent_id,
            amount=self._from_minor(refund.get("amount")),
        )

    async def transfer(
        self,
        amount: Decimal,
        destination_account_id: str,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayTransfer:
        transfer = await self._call(
            "transfer",
            self.sdk.transfers.create,
            params={
                "amount": to_minor_units(amount),
                "currency": self._currency,
                "destination": destination_account_id,
                "metadata": metadata or {},
            },
            options=self._options(idempotency_key),
        )
        self._log("stripe_transfer_created", transfer_id=transfer["id"], destination=destination_account_id)
        return GatewayTransfer(
            transfer_id=str(transfer["id"]),
            provider=self.provider,
            destination=destination_account_id,
            amount=Decimal(str(amount)),
        )

    async def payout(
        self,
        amount: Decimal,
        stripe_account_id: str,
        idempotency_key: Optional[str] = None,
    ) -> GatewayPayout:
        payout = await self._call(
            "payout",
            self.sdk.payouts.create,
            params={"amount": to_minor_units(amount), "currency": self._currency},
            options=self._options(idempotency_key, stripe_account=stripe_account_id),
        )
        self._log("stripe_payout_created", payout_id=payout["id"], stripe_account=stripe_account_id)
        return GatewayPayout(
            payout_id=str(payout["id"]),
            status=str(payout.get("status") or ""),
            provider=self.provider,
            amount=Decimal(str(amount)),
        )

    async def retrieve(self, payment_intent_id: str) -> GatewayIntent:
        pi = await self._call("retrieve", self.sdk.payment_intents.retrieve, payment_intent_id)
        return self._intent(pi)

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        if not self._webhook_secret:
            raise GatewayNotConfigured(self.provider, "STRIPE__WEBHOOK_SECRET not configured")
        sig = next((v for k, v in headers.items() if k.lower() == "stripe-signature"), None)
        if not sig:
            raise WebhookSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = stripe.Webhook.construct_event(
                payload=body,
                sig_header=sig,
                secret=self._webhook_secret,
                tolerance=self._webhook_tolerance,
            )
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise WebhookSignatureError(str(exc), provider=self.provider) from exc
        # signature verified above; keep the payload as plain dicts
        payload = json.loads(body)
        return WebhookEvent(
            id=str(event["id"]),
            type=str(event["type"]),
            provider=self.provider,
            data=payload.get("data") or {},
            raw_headers=dict(headers),
            raw_body=body,
        )
