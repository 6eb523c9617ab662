"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
All amounts are major units; implementations convert at their boundary.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    GatewayIntent,
    GatewayPayout,
    GatewayRefund,
    GatewayTransfer,
    WebhookEvent,
)
from domain.pricing.commission import CommissionBreakdown


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the card processor.

    Implementations should be async and side-effect free beyond IO. Failures
    surface as ``GatewayError``; a missing credential as ``GatewayNotConfigured``.
    """

    provider: str

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
    ) -> GatewayIntent: ...

    async def confirm(self, payment_intent_id: str, idempotency_key: Optional[str] = None) -> GatewayIntent: ...

    async def void_hold(self, payment_intent_id: str, idempotency_key: Optional[str] = None) -> GatewayIntent: ...

    async def capture(
        self,
        payment_intent_id: str,
        amount_to_capture: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent: ...

    async def refund(
        self,
        payment_intent_id: str,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
        *,
        reverse_transfer: bool = False,
    ) -> GatewayRefund: ...

    async def transfer(
        self,
        amount: Decimal,
        destination_account_id: str,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayTransfer: ...

    async def payout(
        self,
        amount: Decimal,
        stripe_account_id: str,
        idempotency_key: Optional[str] = None,
    ) -> GatewayPayout: ...

    async def retrieve(self, payment_intent_id: str) -> GatewayIntent: ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...
