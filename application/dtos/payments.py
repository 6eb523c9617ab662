"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are major units (EUR) everywhere above the gateway adapter; the
adapter converts to minor units on the wire.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class GatewayIntent(BaseModel):
    """Normalized PaymentIntent returned by hold/confirm/void/capture/retrieve."""

    intent_id: str
    # internal status (see shared.codes.payment_codes.PROVIDER_STATUS_TO_INTERNAL)
    status: str
    raw_status: str
    provider: str
    amount: Optional[Decimal] = None
    amount_received: Optional[Decimal] = None
    client_secret: Optional[str] = None


class GatewayRefund(BaseModel):
    refund_id: str
    status: str
    provider: str
    payment_intent_id: Optional[str] = None
    amount: Optional[Decimal] = None


class GatewayTransfer(BaseModel):
    transfer_id: str
    provider: str
    destination: str
    amount: Decimal


class GatewayPayout(BaseModel):
    payout_id: str
    status: str
    provider: str
    amount: Decimal


class WebhookEvent(BaseModel):
    id: str
    type: str
    provider: str
    data: dict[str, Any]
    # raw fields for traceability (optional)
    raw_headers: Optional[dict[str, Any]] = None
    raw_body: Optional[bytes] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class CommissionQuote(BaseModel):
    total_amount: Decimal
    commission_amount: Decimal
    driver_amount: Decimal
    commission_percent: Decimal
