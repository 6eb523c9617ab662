"""
Booking lifecycle DTOs returned by BookingLifecycleService.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class PaymentView(BaseModel):
    id: Optional[int] = None
    status: str
    amount: Decimal
    platform_fee: Decimal
    driver_amount: Decimal
    currency: str
    payment_intent_id: Optional[str] = None
    transfer_id: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_amount: Decimal = Decimal("0")
    failure_reason: Optional[str] = None


class RefundView(BaseModel):
    original_amount: Decimal
    # fraction of the amount kept as penalty, e.g. 0.30
    cancellation_penalty_percent: Decimal
    cancellation_penalty_amount: Decimal
    refund_amount: Decimal
    refund_id: Optional[str] = None
    error: Optional[str] = None


class BookingTransitionResult(BaseModel):
    booking_id: int
    status: str
    previous_status: Optional[str] = None
    version: int
    available_seats: Optional[int] = None
    payment: Optional[PaymentView] = None
    refund: Optional[RefundView] = None


class BookingRequest(BaseModel):
    ride_id: int
    seats: int = Field(default=1, ge=1)
    payment_method_id: Optional[str] = None
    customer_id: Optional[str] = None
    notes: Optional[str] = None


class BookingCreated(BaseModel):
    booking_id: int
    ride_id: int
    status: str
    seats: int
    total_price: Decimal
    # authorized / failed / no_payment_method
    payment_status: str
    payment: Optional[PaymentView] = None


class RideBookingOutcome(BaseModel):
    booking_id: int
    status: str
    amount: Optional[Decimal] = None
    refund_amount: Optional[Decimal] = None
    error: Optional[str] = None


class RideCompletionResult(BaseModel):
    ride_id: int
    completed_at: datetime
    captured: list[RideBookingOutcome] = Field(default_factory=list)
    failed: list[RideBookingOutcome] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)


class RideCancellationResult(BaseModel):
    ride_id: int
    cancelled_at: datetime
    cancelled: list[RideBookingOutcome] = Field(default_factory=list)
    failed: list[RideBookingOutcome] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)
