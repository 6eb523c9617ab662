"""
Cancellation penalty policy.

Two tiers, no interpolation: cancelling at least ``free_hours`` before
departure is free; anything later (including after departure) forfeits
``late_penalty`` of the amount.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from domain.common.clock import ensure_utc, utcnow
from domain.pricing.commission import Number, round2, to_decimal


FREE_CANCELLATION_HOURS = 24
LATE_CANCELLATION_PENALTY = Decimal("0.30")


def cancellation_penalty(
    departure_time: datetime,
    cancellation_time: Optional[datetime] = None,
    *,
    free_hours: int = FREE_CANCELLATION_HOURS,
    late_penalty: Decimal = LATE_CANCELLATION_PENALTY,
) -> Decimal:
    """Return the penalty fraction in [0, 1] for cancelling at ``cancellation_time``."""
    departure = ensure_utc(departure_time)
    cancelled_at = ensure_utc(cancellation_time) or utcnow()
    if departure - cancelled_at >= timedelta(hours=free_hours):
        return Decimal("0")
    return Decimal(late_penalty)


@dataclass(frozen=True)
class RefundBreakdown:
    original_amount: Decimal
    cancellation_penalty_percent: Decimal
    cancellation_penalty_amount: Decimal
    refund_amount: Decimal


def calculate_refund(amount: Number, penalty: Decimal) -> RefundBreakdown:
    original = round2(to_decimal(amount))
    penalty_amount = round2(original * penalty)
    return RefundBreakdown(
        original_amount=original,
        cancellation_penalty_percent=penalty,
        cancellation_penalty_amount=penalty_amount,
        refund_amount=original - penalty_amount,
    )
