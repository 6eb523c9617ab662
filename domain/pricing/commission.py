"""
Platform commission split.

All arithmetic uses Decimal at two decimal places (the EUR minor unit). The
driver share is derived by subtraction so that

    commission_amount + driver_amount == total_amount

holds exactly for every accepted input.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from domain.common.exceptions import InvalidAmount


Number = Union[Decimal, int, float, str]

TWO_PLACES = Decimal("0.01")
DEFAULT_COMMISSION_PERCENT = Decimal("15")


def to_decimal(value: Number, *, field: str = "amount") -> Decimal:
    """Coerce a monetary input to a finite Decimal (floats go through str)."""
    if isinstance(value, bool):
        raise InvalidAmount(value, field=field)
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(repr(value))
        elif isinstance(value, (int, str)):
            result = Decimal(value)
        else:
            raise InvalidAmount(value, field=field)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(value, field=field) from exc
    if not result.is_finite():
        raise InvalidAmount(value, field=field, reason=f"{field} must be finite")
    return result


def round2(value: Decimal) -> Decimal:
    """Round half-up to the minor currency unit."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Number) -> int:
    """Major units (euros) to integer minor units (cents)."""
    return int((round2(to_decimal(amount)) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CommissionBreakdown:
    total_amount: Decimal
    commission_amount: Decimal
    driver_amount: Decimal
    commission_percent: Decimal

    def as_dict(self) -> dict[str, str]:
        return {
            "total_amount": str(self.total_amount),
            "commission_amount": str(self.commission_amount),
            "driver_amount": str(self.driver_amount),
            "commission_percent": str(self.commission_percent),
        }


def calculate_commission(
    amount: Number,
    commission_percent: Number = DEFAULT_COMMISSION_PERCENT,
) -> CommissionBreakdown:
    """Split a gross amount into platform commission and driver payout.

    Raises:
        InvalidAmount: amount is not a positive finite number, or the
            percentage falls outside the open interval (0, 100).
    """
    total = round2(to_decimal(amount))
    if total <= 0:
        raise InvalidAmount(amount, reason=f"Amount must be positive: {amount}")

    pct = to_decimal(commission_percent, field="commission_percent")
    if not (Decimal(0) < pct < Decimal(100)):
        raise InvalidAmount(
            commission_percent,
            field="commission_percent",
            reason=f"Commission percent must be within (0, 100): {commission_percent}",
        )

    commission = round2(total * pct / Decimal(100))
    return CommissionBreakdown(
        total_amount=total,
        commission_amount=commission,
        driver_amount=total - commission,
        commission_percent=pct,
    )
