"""Pure pricing rules: commission split and cancellation penalties."""
from .commission import (
    CommissionBreakdown,
    calculate_commission,
    round2,
    to_decimal,
    to_minor_units,
)
from .cancellation import RefundBreakdown, calculate_refund, cancellation_penalty

__all__ = [
    "CommissionBreakdown",
    "calculate_commission",
    "round2",
    "to_decimal",
    "to_minor_units",
    "RefundBreakdown",
    "calculate_refund",
    "cancellation_penalty",
]
