from .entity import TERMINAL_STATUSES, TRANSITIONS, Booking, BookingAction, BookingStatus
from .intent import HOLD_ACTION, GatewayOperation, IntentStatus, TransitionIntent

__all__ = [
    "Booking",
    "BookingAction",
    "BookingStatus",
    "TERMINAL_STATUSES",
    "TRANSITIONS",
    "HOLD_ACTION",
    "GatewayOperation",
    "IntentStatus",
    "TransitionIntent",
]
