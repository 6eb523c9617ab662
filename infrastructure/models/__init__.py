"""Infrastructure models package exports."""
from .base import Base, metadata
from .ride import RideModel
from .booking import BookingModel, TransitionIntentModel
from .payment import PaymentModel

__all__ = [
    "Base",
    "metadata",
    "RideModel",
    "BookingModel",
    "TransitionIntentModel",
    "PaymentModel",
]
