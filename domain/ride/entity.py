"""
Ride aggregate - seat inventory and the driver's payout account.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException, InsufficientSeats
from domain.pricing.commission import round2, to_decimal


@dataclass
class Ride:
    id: Optional[int]
    driver_id: int
    departure_time: datetime
    available_seats: int
    price_per_seat: Decimal
    origin: str = ""
    destination: str = ""
    # Stripe Connect account receiving the driver share
    driver_payout_account: Optional[str] = None
    is_completed: bool = False
    is_cancelled: bool = False
    is_active: bool = True
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.available_seats < 0:
            raise DomainValidationException(
                f"available_seats must be >= 0: {self.available_seats}",
                field="available_seats",
            )
        self.price_per_seat = to_decimal(self.price_per_seat, field="price_per_seat")
        self.departure_time = ensure_utc(self.departure_time)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def is_bookable(self) -> bool:
        return self.is_active and not self.is_completed and not self.is_cancelled

    def total_price(self, seats: int) -> Decimal:
        return round2(self.price_per_seat * seats)

    def reserve_seats(self, seats: int) -> None:
        if seats > self.available_seats:
            raise InsufficientSeats(self.id or 0, seats, self.available_seats)
        self.available_seats -= seats
        self.updated_at = utcnow()

    def release_seats(self, seats: int) -> None:
        """Seats only return to inventory while the ride is still open."""
        if self.is_completed or self.is_cancelled:
            return
        self.available_seats += seats
        self.updated_at = utcnow()

    def mark_completed(self) -> None:
        self.is_completed = True
        self.is_active = False
        self.updated_at = utcnow()

    def mark_cancelled(self) -> None:
        self.is_cancelled = True
        self.is_active = False
        self.updated_at = utcnow()
