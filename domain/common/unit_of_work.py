"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.booking.repository import BookingRepository, TransitionIntentRepository
from domain.payment.repository import PaymentRepository
from domain.ride.repository import RideRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    booking_repository: BookingRepository
    ride_repository: RideRepository
    payment_repository: PaymentRepository
    intent_repository: TransitionIntentRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.booking_repository = None  # type: ignore[assignment]
        self.ride_repository = None  # type: ignore[assignment]
        self.payment_repository = None  # type: ignore[assignment]
        self.intent_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
