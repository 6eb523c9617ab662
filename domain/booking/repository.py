"""
预订仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Booking, BookingStatus
from .intent import TransitionIntent


class BookingRepository(ABC):

    @abstractmethod
    async def create(self, booking: Booking) -> Booking:
        """创建预订"""
        pass

    @abstractmethod
    async def get_by_id(self, booking_id: int) -> Optional[Booking]:
        """根据ID获取预订"""
        pass

    @abstractmethod
    async def find_active_for_passenger(self, ride_id: int, passenger_id: int) -> Optional[Booking]:
        """查找乘客在该行程上 pending/confirmed 的预订"""
        pass

    @abstractmethod
    async def list_by_ride(self, ride_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        pass

    @abstractmethod
    async def update(self, booking: Booking) -> Booking:
        """
        按版本号更新（乐观锁）

        WHERE id = :id AND version = :booking.version；成功后版本号加一，
        未命中任何行时抛出 ConcurrentModification。
        """
        pass


class TransitionIntentRepository(ABC):

    @abstractmethod
    async def create(self, intent: TransitionIntent) -> TransitionIntent:
        pass

    @abstractmethod
    async def get_by_id(self, intent_id: int) -> Optional[TransitionIntent]:
        pass

    @abstractmethod
    async def get_pending_for_booking(self, booking_id: int) -> Optional[TransitionIntent]:
        pass

    @abstractmethod
    async def list_pending(self, older_than: datetime, limit: int = 100) -> List[TransitionIntent]:
        """返回创建时间早于 older_than 的 pending 意图，按创建时间升序"""
        pass

    @abstractmethod
    async def update(self, intent: TransitionIntent) -> TransitionIntent:
        pass
