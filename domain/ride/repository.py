"""
行程仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Ride


class RideRepository(ABC):

    @abstractmethod
    async def create(self, ride: Ride) -> Ride:
        """创建行程"""
        pass

    @abstractmethod
    async def get_by_id(self, ride_id: int) -> Optional[Ride]:
        """根据ID获取行程"""
        pass

    @abstractmethod
    async def update(self, ride: Ride) -> Ride:
        """按版本号更新（乐观锁），版本不一致时抛出 ConcurrentModification"""
        pass
