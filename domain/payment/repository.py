"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Payment


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_active_for_booking(self, booking_id: int) -> Optional[Payment]:
        """获取预订当前的支付（pending/authorized/captured）"""
        pass

    @abstractmethod
    async def get_latest_for_booking(self, booking_id: int) -> Optional[Payment]:
        """获取预订最近一笔支付（含历史状态）"""
        pass

    @abstractmethod
    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Payment]:
        """根据 Stripe PaymentIntent ID 获取支付"""
        pass

    @abstractmethod
    async def list_by_booking(self, booking_id: int) -> List[Payment]:
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        pass
