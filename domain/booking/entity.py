"""
预订领域实体 - 预订聚合根与状态机

状态机：
    pending   --accept-->   confirmed
    pending   --reject-->   rejected
    pending   --cancel-->   cancelled
    confirmed --complete--> completed
    confirmed --cancel-->   cancelled

rejected / cancelled / completed 为终态，不允许任何转换。
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException, InvalidStateTransition


class BookingStatus(str, Enum):
    """预订状态枚举"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BookingAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"


TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.COMPLETED})

TRANSITIONS: dict[tuple[BookingStatus, BookingAction], BookingStatus] = {
    (BookingStatus.PENDING, BookingAction.ACCEPT): BookingStatus.CONFIRMED,
    (BookingStatus.PENDING, BookingAction.REJECT): BookingStatus.REJECTED,
    (BookingStatus.PENDING, BookingAction.CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingAction.COMPLETE): BookingStatus.COMPLETED,
    (BookingStatus.CONFIRMED, BookingAction.CANCEL): BookingStatus.CANCELLED,
}


@dataclass
class Booking:
    """
    预订聚合根

    业务规则：
    1. 座位数必须 >= 1
    2. 状态转换必须遵循 TRANSITIONS，离开 pending 后不可回退
    3. 预订不做物理删除，作为历史记录保留
    """

    id: Optional[int]
    ride_id: int
    passenger_id: int
    seats: int
    status: BookingStatus = BookingStatus.PENDING
    notes: Optional[str] = None
    passenger_alerted: bool = False
    driver_alerted: bool = False
    # 乐观锁版本号，由仓储在每次更新时递增
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.seats < 1:
            raise DomainValidationException(f"座位数必须大于等于1: {self.seats}", field="seats")
        self.status = BookingStatus(self.status)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def next_status(self, action: BookingAction | str) -> BookingStatus:
        """返回执行 action 后的目标状态；不允许时抛出 InvalidStateTransition"""
        action = BookingAction(action)
        target = TRANSITIONS.get((self.status, action))
        if target is None:
            raise InvalidStateTransition(self.id, self.status.value, action.value)
        return target

    def apply(self, action: BookingAction | str) -> BookingStatus:
        """执行状态转换，返回转换前的状态"""
        target = self.next_status(action)
        previous = self.status
        self.status = target
        self.updated_at = utcnow()
        return previous
