"""
状态转换意图（outbox）

每次调用支付网关之前先提交一条 pending 意图，网关返回后再标记为
succeeded / failed。进程在两者之间崩溃时，遗留的 pending 意图由对账任务处理。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException


class IntentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class GatewayOperation(str, Enum):
    HOLD = "hold"
    VOID = "void"
    CAPTURE = "capture"
    REFUND = "refund"
    # 确认后的取消：先扣款，再退还罚金以外的部分
    SETTLE = "settle"


# request_booking 下的授权冻结没有对应的 BookingAction
HOLD_ACTION = "hold"


@dataclass
class TransitionIntent:
    id: Optional[int]
    booking_id: int
    action: str
    operation: GatewayOperation
    idempotency_key: str
    status: IntentStatus = IntentStatus.PENDING
    payment_id: Optional[int] = None
    payment_intent_id: Optional[str] = None
    # 网关调用参数（退款金额、罚金比例、支付方式等），对账重放时使用
    details: dict = field(default_factory=dict)
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = IntentStatus(self.status)
        self.operation = GatewayOperation(self.operation)
        if self.details is None:
            self.details = {}
        self.created_at = ensure_utc(self.created_at)
        self.resolved_at = ensure_utc(self.resolved_at)

    @property
    def is_pending(self) -> bool:
        return self.status == IntentStatus.PENDING

    def _resolve(self, status: IntentStatus) -> None:
        if not self.is_pending:
            raise DomainValidationException(
                f"Intent {self.id} already resolved as {self.status.value}",
                field="status",
            )
        self.status = status
        self.resolved_at = utcnow()

    def mark_succeeded(self, payment_intent_id: Optional[str] = None) -> None:
        self._resolve(IntentStatus.SUCCEEDED)
        if payment_intent_id:
            self.payment_intent_id = payment_intent_id

    def mark_failed(self, error: str) -> None:
        self._resolve(IntentStatus.FAILED)
        self.error = error
