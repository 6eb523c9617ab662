"""
支付领域实体 - 支付聚合根

一笔预订最多对应一笔活动中的支付（pending/authorized/captured），
历史记录保留不删除。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import DomainValidationException
from domain.pricing.commission import CommissionBreakdown, round2


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "pending"          # 已创建，尚未获得授权
    AUTHORIZED = "authorized"    # 资金已冻结（manual capture）
    CAPTURED = "captured"        # 已扣款
    CANCELLED = "cancelled"      # 冻结已释放
    REFUNDED = "refunded"        # 已（部分）退款
    FAILED = "failed"            # 授权或扣款失败


ACTIVE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED})


@dataclass
class Payment:
    """
    支付聚合根

    业务规则：
    1. 金额必须大于0，且 platform_fee + driver_amount == amount
    2. 只有网关扣款成功后状态才会变为 captured
    3. 退款金额不能超过支付金额
    """

    id: Optional[int]
    booking_id: int
    passenger_id: int
    driver_id: int
    amount: Decimal
    platform_fee: Decimal
    driver_amount: Decimal
    currency: str = "EUR"
    status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: Optional[str] = None
    # 司机的 Stripe Connect 账户；为空时需要在完成后单独转账
    destination_account_id: Optional[str] = None
    transfer_id: Optional[str] = None
    refund_id: Optional[str] = None
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    failure_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    authorized_at: Optional[datetime] = None
    captured_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        self.status = PaymentStatus(self.status)
        self.amount = Decimal(str(self.amount))
        self.platform_fee = Decimal(str(self.platform_fee))
        self.driver_amount = Decimal(str(self.driver_amount))
        self.refunded_amount = Decimal(str(self.refunded_amount or 0))
        if self.amount <= 0:
            raise DomainValidationException(f"支付金额必须大于0: {self.amount}", field="amount")
        if round2(self.platform_fee + self.driver_amount) != round2(self.amount):
            raise DomainValidationException(
                "platform_fee + driver_amount must equal amount",
                field="amount",
                details={
                    "amount": str(self.amount),
                    "platform_fee": str(self.platform_fee),
                    "driver_amount": str(self.driver_amount),
                },
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"无效的货币代码: {self.currency}", field="currency")
        self.currency = self.currency.upper()
        for name in ("created_at", "updated_at", "authorized_at", "captured_at", "cancelled_at", "refunded_at"):
            setattr(self, name, ensure_utc(getattr(self, name)))
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def from_breakdown(
        cls,
        breakdown: CommissionBreakdown,
        *,
        booking_id: int,
        passenger_id: int,
        driver_id: int,
        currency: str = "EUR",
        destination_account_id: Optional[str] = None,
    ) -> "Payment":
        return cls(
            id=None,
            booking_id=booking_id,
            passenger_id=passenger_id,
            driver_id=driver_id,
            amount=breakdown.total_amount,
            platform_fee=breakdown.commission_amount,
            driver_amount=breakdown.driver_amount,
            currency=currency,
            destination_account_id=destination_account_id,
            metadata={"commission_percent": str(breakdown.commission_percent)},
        )

    @property
    def commission(self) -> CommissionBreakdown:
        pct = Decimal(str(self.metadata.get("commission_percent", "0")))
        return CommissionBreakdown(
            total_amount=self.amount,
            commission_amount=self.platform_fee,
            driver_amount=self.driver_amount,
            commission_percent=pct,
        )

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def _require(self, *allowed: PaymentStatus, target: str) -> None:
        if self.status not in allowed:
            raise DomainValidationException(
                f"无法从状态 {self.status.value} 转换为 {target}",
                field="status",
            )

    def mark_authorized(self, payment_intent_id: str) -> None:
        self._require(PaymentStatus.PENDING, target="authorized")
        self.status = PaymentStatus.AUTHORIZED
        self.payment_intent_id = payment_intent_id
        self.authorized_at = utcnow()
        self.updated_at = self.authorized_at
        self.failure_reason = None

    def mark_captured(self) -> None:
        self._require(PaymentStatus.AUTHORIZED, target="captured")
        self.status = PaymentStatus.CAPTURED
        self.captured_at = utcnow()
        self.updated_at = self.captured_at

    def mark_cancelled(self) -> None:
        self._require(PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, target="cancelled")
        self.status = PaymentStatus.CANCELLED
        self.cancelled_at = utcnow()
        self.updated_at = self.cancelled_at

    def mark_failed(self, reason: Optional[str] = None) -> None:
        self._require(PaymentStatus.PENDING, PaymentStatus.AUTHORIZED, target="failed")
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.updated_at = utcnow()

    def apply_refund(self, refund_amount: Decimal, refund_id: Optional[str]) -> None:
        """
        记录退款结果

        只有已扣款的资金可以退款；未扣款的冻结应当释放（mark_cancelled）或先扣款。
        """
        self._require(PaymentStatus.CAPTURED, target="refunded")
        refund_amount = round2(Decimal(str(refund_amount)))
        if refund_amount <= 0 or refund_amount > self.amount - self.refunded_amount:
            raise DomainValidationException(
                f"无效的退款金额 {refund_amount}，可退金额 {self.amount - self.refunded_amount}",
                field="refund_amount",
            )
        self.refunded_amount += refund_amount
        self.refund_id = refund_id
        self.status = PaymentStatus.REFUNDED
        self.refunded_at = utcnow()
        self.updated_at = self.refunded_at

    @property
    def retained_amount(self) -> Decimal:
        """扣款后未退还的金额"""
        if self.status not in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            return Decimal("0")
        return round2(self.amount - self.refunded_amount)

    def record_transfer(self, transfer_id: str) -> None:
        self.transfer_id = transfer_id
        self.updated_at = utcnow()

    def sync_from_gateway(self, status: PaymentStatus, reason: Optional[str] = None) -> bool:
        """
        根据网关推送（webhook）同步状态，返回是否发生变化

        只接受向前推进的转换，重复或过期事件直接忽略。
        """
        allowed = {
            PaymentStatus.AUTHORIZED: {PaymentStatus.PENDING},
            PaymentStatus.CAPTURED: {PaymentStatus.AUTHORIZED},
            PaymentStatus.CANCELLED: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED},
            PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.AUTHORIZED},
        }
        if self.status not in allowed.get(status, set()):
            return False
        if status == PaymentStatus.AUTHORIZED:
            self.mark_authorized(self.payment_intent_id or "")
        elif status == PaymentStatus.CAPTURED:
            self.mark_captured()
        elif status == PaymentStatus.CANCELLED:
            self.mark_cancelled()
        else:
            self.mark_failed(reason)
        return True

    def update_metadata(self, key: str, value: Any) -> None:
        self.metadata[key] = value
        self.updated_at = utcnow()
