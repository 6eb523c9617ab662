"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 关联信息
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True, comment="预订ID")
    passenger_id = Column(Integer, nullable=False, index=True, comment="乘客用户ID")
    driver_id = Column(Integer, nullable=False, index=True, comment="司机用户ID")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=10, scale=2), nullable=False, comment="支付总额")
    platform_fee = Column(Numeric(precision=10, scale=2), nullable=False, comment="平台佣金")
    driver_amount = Column(Numeric(precision=10, scale=2), nullable=False, comment="司机所得")
    currency = Column(String(3), nullable=False, default="EUR", comment="货币代码 ISO-4217")

    # Stripe 引用
    payment_intent_id = Column(String(100), nullable=True, index=True, comment="Stripe PaymentIntent ID")
    destination_account_id = Column(String(100), nullable=True, comment="Stripe Connect 目标账户")
    transfer_id = Column(String(100), nullable=True)
    refund_id = Column(String(100), nullable=True)

    # 退款信息
    refunded_amount = Column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=0,
        comment="已退款金额"
    )

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/authorized/captured/cancelled/refunded/failed"
    )

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    authorized_at = Column(DateTime(timezone=True), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    # 失败原因
    failure_reason = Column(Text, nullable=True, comment="失败原因")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 索引
    __table_args__ = (
        Index("ix_payments_booking_status", "booking_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, booking_id={self.booking_id}, "
            f"amount={self.amount}, status='{self.status}')>"
        )
