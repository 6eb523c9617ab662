"""
预订与状态转换意图数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, JSON
from datetime import datetime, timezone

from .base import Base


class BookingModel(Base):
    """
    预订数据库模型

    所有业务规则都在 domain.booking.entity.Booking 中
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False, index=True, comment="行程ID")
    passenger_id = Column(Integer, nullable=False, index=True, comment="乘客用户ID")
    seats = Column(Integer, nullable=False, default=1, comment="预订座位数")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="预订状态: pending/confirmed/rejected/cancelled/completed"
    )
    notes = Column(Text, nullable=True)
    passenger_alerted = Column(Boolean, nullable=False, default=False)
    driver_alerted = Column(Boolean, nullable=False, default=False)

    # 乐观锁版本号
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_bookings_ride_passenger_status", "ride_id", "passenger_id", "status"),
    )

    def __repr__(self):
        return f"<BookingModel(id={self.id}, ride_id={self.ride_id}, status='{self.status}', version={self.version})>"


class TransitionIntentModel(Base):
    """网关调用前写入的 outbox 记录"""
    __tablename__ = "booking_transition_intents"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    action = Column(String(20), nullable=False, comment="预订动作: hold/accept/reject/cancel/complete")
    operation = Column(String(20), nullable=False, comment="网关操作: hold/void/capture/refund/settle")
    idempotency_key = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending", comment="pending/succeeded/failed")
    payment_intent_id = Column(String(100), nullable=True)
    details = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_transition_intents_status_created", "status", "created_at"),
    )

    def __repr__(self):
        return f"<TransitionIntentModel(id={self.id}, booking_id={self.booking_id}, action='{self.action}', status='{self.status}')>"
