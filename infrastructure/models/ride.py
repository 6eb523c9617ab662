"""
行程数据库模型
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from datetime import datetime, timezone

from .base import Base


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, nullable=False, index=True, comment="司机用户ID")
    driver_payout_account = Column(String(100), nullable=True, comment="司机 Stripe Connect 账户")

    origin = Column(String(255), nullable=False, default="", comment="出发地")
    destination = Column(String(255), nullable=False, default="", comment="目的地")
    departure_time = Column(DateTime(timezone=True), nullable=False, index=True, comment="出发时间")

    available_seats = Column(Integer, nullable=False, comment="剩余座位")
    price_per_seat = Column(Numeric(precision=10, scale=2), nullable=False, comment="每座价格")

    is_completed = Column(Boolean, nullable=False, default=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

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

    def __repr__(self):
        return f"<RideModel(id={self.id}, driver_id={self.driver_id}, seats={self.available_seats})>"
