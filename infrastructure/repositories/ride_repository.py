"""
行程仓储实现 - 使用SQLAlchemy实现数据访问
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.clock import utcnow
from domain.common.exceptions import ConcurrentModification
from domain.ride.entity import Ride
from domain.ride.repository import RideRepository
from infrastructure.models.ride import RideModel


logger = get_logger(__name__)


class SQLAlchemyRideRepository(RideRepository):
    """行程仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RideModel) -> Ride:
        """将数据库模型转换为领域实体"""
        return Ride(
            id=model.id,
            driver_id=model.driver_id,
            departure_time=model.departure_time,
            available_seats=model.available_seats,
            price_per_seat=Decimal(str(model.price_per_seat)),
            origin=model.origin,
            destination=model.destination,
            driver_payout_account=model.driver_payout_account,
            is_completed=model.is_completed,
            is_cancelled=model.is_cancelled,
            is_active=model.is_active,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Ride) -> RideModel:
        """将领域实体转换为数据库模型"""
        return RideModel(
            id=entity.id,
            driver_id=entity.driver_id,
            departure_time=entity.departure_time,
            available_seats=entity.available_seats,
            price_per_seat=entity.price_per_seat,
            origin=entity.origin,
            destination=entity.destination,
            driver_payout_account=entity.driver_payout_account,
            is_completed=entity.is_completed,
            is_cancelled=entity.is_cancelled,
            is_active=entity.is_active,
            version=entity.version,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, ride: Ride) -> Ride:
        """创建行程"""
        db_ride = self._to_model(ride)
        self.session.add(db_ride)
        await self.session.flush()
        await self.session.refresh(db_ride)
        return self._to_entity(db_ride)

    async def get_by_id(self, ride_id: int) -> Optional[Ride]:
        """根据ID获取行程"""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        db_ride = result.scalar_one_or_none()
        return self._to_entity(db_ride) if db_ride else None

    async def update(self, ride: Ride) -> Ride:
        """按版本号更新；成功后 ride.version 加一"""
        expected = ride.version
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride.id, RideModel.version == expected)
            .values(
                available_seats=ride.available_seats,
                driver_payout_account=ride.driver_payout_account,
                is_completed=ride.is_completed,
                is_cancelled=ride.is_cancelled,
                is_active=ride.is_active,
                version=RideModel.version + 1,
                updated_at=ride.updated_at or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("ride_version_conflict", ride_id=ride.id, expected_version=expected)
            raise ConcurrentModification("Ride", ride.id, expected)
        ride.version = expected + 1
        return ride
