"""
预订仓储实现 - 使用SQLAlchemy实现数据访问

更新采用乐观锁：UPDATE ... WHERE id = :id AND version = :version，
影响行数为 0 说明记录已被并发修改。
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.booking.entity import Booking, BookingStatus
from domain.booking.intent import IntentStatus, TransitionIntent
from domain.booking.repository import BookingRepository, TransitionIntentRepository
from domain.common.clock import utcnow
from domain.common.exceptions import ConcurrentModification
from infrastructure.models.booking import BookingModel, TransitionIntentModel


logger = get_logger(__name__)

ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class SQLAlchemyBookingRepository(BookingRepository):
    """预订仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BookingModel) -> Booking:
        """将数据库模型转换为领域实体"""
        return Booking(
            id=model.id,
            ride_id=model.ride_id,
            passenger_id=model.passenger_id,
            seats=model.seats,
            status=BookingStatus(model.status),
            notes=model.notes,
            passenger_alerted=model.passenger_alerted,
            driver_alerted=model.driver_alerted,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Booking) -> BookingModel:
        """将领域实体转换为数据库模型"""
        return BookingModel(
            id=entity.id,
            ride_id=entity.ride_id,
            passenger_id=entity.passenger_id,
            seats=entity.seats,
            status=entity.status.value,
            notes=entity.notes,
            passenger_alerted=entity.passenger_alerted,
            driver_alerted=entity.driver_alerted,
            version=entity.version,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, booking: Booking) -> Booking:
        """创建预订"""
        db_booking = self._to_model(booking)
        self.session.add(db_booking)
        await self.session.flush()
        await self.session.refresh(db_booking)
        logger.info("booking_created", booking_id=db_booking.id, ride_id=db_booking.ride_id)
        return self._to_entity(db_booking)

    async def get_by_id(self, booking_id: int) -> Optional[Booking]:
        """根据ID获取预订"""
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .execution_options(populate_existing=True)
        )
        db_booking = result.scalar_one_or_none()
        return self._to_entity(db_booking) if db_booking else None

    async def find_active_for_passenger(self, ride_id: int, passenger_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(ACTIVE_BOOKING_STATUSES),
            )
            .limit(1)
        )
        db_booking = result.scalar_one_or_none()
        return self._to_entity(db_booking) if db_booking else None

    async def list_by_ride(self, ride_id: int, status: Optional[BookingStatus] = None) -> List[Booking]:
        query = select(BookingModel).where(BookingModel.ride_id == ride_id)
        if status:
            query = query.where(BookingModel.status == status.value)
        result = await self.session.execute(query.order_by(BookingModel.id))
        return [self._to_entity(b) for b in result.scalars().all()]

    async def update(self, booking: Booking) -> Booking:
        """按版本号更新；成功后 booking.version 加一"""
        expected = booking.version
        result = await self.session.execute(
            update(BookingModel)
            .where(BookingModel.id == booking.id, BookingModel.version == expected)
            .values(
                status=booking.status.value,
                notes=booking.notes,
                passenger_alerted=booking.passenger_alerted,
                driver_alerted=booking.driver_alerted,
                version=BookingModel.version + 1,
                updated_at=booking.updated_at or utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("booking_version_conflict", booking_id=booking.id, expected_version=expected)
            raise ConcurrentModification("Booking", booking.id, expected)
        booking.version = expected + 1
        return booking


class SQLAlchemyTransitionIntentRepository(TransitionIntentRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TransitionIntentModel) -> TransitionIntent:
        return TransitionIntent(
            id=model.id,
            booking_id=model.booking_id,
            action=model.action,
            operation=model.operation,
            idempotency_key=model.idempotency_key,
            status=IntentStatus(model.status),
            payment_id=model.payment_id,
            payment_intent_id=model.payment_intent_id,
            details=model.details or {},
            error=model.error,
            created_at=model.created_at,
            resolved_at=model.resolved_at,
        )

    async def create(self, intent: TransitionIntent) -> TransitionIntent:
        db_intent = TransitionIntentModel(
            booking_id=intent.booking_id,
            payment_id=intent.payment_id,
            action=intent.action,
            operation=intent.operation.value,
            idempotency_key=intent.idempotency_key,
            status=intent.status.value,
            payment_intent_id=intent.payment_intent_id,
            details=intent.details,
            error=intent.error,
            created_at=intent.created_at or utcnow(),
        )
        self.session.add(db_intent)
        await self.session.flush()
        await self.session.refresh(db_intent)
        return self._to_entity(db_intent)

    async def get_by_id(self, intent_id: int) -> Optional[TransitionIntent]:
        result = await self.session.execute(
            select(TransitionIntentModel)
            .where(TransitionIntentModel.id == intent_id)
            .execution_options(populate_existing=True)
        )
        db_intent = result.scalar_one_or_none()
        return self._to_entity(db_intent) if db_intent else None

    async def get_pending_for_booking(self, booking_id: int) -> Optional[TransitionIntent]:
        result = await self.session.execute(
            select(TransitionIntentModel)
            .where(
                TransitionIntentModel.booking_id == booking_id,
                TransitionIntentModel.status == IntentStatus.PENDING.value,
            )
            .order_by(TransitionIntentModel.id.desc())
            .limit(1)
        )
        db_intent = result.scalar_one_or_none()
        return self._to_entity(db_intent) if db_intent else None

    async def list_pending(self, older_than: datetime, limit: int = 100) -> List[TransitionIntent]:
        result = await self.session.execute(
            select(TransitionIntentModel)
            .where(
                TransitionIntentModel.status == IntentStatus.PENDING.value,
                TransitionIntentModel.created_at < older_than,
            )
            .order_by(TransitionIntentModel.created_at)
            .limit(limit)
        )
        return [self._to_entity(i) for i in result.scalars().all()]

    async def update(self, intent: TransitionIntent) -> TransitionIntent:
        result = await self.session.execute(
            select(TransitionIntentModel).where(TransitionIntentModel.id == intent.id)
        )
        db_intent = result.scalar_one_or_none()
        if not db_intent:
            raise ValueError(f"Transition intent with id {intent.id} not found")

        db_intent.status = intent.status.value
        db_intent.payment_intent_id = intent.payment_intent_id
        db_intent.error = intent.error
        db_intent.resolved_at = intent.resolved_at
        await self.session.flush()
        return self._to_entity(db_intent)
