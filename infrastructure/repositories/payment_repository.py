"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.payment.entity import ACTIVE_STATUSES, Payment, PaymentStatus
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel
from core.logging_config import get_logger


logger = get_logger(__name__)

_ACTIVE = tuple(s.value for s in ACTIVE_STATUSES)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            booking_id=model.booking_id,
            passenger_id=model.passenger_id,
            driver_id=model.driver_id,
            amount=Decimal(str(model.amount)),
            platform_fee=Decimal(str(model.platform_fee)),
            driver_amount=Decimal(str(model.driver_amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            payment_intent_id=model.payment_intent_id,
            destination_account_id=model.destination_account_id,
            transfer_id=model.transfer_id,
            refund_id=model.refund_id,
            refunded_amount=Decimal(str(model.refunded_amount or 0)),
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            authorized_at=model.authorized_at,
            captured_at=model.captured_at,
            cancelled_at=model.cancelled_at,
            refunded_at=model.refunded_at,
            metadata=model.extra_metadata or {}
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            booking_id=entity.booking_id,
            passenger_id=entity.passenger_id,
            driver_id=entity.driver_id,
            amount=entity.amount,
            platform_fee=entity.platform_fee,
            driver_amount=entity.driver_amount,
            currency=entity.currency,
            status=entity.status.value,
            payment_intent_id=entity.payment_intent_id,
            destination_account_id=entity.destination_account_id,
            transfer_id=entity.transfer_id,
            refund_id=entity.refund_id,
            refunded_amount=entity.refunded_amount,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            authorized_at=entity.authorized_at,
            captured_at=entity.captured_at,
            cancelled_at=entity.cancelled_at,
            refunded_at=entity.refunded_at,
            extra_metadata=entity.metadata
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            booking_id=db_payment.booking_id,
            amount=str(db_payment.amount),
        )
        return self._to_entity(db_payment)

    async def _one(self, *criteria) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(*criteria)
            .order_by(PaymentModel.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: int) -> Optional[Payment]:
        """根据ID获取支付"""
        return await self._one(PaymentModel.id == payment_id)

    async def get_active_for_booking(self, booking_id: int) -> Optional[Payment]:
        return await self._one(PaymentModel.booking_id == booking_id, PaymentModel.status.in_(_ACTIVE))

    async def get_latest_for_booking(self, booking_id: int) -> Optional[Payment]:
        return await self._one(PaymentModel.booking_id == booking_id)

    async def get_by_payment_intent(self, payment_intent_id: str) -> Optional[Payment]:
        """根据 Stripe PaymentIntent ID 获取支付"""
        return await self._one(PaymentModel.payment_intent_id == payment_intent_id)

    async def list_by_booking(self, booking_id: int) -> List[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(PaymentModel.booking_id == booking_id)
            .order_by(PaymentModel.created_at.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        result = await self.session.execute(
            select(PaymentModel).where(PaymentModel.id == payment.id)
        )
        db_payment = result.scalar_one_or_none()

        if not db_payment:
            raise ValueError(f"Payment with id {payment.id} not found")

        # 更新字段
        db_payment.status = payment.status.value
        db_payment.payment_intent_id = payment.payment_intent_id
        db_payment.transfer_id = payment.transfer_id
        db_payment.refund_id = payment.refund_id
        db_payment.refunded_amount = payment.refunded_amount
        db_payment.failure_reason = payment.failure_reason
        db_payment.updated_at = payment.updated_at
        db_payment.authorized_at = payment.authorized_at
        db_payment.captured_at = payment.captured_at
        db_payment.cancelled_at = payment.cancelled_at
        db_payment.refunded_at = payment.refunded_at
        db_payment.extra_metadata = payment.metadata

        await self.session.flush()
        await self.session.refresh(db_payment)

        logger.info(
            "payment_updated",
            payment_id=db_payment.id,
            booking_id=db_payment.booking_id,
            status=db_payment.status
        )

        return self._to_entity(db_payment)
