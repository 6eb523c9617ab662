"""
Celery tasks for payment follow-up work: intent reconciliation, driver
transfers when the hold had no Connect destination, and payouts.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

from celery import shared_task

from application.services.booking_service import BookingLifecycleService
from application.services.payment_service import PaymentService
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.common.exceptions import GatewayError
from infrastructure.database import create_task_session_factory
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.utils.base_task import BaseTask
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


@asynccontextmanager
async def _services():
    engine, session_factory = create_task_session_factory()
    payments = PaymentService(get_payment_gateway())

    def uow_factory(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)

    dispatcher = TaskDispatcher()
    lifecycle = BookingLifecycleService(
        uow_factory,
        payments,
        payout_scheduler=dispatcher.schedule_driver_transfer,
        payout_dispatcher=dispatcher.schedule_driver_payout if payment_settings.payout_after_transfer else None,
    )
    try:
        yield uow_factory, payments, lifecycle
    finally:
        await payments.aclose()
        await engine.dispose()


@shared_task(name="payments.reconcile_intents", base=BaseTask)
def task_reconcile_intents():
    async def _run():
        async with _services() as (uow_factory, payments, lifecycle):
            return await ReconciliationService(uow_factory, payments, lifecycle).run_once()

    return asyncio.run(_run())


@shared_task(
    name="payments.transfer_driver_share",
    base=BaseTask,
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def task_transfer_driver_share(self, payment_id: int):
    async def _run():
        async with _services() as (_, _payments, lifecycle):
            return await lifecycle.transfer_driver_share(payment_id)

    try:
        view = asyncio.run(_run())
    except GatewayError as exc:
        logger.error("driver_transfer_failed", payment_id=payment_id, error=exc.message)
        # same idempotency key on retry
        raise self.retry(exc=exc)
    return {"payment_id": payment_id, "transfer_id": view.transfer_id if view else None}


@shared_task(name="payments.payout_driver", base=BaseTask)
def task_payout_driver(stripe_account_id: str, amount: str, idempotency_key: str):
    async def _run():
        async with _services() as (_, payments, _lifecycle):
            return await payments.payout(
                amount=Decimal(amount),
                stripe_account_id=stripe_account_id,
                idempotency_key=idempotency_key,
            )

    payout = asyncio.run(_run())
    return {"payout_id": payout.payout_id, "status": payout.status}
