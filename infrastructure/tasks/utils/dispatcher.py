"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from core.logging_config import get_logger

from ..config.celery import celery_app


logger = get_logger(__name__)


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks."""

    def schedule_driver_transfer(self, payment_id: int) -> None:
        """Fire-and-forget transfer of the driver share for a captured payment."""
        self.enqueue("payments.transfer_driver_share", kwargs={"payment_id": payment_id})

    def schedule_driver_payout(self, stripe_account_id: str, amount: str, idempotency_key: str) -> None:
        """Pay a connected account's balance out to the driver's bank."""
        self.enqueue(
            "payments.payout_driver",
            kwargs={
                "stripe_account_id": stripe_account_id,
                "amount": amount,
                "idempotency_key": idempotency_key,
            },
        )

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        if not celery_app.conf.broker_url:
            logger.warning("task_dispatch_skipped", task_name=task_name, reason="no broker configured")
            return
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})
