"""Celery application for payment follow-up work"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

# transfers move driver money, reconciliation can wait behind them
PAYMENTS_QUEUE = "payments"
RECONCILE_QUEUE = "reconciliation"


celery_app = Celery("campus_carpool")

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # a worker crash mid-transfer must redeliver; the idempotency key makes that safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue=PAYMENTS_QUEUE,
    task_default_retry_delay=30,
    task_queues=(
        Queue(PAYMENTS_QUEUE),
        Queue(RECONCILE_QUEUE),
    ),
    task_routes={
        "payments.transfer_driver_share": {"queue": PAYMENTS_QUEUE},
        "payments.payout_driver": {"queue": PAYMENTS_QUEUE},
        "payments.reconcile_intents": {"queue": RECONCILE_QUEUE},
    },
    # a reconciliation run must finish before the next beat tick
    task_soft_time_limit=max(settings.booking.reconcile_grace_seconds // 2 - 5, 25),
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = TASK_PACKAGES

if settings.ENVIRONMENT.lower() in {"test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        queues=[q.name for q in sender.conf.task_queues],
    )
