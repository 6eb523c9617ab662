"""Celery app, queues and beat schedule."""
from .celery import PAYMENTS_QUEUE, RECONCILE_QUEUE, celery_app
from .beat import CELERY_BEAT_SCHEDULE

__all__ = ["celery_app", "CELERY_BEAT_SCHEDULE", "PAYMENTS_QUEUE", "RECONCILE_QUEUE"]
