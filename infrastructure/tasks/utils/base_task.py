"""Base class for payment tasks"""
from __future__ import annotations

import structlog
from celery import Task

from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """Binds the task id to the log context and logs outcomes.

    Task arguments are ids and amounts only; they are logged as keyword
    fields so a failed transfer can be matched to its payment row.
    """

    def __call__(self, *args, **kwargs):
        structlog.contextvars.bind_contextvars(task_id=self.request.id, task_name=self.name)
        try:
            return super().__call__(*args, **kwargs)
        finally:
            structlog.contextvars.unbind_contextvars("task_id", "task_name")

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "payment_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **kwargs,
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.error(
            "payment_task_failed",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            **kwargs,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("payment_task_succeeded", task_id=task_id, task_name=self.name, result=retval)
        super().on_success(retval, task_id, args, kwargs)
