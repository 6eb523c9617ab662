"""Background payment work on Celery.

Callers only see TaskDispatcher; the Celery app is exposed for the worker
and beat entry points.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
