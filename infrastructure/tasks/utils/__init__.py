"""Dispatcher facade and the shared task base class."""
from .base_task import BaseTask
from .dispatcher import TaskDispatcher

__all__ = ["BaseTask", "TaskDispatcher"]
