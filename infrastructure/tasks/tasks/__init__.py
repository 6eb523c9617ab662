"""Payment tasks; importing this package registers them with Celery."""
from . import payments  # noqa: F401

__all__ = ["payments"]
