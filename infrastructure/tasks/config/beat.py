"""Celery beat schedule configuration.

Keeping the structure close to the Celery docs makes copying snippets
straightforward for new tasks.
"""
from __future__ import annotations

from core.config import settings


CELERY_BEAT_SCHEDULE = {
    "reconcile-transition-intents": {
        "task": "payments.reconcile_intents",
        # twice per grace period so a stuck intent waits at most 1.5x grace
        "schedule": max(settings.booking.reconcile_grace_seconds // 2, 30),
    },
}
