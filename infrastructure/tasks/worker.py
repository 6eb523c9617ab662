"""Run a worker for the payment queues.

``python -m infrastructure.tasks.worker`` consumes both queues and embeds
beat so pending intents get reconciled without a separate process. In
production run beat once and start workers with the celery CLI instead.
"""
from __future__ import annotations

import sys

from .config.celery import PAYMENTS_QUEUE, RECONCILE_QUEUE, celery_app


def main(argv: list[str] | None = None) -> None:
    celery_app.worker_main(
        argv=[
            "worker",
            "--loglevel=INFO",
            f"--queues={PAYMENTS_QUEUE},{RECONCILE_QUEUE}",
            "--hostname=payments@%h",
            "--beat",
            *(argv if argv is not None else sys.argv[1:]),
        ]
    )


if __name__ == "__main__":
    main()
