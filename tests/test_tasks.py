import pytest

pytest.importorskip("celery")

from infrastructure.tasks.config.celery import celery_app  # noqa: E402
from infrastructure.tasks.utils.dispatcher import TaskDispatcher  # noqa: E402


@pytest.fixture
def sent(monkeypatch):
    calls = []
    monkeypatch.setattr(celery_app.conf, "broker_url", "redis://localhost:6379/0")
    monkeypatch.setattr(
        celery_app, "send_task", lambda name, args=(), kwargs=None: calls.append((name, args, kwargs))
    )
    return calls


def test_schedule_driver_payout(sent):
    TaskDispatcher().schedule_driver_payout("acct_driver", "17.00", "payout-key")

    assert sent == [
        (
            "payments.payout_driver",
            (),
            {"stripe_account_id": "acct_driver", "amount": "17.00", "idempotency_key": "payout-key"},
        )
    ]


def test_schedule_driver_transfer(sent):
    TaskDispatcher().schedule_driver_transfer(42)

    assert sent == [("payments.transfer_driver_share", (), {"payment_id": 42})]


def test_dispatch_skipped_without_broker(sent, monkeypatch):
    monkeypatch.setattr(celery_app.conf, "broker_url", None)

    TaskDispatcher().schedule_driver_payout("acct_driver", "17.00", "payout-key")

    assert sent == []
