"""
Pytest fixtures for earnings tests.

Payouts are provided in each lifecycle state. Stripe, Redis and the
notification queue are replaced with mocks so no test leaves the process.

Usage:
    def test_mark_paid(processing_payout):
        payout = PayoutService.mark_paid(processing_payout.id)
        assert payout.status == PayoutStatus.PAID
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from earnings.adapters import AccountResult, PayoutResult, TransferResult
from earnings.services.payout_service import PayoutService
from earnings.state_machines import FailureReason, PayoutStatus
from earnings.tests.factories import WebhookEventFactory, WorkerPayoutFactory
from workforce.tests.factories import WorkerFactory


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture(autouse=True)
def payout_settings(settings):
    """Pin the payout policy so tests do not depend on the environment."""
    settings.PAYOUT_INSTANCE_TAG = "test-instance"
    settings.PAYOUT_MAX_RETRIES = 5
    settings.PAYOUT_BASE_RETRY_DELAY_SECONDS = 60
    settings.PAYOUT_MINIMUM_AMOUNT_CENTS = 50
    settings.PAYOUT_USE_SHORT_PAY_PERIOD = False
    settings.PAYOUT_BUSINESS_TIMEZONE = "America/New_York"
    settings.PAYOUT_PERIOD_START_HOUR = 4
    settings.PAYOUT_STORE_MAX_UPDATE_ATTEMPTS = 10
    settings.PAYOUT_FINANCE_EMAIL = "finance@example.com"
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    return settings


# =============================================================================
# Worker Fixtures
# =============================================================================


@pytest.fixture
def worker(db):
    """An active, onboarded worker with a Stripe Connect account."""
    return WorkerFactory()


@pytest.fixture
def unlinked_worker(db):
    """A worker who never linked a Stripe Connect account."""
    return WorkerFactory(stripe_connect_account_id=None)


# =============================================================================
# Payout State Fixtures
# =============================================================================


@pytest.fixture
def pending_payout(db, worker):
    return WorkerPayoutFactory(worker=worker)


@pytest.fixture
def processing_payout(db, worker):
    return WorkerPayoutFactory(
        worker=worker,
        status=PayoutStatus.PROCESSING,
        stripe_transfer_id="tr_existing",
        last_attempt_at=timezone.now(),
    )


@pytest.fixture
def paid_payout(db, worker):
    return WorkerPayoutFactory(
        worker=worker,
        status=PayoutStatus.PAID,
        stripe_transfer_id="tr_paid",
        stripe_payout_id="po_paid",
    )


@pytest.fixture
def actionable_failed_payout(db, worker):
    """Failed on the worker's bank account; waits for an account fix."""
    return WorkerPayoutFactory(
        worker=worker,
        status=PayoutStatus.FAILED,
        last_failure_reason="account_closed",
        retry_count=2,
    )


@pytest.fixture
def balance_failed_payout(db, worker):
    """Failed on the platform balance; waits for balance.available."""
    return WorkerPayoutFactory(
        worker=worker,
        status=PayoutStatus.FAILED,
        last_failure_reason=FailureReason.BALANCE_INSUFFICIENT,
        retry_count=1,
    )


@pytest.fixture
def due_retry_payout(db, worker):
    """Failed transiently with a timed retry that has come due."""
    return WorkerPayoutFactory(
        worker=worker,
        status=PayoutStatus.FAILED,
        last_failure_reason=FailureReason.COULD_NOT_PROCESS,
        retry_count=1,
        stripe_transfer_id="tr_first_attempt",
        next_attempt_at=timezone.now() - timedelta(minutes=1),
    )


# =============================================================================
# Webhook Fixtures
# =============================================================================


@pytest.fixture
def pending_webhook(db):
    return WebhookEventFactory()


# =============================================================================
# External Service Mocks
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1
    mocker.patch("earnings.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def mock_stripe_adapter(mocker):
    """
    Stripe adapter whose calls all succeed.

    Injected into PayoutService for the duration of the test.
    """
    adapter = mocker.MagicMock()
    adapter.retrieve_account.side_effect = lambda account_id: AccountResult(
        id=account_id, payouts_enabled=True
    )
    adapter.create_transfer.side_effect = lambda **kwargs: TransferResult(
        id="tr_new",
        amount_cents=kwargs["amount_cents"],
        currency="usd",
        destination_account=kwargs["destination_account"],
        metadata=kwargs.get("metadata") or {},
    )
    adapter.create_payout.side_effect = lambda **kwargs: PayoutResult(
        id="po_new",
        status="pending",
        amount_cents=kwargs["amount_cents"],
        stripe_account=kwargs["stripe_account"],
        metadata=kwargs.get("metadata") or {},
    )

    PayoutService.set_stripe_adapter(adapter)
    yield adapter
    PayoutService.set_stripe_adapter(None)


@pytest.fixture
def mock_notifications(mocker):
    """Capture queued notifications instead of sending Celery tasks."""
    return mocker.patch("earnings.tasks.send_payout_notification.delay")
