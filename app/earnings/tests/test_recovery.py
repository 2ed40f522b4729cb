"""
Tests for balance recovery.

The coordinator is exercised with a mocked Redis lock and a mocked Celery
task; the retry loop runs against real rows with a recording sleep.
"""

import time

import pytest

from earnings.exceptions import StripeBalanceInsufficientError
from earnings.services.payout_service import PayoutService, ProcessingSummary
from earnings.services.recovery import (
    RECOVERY_LOCK_KEY,
    BalanceRecoveryCoordinator,
    RecoveryOutcome,
)
from earnings.state_machines import PayoutStatus
from earnings.tests.factories import stripe_payout_event
from earnings.webhooks.reconciler import WebhookReconciler
from earnings.webhooks.secrets import WebhookSecrets


@pytest.fixture
def mock_recovery_task(mocker):
    return mocker.patch("earnings.tasks.run_balance_recovery.apply_async")


class TestHandleBalanceAvailable:
    def test_requeues_and_schedules_recovery(
        self, balance_failed_payout, mock_redis, mock_recovery_task, settings
    ):
        settings.BALANCE_RECOVERY_INITIAL_DELAY_SECONDS = 5

        scheduled = BalanceRecoveryCoordinator.handle_balance_available()

        balance_failed_payout.refresh_from_db()
        assert scheduled is True
        assert balance_failed_payout.status == PayoutStatus.PENDING
        assert balance_failed_payout.retry_count == 1
        mock_recovery_task.assert_called_once_with(countdown=5)
        assert mock_redis.set.call_args.args[0] == f"lock:{RECOVERY_LOCK_KEY}"
        mock_redis.eval.assert_called_once()

    def test_lock_held_skips_event(
        self, balance_failed_payout, mock_redis, mock_recovery_task
    ):
        mock_redis.set.return_value = False

        scheduled = BalanceRecoveryCoordinator.handle_balance_available()

        balance_failed_payout.refresh_from_db()
        assert scheduled is False
        assert balance_failed_payout.status == PayoutStatus.FAILED
        mock_recovery_task.assert_not_called()

    def test_nothing_waiting_schedules_nothing(
        self, actionable_failed_payout, mock_redis, mock_recovery_task
    ):
        scheduled = BalanceRecoveryCoordinator.handle_balance_available()

        assert scheduled is False
        mock_recovery_task.assert_not_called()
        mock_redis.eval.assert_called_once()

    def test_lock_released_when_requeue_fails(self, db, mock_redis, mocker):
        mocker.patch(
            "earnings.services.recovery.PayoutService.requeue_balance_failures",
            side_effect=RuntimeError("database gone"),
        )

        with pytest.raises(RuntimeError):
            BalanceRecoveryCoordinator.handle_balance_available()

        mock_redis.eval.assert_called_once()


class TestRunRecoveryLoop:
    def test_completes_when_balance_is_back(
        self, balance_failed_payout, mock_stripe_adapter, mock_notifications
    ):
        balance_failed_payout.requeue()
        balance_failed_payout.save()
        sleeps = []

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3, initial_backoff=10, sleep=sleeps.append
        )

        balance_failed_payout.refresh_from_db()
        assert outcome == RecoveryOutcome.COMPLETED
        assert balance_failed_payout.status == PayoutStatus.PROCESSING
        assert sleeps == []

    def test_backs_off_while_balance_is_short(
        self, pending_payout, mock_stripe_adapter, mock_notifications
    ):
        succeed = mock_stripe_adapter.create_transfer.side_effect
        keys = []

        def create_transfer(**kwargs):
            keys.append(kwargs["idempotency_key"])
            if len(keys) <= 2:
                raise StripeBalanceInsufficientError(
                    "short", stripe_code="balance_insufficient"
                )
            return succeed(**kwargs)

        mock_stripe_adapter.create_transfer.side_effect = create_transfer
        sleeps = []

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=5, initial_backoff=10, sleep=sleeps.append
        )

        pending_payout.refresh_from_db()
        assert outcome == RecoveryOutcome.COMPLETED
        assert sleeps == [10, 20]
        assert pending_payout.status == PayoutStatus.PROCESSING
        assert pending_payout.retry_count == 2
        # Each attempt after a recorded failure uses a fresh key
        assert len(set(keys)) == 3

    def test_gives_up_after_max_attempts(
        self, pending_payout, mock_stripe_adapter, mock_notifications
    ):
        mock_stripe_adapter.create_transfer.side_effect = StripeBalanceInsufficientError(
            "short", stripe_code="balance_insufficient"
        )
        sleeps = []

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3, initial_backoff=1, sleep=sleeps.append
        )

        pending_payout.refresh_from_db()
        assert outcome == RecoveryOutcome.EXHAUSTED
        assert sleeps == [1, 2]
        assert pending_payout.status == PayoutStatus.FAILED
        assert pending_payout.retry_count == 3

    def test_nothing_to_retry(self, mocker):
        mocker.patch(
            "earnings.services.recovery.PayoutService.process_pending_payouts",
            return_value=ProcessingSummary(processed=1, failed=1, balance_insufficient=True),
        )
        mocker.patch(
            "earnings.services.recovery.PayoutService.requeue_balance_failures",
            return_value=0,
        )

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3, initial_backoff=1, sleep=lambda seconds: None
        )

        assert outcome == RecoveryOutcome.NOTHING_TO_RETRY

    def test_deadline_exceeded(self, mocker):
        process = mocker.patch(
            "earnings.services.recovery.PayoutService.process_pending_payouts"
        )

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3,
            initial_backoff=1,
            sleep=lambda seconds: None,
            deadline=time.monotonic() - 1,
        )

        assert outcome == RecoveryOutcome.DEADLINE_EXCEEDED
        process.assert_not_called()

    def test_deadline_passing_during_run_is_not_completed(self, mocker):
        clock = [0.0]

        def process(deadline):
            clock[0] = 120.0
            return ProcessingSummary(processed=3, initiated=1)

        mocker.patch(
            "earnings.services.recovery.time.monotonic", side_effect=lambda: clock[0]
        )
        mocker.patch(
            "earnings.services.recovery.PayoutService.process_pending_payouts",
            side_effect=process,
        )

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3, initial_backoff=1, sleep=lambda seconds: None, deadline=60.0
        )

        assert outcome == RecoveryOutcome.DEADLINE_EXCEEDED


class TestRecoveryToPaid:
    def test_balance_shortage_recovers_and_payout_is_paid(
        self,
        pending_payout,
        mock_stripe_adapter,
        mock_notifications,
        mock_redis,
        mock_recovery_task,
    ):
        succeed = mock_stripe_adapter.create_transfer.side_effect
        mock_stripe_adapter.create_transfer.side_effect = StripeBalanceInsufficientError(
            "short", stripe_code="balance_insufficient"
        )
        reconciler = WebhookReconciler(
            WebhookSecrets(platform="whsec_platform", connect="whsec_connect"),
            instance_tag="test-instance",
        )

        summary = PayoutService.process_pending_payouts()
        pending_payout.refresh_from_db()
        assert summary.balance_insufficient is True
        assert pending_payout.status == PayoutStatus.FAILED
        assert pending_payout.next_attempt_at is None

        mock_stripe_adapter.create_transfer.side_effect = succeed
        result = reconciler.dispatch({"id": "evt_balance", "type": "balance.available"})
        assert result.data["recovery_scheduled"] is True
        mock_recovery_task.assert_called_once()

        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=3, initial_backoff=1, sleep=lambda seconds: None
        )
        pending_payout.refresh_from_db()
        assert outcome == RecoveryOutcome.COMPLETED
        assert pending_payout.status == PayoutStatus.PROCESSING
        assert pending_payout.stripe_payout_id == "po_new"

        result = reconciler.dispatch(stripe_payout_event("payout.paid", pending_payout.id))

        pending_payout.refresh_from_db()
        assert result.data["applied"] is True
        assert pending_payout.status == PayoutStatus.PAID
        assert pending_payout.last_failure_reason == ""
