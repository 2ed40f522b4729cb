"""
Tests for WorkerPayout state transitions and WebhookEvent bookkeeping.

Transitions are exercised on in-memory instances; persistence goes
through the payout store and is covered in test_store.py.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone
from django_fsm import TransitionNotAllowed, can_proceed

from earnings.state_machines import PayoutStatus, WebhookEventStatus
from earnings.tests.factories import WorkerPayoutFactory


class TestStartAttempt:
    def test_pending_to_processing(self, pending_payout):
        now = timezone.now()

        pending_payout.start_attempt(now=now)

        assert pending_payout.status == PayoutStatus.PROCESSING
        assert pending_payout.last_attempt_at == now

    def test_due_failed_to_processing_clears_timer(self, due_retry_payout):
        due_retry_payout.start_attempt()

        assert due_retry_payout.status == PayoutStatus.PROCESSING
        assert due_retry_payout.next_attempt_at is None

    def test_failed_not_yet_due_cannot_start(self, worker):
        payout = WorkerPayoutFactory.build(
            worker=worker,
            status=PayoutStatus.FAILED,
            next_attempt_at=timezone.now() + timedelta(hours=1),
        )

        assert can_proceed(payout.start_attempt) is False

    def test_failed_without_timer_cannot_start(self, actionable_failed_payout):
        assert can_proceed(actionable_failed_payout.start_attempt) is False

    def test_paid_cannot_start(self, paid_payout):
        with pytest.raises(TransitionNotAllowed):
            paid_payout.start_attempt()


class TestMarkPaid:
    def test_processing_to_paid(self, processing_payout):
        processing_payout.last_failure_reason = "could_not_process"

        processing_payout.mark_paid()

        assert processing_payout.status == PayoutStatus.PAID
        assert processing_payout.last_failure_reason == ""

    @pytest.mark.parametrize(
        "status", [PayoutStatus.PENDING, PayoutStatus.FAILED, PayoutStatus.PAID]
    )
    def test_only_from_processing(self, worker, status):
        payout = WorkerPayoutFactory.build(worker=worker, status=status)

        assert can_proceed(payout.mark_paid) is False


class TestMarkFailed:
    def test_records_reason_and_counts_attempt(self, processing_payout):
        retry_at = timezone.now() + timedelta(minutes=1)

        processing_payout.mark_failed("could_not_process", next_attempt_at=retry_at)

        assert processing_payout.status == PayoutStatus.FAILED
        assert processing_payout.last_failure_reason == "could_not_process"
        assert processing_payout.retry_count == 1
        assert processing_payout.next_attempt_at == retry_at

    def test_paid_never_fails(self, paid_payout):
        assert can_proceed(paid_payout.mark_failed) is False


class TestRequeue:
    def test_failed_to_pending_keeps_retry_count(self, balance_failed_payout):
        balance_failed_payout.requeue()

        assert balance_failed_payout.status == PayoutStatus.PENDING
        assert balance_failed_payout.retry_count == 1
        assert balance_failed_payout.next_attempt_at is None

    def test_reset_retries(self, actionable_failed_payout):
        actionable_failed_payout.requeue(reset_retries=True)

        assert actionable_failed_payout.retry_count == 0

    def test_processing_cannot_requeue(self, processing_payout):
        assert can_proceed(processing_payout.requeue) is False


class TestExternalIds:
    def test_transfer_id_is_never_cleared(self, processing_payout):
        processing_payout.record_external_ids(transfer_id=None, payout_id="po_1")

        assert processing_payout.stripe_transfer_id == "tr_existing"
        assert processing_payout.stripe_payout_id == "po_1"


class TestConstraints:
    def test_unique_worker_period(self, pending_payout):
        with pytest.raises(IntegrityError):
            WorkerPayoutFactory(
                worker=pending_payout.worker, period_start=pending_payout.period_start
            )

    def test_save_increments_version(self, pending_payout):
        pending_payout.amount_cents = 20000
        pending_payout.save()

        assert pending_payout.version == 2


class TestWebhookEvent:
    def test_processing_lifecycle(self, pending_webhook):
        pending_webhook.mark_processing()
        assert pending_webhook.status == WebhookEventStatus.PROCESSING
        assert pending_webhook.retry_count == 1

        pending_webhook.mark_processed()
        assert pending_webhook.is_processed
        assert pending_webhook.processed_at is not None
        assert pending_webhook.error_message is None

    def test_mark_failed(self, pending_webhook):
        pending_webhook.mark_failed("boom")

        assert pending_webhook.status == WebhookEventStatus.FAILED
        assert pending_webhook.error_message == "boom"
