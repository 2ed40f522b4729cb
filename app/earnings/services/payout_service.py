"""
Payout service: aggregation, initiation and failure handling for worker payouts.

This module provides the PayoutService class which drives the synchronous
half of the payout lifecycle. Stripe reports the final outcome later through
webhooks (see earnings.webhooks.reconciler).

Initiation of one payout:
1. Claim: PENDING / due FAILED -> PROCESSING through a version-conditioned write
2. Validate the worker and their Stripe Connect account
3. Transfer platform funds to the connected account (idempotency key)
4. Pay out from the connected account to the worker's bank (idempotency key)
5. Backfill Stripe ids; PAID / FAILED arrives by webhook

Concurrency:
    Several instances may run process_pending_payouts at once. No rows are
    locked: the claim in step 1 is a compare-and-swap on WorkerPayout.version,
    so exactly one instance wins each payout. A webhook can overtake the
    synchronous flow; writes after the claim never overwrite a status a
    webhook already decided.

Usage:
    from earnings.services.payout_service import PayoutService

    # Weekly batch (celery-beat)
    summary = PayoutService.aggregate_and_create_payouts()
    summary = PayoutService.process_pending_payouts(deadline=time.monotonic() + 540)

    # Webhook reported a failure
    PayoutService.handle_failure(payout_id, "account_closed")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone
from django_fsm import can_proceed

from core.services import BaseService
from earnings import notifications
from earnings.adapters import IdempotencyKeyGenerator, StripeAdapter
from earnings.exceptions import (
    InvalidPayoutTransitionError,
    StripeBalanceInsufficientError,
    StripeError,
)
from earnings.models import WorkerPayout
from earnings.periods import previous_pay_period
from earnings.services.failure_classifier import (
    classify,
    is_recognized,
    is_user_actionable,
)
from earnings.state_machines import FailureReason, MetadataKey, PayoutStatus
from workforce.models import Worker, WorkItem

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime

    from earnings.periods import PayPeriod


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

TRANSFER_OPERATION = "payout-transfer"
PAYOUT_OPERATION = "payout-payout"

# Outcomes of a single payout attempt
INITIATED = "initiated"
FAILED = "failed"
SKIPPED = "skipped"
BALANCE_INSUFFICIENT = "balance_insufficient"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ProcessingSummary:
    """
    Counters for one process_pending_payouts run.

    Attributes:
        processed: Ready payouts looked at before the run ended
        initiated: Payouts whose transfer and payout were created
        failed: Payouts that failed synchronously (including errors)
        skipped: Payouts another instance claimed first
        balance_insufficient: The platform balance ran out during the run
    """

    processed: int = 0
    initiated: int = 0
    failed: int = 0
    skipped: int = 0
    balance_insufficient: bool = False


@dataclass
class AggregationSummary:
    """Counters for one aggregate_and_create_payouts run."""

    period: PayPeriod
    created: int = 0
    skipped_below_minimum: int = 0
    skipped_existing: int = 0


# =============================================================================
# Payout Service
# =============================================================================


class PayoutService(BaseService):
    """
    Service for creating and initiating worker payouts.

    All methods are class methods - no instance state is maintained.

    Error Handling:
        - Account problems: FAILED with a user-actionable reason, worker emailed
        - Platform balance too low: FAILED, waits for balance.available
        - Transient Stripe errors: FAILED with a timed retry (exponential backoff)
        - Transfer made but payout not started: FAILED, logged CRITICAL
        - Unexpected exceptions: FAILED with a timed retry, the batch continues

    Usage:
        summary = PayoutService.process_pending_payouts()
        if summary.balance_insufficient:
            ...  # payouts wait for the balance.available webhook
    """

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        """Get the Stripe adapter class."""
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Set the Stripe adapter class (for testing)."""
        cls._stripe_adapter = adapter

    # =========================================================================
    # Aggregation
    # =========================================================================

    @classmethod
    def aggregate_and_create_payouts(
        cls, now: datetime | None = None
    ) -> AggregationSummary:
        """
        Create PENDING payouts for the pay period that just closed.

        Sums each worker's completed work items in the period window and
        creates one payout per worker whose total exceeds
        PAYOUT_MINIMUM_AMOUNT_CENTS. Re-running for the same period creates
        nothing new.
        """
        period = previous_pay_period(now)
        summary = AggregationSummary(period=period)
        minimum = settings.PAYOUT_MINIMUM_AMOUNT_CENTS

        cls.get_logger().info(
            "Aggregating payouts",
            extra={
                "period_start": period.start_date.isoformat(),
                "period_end": period.end_date.isoformat(),
            },
        )

        for row in WorkItem.objects.totals_by_worker(
            period.window_start, period.window_end
        ):
            worker_id = row["worker_id"]
            if row["total_cents"] <= minimum:
                summary.skipped_below_minimum += 1
                continue

            if WorkerPayout.objects.get_by_worker_and_period(worker_id, period.start_date):
                summary.skipped_existing += 1
                continue

            payout, created = WorkerPayout.objects.create_if_absent(
                worker_id=worker_id,
                period_start=period.start_date,
                period_end=period.end_date,
                amount_cents=row["total_cents"],
                work_item_ids=row["item_ids"],
            )
            if created:
                summary.created += 1
                cls.get_logger().info(
                    "Payout created",
                    extra={
                        "payout_id": str(payout.id),
                        "worker_id": str(worker_id),
                        "amount_cents": payout.amount_cents,
                        "item_count": row["item_count"],
                    },
                )
            else:
                summary.skipped_existing += 1

        cls.get_logger().info(
            "Payout aggregation finished",
            extra={
                "period_start": period.start_date.isoformat(),
                "created_count": summary.created,
                "skipped_below_minimum": summary.skipped_below_minimum,
                "skipped_existing": summary.skipped_existing,
            },
        )
        return summary

    # =========================================================================
    # Processing
    # =========================================================================

    @classmethod
    def process_pending_payouts(cls, deadline: float | None = None) -> ProcessingSummary:
        """
        Initiate every payout that is ready.

        Args:
            deadline: time.monotonic() value after which no new payout is
                started; the remainder is picked up by the next run

        Returns:
            ProcessingSummary for the run
        """
        summary = ProcessingSummary()
        payouts = WorkerPayout.objects.find_ready_for_payout()

        cls.get_logger().info(
            "Processing ready payouts",
            extra={"ready_count": len(payouts)},
        )

        for index, payout in enumerate(payouts):
            if deadline is not None and time.monotonic() >= deadline:
                cls.get_logger().warning(
                    "Payout processing deadline reached",
                    extra={"unprocessed_count": len(payouts) - index},
                )
                break

            summary.processed += 1
            try:
                outcome = cls._process_payout(payout.id)
            except Exception:
                cls.get_logger().exception(
                    "Unexpected error processing payout",
                    extra={"payout_id": str(payout.id)},
                )
                summary.failed += 1
                continue

            if outcome == INITIATED:
                summary.initiated += 1
            elif outcome == SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1
                if outcome == BALANCE_INSUFFICIENT:
                    summary.balance_insufficient = True

        cls.get_logger().info(
            "Payout processing finished",
            extra={
                "processed": summary.processed,
                "initiated": summary.initiated,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "balance_insufficient": summary.balance_insufficient,
            },
        )
        return summary

    @classmethod
    def _process_payout(cls, payout_id: uuid.UUID) -> str:
        """Run one payout attempt and return its outcome."""
        logger = cls.get_logger()
        now = timezone.now()

        def claim(payout: WorkerPayout) -> bool:
            if not can_proceed(payout.start_attempt):
                return False
            payout.start_attempt(now=now)
            return True

        payout, claimed = WorkerPayout.objects.update_with_retry(payout_id, claim)
        if not claimed:
            logger.info(
                "Payout no longer ready, skipping",
                extra={"payout_id": str(payout_id), "status": payout.status},
            )
            return SKIPPED

        # Reason recorded if something other than Stripe breaks mid-attempt;
        # None once a Stripe payout exists and its webhook decides the outcome
        progress = {
            "reason": FailureReason.UNKNOWN_ACCOUNT_ERROR,
            "transfer_id": payout.stripe_transfer_id,
        }
        try:
            return cls._initiate(payout, progress)
        except Exception:
            if progress["reason"] is None:
                raise
            logger.exception(
                "Unexpected error during payout attempt",
                extra={"payout_id": str(payout_id), "reason": progress["reason"]},
            )
            cls.handle_failure(
                payout_id, progress["reason"], transfer_id=progress["transfer_id"]
            )
            return FAILED

    @classmethod
    def _initiate(cls, payout: WorkerPayout, progress: dict) -> str:
        """Account check, transfer and payout for a claimed payout."""
        logger = cls.get_logger()
        payout_id = payout.id

        # Step 1: Resolve worker and account
        worker = Worker.objects.filter(pk=payout.worker_id).first()
        if worker is None:
            cls.handle_failure(payout_id, FailureReason.WORKER_NOT_FOUND)
            return FAILED

        account_id = worker.stripe_connect_account_id
        if not account_id:
            cls.handle_failure(payout_id, FailureReason.MISSING_STRIPE_ACCOUNT)
            return FAILED

        adapter = cls.get_stripe_adapter()

        try:
            account = adapter.retrieve_account(account_id)
        except StripeError as e:
            cls.handle_failure(
                payout_id, e.failure_reason(default=FailureReason.UNKNOWN_ACCOUNT_ERROR)
            )
            return FAILED

        if not account.payouts_enabled:
            cls.handle_failure(payout_id, FailureReason.PAYOUTS_DISABLED)
            return FAILED

        progress["reason"] = FailureReason.UNKNOWN_TRANSFER_ERROR

        # Step 2: Transfer platform -> connected account
        transfer_id = payout.stripe_transfer_id
        if transfer_id:
            logger.info(
                "Reusing transfer from an earlier attempt",
                extra={"payout_id": str(payout_id), "stripe_transfer_id": transfer_id},
            )
        else:
            try:
                transfer = adapter.create_transfer(
                    amount_cents=payout.amount_cents,
                    destination_account=account_id,
                    idempotency_key=cls.idempotency_key(TRANSFER_OPERATION, payout),
                    metadata={
                        MetadataKey.PAYOUT_ID: str(payout.id),
                        MetadataKey.WORKER_ID: str(worker.id),
                        MetadataKey.GENERATED_BY: settings.PAYOUT_INSTANCE_TAG,
                    },
                )
            except StripeBalanceInsufficientError:
                logger.warning(
                    "Platform balance insufficient for transfer",
                    extra={"payout_id": str(payout_id), "amount_cents": payout.amount_cents},
                )
                cls.handle_failure(payout_id, FailureReason.BALANCE_INSUFFICIENT)
                return BALANCE_INSUFFICIENT
            except StripeError as e:
                cls.handle_failure(
                    payout_id,
                    e.failure_reason(default=FailureReason.UNKNOWN_TRANSFER_ERROR),
                )
                return FAILED

            transfer_id = transfer.id
            progress["transfer_id"] = transfer_id
            WorkerPayout.objects.update_with_retry(
                payout_id, lambda p: p.record_external_ids(transfer_id=transfer_id)
            )

        progress["reason"] = FailureReason.PAYOUT_INITIATION_FAILED

        # Step 3: Payout connected account -> bank
        try:
            stripe_payout = adapter.create_payout(
                amount_cents=payout.amount_cents,
                stripe_account=account_id,
                idempotency_key=cls.idempotency_key(PAYOUT_OPERATION, payout),
                metadata={
                    MetadataKey.PAYOUT_ID: str(payout.id),
                    MetadataKey.GENERATED_BY: settings.PAYOUT_INSTANCE_TAG,
                },
            )
        except StripeError as e:
            logger.critical(
                "Transfer succeeded but payout could not be initiated",
                extra={
                    "payout_id": str(payout_id),
                    "worker_id": str(worker.id),
                    "stripe_transfer_id": transfer_id,
                    "stripe_code": e.stripe_code,
                    "reason": FailureReason.PAYOUT_INITIATION_FAILED,
                },
            )
            cls.handle_failure(
                payout_id, FailureReason.PAYOUT_INITIATION_FAILED, transfer_id=transfer_id
            )
            return FAILED
        progress["reason"] = None

        # Step 4: Backfill ids without overriding a webhook's decision
        def record_success(p: WorkerPayout) -> None:
            p.record_external_ids(transfer_id=transfer_id, payout_id=stripe_payout.id)
            if p.status == PayoutStatus.PROCESSING:
                p.last_failure_reason = ""
                p.next_attempt_at = None

        payout, _ = WorkerPayout.objects.update_with_retry(payout_id, record_success)

        logger.info(
            "Payout initiated",
            extra={
                "payout_id": str(payout_id),
                "stripe_transfer_id": transfer_id,
                "stripe_payout_id": stripe_payout.id,
                "status": payout.status,
            },
        )
        return INITIATED

    @staticmethod
    def idempotency_key(operation: str, payout: WorkerPayout) -> str:
        """Key for a money-moving call; stable per (payout, retry_count)."""
        return IdempotencyKeyGenerator.generate(operation, payout.id, payout.retry_count)

    # =========================================================================
    # Failure Handling
    # =========================================================================

    @classmethod
    def handle_failure(
        cls,
        payout_id: uuid.UUID | str,
        reason: str,
        transfer_id: str | None = None,
    ) -> WorkerPayout | None:
        """
        Record a failed attempt and schedule what happens next.

        Only a PROCESSING payout can fail; for any other status this is a
        no-op, so duplicate or stale failure webhooks change nothing.

        Retry policy:
            - balance_insufficient: no timer, waits for balance recovery
            - system-recoverable under PAYOUT_MAX_RETRIES: timed retry with
              exponential backoff
            - anything else: no retry

        Returns:
            The updated payout, or None if the failure did not apply
        """
        classification = classify(reason)
        now = timezone.now()

        def fail(payout: WorkerPayout) -> bool:
            if not can_proceed(payout.mark_failed):
                return False

            attempts = payout.retry_count + 1
            next_attempt_at = None
            if (
                reason != FailureReason.BALANCE_INSUFFICIENT
                and classification.system_recoverable
                and attempts < settings.PAYOUT_MAX_RETRIES
            ):
                delay = settings.PAYOUT_BASE_RETRY_DELAY_SECONDS * 2 ** (attempts - 1)
                next_attempt_at = now + timedelta(seconds=delay)

            payout.mark_failed(reason, next_attempt_at=next_attempt_at)
            payout.record_external_ids(transfer_id=transfer_id)
            return True

        payout, applied = WorkerPayout.objects.update_with_retry(payout_id, fail)
        if not applied:
            cls.get_logger().info(
                "Failure ignored, payout is not processing",
                extra={"payout_id": str(payout_id), "status": payout.status, "reason": reason},
            )
            return None

        cls.get_logger().warning(
            "Payout failed",
            extra={
                "payout_id": str(payout_id),
                "worker_id": str(payout.worker_id),
                "reason": reason,
                "retry_count": payout.retry_count,
                "next_attempt_at": payout.next_attempt_at.isoformat()
                if payout.next_attempt_at
                else None,
            },
        )

        cls._notify_failure(payout, reason)
        return payout

    @classmethod
    def _notify_failure(cls, payout: WorkerPayout, reason: str) -> None:
        """Notifications for a recorded failure. Called after the write."""
        if reason == FailureReason.BALANCE_INSUFFICIENT:
            notifications.notify_platform_issue(payout.id, reason)
            return

        if payout.next_attempt_at is not None:
            return

        if is_user_actionable(reason):
            notifications.notify_action_required(payout.worker_id, reason, payout.id)
        elif is_recognized(reason):
            notifications.notify_platform_issue(payout.id, reason)
        else:
            cls.get_logger().warning(
                "Unrecognized payout failure reason, treated as final",
                extra={"payout_id": str(payout.id), "reason": reason},
            )

    # =========================================================================
    # Webhook Outcomes
    # =========================================================================

    @classmethod
    def mark_paid(cls, payout_id: uuid.UUID | str) -> WorkerPayout | None:
        """
        Record that the money reached the worker's bank.

        Returns:
            The updated payout, or None if it was not PROCESSING
        """

        def paid(payout: WorkerPayout) -> bool:
            if not can_proceed(payout.mark_paid):
                return False
            payout.mark_paid()
            return True

        payout, applied = WorkerPayout.objects.update_with_retry(payout_id, paid)
        if not applied:
            cls.get_logger().info(
                "Paid event ignored, payout is not processing",
                extra={"payout_id": str(payout_id), "status": payout.status},
            )
            return None

        cls.get_logger().info(
            "Payout paid",
            extra={"payout_id": str(payout_id), "worker_id": str(payout.worker_id)},
        )
        return payout

    # =========================================================================
    # Re-queueing
    # =========================================================================

    @classmethod
    def requeue_payout(
        cls, payout_id: uuid.UUID | str, reset_retries: bool = False
    ) -> WorkerPayout:
        """
        Put one FAILED payout back in the queue.

        Raises:
            PayoutNotFoundError: If the payout does not exist
            InvalidPayoutTransitionError: If the payout is not FAILED
        """
        payout, applied = WorkerPayout.objects.update_with_retry(
            payout_id, cls._requeue_mutation(reset_retries)
        )
        if not applied:
            raise InvalidPayoutTransitionError(
                f"WorkerPayout {payout_id} cannot be re-queued from {payout.status}",
                details={"payout_id": str(payout_id), "status": payout.status},
            )
        cls.get_logger().info(
            "Payout re-queued",
            extra={"payout_id": str(payout_id), "reset_retries": reset_retries},
        )
        return payout

    @classmethod
    def requeue_actionable_failures(cls, worker_id: uuid.UUID | str) -> int:
        """
        Re-queue a worker's payouts that waited on an account fix.

        The retry budget starts over since the cause is gone.
        """
        payouts = WorkerPayout.objects.find_actionable_failures_for_worker(worker_id)
        count = cls._requeue_many(payouts, reset_retries=True)
        if count:
            cls.get_logger().info(
                "Re-queued payouts after account fix",
                extra={"worker_id": str(worker_id), "count": count},
            )
        return count

    @classmethod
    def requeue_balance_failures(cls) -> int:
        """Re-queue payouts that failed on the platform balance; retry_count is kept."""
        payouts = WorkerPayout.objects.find_by_failure_reason(
            FailureReason.BALANCE_INSUFFICIENT
        )
        return cls._requeue_many(payouts, reset_retries=False)

    @classmethod
    def _requeue_many(cls, payouts: Iterable[WorkerPayout], reset_retries: bool) -> int:
        mutate = cls._requeue_mutation(reset_retries)
        count = 0
        for payout in payouts:
            _, applied = WorkerPayout.objects.update_with_retry(payout.id, mutate)
            if applied:
                count += 1
        return count

    @staticmethod
    def _requeue_mutation(reset_retries: bool):
        def requeue(payout: WorkerPayout) -> bool:
            if not can_proceed(payout.requeue):
                return False
            payout.requeue(reset_retries=reset_retries)
            return True

        return requeue
