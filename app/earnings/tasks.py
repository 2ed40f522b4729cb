"""
Celery tasks for worker payouts.

This module provides async tasks for:
- Aggregating completed work into payouts (celery-beat)
- Processing pending payouts (celery-beat)
- Processing Stripe webhook events
- Re-queueing webhook events that were never processed
- Balance recovery after balance.available
- Sending payout notification emails

Usage:
    from earnings.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))

    # Run a payout cycle now
    from earnings.tasks import process_pending_payouts
    process_pending_payouts.delay()
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.apps import apps
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from earnings import notifications
from earnings.exceptions import StripeError
from earnings.models import WebhookEvent
from earnings.services.payout_service import PayoutService
from earnings.services.recovery import BalanceRecoveryCoordinator
from earnings.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

MAX_WEBHOOK_RETRIES = 3
WEBHOOK_RETRY_BASE_COUNTDOWN = 10
STALE_WEBHOOK_THRESHOLD_MINUTES = 5

# Stop starting new payouts this long before the soft time limit
DEADLINE_MARGIN_SECONDS = 30


def _deadline(timeout_seconds: int) -> float:
    return time.monotonic() + max(timeout_seconds - DEADLINE_MARGIN_SECONDS, 0)


# =============================================================================
# Scheduled Payout Tasks
# =============================================================================


@shared_task(soft_time_limit=settings.PAYOUT_AGGREGATION_TIMEOUT_SECONDS)
def aggregate_payouts() -> dict:
    """
    Create PENDING payouts for the pay period that just closed.

    Scheduled weekly (daily in short pay period mode) via CELERY_BEAT_SCHEDULE.
    """
    summary = PayoutService.aggregate_and_create_payouts()
    return {
        "period_start": summary.period.start_date.isoformat(),
        "created": summary.created,
        "skipped_below_minimum": summary.skipped_below_minimum,
        "skipped_existing": summary.skipped_existing,
    }


@shared_task(soft_time_limit=settings.PAYOUT_PROCESSING_TIMEOUT_SECONDS)
def process_pending_payouts() -> dict:
    """
    Initiate every payout that is ready.

    Several workers may run this at once; each payout is claimed by exactly
    one of them.
    """
    summary = PayoutService.process_pending_payouts(
        deadline=_deadline(settings.PAYOUT_PROCESSING_TIMEOUT_SECONDS)
    )
    if summary.balance_insufficient:
        logger.warning(
            "Payout run finished with insufficient platform balance; "
            "affected payouts wait for balance.available"
        )
    return {
        "processed": summary.processed,
        "initiated": summary.initiated,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "balance_insufficient": summary.balance_insufficient,
    }


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True, max_retries=MAX_WEBHOOK_RETRIES)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored Stripe webhook event.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the reconciler
    5. Marks as processed or failed

    Transient Stripe errors are retried with exponential countdown.

    Args:
        webhook_event_id: UUID of the WebhookEvent to process
    """
    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    reconciler = apps.get_app_config("earnings").reconciler

    try:
        result = reconciler.dispatch(webhook_event.payload)
    except StripeError as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        if e.is_retryable:
            logger.warning(
                "Transient Stripe error processing webhook, retrying",
                extra={
                    "stripe_event_id": webhook_event.stripe_event_id,
                    "retries": self.request.retries,
                },
            )
            raise self.retry(
                exc=e, countdown=WEBHOOK_RETRY_BASE_COUNTDOWN * 2**self.request.retries
            )
        logger.exception(
            "Webhook processing failed",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        raise
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        raise

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info(
        "Webhook processed successfully",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "event_type": webhook_event.event_type,
        },
    )
    return {"status": "processed", "result": result.data}


@shared_task
def retry_stale_webhook_events() -> dict:
    """
    Periodic task to re-queue webhook events that were never processed.

    Picks up events stuck in PENDING (the queue was unavailable when the
    view stored them) and FAILED events with attempts left.
    """
    threshold = timezone.now() - timedelta(minutes=STALE_WEBHOOK_THRESHOLD_MINUTES)
    events = WebhookEvent.objects.filter(
        Q(status=WebhookEventStatus.PENDING)
        | Q(status=WebhookEventStatus.FAILED, retry_count__lt=MAX_WEBHOOK_RETRIES),
        updated_at__lt=threshold,
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook_event in events:
        process_webhook_event.delay(str(webhook_event.id))
        queued_count += 1

    if queued_count:
        logger.info(
            f"Queued {queued_count} stale webhook events",
            extra={"queued_count": queued_count},
        )
    return {"queued_count": queued_count}


# =============================================================================
# Balance Recovery
# =============================================================================


@shared_task(soft_time_limit=settings.BALANCE_RECOVERY_TIMEOUT_SECONDS)
def run_balance_recovery() -> dict:
    """
    Re-drive payouts after the platform balance was replenished.

    Scheduled by BalanceRecoveryCoordinator.handle_balance_available with a
    short countdown so Stripe's balance settles first.
    """
    try:
        outcome = BalanceRecoveryCoordinator.run_recovery_loop(
            max_attempts=settings.BALANCE_RECOVERY_MAX_ATTEMPTS,
            initial_backoff=settings.BALANCE_RECOVERY_INITIAL_BACKOFF_SECONDS,
            deadline=_deadline(settings.BALANCE_RECOVERY_TIMEOUT_SECONDS),
        )
    except Exception:
        logger.exception("Balance recovery failed")
        raise

    return {"outcome": outcome.value}


# =============================================================================
# Notifications
# =============================================================================


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def send_payout_notification(
    self,
    kind: str,
    reason: str,
    worker_id: str | None = None,
    payout_id: str | None = None,
) -> dict:
    """Render and send a payout notification email."""
    try:
        if kind == notifications.ACTION_REQUIRED:
            sent = notifications.send_action_required_email(worker_id, reason, payout_id)
        elif kind == notifications.PLATFORM_ISSUE:
            sent = notifications.send_platform_issue_email(payout_id, reason)
        else:
            logger.error("Unknown payout notification kind", extra={"kind": kind})
            return {"status": "unknown_kind", "kind": kind}
    except OSError as e:
        # SMTP and connection errors
        logger.warning(
            "Payout notification delivery failed, retrying",
            extra={"kind": kind, "payout_id": payout_id, "error": str(e)},
        )
        raise self.retry(exc=e)

    return {"status": "sent" if sent else "skipped", "kind": kind}
