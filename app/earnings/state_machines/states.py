"""
State and code enums for the earnings app.

These are Django TextChoices for database storage and admin integration,
plus the closed set of Stripe event categories the webhook reconciler
understands.

Payout States:
    pending → processing → paid
    pending → processing → failed → pending (re-queue) → processing → ...
    failed (retry due) → processing

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed → processing (task retry)
"""

from __future__ import annotations

from enum import Enum

from django.db import models


class PayoutStatus(models.TextChoices):
    """
    States for the WorkerPayout lifecycle.

    PAID is terminal. FAILED is terminal unless a timed retry is scheduled
    (next_attempt_at set) or a recovery trigger re-queues the payout.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """Processing states for a stored Stripe webhook event."""

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class FailureReason:
    """
    Failure reason codes recorded on WorkerPayout.last_failure_reason.

    Stripe error and payout failure codes are stored verbatim; the codes
    below are the ones this service produces itself.
    """

    WORKER_NOT_FOUND = "worker_record_not_found"
    MISSING_STRIPE_ACCOUNT = "worker_missing_stripe_connect_id"
    PAYOUTS_DISABLED = "stripe_account_payouts_disabled"
    ACCOUNT_RESTRICTED = "account_restricted"
    UNKNOWN_ACCOUNT_ERROR = "unknown_stripe_error_fetching_account"
    UNKNOWN_TRANSFER_ERROR = "unknown_stripe_transfer_error"
    PAYOUT_INITIATION_FAILED = "payout_initiation_failed"

    # Stripe codes with special handling
    BALANCE_INSUFFICIENT = "balance_insufficient"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    COULD_NOT_PROCESS = "could_not_process"


class MetadataKey:
    """Keys written into Stripe transfer and payout metadata."""

    GENERATED_BY = "generated_by"
    PAYOUT_ID = "payout_id"
    WORKER_ID = "worker_id"


class EventCategory(str, Enum):
    """
    Closed set of Stripe event categories handled by the reconciler.

    Anything not listed maps to UNKNOWN, which is acknowledged and ignored.
    """

    PAYOUT_PAID = "payout.paid"
    PAYOUT_FAILED = "payout.failed"
    ACCOUNT_UPDATED = "account.updated"
    CAPABILITY_UPDATED = "capability.updated"
    TRANSFER_REVERSED = "transfer.reversed"
    BALANCE_AVAILABLE = "balance.available"
    UNKNOWN = "unknown"

    @classmethod
    def from_event_type(cls, event_type: str | None) -> EventCategory:
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNKNOWN


# Events the platform endpoint subscribes to; the rest arrive on the
# connected-account endpoint.
PLATFORM_EVENT_TYPES = [EventCategory.BALANCE_AVAILABLE.value]
CONNECT_EVENT_TYPES = [
    EventCategory.PAYOUT_PAID.value,
    EventCategory.PAYOUT_FAILED.value,
    EventCategory.ACCOUNT_UPDATED.value,
    EventCategory.CAPABILITY_UPDATED.value,
    EventCategory.TRANSFER_REVERSED.value,
]

# Stripe Connect capability that gates transfers to a connected account
TRANSFERS_CAPABILITY = "transfers"
