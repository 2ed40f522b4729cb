"""
WorkerPayout model: one worker's disbursement for one pay period.

A payout moves platform funds to the worker's Stripe Connect account
(transfer) and then from that account to the worker's bank (payout).
Stripe reports the final outcome asynchronously through webhooks.

Usage:
    from earnings.models import WorkerPayout

    payout, created = WorkerPayout.objects.create_if_absent(
        worker_id=worker.id,
        period_start=period.start_date,
        period_end=period.end_date,
        amount_cents=12500,
        work_item_ids=item_ids,
    )

    # All mutations go through the version-conditioned store
    def mark_paid(p):
        if not can_proceed(p.mark_paid):
            return False
        p.mark_paid()

    payout, applied = WorkerPayout.objects.update_with_retry(payout.id, mark_paid)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin
from earnings.models.managers import PayoutManager
from earnings.state_machines import PayoutStatus

if TYPE_CHECKING:
    from datetime import datetime


def _is_due(payout: WorkerPayout) -> bool:
    """PENDING rows are always due; FAILED rows once next_attempt_at has elapsed."""
    if payout.status == PayoutStatus.PENDING:
        return True
    return payout.next_attempt_at is not None and payout.next_attempt_at <= timezone.now()


class WorkerPayout(UUIDPrimaryKeyMixin, BaseModel):
    """
    A worker's payout for one pay period.

    State Flow:
        PENDING -> PROCESSING -> PAID (payout.paid webhook)
        PENDING -> PROCESSING -> FAILED (synchronous error or payout.failed webhook)
        FAILED -> PROCESSING (timed retry is due)
        FAILED -> PENDING (re-queued by account fix or balance recovery)

    Fields:
        worker: Owning worker
        period_start / period_end: Inclusive pay period dates
        amount_cents: Amount in cents (USD)
        status: Current FSM status
        stripe_transfer_id: Platform -> connected account transfer (tr_xxx)
        stripe_payout_id: Connected account -> bank payout (po_xxx)
        last_failure_reason: Reason code of the latest failure
        retry_count: Failed attempts so far; part of the idempotency key
        last_attempt_at: When processing last started
        next_attempt_at: When a timed retry is due (null = none scheduled)
        work_item_ids: Completed work items the amount was summed from
        version: Optimistic locking version

    Note:
        Rows are mutated through PayoutManager.update_if_version, never
        through save() in the payout flow.
    """

    # ==========================================================================
    # Relationships & Period
    # ==========================================================================

    worker = models.ForeignKey(
        "workforce.Worker",
        on_delete=models.PROTECT,
        related_name="payouts",
        help_text="Worker receiving the payout",
    )

    period_start = models.DateField(
        help_text="First day of the pay period (business timezone)",
    )

    period_end = models.DateField(
        help_text="Last day of the pay period, inclusive",
    )

    # ==========================================================================
    # Amount
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Payout amount in cents (USD)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=PayoutStatus.PENDING,
        choices=PayoutStatus.choices,
        db_index=True,
        help_text="Current status of the payout (managed by FSM)",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    stripe_payout_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Payout ID (po_xxx) on the connected account",
    )

    # ==========================================================================
    # Failure Bookkeeping
    # ==========================================================================

    last_failure_reason = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Reason code of the most recent failure",
    )

    retry_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of failed attempts",
    )

    last_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When processing last started",
    )

    next_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a timed retry is due; null when none is scheduled",
    )

    # ==========================================================================
    # Provenance
    # ==========================================================================

    work_item_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="IDs of the completed work items this amount was computed from",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each write",
    )

    objects = PayoutManager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "earnings_worker_payout"
        ordering = ["-created_at"]
        verbose_name = "Worker Payout"
        verbose_name_plural = "Worker Payouts"
        indexes = [
            models.Index(fields=["status", "next_attempt_at"], name="payout_status_next_idx"),
            models.Index(fields=["worker", "status"], name="payout_worker_status_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["worker", "period_start"],
                name="payout_unique_worker_period",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="worker_payout_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"WorkerPayout({self.id}, {self.status}, {self.amount_cents / 100:.2f} USD)"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.

        Used by admin edits; the payout flow writes through the manager.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PayoutStatus.PENDING, PayoutStatus.FAILED],
        target=PayoutStatus.PROCESSING,
        conditions=[_is_due],
    )
    def start_attempt(self, now: datetime | None = None):
        """
        Claim the payout for a processing attempt.

        Transition: PENDING/due FAILED -> PROCESSING
        """
        self.last_attempt_at = now or timezone.now()
        self.next_attempt_at = None

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.PAID,
    )
    def mark_paid(self):
        """
        Stripe confirmed the money reached the worker's bank.

        Transition: PROCESSING -> PAID
        """
        self.last_failure_reason = ""
        self.next_attempt_at = None

    @transition(
        field=status,
        source=PayoutStatus.PROCESSING,
        target=PayoutStatus.FAILED,
    )
    def mark_failed(self, reason: str, next_attempt_at: datetime | None = None):
        """
        Record a failed attempt.

        Transition: PROCESSING -> FAILED

        Args:
            reason: Failure reason code
            next_attempt_at: When a timed retry is due, or None for no retry
        """
        self.last_failure_reason = reason
        self.retry_count += 1
        self.next_attempt_at = next_attempt_at

    @transition(
        field=status,
        source=PayoutStatus.FAILED,
        target=PayoutStatus.PENDING,
    )
    def requeue(self, reset_retries: bool = False):
        """
        Put a failed payout back in the queue.

        Transition: FAILED -> PENDING

        PENDING rows are picked up by the next processing run, so no
        next_attempt_at is kept.

        Args:
            reset_retries: Start the retry budget over (the worker fixed
                their account)
        """
        self.next_attempt_at = None
        if reset_retries:
            self.retry_count = 0

    def record_external_ids(
        self, transfer_id: str | None = None, payout_id: str | None = None
    ) -> None:
        """Backfill Stripe references. A set transfer id is never cleared."""
        if transfer_id:
            self.stripe_transfer_id = transfer_id
        if payout_id:
            self.stripe_payout_id = payout_id

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_paid(self) -> bool:
        return self.status == PayoutStatus.PAID

    @property
    def is_failed(self) -> bool:
        return self.status == PayoutStatus.FAILED
