"""
Workforce models: workers and their completed work items.

These models are read by the earnings app through their managers:
    - Worker.objects.get_by_stripe_account(): resolve webhook account ids
    - WorkItem.objects.totals_by_worker(): sum completed pay per pay period

Usage:
    from workforce.models import Worker, WorkItem

    worker = Worker.objects.get_by_stripe_account("acct_123")
    totals = WorkItem.objects.totals_by_worker(window_start, window_end)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import Count, Sum

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from datetime import datetime


# =============================================================================
# Choices
# =============================================================================


class WorkerAccountStatus(models.TextChoices):
    """Whether the worker may currently take and be paid for work."""

    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"
    SUSPENDED = "suspended", "Suspended"


class SetupProgress(models.TextChoices):
    """Worker onboarding progress."""

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    DONE = "done", "Done"


class WorkItemStatus(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


# =============================================================================
# Worker
# =============================================================================


class WorkerManager(models.Manager):
    def get_by_stripe_account(self, stripe_account_id: str) -> Worker | None:
        """Resolve the worker owning a Stripe Connect account, or None."""
        if not stripe_account_id:
            return None
        return self.filter(stripe_connect_account_id=stripe_account_id).first()


class Worker(UUIDPrimaryKeyMixin, BaseModel):
    """
    A gig worker who is paid through a Stripe Connect Express account.

    Fields:
        user: Login account used for the worker-facing API (optional)
        stripe_connect_account_id: Connected account id (acct_xxx), null
            until the worker links a payment account
        account_status: Whether the worker is active on the platform
        setup_progress: Onboarding progress
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="worker",
        help_text="Login account for the worker-facing API",
    )

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    email = models.EmailField()

    stripe_connect_account_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Connect account ID (acct_xxx)",
    )

    account_status = models.CharField(
        max_length=20,
        choices=WorkerAccountStatus.choices,
        default=WorkerAccountStatus.ACTIVE,
        db_index=True,
    )

    setup_progress = models.CharField(
        max_length=20,
        choices=SetupProgress.choices,
        default=SetupProgress.NOT_STARTED,
    )

    objects = WorkerManager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Worker"
        verbose_name_plural = "Workers"

    def __str__(self) -> str:
        return f"Worker({self.id}, {self.full_name})"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.account_status == WorkerAccountStatus.ACTIVE

    @property
    def is_onboarded(self) -> bool:
        """Onboarding finished; used to decide whether to email the worker."""
        return self.setup_progress == SetupProgress.DONE


# =============================================================================
# WorkItem
# =============================================================================


class WorkItemQuerySet(models.QuerySet):
    def payable_in_window(self, window_start: datetime, window_end: datetime):
        """Completed, assigned work items with completed_at in [start, end)."""
        return self.filter(
            status=WorkItemStatus.COMPLETED,
            worker__isnull=False,
            completed_at__gte=window_start,
            completed_at__lt=window_end,
        )

    def totals_by_worker(self, window_start: datetime, window_end: datetime):
        """
        Per-worker totals for a pay period window.

        Returns a list of dicts with worker_id, total_cents, item_count and
        item_ids, ordered by worker_id.
        """
        rows = (
            self.payable_in_window(window_start, window_end)
            .values("worker_id")
            .annotate(total_cents=Sum("effective_pay_cents"), item_count=Count("id"))
            .order_by("worker_id")
        )
        item_ids: dict = {}
        for worker_id, item_id in self.payable_in_window(
            window_start, window_end
        ).values_list("worker_id", "id"):
            item_ids.setdefault(worker_id, []).append(str(item_id))

        return [
            {
                "worker_id": row["worker_id"],
                "total_cents": row["total_cents"] or 0,
                "item_count": row["item_count"],
                "item_ids": sorted(item_ids.get(row["worker_id"], [])),
            }
            for row in rows
        ]


class WorkItem(UUIDPrimaryKeyMixin, BaseModel):
    """
    A unit of completed work that contributes to a worker's earnings.

    Fields:
        worker: Assigned worker (null while unassigned)
        status: Lifecycle status; only COMPLETED items are payable
        effective_pay_cents: What the worker earns for this item
        completed_at: When the item was completed
    """

    worker = models.ForeignKey(
        "workforce.Worker",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="work_items",
    )

    status = models.CharField(
        max_length=20,
        choices=WorkItemStatus.choices,
        default=WorkItemStatus.SCHEDULED,
        db_index=True,
    )

    effective_pay_cents = models.PositiveIntegerField(
        default=0,
        help_text="Worker pay for this item in cents",
    )

    completed_at = models.DateTimeField(null=True, blank=True)

    objects = WorkItemQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Work Item"
        verbose_name_plural = "Work Items"
        indexes = [
            models.Index(
                fields=["status", "completed_at"], name="workitem_status_done_idx"
            ),
        ]

    def __str__(self) -> str:
        return f"WorkItem({self.id}, {self.status})"
