"""
Payout store: queries and version-conditioned writes for WorkerPayout.

Every mutation of a payout row is a compare-and-swap on its version:

    UPDATE earnings_worker_payout
       SET ..., version = version + 1
     WHERE id = %s AND version = %s

Zero rows affected means another instance wrote first; update_with_retry
re-reads and re-applies the mutation. No row is ever locked.

Usage:
    payout, created = WorkerPayout.objects.create_if_absent(...)
    payout, applied = WorkerPayout.objects.update_with_retry(payout_id, mutate)
    for payout in WorkerPayout.objects.ready_for_payout():
        ...
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import F, Q
from django.utils import timezone

from earnings.exceptions import PayoutNotFoundError, PayoutUpdateConflictError
from earnings.services.failure_classifier import USER_ACTIONABLE_REASONS
from earnings.state_machines import PayoutStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import date, datetime
    from typing import Any
    from uuid import UUID

    from earnings.models.payout import WorkerPayout

logger = logging.getLogger(__name__)

# Fields written by update_if_version. Identity, period, amount and
# provenance never change after creation.
MUTABLE_FIELDS = (
    "status",
    "stripe_transfer_id",
    "stripe_payout_id",
    "last_failure_reason",
    "retry_count",
    "last_attempt_at",
    "next_attempt_at",
)


class PayoutQuerySet(models.QuerySet):
    def ready_for_payout(self, now: datetime | None = None):
        """PENDING rows plus FAILED rows whose timed retry is due, oldest first."""
        now = now or timezone.now()
        return self.filter(
            Q(status=PayoutStatus.PENDING)
            | Q(
                status=PayoutStatus.FAILED,
                next_attempt_at__isnull=False,
                next_attempt_at__lte=now,
            )
        ).order_by("created_at")

    def failed_with_reason(self, reason: str):
        return self.filter(
            status=PayoutStatus.FAILED, last_failure_reason=reason
        ).order_by("created_at")

    def actionable_failures_for_worker(self, worker_id: UUID | str):
        """FAILED payouts of a worker that wait on the worker fixing their account."""
        return self.filter(
            worker_id=worker_id,
            status=PayoutStatus.FAILED,
            next_attempt_at__isnull=True,
            last_failure_reason__in=USER_ACTIONABLE_REASONS,
        ).order_by("created_at")


class PayoutManager(models.Manager.from_queryset(PayoutQuerySet)):
    """Manager exposing the payout store operations."""

    # ==========================================================================
    # Creation
    # ==========================================================================

    def create_if_absent(
        self,
        *,
        worker_id: UUID | str,
        period_start: date,
        period_end: date,
        amount_cents: int,
        work_item_ids: Iterable[str] = (),
    ) -> tuple[WorkerPayout, bool]:
        """
        Insert a PENDING payout unless one exists for (worker, period_start).

        Returns:
            (payout, created). A concurrent or earlier insert for the same
            worker and period yields the existing row with created=False.

        Raises:
            IntegrityError: For violations other than the duplicate period
                (e.g. a non-positive amount)
        """
        try:
            with transaction.atomic():
                payout = self.create(
                    worker_id=worker_id,
                    period_start=period_start,
                    period_end=period_end,
                    amount_cents=amount_cents,
                    work_item_ids=list(work_item_ids),
                )
            return payout, True
        except IntegrityError:
            existing = self.get_by_worker_and_period(worker_id, period_start)
            if existing is None:
                raise
            logger.info(
                "Payout already exists for worker and period",
                extra={
                    "payout_id": str(existing.id),
                    "worker_id": str(worker_id),
                    "period_start": period_start.isoformat(),
                },
            )
            return existing, False

    # ==========================================================================
    # Point Reads
    # ==========================================================================

    def get_by_id(self, payout_id: UUID | str) -> WorkerPayout | None:
        return self.filter(pk=payout_id).first()

    def get_by_worker_and_period(
        self, worker_id: UUID | str, period_start: date
    ) -> WorkerPayout | None:
        return self.filter(worker_id=worker_id, period_start=period_start).first()

    # ==========================================================================
    # Conditional Writes
    # ==========================================================================

    def update_if_version(self, payout: WorkerPayout, expected_version: int) -> int:
        """
        Write the payout's mutable fields if the stored version still matches.

        Returns:
            Number of rows affected: 1 on success, 0 if the row moved on
        """
        values: dict[str, Any] = {name: getattr(payout, name) for name in MUTABLE_FIELDS}
        return self.filter(pk=payout.pk, version=expected_version).update(
            version=F("version") + 1,
            updated_at=timezone.now(),
            **values,
        )

    def update_with_retry(
        self,
        payout_id: UUID | str,
        mutate: Callable[[WorkerPayout], bool | None],
        max_attempts: int | None = None,
    ) -> tuple[WorkerPayout, bool]:
        """
        Read, mutate, conditionally write; re-read and retry on conflict.

        Args:
            payout_id: Payout to update
            mutate: Applied to a freshly read instance on every attempt.
                Returning False means there is nothing to write (e.g. a
                guarded transition does not apply to the current state).
            max_attempts: Attempts before giving up
                (default PAYOUT_STORE_MAX_UPDATE_ATTEMPTS)

        Returns:
            (payout, applied). payout reflects what was written, or the
            current row when mutate declined.

        Raises:
            PayoutNotFoundError: If the payout does not exist
            PayoutUpdateConflictError: If every attempt lost a version race
        """
        max_attempts = max_attempts or settings.PAYOUT_STORE_MAX_UPDATE_ATTEMPTS

        for attempt in range(1, max_attempts + 1):
            payout = self.get_by_id(payout_id)
            if payout is None:
                raise PayoutNotFoundError(
                    f"WorkerPayout {payout_id} not found",
                    details={"payout_id": str(payout_id)},
                )

            expected_version = payout.version
            if mutate(payout) is False:
                return payout, False

            if self.update_if_version(payout, expected_version):
                payout.version = expected_version + 1
                return payout, True

            logger.debug(
                "Payout version conflict, retrying",
                extra={
                    "payout_id": str(payout_id),
                    "expected_version": expected_version,
                    "attempt": attempt,
                },
            )

        raise PayoutUpdateConflictError(
            f"WorkerPayout {payout_id} kept changing after {max_attempts} attempts",
            details={"payout_id": str(payout_id), "attempts": max_attempts},
        )

    # ==========================================================================
    # Recovery Queries
    # ==========================================================================

    def find_ready_for_payout(self, now: datetime | None = None) -> list[WorkerPayout]:
        return list(self.ready_for_payout(now))

    def find_by_failure_reason(self, reason: str) -> list[WorkerPayout]:
        return list(self.failed_with_reason(reason))

    def find_actionable_failures_for_worker(
        self, worker_id: UUID | str
    ) -> list[WorkerPayout]:
        return list(self.actionable_failures_for_worker(worker_id))
