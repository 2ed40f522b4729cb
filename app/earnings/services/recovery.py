"""
Balance recovery: re-drive payouts that failed on the platform balance.

When Stripe reports balance.available, payouts that failed with
balance_insufficient are put back in the queue and a detached Celery task
(earnings.tasks.run_balance_recovery) processes them, backing off while
the balance is still short.

Only one recovery fans out at a time: the coordinator takes a Redis lock
without waiting, and a second balance.available arriving meanwhile is
dropped. The background task talks to the rest of the system only through
the database.

Usage:
    from earnings.services.recovery import BalanceRecoveryCoordinator

    BalanceRecoveryCoordinator.handle_balance_available()

    # Inside the Celery task
    outcome = BalanceRecoveryCoordinator.run_recovery_loop(
        max_attempts=5, initial_backoff=10, deadline=time.monotonic() + 590
    )
"""

from __future__ import annotations

import time
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings

from core.services import BaseService
from earnings.exceptions import LockAcquisitionError
from earnings.locks import DistributedLock
from earnings.services.payout_service import PayoutService

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Constants
# =============================================================================

RECOVERY_LOCK_KEY = "earnings:balance-recovery"

# Covers the re-queue step only; the detached task runs without the lock
RECOVERY_LOCK_TTL = 60


class RecoveryOutcome(str, Enum):
    """How a recovery loop ended."""

    COMPLETED = "completed"
    NOTHING_TO_RETRY = "nothing_to_retry"
    EXHAUSTED = "exhausted"
    DEADLINE_EXCEEDED = "deadline_exceeded"


# =============================================================================
# Coordinator
# =============================================================================


class BalanceRecoveryCoordinator(BaseService):
    """
    Reacts to balance.available and runs the recovery retry loop.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def handle_balance_available(cls) -> bool:
        """
        Re-queue balance failures and schedule a recovery run.

        Returns:
            True if a recovery run was scheduled; False if another recovery
            held the lock or nothing was waiting on the balance
        """
        # Import here to avoid circular imports
        from earnings.tasks import run_balance_recovery

        logger = cls.get_logger()
        lock = DistributedLock(RECOVERY_LOCK_KEY, ttl=RECOVERY_LOCK_TTL)

        try:
            lock.acquire()
        except LockAcquisitionError:
            logger.info("Balance recovery already running, skipping event")
            return False

        try:
            requeued = PayoutService.requeue_balance_failures()
        finally:
            lock.release()

        if not requeued:
            logger.info("No payouts waiting on the platform balance")
            return False

        run_balance_recovery.apply_async(
            countdown=settings.BALANCE_RECOVERY_INITIAL_DELAY_SECONDS
        )
        logger.info(
            "Balance recovery scheduled",
            extra={
                "requeued": requeued,
                "countdown": settings.BALANCE_RECOVERY_INITIAL_DELAY_SECONDS,
            },
        )
        return True

    @classmethod
    def run_recovery_loop(
        cls,
        max_attempts: int,
        initial_backoff: float,
        sleep: Callable[[float], None] = time.sleep,
        deadline: float | None = None,
    ) -> RecoveryOutcome:
        """
        Process pending payouts until the balance shortage clears.

        Each attempt runs PayoutService.process_pending_payouts. If the run
        still hit balance_insufficient, the affected payouts are re-queued
        and the next attempt waits `backoff` seconds, doubling each time.

        Args:
            max_attempts: Processing runs before giving up
            initial_backoff: Seconds to wait before the second attempt
            sleep: Blocking sleep function
            deadline: time.monotonic() value bounding the whole loop

        Returns:
            RecoveryOutcome describing why the loop stopped

        Raises:
            Exception: Anything raised by processing ends the loop
        """
        logger = cls.get_logger()
        backoff = initial_backoff

        for attempt in range(1, max_attempts + 1):
            if deadline is not None and time.monotonic() >= deadline:
                logger.error(
                    "Balance recovery deadline exceeded",
                    extra={"attempt": attempt, "max_attempts": max_attempts},
                )
                return RecoveryOutcome.DEADLINE_EXCEEDED

            logger.info(
                "Balance recovery attempt",
                extra={"attempt": attempt, "max_attempts": max_attempts},
            )
            summary = PayoutService.process_pending_payouts(deadline=deadline)

            if deadline is not None and time.monotonic() >= deadline:
                logger.error(
                    "Balance recovery deadline exceeded during processing",
                    extra={"attempt": attempt, "processed": summary.processed},
                )
                return RecoveryOutcome.DEADLINE_EXCEEDED

            if not summary.balance_insufficient:
                logger.info(
                    "Balance recovery completed",
                    extra={"attempt": attempt, "initiated": summary.initiated},
                )
                return RecoveryOutcome.COMPLETED

            if attempt == max_attempts:
                break

            requeued = PayoutService.requeue_balance_failures()
            if not requeued:
                logger.warning(
                    "Balance still insufficient but no payouts left to retry",
                    extra={"attempt": attempt},
                )
                return RecoveryOutcome.NOTHING_TO_RETRY

            logger.warning(
                "Platform balance still insufficient, backing off",
                extra={"attempt": attempt, "requeued": requeued, "backoff_seconds": backoff},
            )
            sleep(backoff)
            backoff *= 2

        logger.error(
            "Gave up balance recovery after repeated balance_insufficient",
            extra={"max_attempts": max_attempts},
        )
        return RecoveryOutcome.EXHAUSTED
