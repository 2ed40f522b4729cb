"""
Earnings-specific exceptions for payout operations.

Exception Hierarchy:
    PayoutError (base for the payout domain)
    ├── PayoutNotFoundError - WorkerPayout lookup failures
    ├── InvalidPayoutTransitionError - Requested transition not allowed
    ├── WebhookVerificationError - Signature matched neither webhook secret
    ├── WebhookProvisioningError - Webhook endpoint could not be registered
    └── StripeError - Base for all Stripe errors
        ├── StripeCardError - Card/bank errors reported on an API call (permanent)
        ├── StripeInvalidRequestError - Invalid request params (permanent)
        │   ├── StripeInvalidAccountError - Invalid connected account (permanent)
        │   └── StripeBalanceInsufficientError - Platform balance too low
        ├── StripeRateLimitError - Rate limited (transient, retry)
        ├── StripeAPIUnavailableError - API unavailable (transient, retry)
        └── StripeTimeoutError - Request timeout (transient, retry)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    └── PayoutUpdateConflictError - update_with_retry ran out of attempts
    LockAcquisitionError - Distributed lock held elsewhere (inherits ConflictError)

Usage:
    from earnings.exceptions import StripeError, StripeBalanceInsufficientError

    try:
        StripeAdapter.create_transfer(...)
    except StripeBalanceInsufficientError:
        # Wait for balance.available instead of a timer
        ...
    except StripeError as e:
        reason = e.failure_reason(default=FailureReason.UNKNOWN_TRANSFER_ERROR)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, NotFoundError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payout Domain Exceptions
# =============================================================================


class PayoutError(BaseApplicationError):
    """Base exception for all payout operations."""

    default_error_code: str = "PAYOUT_ERROR"


class PayoutNotFoundError(NotFoundError):
    """Raised when a WorkerPayout that must exist cannot be found."""

    default_error_code: str = "PAYOUT_NOT_FOUND"


class InvalidPayoutTransitionError(PayoutError):
    """
    Raised when an operator asks for a transition the payout's state forbids.

    The automated flow treats a refused transition as a guarded no-op; this
    is only raised for explicit requests such as an admin re-queue.
    """

    default_error_code: str = "INVALID_PAYOUT_TRANSITION"


class WebhookVerificationError(PayoutError):
    """
    Raised when a webhook payload fails signature verification.

    The payload is checked against both the platform secret and the
    connected-account secret; this is raised only if neither verifies.
    The webhook view answers 400 and no state changes.
    """

    default_error_code: str = "WEBHOOK_SIGNATURE_INVALID"


class WebhookProvisioningError(PayoutError):
    """Raised when a Stripe webhook endpoint cannot be registered."""

    default_error_code: str = "WEBHOOK_PROVISIONING_FAILED"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PayoutError):
    """
    Base exception for all Stripe-related errors.

    Provides common attributes for Stripe error handling:
    - stripe_code: Stripe's error code (e.g. "balance_insufficient")
    - decline_code: Decline code (if applicable)
    - is_retryable: Whether the failure is transient at the network level

    Example:
        try:
            StripeAdapter.retrieve_account(account_id)
        except StripeError as e:
            reason = e.failure_reason(default=FailureReason.UNKNOWN_ACCOUNT_ERROR)
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code

    def failure_reason(self, default: str) -> str:
        """
        Reason code to record on a payout for this error.

        Transient errors and errors without a Stripe code map to the
        caller's default, which is classified system-recoverable.
        """
        if self.is_retryable or not self.stripe_code:
            return default
        return self.stripe_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry the same request)
# -----------------------------------------------------------------------------


class StripeCardError(StripeError):
    """
    Stripe rejected the operation for the destination instrument.

    For Connect payouts this carries bank-side codes such as
    account_closed or invalid_account_number in stripe_code.
    """

    default_error_code: str = "STRIPE_CARD_ERROR"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Invalid request parameters sent to Stripe.

    The request will never succeed with the same parameters. Check the
    stripe_code and details for specific information.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeInvalidAccountError(StripeInvalidRequestError):
    """
    Invalid Stripe Connect account.

    Raised when the connected account is not found, disabled or not able
    to receive transfers. Requires the worker (or support) to fix the account.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeBalanceInsufficientError(StripeInvalidRequestError):
    """
    The platform balance cannot cover a transfer.

    Not retried on a timer: affected payouts wait for the
    balance.available webhook, which arms balance recovery.
    """

    default_error_code: str = "STRIPE_BALANCE_INSUFFICIENT"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with the same idempotency key)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """
    Stripe API is temporarily unavailable.

    This covers network connectivity issues, Stripe server errors (5xx)
    and authentication misconfiguration surfaced at call time.
    """

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    IMPORTANT: The operation may have succeeded on Stripe's side.
    Retrying with the same idempotency key returns the original response.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class PayoutUpdateConflictError(StaleRecordError):
    """
    Raised when update_with_retry loses every version race it is allowed.

    Version conflicts are normally absorbed by the store; this error means
    contention exceeded PAYOUT_STORE_MAX_UPDATE_ATTEMPTS.
    """

    default_error_code: str = "PAYOUT_UPDATE_CONFLICT"


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Balance recovery acquires its lock without blocking; this error means
    another recovery run is already in flight.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
