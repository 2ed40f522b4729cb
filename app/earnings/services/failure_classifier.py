"""
Classification of payout failure reasons.

Every failure recorded on a WorkerPayout falls into exactly one class:

    user-actionable      The worker must fix their Stripe account. Never
                         retried on a timer; the worker is emailed. The payout
                         is re-queued when Stripe reports the account fixed.
    system-recoverable   Retried automatically with exponential backoff,
                         except balance_insufficient, which waits for the
                         balance.available webhook.
    final                Nobody's immediate fault. Not retried; finance is
                         emailed.

Reason codes that are not listed anywhere are treated as final with no user
action. They are logged loudly so new Stripe codes get noticed.

Usage:
    from earnings.services.failure_classifier import classify

    result = classify("account_closed")
    result.requires_user_action  # True
    result.system_recoverable    # False
"""

from __future__ import annotations

from typing import NamedTuple

from earnings.state_machines import FailureReason


class Classification(NamedTuple):
    system_recoverable: bool
    requires_user_action: bool


USER_ACTIONABLE_REASONS = frozenset(
    {
        "account_closed",
        "account_frozen",
        FailureReason.ACCOUNT_RESTRICTED,
        "bank_account_restricted",
        "bank_ownership_changed",
        "debit_not_authorized",
        "declined",
        "incorrect_account_holder_name",
        "incorrect_account_holder_tax_id",
        "invalid_account_number",
        "invalid_currency",
        "no_account",
        "payouts_not_allowed",
        FailureReason.MISSING_STRIPE_ACCOUNT,
        FailureReason.PAYOUTS_DISABLED,
    }
)

SYSTEM_RECOVERABLE_REASONS = frozenset(
    {
        FailureReason.BALANCE_INSUFFICIENT,
        FailureReason.COULD_NOT_PROCESS,
        FailureReason.UNKNOWN_ACCOUNT_ERROR,
        FailureReason.UNKNOWN_TRANSFER_ERROR,
        FailureReason.PAYOUT_INITIATION_FAILED,
    }
)

FINAL_REASONS = frozenset(
    {
        FailureReason.INSUFFICIENT_FUNDS,
        FailureReason.WORKER_NOT_FOUND,
    }
)

_MESSAGES = {
    "account_closed": "The bank account linked to your payout account has been closed.",
    "account_frozen": "The bank account linked to your payout account is frozen.",
    FailureReason.ACCOUNT_RESTRICTED: "Your payout account is restricted.",
    "bank_account_restricted": "Your bank account does not accept this kind of payment.",
    "bank_ownership_changed": "The owner of your linked bank account has changed.",
    "debit_not_authorized": "Your bank did not authorize the payout.",
    "declined": "Your bank declined the payout.",
    "incorrect_account_holder_name": "The account holder name on your bank account does not match.",
    "incorrect_account_holder_tax_id": "The tax ID on your bank account does not match.",
    "invalid_account_number": "The bank account number is invalid.",
    "invalid_currency": "Your bank account cannot receive USD.",
    "no_account": "The linked bank account could not be found.",
    "payouts_not_allowed": "Payouts are not allowed on your account.",
    FailureReason.MISSING_STRIPE_ACCOUNT: "You have not linked a payout account yet.",
    FailureReason.PAYOUTS_DISABLED: "Payouts are disabled on your payout account.",
}

_GENERIC_MESSAGE = "We could not send this payout. Our team has been notified."


def classify(reason: str | None) -> Classification:
    """
    Map a failure reason code to its retry and notification policy.

    Unknown codes (and None) are final: not recoverable, no user action.
    """
    if reason in USER_ACTIONABLE_REASONS:
        return Classification(system_recoverable=False, requires_user_action=True)
    if reason in SYSTEM_RECOVERABLE_REASONS:
        return Classification(system_recoverable=True, requires_user_action=False)
    return Classification(system_recoverable=False, requires_user_action=False)


def is_recognized(reason: str | None) -> bool:
    return (
        reason in USER_ACTIONABLE_REASONS
        or reason in SYSTEM_RECOVERABLE_REASONS
        or reason in FINAL_REASONS
    )


def is_user_actionable(reason: str | None) -> bool:
    return reason in USER_ACTIONABLE_REASONS


def describe(reason: str | None) -> str:
    """Human-readable explanation of a failure, suitable for workers."""
    return _MESSAGES.get(reason, _GENERIC_MESSAGE)
