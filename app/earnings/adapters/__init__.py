"""
Adapters for external services used by the earnings app.

All Stripe calls go through StripeAdapter to ensure consistent error
handling, timeouts, idempotency, and observability.

Usage:
    from earnings.adapters import IdempotencyKeyGenerator, StripeAdapter

    account = StripeAdapter.retrieve_account("acct_123")
    if account.payouts_enabled:
        StripeAdapter.create_transfer(
            amount_cents=12500,
            destination_account=account.id,
            idempotency_key=IdempotencyKeyGenerator.generate(
                "payout-transfer", payout.id, payout.retry_count
            ),
        )
"""

from earnings.adapters.stripe_adapter import (
    AccountResult,
    BalanceTransactionResult,
    IdempotencyKeyGenerator,
    PayoutResult,
    StripeAdapter,
    TransferResult,
    WebhookEndpointResult,
)

__all__ = [
    "AccountResult",
    "BalanceTransactionResult",
    "IdempotencyKeyGenerator",
    "PayoutResult",
    "StripeAdapter",
    "TransferResult",
    "WebhookEndpointResult",
]
