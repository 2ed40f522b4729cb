"""
Earnings domain models.

- WorkerPayout: One worker's payout for one pay period (the payout store)
- WebhookEvent: Stripe webhook event log for idempotent processing
"""

from earnings.models.payout import WorkerPayout
from earnings.models.webhook_event import WebhookEvent

__all__ = [
    "WebhookEvent",
    "WorkerPayout",
]
