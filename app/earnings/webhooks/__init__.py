"""
Stripe webhook handling for payout events.

Webhooks are verified against the platform and connect signing secrets,
stored idempotently as WebhookEvent rows, and reconciled with the payout
store by a Celery task.

Modules:
    secrets: Thread-safe signing secret holder (owned by EarningsConfig)
    endpoints: Dynamic webhook endpoint provisioning
    reconciler: Event category handlers
    views: The HTTP endpoint
"""
