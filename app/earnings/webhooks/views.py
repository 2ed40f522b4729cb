"""
Webhook endpoint view for Stripe.

The view:
1. Verifies the signature against the platform and connect secrets
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from earnings.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.apps import apps
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from earnings.adapters import StripeAdapter
from earnings.exceptions import WebhookVerificationError
from earnings.models import WebhookEvent
from earnings.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Stripe webhook events.

    Platform events (balance.available) and connected-account events
    (payout.*, account.updated, ...) are signed with different secrets;
    an event is accepted if either secret verifies it.

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new, duplicate, or of a type we ignore)
        - 400: Missing or invalid signature, or malformed event
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    secrets = apps.get_app_config("earnings").webhook_secrets
    try:
        event_data = StripeAdapter.construct_event(payload, signature, secrets.all())
    except WebhookVerificationError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
            "stripe_account_id": event_data.get("account"),
        },
    )

    # Step 2: Create/get WebhookEvent (idempotent)
    webhook_event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event_id,
        defaults={
            "event_type": event_type,
            "stripe_account_id": event_data.get("account") or "",
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    # Step 3: If already processed, return success
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"stripe_event_id": stripe_event_id},
        )
        return HttpResponse("Already processed", status=200)

    # Step 4: Queue for async processing
    from earnings.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception:
        # Stored as PENDING; retry_stale_webhook_events queues it later
        logger.error(
            "Failed to queue webhook",
            extra={"stripe_event_id": stripe_event_id},
            exc_info=True,
        )
        return HttpResponse("Accepted", status=200)

    logger.info(
        "Webhook queued for processing",
        extra={
            "stripe_event_id": stripe_event_id,
            "webhook_event_id": str(webhook_event.id),
        },
    )
    return HttpResponse("Accepted", status=200)
