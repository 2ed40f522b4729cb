"""
Tests for the Stripe webhook endpoint.

Payloads are signed the way Stripe signs them so that verification runs
for real against the platform and connect secrets.
"""

import hashlib
import hmac
import json
import time

import pytest
from django.apps import apps
from django.test import RequestFactory

from earnings.models import WebhookEvent
from earnings.state_machines import WebhookEventStatus
from earnings.tests.factories import WebhookEventFactory
from earnings.webhooks.secrets import WebhookSecrets
from earnings.webhooks.views import stripe_webhook

PLATFORM_SECRET = "whsec_platform"
CONNECT_SECRET = "whsec_connect"


def sign(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_event(event: dict, secret: str | None = PLATFORM_SECRET):
    payload = json.dumps(event).encode()
    headers = {}
    if secret:
        headers["HTTP_STRIPE_SIGNATURE"] = sign(payload, secret)
    request = RequestFactory().post(
        "/api/v1/earnings/webhooks/stripe/",
        data=payload,
        content_type="application/json",
        **headers,
    )
    return stripe_webhook(request)


@pytest.fixture(autouse=True)
def webhook_secrets(mocker):
    secrets = WebhookSecrets(platform=PLATFORM_SECRET, connect=CONNECT_SECRET)
    mocker.patch.object(apps.get_app_config("earnings"), "webhook_secrets", secrets)
    return secrets


@pytest.fixture
def mock_queue(mocker):
    return mocker.patch("earnings.tasks.process_webhook_event.delay")


def payout_paid_event(event_id="evt_view_1"):
    return {
        "id": event_id,
        "type": "payout.paid",
        "account": "acct_view",
        "data": {"object": {"id": "po_1", "metadata": {}}},
    }


@pytest.mark.django_db
class TestStripeWebhookView:
    def test_platform_signed_event_is_stored_and_queued(self, mock_queue):
        response = post_event(payout_paid_event())

        event = WebhookEvent.objects.get(stripe_event_id="evt_view_1")
        assert response.status_code == 200
        assert event.event_type == "payout.paid"
        assert event.stripe_account_id == "acct_view"
        assert event.status == WebhookEventStatus.PENDING
        mock_queue.assert_called_once_with(str(event.id))

    def test_connect_signed_event_is_accepted(self, mock_queue):
        response = post_event(payout_paid_event(), secret=CONNECT_SECRET)

        assert response.status_code == 200
        assert WebhookEvent.objects.filter(stripe_event_id="evt_view_1").exists()

    def test_rotated_secret_is_used(self, mock_queue, webhook_secrets):
        webhook_secrets.set("connect", "whsec_rotated")

        response = post_event(payout_paid_event(), secret="whsec_rotated")

        assert response.status_code == 200

    def test_invalid_signature_is_rejected(self, mock_queue):
        response = post_event(payout_paid_event(), secret="whsec_wrong")

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()
        mock_queue.assert_not_called()

    def test_missing_signature_is_rejected(self, mock_queue):
        response = post_event(payout_paid_event(), secret=None)

        assert response.status_code == 400
        mock_queue.assert_not_called()

    def test_event_without_type_is_rejected(self, mock_queue):
        response = post_event({"id": "evt_no_type"})

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()

    def test_processed_redelivery_is_not_queued(self, mock_queue):
        WebhookEventFactory(stripe_event_id="evt_view_1", status=WebhookEventStatus.PROCESSED)

        response = post_event(payout_paid_event())

        assert response.status_code == 200
        mock_queue.assert_not_called()
        assert WebhookEvent.objects.count() == 1

    def test_unprocessed_redelivery_is_queued_again(self, mock_queue):
        existing = WebhookEventFactory(
            stripe_event_id="evt_view_1", status=WebhookEventStatus.FAILED
        )

        post_event(payout_paid_event())

        mock_queue.assert_called_once_with(str(existing.id))

    def test_queue_outage_still_acknowledges(self, mock_queue):
        mock_queue.side_effect = ConnectionError("broker down")

        response = post_event(payout_paid_event())

        event = WebhookEvent.objects.get(stripe_event_id="evt_view_1")
        assert response.status_code == 200
        assert event.status == WebhookEventStatus.PENDING

    def test_get_not_allowed(self):
        request = RequestFactory().get("/api/v1/earnings/webhooks/stripe/")

        assert stripe_webhook(request).status_code == 405
