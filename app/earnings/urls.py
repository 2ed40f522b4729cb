"""
URL configuration for the earnings app.

Routes:
    - GET  /payouts/          - Authenticated worker's payouts
    - POST /webhooks/stripe/  - Stripe webhook endpoint

All routes are prefixed with /api/v1/earnings/ when included in the main URLconf.
"""

from django.urls import path

from earnings.views import WorkerPayoutListView
from earnings.webhooks.views import stripe_webhook

app_name = "earnings"

urlpatterns = [
    path("payouts/", WorkerPayoutListView.as_view(), name="payout-list"),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
