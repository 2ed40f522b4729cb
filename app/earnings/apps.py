"""
Earnings app configuration.

The app config owns the process-wide webhook collaborators:
- webhook_secrets: signing secrets used by the webhook view
- reconciler: WebhookReconciler used by process_webhook_event

With STRIPE_DYNAMIC_WEBHOOK_ENDPOINTS enabled, ready() registers this
deployment's webhook endpoints and replaces the secrets from settings with
the ones Stripe returns.
"""

import logging
import os
import sys

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)

# Management commands that must not register webhook endpoints on startup
_SKIP_PROVISIONING_COMMANDS = {
    "makemigrations",
    "migrate",
    "collectstatic",
    "shell",
    "test",
    "sync_webhook_endpoints",
}


class EarningsConfig(AppConfig):
    """Configuration for the earnings application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "earnings"
    verbose_name = "Earnings"

    webhook_secrets = None
    reconciler = None

    def ready(self):
        from earnings.webhooks.reconciler import WebhookReconciler
        from earnings.webhooks.secrets import WebhookSecrets

        self.webhook_secrets = WebhookSecrets.from_settings()
        self.reconciler = WebhookReconciler(self.webhook_secrets)

        if settings.STRIPE_DYNAMIC_WEBHOOK_ENDPOINTS and not self._skip_provisioning():
            self.provision_webhook_endpoints()

    def provision_webhook_endpoints(self) -> dict[str, str]:
        from earnings.webhooks.endpoints import WebhookEndpointProvisioner

        endpoint_ids = WebhookEndpointProvisioner(self.webhook_secrets).ensure_all()
        logger.info(
            "Dynamic webhook endpoints provisioned",
            extra={"endpoint_ids": endpoint_ids},
        )
        return endpoint_ids

    @staticmethod
    def _skip_provisioning() -> bool:
        command = sys.argv[1] if len(sys.argv) > 1 else ""
        # Celery workers never verify signatures, so only web processes register
        if os.path.basename(sys.argv[0]) == "celery":
            return True
        return command in _SKIP_PROVISIONING_COMMANDS
