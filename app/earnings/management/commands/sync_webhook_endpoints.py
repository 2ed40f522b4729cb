"""
Register (or remove) this deployment's Stripe webhook endpoints.

Usage:
    python manage.py sync_webhook_endpoints
    python manage.py sync_webhook_endpoints --remove
"""

from django.apps import apps
from django.core.management.base import BaseCommand, CommandError

from earnings.exceptions import StripeError, WebhookProvisioningError
from earnings.webhooks.endpoints import WebhookEndpointProvisioner, webhook_url


class Command(BaseCommand):
    help = "Provision the platform and connect webhook endpoints for APP_URL"

    def add_arguments(self, parser):
        parser.add_argument(
            "--remove",
            action="store_true",
            help="Delete the endpoints registered for APP_URL instead",
        )

    def handle(self, *args, **options):
        config = apps.get_app_config("earnings")
        provisioner = WebhookEndpointProvisioner(config.webhook_secrets)

        try:
            if options["remove"]:
                removed = provisioner.remove_all()
                self.stdout.write(
                    self.style.SUCCESS(f"Removed {len(removed)} endpoint(s) for {webhook_url()}")
                )
                for endpoint_id in removed:
                    self.stdout.write(f"  {endpoint_id}")
                return

            endpoint_ids = provisioner.ensure_all()
        except (StripeError, WebhookProvisioningError) as e:
            raise CommandError(f"Webhook endpoint sync failed: {e}") from e

        self.stdout.write(self.style.SUCCESS(f"Webhook endpoints ready for {webhook_url()}"))
        for kind, endpoint_id in endpoint_ids.items():
            self.stdout.write(f"  {kind}: {endpoint_id}")
