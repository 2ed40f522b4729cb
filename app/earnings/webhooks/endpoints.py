"""
Provisioning of Stripe webhook endpoints for this deployment.

With STRIPE_DYNAMIC_WEBHOOK_ENDPOINTS enabled (preview and test
deployments), each instance registers its own platform and connect
endpoints at startup and stores the returned signing secrets in
WebhookSecrets. Endpoints are tagged with metadata so that a restarted
instance can find and replace its own stale registrations.

Stripe caps the number of endpoints per account; when the cap is hit the
oldest endpoint pointing elsewhere is deleted to free a slot.

Usage:
    provisioner = WebhookEndpointProvisioner(secrets)
    provisioner.ensure_all()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings

from earnings.adapters import StripeAdapter
from earnings.exceptions import StripeInvalidRequestError, WebhookProvisioningError
from earnings.state_machines import CONNECT_EVENT_TYPES, PLATFORM_EVENT_TYPES, MetadataKey
from earnings.webhooks.secrets import CONNECT, PLATFORM

if TYPE_CHECKING:
    from earnings.adapters import WebhookEndpointResult
    from earnings.webhooks.secrets import WebhookSecrets

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/v1/earnings/webhooks/stripe/"
KIND_METADATA_KEY = "kind"
RESOURCE_MISSING = "resource_missing"

_LIMIT_MESSAGES = (
    "allowed webhook api limit exceeded",
    "16 test webhook endpoints",
    "16 webhook endpoints",
)
_URL_TAKEN_MESSAGES = (
    "url has already been taken",
    "url is already in use",
)

EVENTS_BY_KIND = {
    PLATFORM: PLATFORM_EVENT_TYPES,
    CONNECT: CONNECT_EVENT_TYPES,
}


def webhook_url() -> str:
    return settings.APP_URL.rstrip("/") + WEBHOOK_PATH


def _is_limit_error(error: StripeInvalidRequestError) -> bool:
    message = str(error).lower()
    return any(text in message for text in _LIMIT_MESSAGES)


def _is_url_taken_error(error: StripeInvalidRequestError) -> bool:
    message = str(error).lower()
    return any(text in message for text in _URL_TAKEN_MESSAGES)


class WebhookEndpointProvisioner:
    """
    Registers this deployment's webhook endpoints and records their secrets.

    Args:
        secrets: Where the new signing secrets are stored
        adapter: Stripe adapter class (injectable for tests)
        max_attempts: Create attempts per endpoint kind
    """

    def __init__(
        self,
        secrets: WebhookSecrets,
        adapter: type = StripeAdapter,
        max_attempts: int = 3,
    ) -> None:
        self.secrets = secrets
        self.adapter = adapter
        self.max_attempts = max_attempts
        self.endpoint_ids: dict[str, str] = {}

    def ensure_all(self) -> dict[str, str]:
        """Provision both endpoint kinds. Returns kind -> endpoint id."""
        for kind in (PLATFORM, CONNECT):
            self.ensure_endpoint(kind)
        return dict(self.endpoint_ids)

    def ensure_endpoint(self, kind: str) -> WebhookEndpointResult:
        """
        Replace any stale endpoint of this kind and register a fresh one.

        Raises:
            WebhookProvisioningError: If no endpoint could be created
            StripeError: For Stripe failures other than the slot limit
                and URL conflicts
        """
        url = webhook_url()
        self._remove_stale(url, kind)

        last_error: StripeInvalidRequestError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                endpoint = self.adapter.create_webhook_endpoint(
                    url=url,
                    enabled_events=EVENTS_BY_KIND[kind],
                    connect=kind == CONNECT,
                    metadata={
                        KIND_METADATA_KEY: kind,
                        MetadataKey.GENERATED_BY: settings.PAYOUT_INSTANCE_TAG,
                    },
                )
            except StripeInvalidRequestError as e:
                last_error = e
                if _is_limit_error(e):
                    logger.warning(
                        "Webhook endpoint limit reached, freeing a slot",
                        extra={"kind": kind, "attempt": attempt},
                    )
                    self._remove_oldest_other(url)
                    continue
                if _is_url_taken_error(e):
                    logger.warning(
                        "Webhook URL already taken, removing stale endpoint",
                        extra={"kind": kind, "attempt": attempt},
                    )
                    self._remove_stale(url, kind)
                    continue
                raise

            self.secrets.set(kind, endpoint.secret or "")
            self.endpoint_ids[kind] = endpoint.id
            logger.info(
                "Webhook endpoint registered",
                extra={"kind": kind, "endpoint_id": endpoint.id, "url": url},
            )
            return endpoint

        raise WebhookProvisioningError(
            f"Could not register {kind} webhook endpoint after {self.max_attempts} attempts",
            details={"kind": kind, "url": url, "error": str(last_error)},
        )

    def remove_all(self) -> list[str]:
        """Delete every endpoint registered for this deployment's URL."""
        url = webhook_url()
        removed = []
        for endpoint in self.adapter.list_webhook_endpoints():
            if endpoint.url == url:
                self.adapter.delete_webhook_endpoint(endpoint.id)
                removed.append(endpoint.id)
        logger.info("Webhook endpoints removed", extra={"endpoint_ids": removed})
        return removed

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _remove_stale(self, url: str, kind: str) -> None:
        """Delete endpoints for this URL of the same kind (or untagged)."""
        for endpoint in self.adapter.list_webhook_endpoints():
            if endpoint.url != url:
                continue
            endpoint_kind = endpoint.metadata.get(KIND_METADATA_KEY, "")
            if endpoint_kind in ("", kind):
                logger.info(
                    "Removing stale webhook endpoint",
                    extra={"endpoint_id": endpoint.id, "kind": endpoint_kind},
                )
                self.adapter.delete_webhook_endpoint(endpoint.id)

    def _remove_oldest_other(self, url: str) -> None:
        """
        Delete the oldest endpoint that points at another URL.

        Raises:
            WebhookProvisioningError: If there is nothing left to delete
        """
        candidates = sorted(
            (e for e in self.adapter.list_webhook_endpoints() if e.url != url),
            key=lambda e: e.created,
        )
        for endpoint in candidates:
            try:
                self.adapter.delete_webhook_endpoint(endpoint.id)
            except StripeInvalidRequestError as e:
                if e.stripe_code == RESOURCE_MISSING:
                    # Deleted concurrently by another instance; try the next one
                    continue
                raise
            logger.info(
                "Removed oldest webhook endpoint to free a slot",
                extra={"endpoint_id": endpoint.id, "url": endpoint.url},
            )
            return

        raise WebhookProvisioningError(
            "No removable webhook endpoint to free a slot",
            details={"url": url},
        )
