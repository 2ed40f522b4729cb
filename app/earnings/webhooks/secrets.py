"""
Webhook signing secrets shared by the webhook view and endpoint provisioning.

Stripe signs platform events and connected-account events with different
secrets. With static endpoints both come from settings; with dynamic
endpoints provisioning replaces them at startup, while requests may already
be verifying against them, so every access goes through a lock.

The single instance is owned by EarningsConfig:

    from django.apps import apps

    secrets = apps.get_app_config("earnings").webhook_secrets
    event = StripeAdapter.construct_event(payload, signature, secrets.all())
"""

from __future__ import annotations

import threading

from django.conf import settings

PLATFORM = "platform"
CONNECT = "connect"


class WebhookSecrets:
    """Thread-safe holder for the platform and connect signing secrets."""

    def __init__(self, platform: str = "", connect: str = "") -> None:
        self._lock = threading.Lock()
        self._secrets = {PLATFORM: platform, CONNECT: connect}

    @classmethod
    def from_settings(cls) -> WebhookSecrets:
        return cls(
            platform=settings.STRIPE_WEBHOOK_SECRET,
            connect=settings.STRIPE_CONNECT_WEBHOOK_SECRET,
        )

    def get(self, kind: str) -> str:
        with self._lock:
            return self._secrets[kind]

    def set(self, kind: str, secret: str) -> None:
        if kind not in (PLATFORM, CONNECT):
            raise ValueError(f"Unknown webhook endpoint kind: {kind}")
        with self._lock:
            self._secrets[kind] = secret

    @property
    def platform(self) -> str:
        return self.get(PLATFORM)

    @property
    def connect(self) -> str:
        return self.get(CONNECT)

    def all(self) -> list[str]:
        """Configured secrets to try, platform first, without blanks or repeats."""
        with self._lock:
            candidates = [self._secrets[PLATFORM], self._secrets[CONNECT]]
        return list(dict.fromkeys(secret for secret in candidates if secret))
