"""Tests for the webhook signing secret holder."""

import pytest

from earnings.webhooks.secrets import CONNECT, PLATFORM, WebhookSecrets


class TestWebhookSecrets:
    def test_from_settings(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_platform"
        settings.STRIPE_CONNECT_WEBHOOK_SECRET = "whsec_connect"

        secrets = WebhookSecrets.from_settings()

        assert secrets.platform == "whsec_platform"
        assert secrets.connect == "whsec_connect"

    def test_all_puts_platform_first(self):
        secrets = WebhookSecrets(platform="whsec_a", connect="whsec_b")

        assert secrets.all() == ["whsec_a", "whsec_b"]

    def test_all_skips_blank_and_repeated(self):
        assert WebhookSecrets(platform="", connect="whsec_b").all() == ["whsec_b"]
        assert WebhookSecrets(platform="whsec_a", connect="whsec_a").all() == ["whsec_a"]

    def test_set_replaces_secret(self):
        secrets = WebhookSecrets(platform="whsec_old")

        secrets.set(PLATFORM, "whsec_new")
        secrets.set(CONNECT, "whsec_connect")

        assert secrets.all() == ["whsec_new", "whsec_connect"]

    def test_set_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            WebhookSecrets().set("express", "whsec_x")
