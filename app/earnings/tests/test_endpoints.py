"""
Tests for dynamic webhook endpoint provisioning.

The Stripe adapter is a mock holding an in-memory endpoint list, so the
tests can follow what the provisioner deletes and creates.
"""

import pytest

from earnings.adapters import WebhookEndpointResult
from earnings.exceptions import StripeInvalidRequestError, WebhookProvisioningError
from earnings.state_machines import CONNECT_EVENT_TYPES, PLATFORM_EVENT_TYPES
from earnings.webhooks.endpoints import WebhookEndpointProvisioner, webhook_url
from earnings.webhooks.secrets import CONNECT, PLATFORM, WebhookSecrets

APP_URL = "https://preview-42.example.com"
OUR_URL = APP_URL + "/api/v1/earnings/webhooks/stripe/"


def _endpoint(endpoint_id, url=OUR_URL, created=0, kind=""):
    metadata = {"kind": kind} if kind else {}
    return WebhookEndpointResult(id=endpoint_id, url=url, created=created, metadata=metadata)


@pytest.fixture(autouse=True)
def app_url(settings):
    settings.APP_URL = APP_URL


@pytest.fixture
def secrets():
    return WebhookSecrets(platform="whsec_static", connect="whsec_static_connect")


@pytest.fixture
def adapter(mocker):
    adapter = mocker.MagicMock()
    adapter.endpoints = []
    adapter.list_webhook_endpoints.side_effect = lambda: list(adapter.endpoints)

    def delete(endpoint_id):
        adapter.endpoints = [e for e in adapter.endpoints if e.id != endpoint_id]

    def create(url, enabled_events, connect, metadata=None):
        endpoint = WebhookEndpointResult(
            id=f"we_{'connect' if connect else 'platform'}",
            url=url,
            created=100,
            metadata=metadata or {},
            secret=f"whsec_new_{'connect' if connect else 'platform'}",
        )
        adapter.endpoints.append(endpoint)
        return endpoint

    adapter.delete_webhook_endpoint.side_effect = delete
    adapter.create_webhook_endpoint.side_effect = create
    return adapter


class TestEnsureAll:
    def test_registers_both_kinds_and_stores_secrets(self, secrets, adapter):
        provisioner = WebhookEndpointProvisioner(secrets, adapter=adapter)

        endpoint_ids = provisioner.ensure_all()

        assert endpoint_ids == {PLATFORM: "we_platform", CONNECT: "we_connect"}
        assert secrets.platform == "whsec_new_platform"
        assert secrets.connect == "whsec_new_connect"

        platform_call, connect_call = adapter.create_webhook_endpoint.call_args_list
        assert platform_call.kwargs["url"] == OUR_URL
        assert platform_call.kwargs["enabled_events"] == PLATFORM_EVENT_TYPES
        assert platform_call.kwargs["connect"] is False
        assert platform_call.kwargs["metadata"] == {
            "kind": PLATFORM,
            "generated_by": "test-instance",
        }
        assert connect_call.kwargs["enabled_events"] == CONNECT_EVENT_TYPES
        assert connect_call.kwargs["connect"] is True

    def test_removes_stale_endpoints_for_own_url(self, secrets, adapter):
        adapter.endpoints = [
            _endpoint("we_old_platform", kind=PLATFORM),
            _endpoint("we_untagged"),
            _endpoint("we_elsewhere", url="https://other.example.com/hook"),
        ]

        WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_all()

        remaining = {e.id for e in adapter.endpoints}
        assert remaining == {"we_elsewhere", "we_platform", "we_connect"}

    def test_limit_error_frees_oldest_other_endpoint(self, secrets, adapter):
        adapter.endpoints = [
            _endpoint("we_newer", url="https://b.example.com/hook", created=50),
            _endpoint("we_oldest", url="https://a.example.com/hook", created=10),
        ]
        create = adapter.create_webhook_endpoint.side_effect
        adapter.create_webhook_endpoint.side_effect = [
            StripeInvalidRequestError("You have reached the maximum of 16 test webhook endpoints."),
            create(OUR_URL, PLATFORM_EVENT_TYPES, False, {"kind": PLATFORM}),
        ]
        adapter.endpoints = [e for e in adapter.endpoints if e.url != OUR_URL]

        endpoint = WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_endpoint(PLATFORM)

        assert endpoint.id == "we_platform"
        deleted = [c.args[0] for c in adapter.delete_webhook_endpoint.call_args_list]
        assert deleted == ["we_oldest"]

    def test_url_taken_retries_after_cleanup(self, secrets, adapter):
        create = adapter.create_webhook_endpoint.side_effect
        adapter.create_webhook_endpoint.side_effect = [
            StripeInvalidRequestError("The URL has already been taken."),
            create(OUR_URL, CONNECT_EVENT_TYPES, True, {"kind": CONNECT}),
        ]
        adapter.endpoints = []

        endpoint = WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_endpoint(CONNECT)

        assert endpoint.id == "we_connect"
        assert adapter.create_webhook_endpoint.call_count == 2

    def test_other_invalid_request_raises(self, secrets, adapter):
        adapter.create_webhook_endpoint.side_effect = StripeInvalidRequestError(
            "Invalid URL"
        )

        with pytest.raises(StripeInvalidRequestError):
            WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_endpoint(PLATFORM)

        assert secrets.platform == "whsec_static"

    def test_gives_up_after_max_attempts(self, secrets, adapter):
        adapter.create_webhook_endpoint.side_effect = StripeInvalidRequestError(
            "The URL has already been taken."
        )

        with pytest.raises(WebhookProvisioningError) as exc_info:
            WebhookEndpointProvisioner(
                secrets, adapter=adapter, max_attempts=2
            ).ensure_endpoint(PLATFORM)

        assert exc_info.value.details["kind"] == PLATFORM
        assert adapter.create_webhook_endpoint.call_count == 2

    def test_limit_error_with_nothing_to_free(self, secrets, adapter):
        adapter.create_webhook_endpoint.side_effect = StripeInvalidRequestError(
            "Allowed webhook API limit exceeded"
        )

        with pytest.raises(WebhookProvisioningError):
            WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_endpoint(PLATFORM)

    def test_concurrently_deleted_endpoint_is_skipped(self, secrets, adapter):
        adapter.endpoints = [
            _endpoint("we_gone", url="https://a.example.com/hook", created=1),
            _endpoint("we_next", url="https://b.example.com/hook", created=2),
        ]
        delete = adapter.delete_webhook_endpoint.side_effect

        def flaky_delete(endpoint_id):
            if endpoint_id == "we_gone":
                raise StripeInvalidRequestError(
                    "No such webhook endpoint", stripe_code="resource_missing"
                )
            delete(endpoint_id)

        adapter.delete_webhook_endpoint.side_effect = flaky_delete
        create = adapter.create_webhook_endpoint.side_effect
        adapter.create_webhook_endpoint.side_effect = [
            StripeInvalidRequestError("Allowed webhook API limit exceeded"),
            create(OUR_URL, PLATFORM_EVENT_TYPES, False, {"kind": PLATFORM}),
        ]
        adapter.endpoints = [e for e in adapter.endpoints if e.url != OUR_URL]

        endpoint = WebhookEndpointProvisioner(secrets, adapter=adapter).ensure_endpoint(PLATFORM)

        assert endpoint.id == "we_platform"
        assert [e.id for e in adapter.endpoints] == ["we_gone"]


class TestRemoveAll:
    def test_removes_only_own_url(self, secrets, adapter):
        adapter.endpoints = [
            _endpoint("we_a", kind=PLATFORM),
            _endpoint("we_b", kind=CONNECT),
            _endpoint("we_c", url="https://other.example.com/hook"),
        ]

        removed = WebhookEndpointProvisioner(secrets, adapter=adapter).remove_all()

        assert removed == ["we_a", "we_b"]
        assert [e.id for e in adapter.endpoints] == ["we_c"]


def test_webhook_url_strips_trailing_slash(settings):
    settings.APP_URL = APP_URL + "/"

    assert webhook_url() == OUR_URL
