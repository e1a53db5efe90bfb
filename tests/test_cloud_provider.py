"""
Tests for the cloud provisioning provider.

Requests are served by httpx.MockTransport; no network calls are made.
"""

import json

import httpx
import pytest

from app.exceptions import ProvisioningProviderError
from app.services.cloud_provider import CloudProvider, sanitize_hostname
from app.services.plans import get_plan

OS_ID = "os-image"
APP_ID = "app-image"


def make_provider(handler) -> CloudProvider:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://provider.test/v1",
        headers={"API-Token": "test-token"},
    )
    return CloudProvider(
        api_url="https://provider.test/v1",
        api_token="test-token",
        timeout_seconds=5.0,
        os_id=OS_ID,
        app_id=APP_ID,
        client=client,
    )


def instance_payload(status="active", ipv4="203.0.113.5", password="pw") -> dict:
    return {
        "code": "OKAY",
        "data": {
            "instance": {
                "id": "inst-1",
                "status": status,
                "hostname": "vps-ada",
                "ipv4": ipv4,
                "username": "Administrator",
                "password": password,
            }
        },
    }


class TestSanitizeHostname:
    def test_replaces_invalid_characters(self):
        assert sanitize_hostname("vps_ada lovelace.1") == "vps-ada-lovelace-1"

    def test_truncates(self):
        assert len(sanitize_hostname("x" * 80)) == 50


# ============================================================================
# Create
# ============================================================================


class TestCreate:
    """Tests for CloudProvider.create."""

    async def test_sends_mapped_ids(self):
        """Plan and location are translated to provider identifiers."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"instances": [{"id": "inst-1"}]}})

        provider = make_provider(handler)
        instance_id = await provider.create(get_plan("prime"), "vps-ada-1", "frankfurt")

        assert instance_id == "inst-1"
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/instances"
        assert request.headers["API-Token"] == "test-token"
        body = json.loads(request.content)
        assert body["region"] == "DE-Frankfurt"
        assert body["productId"] == "fe8bbbbe-3bd8-4fcb-9fb9-19f5ab96a6a8"
        assert body["osId"] == OS_ID
        assert body["appId"] == APP_ID
        assert body["hostnames"] == ["vps-ada-1"]
        assert body["assignIpv4"] is True

    @pytest.mark.parametrize(
        "payload",
        [
            {"data": {"id": "inst-1"}},
            {"id": "inst-1"},
        ],
    )
    async def test_alternate_response_shapes(self, payload):
        provider = make_provider(lambda request: httpx.Response(200, json=payload))
        assert await provider.create(get_plan("basic"), "vps", "london") == "inst-1"

    async def test_unmapped_region_is_fatal(self):
        """Catalog locations without a provider region fail before any request."""
        calls = []
        provider = make_provider(lambda request: calls.append(request))

        with pytest.raises(ProvisioningProviderError, match="tokyo") as exc_info:
            await provider.create(get_plan("basic"), "vps", "tokyo")

        assert exc_info.value.transient is False
        assert calls == []

    async def test_missing_instance_id_is_transient(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"data": {}}))

        with pytest.raises(ProvisioningProviderError) as exc_info:
            await provider.create(get_plan("basic"), "vps", "london")

        assert exc_info.value.transient is True

    @pytest.mark.parametrize(
        "status,transient",
        [(400, False), (401, False), (422, False), (429, True), (500, True), (503, True)],
    )
    async def test_http_errors_classified(self, status, transient):
        provider = make_provider(lambda request: httpx.Response(status, text="error"))

        with pytest.raises(ProvisioningProviderError) as exc_info:
            await provider.create(get_plan("basic"), "vps", "london")

        assert exc_info.value.transient is transient
        assert f"HTTP {status}" in exc_info.value.message

    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        provider = make_provider(handler)

        with pytest.raises(ProvisioningProviderError, match="timed out") as exc_info:
            await provider.create(get_plan("basic"), "vps", "london")

        assert exc_info.value.transient is True

    async def test_connection_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = make_provider(handler)

        with pytest.raises(ProvisioningProviderError) as exc_info:
            await provider.create(get_plan("basic"), "vps", "london")

        assert exc_info.value.transient is True


# ============================================================================
# Status and Delete
# ============================================================================


class TestFetchStatus:
    """Tests for CloudProvider.fetch_status."""

    async def test_ready(self):
        provider = make_provider(lambda request: httpx.Response(200, json=instance_payload()))

        status = await provider.fetch_status("inst-1")

        assert status.ready is True
        assert status.address == "203.0.113.5"
        assert status.username == "Administrator"
        assert status.secret == "pw"
        assert status.provider_status == "active"

    async def test_active_without_address_not_ready(self):
        provider = make_provider(
            lambda request: httpx.Response(200, json=instance_payload(ipv4=""))
        )

        status = await provider.fetch_status("inst-1")

        assert status.ready is False
        assert status.address is None

    async def test_still_provisioning(self):
        provider = make_provider(
            lambda request: httpx.Response(200, json=instance_payload(status="pending"))
        )
        assert (await provider.fetch_status("inst-1")).ready is False

    async def test_malformed_response(self):
        provider = make_provider(lambda request: httpx.Response(200, json={"data": {}}))

        with pytest.raises(ProvisioningProviderError, match="Malformed"):
            await provider.fetch_status("inst-1")

    async def test_invalid_json(self):
        provider = make_provider(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ProvisioningProviderError, match="invalid JSON"):
            await provider.fetch_status("inst-1")


class TestDelete:
    """Tests for CloudProvider.delete."""

    async def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        provider = make_provider(handler)

        assert await provider.delete("inst-1") is True
        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/v1/instances/inst-1"

    async def test_failure_returns_false(self):
        """Delete reports failure instead of raising."""
        provider = make_provider(lambda request: httpx.Response(404, text="not found"))
        assert await provider.delete("inst-1") is False

    async def test_aclose(self):
        provider = make_provider(lambda request: httpx.Response(204))
        await provider.aclose()
        assert provider._client.is_closed
