"""Tests for the Cloudflare DNS client."""

from __future__ import annotations

import json

import httpx
import pytest

from glinr.core.errors import ProviderError
from glinr.dns import CloudflareClient


def _ok(result):
    return httpx.Response(200, json={"success": True, "errors": [], "result": result})


class FakeCloudflareAPI:
    """Minimal in-memory Cloudflare API served through httpx.MockTransport."""

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.rate_limited = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.rate_limited:
            self.rate_limited -= 1
            return httpx.Response(429, headers={"Retry-After": "0"}, json={"success": False})

        path = request.url.path
        if path.endswith("/zones"):
            name = request.url.params.get("name")
            if name == "example.com":
                return _ok([{"id": "zone-1", "name": name}])
            return _ok([])
        if path.endswith("/dns_records") and request.method == "GET":
            matches = [
                r
                for r in self.records.values()
                if r["type"] == request.url.params.get("type")
                and r["name"] == request.url.params.get("name")
            ]
            return _ok(matches)
        if path.endswith("/dns_records") and request.method == "POST":
            record = json.loads(request.content)
            record["id"] = f"rec-{len(self.records) + 1}"
            self.records[record["id"]] = record
            return _ok(record)
        if request.method == "PUT":
            record_id = path.rsplit("/", 1)[-1]
            record = json.loads(request.content)
            record["id"] = record_id
            self.records[record_id] = record
            return _ok(record)
        return httpx.Response(404, json={"success": False, "errors": [{"code": 7003}]})


@pytest.fixture
def api():
    return FakeCloudflareAPI()


@pytest.fixture
def client(api):
    return CloudflareClient(
        "cf-token",
        base_url="https://api.test/client/v4",
        transport=httpx.MockTransport(api.handler),
    )


class TestCloudflareClient:
    def test_requires_token(self):
        with pytest.raises(ProviderError):
            CloudflareClient("")

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, client, api):
        async with client:
            await client.get_zone_id("example.com")
        assert api.requests[0].headers["Authorization"] == "Bearer cf-token"

    @pytest.mark.asyncio
    async def test_get_zone_id(self, client):
        async with client:
            assert await client.get_zone_id("example.com") == "zone-1"

    @pytest.mark.asyncio
    async def test_unknown_zone(self, client):
        async with client:
            with pytest.raises(ProviderError) as exc_info:
                await client.get_zone_id("other.org")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_ensure_record_creates_then_noops(self, client, api):
        async with client:
            first = await client.ensure_txt("zone-1", "_glinr-verify.app.example.com", "tok")
            second = await client.ensure_txt("zone-1", "_glinr-verify.app.example.com", "tok")

        assert first == second
        assert len(api.records) == 1
        assert [r.method for r in api.requests] == ["GET", "POST", "GET"]

    @pytest.mark.asyncio
    async def test_ensure_record_updates_changed_value(self, client, api):
        async with client:
            record_id = await client.ensure_record("zone-1", "CNAME", "app.example.com", "old.example.net")
            updated_id = await client.ensure_record(
                "zone-1", "CNAME", "app.example.com", "edge.example.net", proxied=True
            )

        assert updated_id == record_id
        assert api.records[record_id]["content"] == "edge.example.net"
        assert api.records[record_id]["proxied"] is True
        assert api.requests[-1].method == "PUT"

    @pytest.mark.asyncio
    async def test_retries_rate_limit(self, client, api):
        api.rate_limited = 2
        async with client:
            assert await client.get_zone_id("example.com") == "zone-1"
        assert len(api.requests) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, client, api):
        api.rate_limited = 10
        async with client:
            with pytest.raises(ProviderError) as exc_info:
                await client.get_zone_id("example.com")
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_api_errors_are_carried(self, client):
        async with client:
            with pytest.raises(ProviderError) as exc_info:
                await client._request("GET", "/unknown")
        assert exc_info.value.errors == [{"code": 7003}]

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with CloudflareClient("cf-token", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ProviderError, match="request failed"):
                await client.get_zone_id("example.com")
