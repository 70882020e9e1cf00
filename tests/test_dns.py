"""Tests for DNS lookups and zone detection."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiodns
import pytest

from glinr.core.errors import DNSLookupError
from glinr.dns import DNSInspector, ZoneDetector, detect_provider


def _resolver_returning(result=None, error=None):
    resolver = AsyncMock()
    if error is not None:
        resolver.query_dns = AsyncMock(side_effect=error)
    else:
        resolver.query_dns = AsyncMock(return_value=result)
    return resolver


class TestDNSInspector:
    @pytest.mark.asyncio
    async def test_lookup_txt_strips_quotes(self):
        inspector = DNSInspector()
        first = MagicMock()
        first.text = '"token-value"'
        second = MagicMock()
        second.text = b"other"

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning([first, second])
            values = await inspector.lookup_txt("_glinr-verify.app.example.com")

        assert values == ["token-value", "other"]

    @pytest.mark.asyncio
    async def test_nxdomain_is_empty(self):
        inspector = DNSInspector()
        error = aiodns.error.DNSError(aiodns.error.ARES_ENOTFOUND, "Domain name not found")

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning(error=error)
            assert await inspector.lookup_txt("missing.example.com") == []

    @pytest.mark.asyncio
    async def test_nodata_is_empty(self):
        inspector = DNSInspector()
        error = aiodns.error.DNSError(aiodns.error.ARES_ENODATA, "No data")

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning(error=error)
            assert await inspector.lookup_ns("app.example.com") == []

    @pytest.mark.asyncio
    async def test_servfail_raises(self):
        inspector = DNSInspector()
        error = aiodns.error.DNSError(aiodns.error.ARES_ESERVFAIL, "Server failure")

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning(error=error)
            with pytest.raises(DNSLookupError):
                await inspector.lookup_txt("app.example.com")

    @pytest.mark.asyncio
    async def test_lookup_ns_normalises_hosts(self):
        inspector = DNSInspector()
        record = MagicMock()
        record.host = "ADA.NS.CLOUDFLARE.COM."

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning([record])
            assert await inspector.lookup_ns("example.com") == ["ada.ns.cloudflare.com"]

    @pytest.mark.asyncio
    async def test_lookup_cname(self):
        inspector = DNSInspector()
        record = MagicMock()
        record.cname = "Edge.Example.net."

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning(record)
            assert await inspector.lookup_cname("app.example.com") == "edge.example.net"

    @pytest.mark.asyncio
    async def test_lookup_cname_missing(self):
        inspector = DNSInspector()
        error = aiodns.error.DNSError(aiodns.error.ARES_ENOTFOUND, "Domain name not found")

        with patch.object(inspector, "_get_resolver") as mock_get_resolver:
            mock_get_resolver.return_value = _resolver_returning(error=error)
            assert await inspector.lookup_cname("app.example.com") is None


class TestDetectProvider:
    def test_cloudflare(self):
        assert detect_provider(["ada.ns.cloudflare.com", "bob.ns.cloudflare.com"]) == "cloudflare"

    def test_manual(self):
        assert detect_provider(["ns1.registrar.example"]) == "manual"
        assert detect_provider([]) == "manual"


class TestZoneDetector:
    @pytest.mark.asyncio
    async def test_walks_up_to_zone(self):
        inspector = MagicMock()
        answers = {"example.com": ["ada.ns.cloudflare.com"]}
        inspector.lookup_ns = AsyncMock(side_effect=lambda name: answers.get(name, []))

        info = await ZoneDetector(inspector).get_zone_info("deep.app.example.com")

        assert info.zone == "example.com"
        assert info.provider == "cloudflare"
        queried = [call.args[0] for call in inspector.lookup_ns.call_args_list]
        assert queried == ["deep.app.example.com", "app.example.com", "example.com"]

    @pytest.mark.asyncio
    async def test_never_queries_tld(self):
        inspector = MagicMock()
        inspector.lookup_ns = AsyncMock(return_value=[])

        with pytest.raises(DNSLookupError):
            await ZoneDetector(inspector).find_zone("app.example.com")

        queried = [call.args[0] for call in inspector.lookup_ns.call_args_list]
        assert "com" not in queried

    @pytest.mark.asyncio
    async def test_lookup_errors_skip_level(self):
        inspector = MagicMock()

        async def lookup(name):
            if name == "app.example.com":
                raise DNSLookupError("SERVFAIL")
            return ["ns1.registrar.example"]

        inspector.lookup_ns = AsyncMock(side_effect=lookup)

        zone, nameservers = await ZoneDetector(inspector).find_zone("*.app.example.com")

        assert zone == "example.com"
        assert nameservers == ["ns1.registrar.example"]
