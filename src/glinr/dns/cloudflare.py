"""Cloudflare DNS API client.

Only the operations DNS auto-configuration needs: zone id lookup and
create-or-update ("ensure") of a single record. Ensuring a record that
already has the wanted content is a read-only no-op, so repeating an
auto-configuration never produces duplicate records.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from glinr.core.errors import ProviderError

logger = structlog.get_logger()

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
MAX_RATE_LIMIT_RETRIES = 3


@dataclass
class DNSRecord:
    id: str
    type: str
    name: str
    content: str
    proxied: bool = False
    ttl: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DNSRecord:
        return cls(
            id=data["id"],
            type=data["type"],
            name=data["name"],
            content=data.get("content", ""),
            proxied=data.get("proxied", False),
            ttl=data.get("ttl", 1),
        )


class CloudflareClient:
    """Async client for the Cloudflare v4 DNS API.

    Args:
        api_token: API token with Zone.DNS edit permission.
        base_url: API base URL.
        timeout: Per-request timeout (seconds).
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = CLOUDFLARE_API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_token:
            raise ProviderError("Cloudflare API token not configured", status_code=400)
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CloudflareClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request, honouring 429 Retry-After a bounded number of times."""
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            try:
                response = await self._client.request(method, path, params=params, json=json_data)
            except httpx.HTTPError as e:
                raise ProviderError(f"Cloudflare request failed: {e}") from e

            if response.status_code != 429:
                break

            retry_after = response.headers.get("Retry-After", "")
            if not retry_after.isdigit() or attempt == MAX_RATE_LIMIT_RETRIES:
                raise ProviderError("Cloudflare rate limit exceeded", status_code=429)
            logger.warning("Cloudflare rate limited", path=path, retry_after=int(retry_after))
            await asyncio.sleep(int(retry_after))

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Failed to decode Cloudflare response (HTTP {response.status_code})"
            ) from e

        if not data.get("success", False):
            raise ProviderError(
                f"Cloudflare {method} {path} failed (HTTP {response.status_code})",
                errors=data.get("errors", []),
            )
        return data

    async def get_zone_id(self, zone: str) -> str:
        """Look up the zone id for a zone apex name.

        Raises:
            ProviderError: If the API call fails or the zone is not in the account.
        """
        data = await self._request("GET", "/zones", params={"name": zone})
        zones = data.get("result") or []
        if not zones:
            raise ProviderError(f"Zone not found for domain: {zone}", status_code=404)
        return zones[0]["id"]

    async def find_record(self, zone_id: str, record_type: str, name: str) -> DNSRecord | None:
        data = await self._request(
            "GET",
            f"/zones/{zone_id}/dns_records",
            params={"type": record_type, "name": name},
        )
        records = data.get("result") or []
        return DNSRecord.from_dict(records[0]) if records else None

    async def ensure_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        value: str,
        proxied: bool = False,
    ) -> str:
        """Create the record, or update it if its content or proxy flag differ.

        Returns:
            The record id.
        """
        payload = {"type": record_type, "name": name, "content": value, "proxied": proxied}
        existing = await self.find_record(zone_id, record_type, name)

        if existing is not None:
            if existing.content == value and existing.proxied == proxied:
                logger.debug("DNS record up to date", type=record_type, name=name)
                return existing.id
            data = await self._request(
                "PUT", f"/zones/{zone_id}/dns_records/{existing.id}", json_data=payload
            )
            logger.info("DNS record updated", type=record_type, name=name)
        else:
            data = await self._request("POST", f"/zones/{zone_id}/dns_records", json_data=payload)
            logger.info("DNS record created", type=record_type, name=name)

        return data["result"]["id"]

    async def ensure_txt(self, zone_id: str, name: str, value: str) -> str:
        return await self.ensure_record(zone_id, "TXT", name, value, proxied=False)
