"""Authoritative zone and DNS provider detection."""

from __future__ import annotations

import structlog

from glinr.core.errors import DNSLookupError
from glinr.dns.inspector import DNSInspector
from glinr.interfaces import ZoneInfo

logger = structlog.get_logger()

PROVIDER_CLOUDFLARE = "cloudflare"
PROVIDER_MANUAL = "manual"

# Nameserver host suffix -> provider name.
_PROVIDER_NAMESERVERS = {
    "cloudflare.com": PROVIDER_CLOUDFLARE,
}


def detect_provider(nameservers: list[str]) -> str:
    """Map nameserver host names to a known provider, else manual."""
    for ns in nameservers:
        ns = ns.lower()
        for suffix, provider in _PROVIDER_NAMESERVERS.items():
            if suffix in ns:
                return provider
    return PROVIDER_MANUAL


class ZoneDetector:
    """Finds the zone apex of a name by walking up its labels.

    Each candidate from the full name up to (not including) the TLD is asked
    for NS records; the first one that has them is the zone.
    """

    def __init__(self, inspector: DNSInspector) -> None:
        self.inspector = inspector

    async def find_zone(self, domain: str) -> tuple[str, list[str]]:
        """Return ``(zone, nameservers)`` for ``domain``.

        Raises:
            DNSLookupError: If no level of the name has NS records.
        """
        domain = domain.strip().lower().rstrip(".")
        if domain.startswith("*."):
            domain = domain[2:]
        if not domain:
            raise DNSLookupError("Domain cannot be empty")

        labels = domain.split(".")
        for i in range(len(labels) - 1):
            candidate = ".".join(labels[i:])
            try:
                nameservers = await self.inspector.lookup_ns(candidate)
            except DNSLookupError as e:
                logger.debug("NS lookup failed", zone=candidate, error=str(e))
                continue
            if nameservers:
                return candidate, nameservers

        raise DNSLookupError(f"No authoritative zone found for domain: {domain}")

    async def get_zone_info(self, domain: str) -> ZoneInfo:
        zone, nameservers = await self.find_zone(domain)
        provider = detect_provider(nameservers)
        logger.debug("Zone detected", domain=domain, zone=zone, provider=provider)
        return ZoneInfo(zone=zone, provider=provider, nameservers=nameservers)
