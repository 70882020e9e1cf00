"""DNS lookups, zone detection and provider API clients."""

from glinr.dns.cloudflare import CloudflareClient, DNSRecord
from glinr.dns.inspector import DNSInspector
from glinr.dns.zone import PROVIDER_CLOUDFLARE, PROVIDER_MANUAL, ZoneDetector, detect_provider

__all__ = [
    "CloudflareClient",
    "DNSRecord",
    "DNSInspector",
    "ZoneDetector",
    "detect_provider",
    "PROVIDER_CLOUDFLARE",
    "PROVIDER_MANUAL",
]
