"""Collaborator interfaces consumed by the managers and the pipeline.

The concrete implementations live in glinr.dns, glinr.certs.acme and
glinr.proxy.control; tests substitute fakes that satisfy these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass
class ZoneInfo:
    """Authoritative zone of a name and the DNS provider hosting it."""

    zone: str
    provider: str
    nameservers: list[str] = field(default_factory=list)


@dataclass
class IssuedCertificate:
    """Result of a successful certificate authority order."""

    domain: str
    expires_at: datetime
    cert_path: str | None = None
    key_path: str | None = None


@runtime_checkable
class TXTResolver(Protocol):
    async def lookup_txt(self, name: str) -> list[str]:
        """Return TXT values at ``name``; an empty list for NXDOMAIN/NODATA.

        Raises:
            DNSLookupError: On resolver failure (timeout, SERVFAIL).
        """
        ...


@runtime_checkable
class ZoneInfoSource(Protocol):
    async def get_zone_info(self, domain: str) -> ZoneInfo: ...


@runtime_checkable
class DNSProviderClient(Protocol):
    async def get_zone_id(self, zone: str) -> str: ...

    async def ensure_txt(self, zone_id: str, name: str, value: str) -> str: ...

    async def ensure_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        value: str,
        proxied: bool = False,
    ) -> str: ...


@runtime_checkable
class CertificateAuthority(Protocol):
    async def issue_certificate(self, domain: str, email: str) -> IssuedCertificate:
        """Obtain a certificate for ``domain``.

        Raises:
            CertificateAuthorityError: If the authority rejects or fails the order.
        """
        ...


@runtime_checkable
class ProxyControl(Protocol):
    async def validate(self, config: str) -> None:
        """Raise ProxyValidationError if ``config`` would not load."""
        ...

    async def apply(self, config: str, *, reload: bool = True) -> None:
        """Atomically install ``config`` and optionally reload the proxy.

        Raises:
            ProxyReloadError: If the file was written but the reload failed.
        """
        ...
