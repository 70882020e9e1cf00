"""Domain manager for custom domain lifecycle management.

This module owns domain records and their verification state:
- Creation with provider/zone auto-detection and token generation
- TXT challenge issue and check
- DNS auto-configuration through a provider API
- Activation, error marking and reset

Usage:
    manager = DomainManager(store, resolver=DNSInspector())

    domain = await manager.create_domain("app.example.com")
    challenge = await manager.issue_challenge("app.example.com")
    result = await manager.check_challenge("app.example.com")
    if result.verified:
        await manager.activate("app.example.com")
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from glinr.core.errors import (
    ConflictError,
    DNSLookupError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from glinr.domains.names import needs_cname, validate_domain
from glinr.domains.verification import (
    Challenge,
    CheckResult,
    challenge_name,
    generate_token,
    token_matches,
)
from glinr.interfaces import DNSProviderClient, TXTResolver, ZoneInfoSource
from glinr.store import Domain, DomainStatus, Store, utc_now

logger = structlog.get_logger()

PROVIDER_CLOUDFLARE = "cloudflare"
CLOUDFLARE_DASHBOARD_URL = "https://dash.cloudflare.com"

_NEXT_ACTIONS = {
    DomainStatus.PENDING: "configure_dns",
    DomainStatus.VERIFYING: "verify_dns",
    DomainStatus.VERIFIED: "activate",
    DomainStatus.ACTIVE: "manage",
    DomainStatus.ERROR: "retry",
}


@dataclass
class AutoConfigureResult:
    domain: str
    txt_record_id: str
    cname_record_id: str | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "txt_record_id": self.txt_record_id,
            "cname_record_id": self.cname_record_id,
            "warnings": self.warnings,
        }


def parse_statuses(statuses: Iterable[str | DomainStatus] | None) -> set[DomainStatus] | None:
    """Parse a status filter, rejecting unknown values.

    Raises:
        ValidationError: If any value is not a domain status.
    """
    if not statuses:
        return None
    parsed: set[DomainStatus] = set()
    for status in statuses:
        try:
            parsed.add(DomainStatus(status))
        except ValueError as e:
            raise ValidationError(f"Invalid status filter: {status}") from e
    return parsed


class DomainManager:
    """Manages custom domain registration and verification.

    Every state change of a domain goes through this class. Mutations of one
    domain are serialised by a per-name lock; unrelated domains never wait
    on each other.

    Args:
        store: Storage backend.
        resolver: TXT lookups for challenge checks.
        zone_source: Zone/provider detection; None disables detection.
        provider_factory: Creates a DNS provider client; None when no
            provider credentials are configured.
        public_edge_host: Host that custom domains CNAME to.
        proxied: Create provider CNAME records with the provider proxy on.
        dns_timeout: Bound for one DNS lookup (seconds).
        provider_timeout: Bound for one provider operation (seconds).
    """

    def __init__(
        self,
        store: Store,
        resolver: TXTResolver,
        zone_source: ZoneInfoSource | None = None,
        provider_factory: Callable[[], DNSProviderClient] | None = None,
        public_edge_host: str = "edge.glinr.local",
        proxied: bool = False,
        dns_timeout: float = 10.0,
        provider_timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.zone_source = zone_source
        self.provider_factory = provider_factory
        self.public_edge_host = public_edge_host
        self.proxied = proxied
        self.dns_timeout = dns_timeout
        self.provider_timeout = provider_timeout
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def has_provider_credentials(self) -> bool:
        return self.provider_factory is not None

    async def _require(self, name: str) -> Domain:
        domain = await self.store.get_domain(validate_domain(name))
        if domain is None:
            raise NotFoundError(f"Domain {name} is not registered")
        return domain

    @staticmethod
    def _transition(domain: Domain, target: DomainStatus) -> None:
        if not domain.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Domain {domain.name} cannot move from {domain.status.value} to {target.value}"
            )
        domain.status = target

    async def create_domain(self, name: str) -> Domain:
        """Register a new domain in status pending.

        Provider and zone are detected best-effort; a failed detection leaves
        them empty and the owner configures DNS manually.

        Raises:
            ValidationError: If the name is malformed.
            ConflictError: If the domain already exists.
        """
        name = validate_domain(name)
        if await self.store.get_domain(name) is not None:
            raise ConflictError(f"Domain {name} already exists")

        provider: str | None = None
        zone_id: str | None = None
        if self.zone_source is not None:
            try:
                async with asyncio.timeout(self.dns_timeout):
                    info = await self.zone_source.get_zone_info(name)
                provider = info.provider
                if provider == PROVIDER_CLOUDFLARE and self.provider_factory is not None:
                    zone_id = await self._lookup_zone_id(info.zone)
            except (DNSLookupError, TimeoutError) as e:
                logger.warning("Failed to detect zone info", domain=name, error=str(e))

        domain = Domain(
            name=name,
            verification_token=generate_token(),
            provider=provider,
            zone_id=zone_id,
        )
        try:
            domain = await self.store.add_domain(domain)
        except KeyError as e:
            raise ConflictError(f"Domain {name} already exists") from e

        logger.info("Domain created", domain=name, provider=provider, zone_id=zone_id)
        return domain

    async def _lookup_zone_id(self, zone: str) -> str | None:
        assert self.provider_factory is not None
        client = self.provider_factory()
        try:
            async with asyncio.timeout(self.provider_timeout):
                return await client.get_zone_id(zone)
        except (ProviderError, TimeoutError) as e:
            logger.warning("Failed to resolve provider zone id", zone=zone, error=str(e))
            return None
        finally:
            await _close(client)

    async def get_domain(self, name: str) -> Domain:
        return await self._require(name)

    async def list_domains(
        self, statuses: Iterable[str | DomainStatus] | None = None
    ) -> list[Domain]:
        return await self.store.list_domains(parse_statuses(statuses))

    async def delete_domain(self, name: str) -> None:
        """Delete a domain record. Issued certificates are left in place."""
        domain = await self._require(name)
        async with self._locks[domain.name]:
            await self.store.delete_domain(domain.name)
        self._locks.pop(domain.name, None)
        logger.info("Domain deleted", domain=domain.name)

    async def issue_challenge(self, name: str) -> Challenge:
        """Return the TXT challenge for a domain and move it to verifying.

        Idempotent: the token is the one generated at creation, and a domain
        already verifying, verified or active keeps its status.

        Raises:
            NotFoundError: If the domain does not exist.
            InvalidTransitionError: If the domain is in error (reset it first).
        """
        domain = await self._require(name)
        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            if domain.status == DomainStatus.ERROR:
                raise InvalidTransitionError(
                    f"Domain {domain.name} is in error; reset it before verifying"
                )
            if domain.status == DomainStatus.PENDING:
                self._transition(domain, DomainStatus.VERIFYING)
                await self.store.save_domain(domain)
                logger.info("Verification challenge issued", domain=domain.name)

        return Challenge(
            domain=domain.name,
            record_name=challenge_name(domain.name),
            value=domain.verification_token,
        )

    async def check_challenge(self, name: str) -> CheckResult:
        """Look up the challenge record and verify the domain on an exact match.

        ``verification_checked_at`` is stamped on every call, including on a
        mismatch or a failed lookup. Neither of those changes the status.

        Raises:
            NotFoundError: If the domain does not exist.
            InvalidTransitionError: If the domain is in error.
        """
        domain = await self._require(name)
        record_name = challenge_name(domain.name)

        found: list[str] = []
        error: str | None = None
        try:
            async with asyncio.timeout(self.dns_timeout):
                found = await self.resolver.lookup_txt(record_name)
        except (DNSLookupError, TimeoutError) as e:
            error = str(e) or f"TXT lookup for {record_name} timed out"

        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            if domain.status == DomainStatus.ERROR:
                raise InvalidTransitionError(
                    f"Domain {domain.name} is in error; reset it before verifying"
                )
            checked_at = utc_now()
            domain.verification_checked_at = checked_at
            verified = error is None and token_matches(found, domain.verification_token)
            if verified and domain.status in (DomainStatus.PENDING, DomainStatus.VERIFYING):
                self._transition(domain, DomainStatus.VERIFIED)
                logger.info("Domain verified", domain=domain.name)
            elif error is None and not verified:
                error = f"TXT record not found or does not match at {record_name}"
            await self.store.save_domain(domain)

        if not verified:
            logger.debug("Domain verification pending", domain=domain.name, error=error)
        return CheckResult(
            domain=domain.name,
            record_name=record_name,
            verified=verified,
            checked_at=checked_at,
            found=found,
            error=error,
        )

    def can_auto_configure(self, domain: Domain) -> bool:
        return (
            domain.provider == PROVIDER_CLOUDFLARE
            and self.has_provider_credentials
            and domain.zone_id is not None
        )

    async def auto_configure(self, name: str) -> AutoConfigureResult:
        """Create or update the domain's DNS records through the provider API.

        Ensures the TXT challenge record and, for names that are neither apex
        nor wildcard, a CNAME to the public edge host. A failed CNAME is only
        reported as a warning. The domain status is not changed.

        Raises:
            ValidationError: If the domain is not hosted by a supported provider,
                credentials are missing or the zone id is unknown.
            ProviderError: If the TXT record could not be ensured.
        """
        domain = await self._require(name)
        if domain.provider != PROVIDER_CLOUDFLARE:
            raise ValidationError("Auto-configuration only available for Cloudflare domains")
        if self.provider_factory is None:
            raise ValidationError("Cloudflare API token not configured")
        if domain.zone_id is None:
            raise ValidationError("Zone ID not available for domain")

        client = self.provider_factory()
        try:
            try:
                async with asyncio.timeout(self.provider_timeout):
                    txt_id = await client.ensure_txt(
                        domain.zone_id, challenge_name(domain.name), domain.verification_token
                    )
            except TimeoutError as e:
                raise ProviderError("Timed out creating verification TXT record") from e

            result = AutoConfigureResult(domain=domain.name, txt_record_id=txt_id)
            if needs_cname(domain.name):
                try:
                    async with asyncio.timeout(self.provider_timeout):
                        result.cname_record_id = await client.ensure_record(
                            domain.zone_id,
                            "CNAME",
                            domain.name,
                            self.public_edge_host,
                            self.proxied,
                        )
                except (ProviderError, TimeoutError) as e:
                    logger.warning("Failed to create CNAME record", domain=domain.name, error=str(e))
                    result.warnings.append(f"CNAME record not configured: {e}")
        finally:
            await _close(client)

        logger.info("Domain auto-configured", domain=domain.name)
        return result

    async def activate(self, name: str, certificate_id: int | None = None) -> Domain:
        """Move a verified domain to active, attaching a certificate if given.

        Raises:
            InvalidTransitionError: If the domain is not verified. Nothing is
                changed in that case.
        """
        domain = await self._require(name)
        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            if domain.status != DomainStatus.VERIFIED:
                raise InvalidTransitionError(
                    f"Domain {domain.name} must be verified before activation "
                    f"(status: {domain.status.value})"
                )
            self._transition(domain, DomainStatus.ACTIVE)
            if certificate_id is not None:
                domain.certificate_id = certificate_id
            domain.error = None
            domain = await self.store.save_domain(domain)
        logger.info("Domain activated", domain=domain.name, certificate_id=domain.certificate_id)
        return domain

    async def attach_certificate(self, name: str, certificate_id: int) -> Domain:
        domain = await self._require(name)
        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            domain.certificate_id = certificate_id
            return await self.store.save_domain(domain)

    async def mark_error(self, name: str, reason: str) -> Domain:
        domain = await self._require(name)
        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            self._transition(domain, DomainStatus.ERROR)
            domain.error = reason
            domain = await self.store.save_domain(domain)
        logger.warning("Domain marked as error", domain=domain.name, reason=reason)
        return domain

    async def reset_domain(self, name: str) -> Domain:
        """Return a domain in error to pending so verification can start over.

        Raises:
            InvalidTransitionError: If the domain is not in error.
        """
        domain = await self._require(name)
        async with self._locks[domain.name]:
            domain = await self._require(domain.name)
            if domain.status != DomainStatus.ERROR:
                raise InvalidTransitionError(
                    f"Only domains in error can be reset (status: {domain.status.value})"
                )
            self._transition(domain, DomainStatus.PENDING)
            domain.error = None
            domain = await self.store.save_domain(domain)
        logger.info("Domain reset", domain=domain.name)
        return domain

    def describe(self, domain: Domain) -> dict[str, Any]:
        """Domain fields plus UI hints derived from its status.

        ``next_action`` tells the user what to do next; pending domains also
        get the DNS records to create.
        """
        view = domain.to_dict()
        view["last_checked"] = view["verification_checked_at"]
        view["next_action"] = _NEXT_ACTIONS[domain.status]
        if domain.status == DomainStatus.PENDING:
            view["instructions"] = self._dns_instructions(domain)
        if domain.provider is not None:
            hints: dict[str, Any] = {
                "type": domain.provider,
                "auto_configure": self.can_auto_configure(domain),
            }
            if domain.provider == PROVIDER_CLOUDFLARE:
                hints["dashboard_url"] = CLOUDFLARE_DASHBOARD_URL
            view["provider_hints"] = hints
        return view

    def _dns_instructions(self, domain: Domain) -> dict[str, Any]:
        instructions: dict[str, Any] = {
            "txt_record": {
                "type": "TXT",
                "name": challenge_name(domain.name),
                "value": domain.verification_token,
                "purpose": "Domain verification",
            },
        }
        if needs_cname(domain.name):
            instructions["cname_record"] = {
                "type": "CNAME",
                "name": domain.name,
                "value": self.public_edge_host,
                "purpose": "Route traffic to the platform",
            }
            instructions["message"] = (
                "Create both TXT and CNAME records, then use auto-configure or verify."
            )
        else:
            instructions["message"] = "Create the TXT record for verification, then verify the domain."
        return instructions


async def _close(client: object) -> None:
    close = getattr(client, "close", None)
    if close is not None:
        await close()
