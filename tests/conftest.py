"""Shared fakes and fixtures for the glinr test suite."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from glinr.certs.manager import CertificateManager
from glinr.core.errors import ProxyReloadError, ProxyValidationError
from glinr.domains.manager import DomainManager
from glinr.domains.verification import challenge_name
from glinr.interfaces import IssuedCertificate, ZoneInfo
from glinr.pipeline.provisioner import ProvisioningPipeline
from glinr.platform import EdgePlatform
from glinr.proxy.reconciler import ProxyReconciler
from glinr.store import Store, utc_now


class FakeResolver:
    """TXT resolver answering from an in-memory record table."""

    def __init__(self) -> None:
        self.records: dict[str, list[str]] = {}
        self.error: Exception | None = None
        self.lookups: list[str] = []

    def publish(self, domain: str, value: str) -> None:
        self.records.setdefault(challenge_name(domain), []).append(value)

    async def lookup_txt(self, name: str) -> list[str]:
        self.lookups.append(name)
        if self.error is not None:
            raise self.error
        return list(self.records.get(name, []))


class FakeZoneSource:
    def __init__(self, provider: str = "manual", zone: str | None = None) -> None:
        self.provider = provider
        self.zone = zone
        self.error: Exception | None = None

    async def get_zone_info(self, domain: str) -> ZoneInfo:
        if self.error is not None:
            raise self.error
        zone = self.zone or ".".join(domain.split(".")[-2:])
        nameservers = ["ada.ns.cloudflare.com"] if self.provider == "cloudflare" else []
        return ZoneInfo(zone=zone, provider=self.provider, nameservers=nameservers)


class FakeProvider:
    """DNS provider client recording the records it was asked to ensure."""

    def __init__(self, zone_id: str = "zone-123") -> None:
        self.zone_id = zone_id
        self.records: dict[tuple[str, str], str] = {}
        self.cname_error: Exception | None = None
        self.closed = 0

    async def get_zone_id(self, zone: str) -> str:
        return self.zone_id

    async def ensure_txt(self, zone_id: str, name: str, value: str) -> str:
        return await self.ensure_record(zone_id, "TXT", name, value)

    async def ensure_record(
        self,
        zone_id: str,
        record_type: str,
        name: str,
        value: str,
        proxied: bool = False,
    ) -> str:
        if record_type == "CNAME" and self.cname_error is not None:
            raise self.cname_error
        self.records[(record_type, name)] = value
        return f"rec-{record_type.lower()}-{len(self.records)}"

    async def close(self) -> None:
        self.closed += 1


class FakeAuthority:
    """Certificate authority that issues instantly (or after ``delay``)."""

    def __init__(self, lifetime: timedelta = timedelta(days=90), delay: float = 0.0) -> None:
        self.lifetime = lifetime
        self.delay = delay
        self.error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def issue_certificate(self, domain: str, email: str) -> IssuedCertificate:
        self.calls.append((domain, email))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return IssuedCertificate(
            domain=domain,
            expires_at=utc_now() + self.lifetime,
            cert_path=f"/certs/{domain}/fullchain.pem",
            key_path=f"/certs/{domain}/privkey.pem",
        )


class FakeControl:
    """Proxy control keeping the 'installed' configuration in memory."""

    def __init__(self) -> None:
        self.installed: str | None = None
        self.validated: list[str] = []
        self.applied: list[str] = []
        self.validation_error: str | None = None
        self.reload_error: str | None = None

    async def validate(self, config: str) -> None:
        self.validated.append(config)
        if self.validation_error:
            raise ProxyValidationError(self.validation_error)

    async def apply(self, config: str, *, reload: bool = True) -> None:
        self.installed = config
        self.applied.append(config)
        if self.reload_error:
            raise ProxyReloadError(self.reload_error)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def store() -> Store:
    return Store(None)


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture
def control() -> FakeControl:
    return FakeControl()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def domains(store: Store, resolver: FakeResolver) -> DomainManager:
    return DomainManager(store, resolver=resolver, public_edge_host="edge.example.net")


@pytest.fixture
def certificates(store: Store, authority: FakeAuthority) -> CertificateManager:
    return CertificateManager(store, authority, default_email="ops@example.com")


@pytest.fixture
def reconciler(store: Store, control: FakeControl) -> ProxyReconciler:
    return ProxyReconciler(store, control, webroot="/var/www/acme")


@pytest.fixture
def pipeline(
    domains: DomainManager,
    certificates: CertificateManager,
    reconciler: ProxyReconciler,
    store: Store,
    sleeps: SleepRecorder,
) -> ProvisioningPipeline:
    return ProvisioningPipeline(domains, certificates, reconciler, store, sleep=sleeps)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def cloudflare_zone() -> FakeZoneSource:
    return FakeZoneSource("cloudflare")


@pytest.fixture
def platform(
    store: Store,
    domains: DomainManager,
    certificates: CertificateManager,
    reconciler: ProxyReconciler,
    pipeline: ProvisioningPipeline,
) -> EdgePlatform:
    return EdgePlatform(store, domains, certificates, reconciler, pipeline)
