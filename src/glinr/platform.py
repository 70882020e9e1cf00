"""EdgePlatform: the operations glinr exposes, wired from configuration.

Usage:
    platform = EdgePlatform.from_config(get_config())

    await platform.create_domain("app.example.com")
    route, progress = await platform.create_tls_route(
        service_id=7,
        domain="app.example.com",
        port=8080,
        auto_verify_domain=True,
        auto_issue_cert=True,
        email="ops@example.com",
    )
    progress = await platform.wait_for_provisioning("app.example.com")
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta
from functools import partial
from typing import Any

import structlog

from glinr.certs.acme import ACMEClient
from glinr.certs.manager import CertificateManager
from glinr.certs.renewal import RenewalService
from glinr.core.config import GlinrConfig, get_config
from glinr.core.errors import NotFoundError, ValidationError
from glinr.dns.cloudflare import CloudflareClient
from glinr.dns.inspector import DNSInspector
from glinr.dns.zone import ZoneDetector
from glinr.domains.manager import AutoConfigureResult, DomainManager
from glinr.domains.names import validate_domain, validate_route_path, validate_service_host
from glinr.domains.verification import Challenge, CheckResult
from glinr.pipeline.progress import ProvisioningProgress
from glinr.pipeline.provisioner import ProvisioningPipeline
from glinr.proxy.control import NginxControl
from glinr.proxy.reconciler import ProxyReconciler, ReconcileResult
from glinr.store import Certificate, CertificateStatus, Domain, DomainStatus, Route, Store

logger = structlog.get_logger()


class EdgePlatform:
    """Facade over the domain, certificate, proxy and pipeline components.

    Construct directly with pre-built components (tests) or through
    :meth:`from_config`.
    """

    def __init__(
        self,
        store: Store,
        domains: DomainManager,
        certificates: CertificateManager,
        reconciler: ProxyReconciler,
        pipeline: ProvisioningPipeline,
        renewal: RenewalService | None = None,
        dns_verify_enabled: bool = True,
    ) -> None:
        self.store = store
        self.domains = domains
        self.certificates = certificates
        self.reconciler = reconciler
        self.pipeline = pipeline
        self.renewal = renewal or RenewalService(certificates, domains, reconciler)
        self.dns_verify_enabled = dns_verify_enabled

    @classmethod
    def from_config(cls, config: GlinrConfig | None = None) -> EdgePlatform:
        config = config or get_config()

        store = Store(config.storage.storage_path)
        inspector = DNSInspector(
            nameservers=config.dns.dns_nameservers,
            timeout=config.dns.dns_timeout,
            tries=config.dns.dns_tries,
        )

        provider_factory = None
        if config.cloudflare.has_credentials:
            provider_factory = partial(
                CloudflareClient,
                api_token=config.cloudflare.cloudflare_api_token,
                base_url=config.cloudflare.cloudflare_base_url,
                timeout=config.cloudflare.cloudflare_timeout,
            )

        domains = DomainManager(
            store,
            resolver=inspector,
            zone_source=ZoneDetector(inspector),
            provider_factory=provider_factory,
            public_edge_host=config.dns.public_edge_host,
            proxied=config.cloudflare.cloudflare_proxied,
            dns_timeout=config.dns.dns_timeout,
            provider_timeout=config.pipeline.provider_timeout,
        )
        authority = ACMEClient(
            directory_url=config.acme.acme_directory_url,
            certs_dir=config.acme.certs_dir,
            webroot=config.acme.acme_webroot,
            poll_interval=config.acme.acme_poll_interval,
            poll_attempts=config.acme.acme_poll_attempts,
        )
        certificates = CertificateManager(
            store,
            authority,
            timeout=config.acme.acme_timeout,
            default_email=config.acme.acme_email,
        )
        control = NginxControl(
            config.proxy.nginx_conf_path,
            nginx_cmd=config.proxy.nginx_cmd,
            validate_binary=config.proxy.nginx_validate_binary,
            reload_enabled=config.proxy.nginx_reload_enabled,
            timeout=config.proxy.proxy_timeout,
        )
        reconciler = ProxyReconciler(
            store,
            control,
            webroot=config.acme.acme_webroot,
            default_upstream=config.proxy.default_upstream,
            timeout=config.proxy.proxy_timeout,
        )
        pipeline = ProvisioningPipeline(
            domains,
            certificates,
            reconciler,
            store,
            attempts=config.pipeline.verify_attempts,
            backoff_step=config.pipeline.verify_backoff_step,
        )
        renewal = RenewalService(
            certificates,
            domains,
            reconciler,
            renew_before=timedelta(days=config.acme.renew_before_days),
            check_interval=config.acme.renewal_check_interval,
        )
        return cls(
            store,
            domains,
            certificates,
            reconciler,
            pipeline,
            renewal=renewal,
            dns_verify_enabled=config.dns.dns_verify_enabled,
        )

    async def close(self) -> None:
        """Stop background work: renewal loop and in-flight provisioning runs."""
        await self.renewal.stop()
        await self.pipeline.shutdown()

    # Domains

    async def create_domain(self, name: str) -> Domain:
        return await self.domains.create_domain(name)

    async def get_domain(self, name: str) -> Domain:
        return await self.domains.get_domain(name)

    async def list_domains(self, statuses: Iterable[str] | None = None) -> list[Domain]:
        return await self.domains.list_domains(statuses)

    def describe_domain(self, domain: Domain) -> dict[str, Any]:
        return self.domains.describe(domain)

    def _require_verification_enabled(self) -> None:
        if not self.dns_verify_enabled:
            raise ValidationError("DNS verification is disabled")

    async def issue_challenge(self, name: str) -> Challenge:
        self._require_verification_enabled()
        return await self.domains.issue_challenge(name)

    async def verify_domain(self, name: str) -> CheckResult:
        """Issue the challenge if needed, then check it once."""
        self._require_verification_enabled()
        await self.domains.issue_challenge(name)
        return await self.domains.check_challenge(name)

    async def auto_configure_domain(self, name: str) -> AutoConfigureResult:
        return await self.domains.auto_configure(name)

    async def activate_domain(self, name: str) -> Domain:
        """Activate a verified domain with its current issued certificate, if any."""
        name = validate_domain(name)
        certificate = await self.certificates.current_certificate(name)
        certificate_id = None
        if certificate is not None and certificate.status == CertificateStatus.ISSUED:
            certificate_id = certificate.id
        return await self.domains.activate(name, certificate_id=certificate_id)

    async def delete_domain(self, name: str) -> None:
        """Delete a domain. A provisioning run for it is cancelled first."""
        name = validate_domain(name)
        await self.domains.get_domain(name)
        if await self.pipeline.cancel(name):
            logger.info("Provisioning cancelled for deleted domain", domain=name)
        await self.domains.delete_domain(name)

    async def reset_domain(self, name: str) -> Domain:
        return await self.domains.reset_domain(name)

    # Certificates

    async def issue_certificate(self, domain: str, email: str | None = None) -> Certificate:
        return await self.certificates.issue(domain, email)

    async def get_certificate(self, domain: str) -> Certificate:
        return await self.certificates.get_certificate(domain)

    async def list_certificates(self) -> list[Certificate]:
        return await self.certificates.list_certificates()

    async def list_expiring_certificates(self, within: timedelta) -> list[Certificate]:
        return await self.certificates.list_expiring_soon(within)

    async def renew_certificate(self, domain: str) -> Certificate:
        return await self.certificates.renew(domain)

    # Routes and provisioning

    async def create_tls_route(
        self,
        service_id: int,
        domain: str,
        port: int,
        path: str | None = None,
        tls: bool = True,
        auto_verify_domain: bool = False,
        auto_issue_cert: bool = False,
        email: str | None = None,
        service_host: str | None = None,
    ) -> tuple[Route, ProvisioningProgress | None]:
        """Create a route and, when requested, start provisioning its domain.

        Returns:
            The stored route and, if a provisioning run was started (or one
            was already live), its progress snapshot.

        Raises:
            ValidationError: On a malformed domain, port, path, service id or
                service host.
        """
        name = validate_domain(domain)
        if service_id <= 0:
            raise ValidationError("service_id must be positive")
        if not 1 <= port <= 65535:
            raise ValidationError(f"Invalid port: {port}")
        if path is not None:
            path = validate_route_path(path)
        if service_host is not None:
            service_host = validate_service_host(service_host)
        if auto_verify_domain and not self.dns_verify_enabled:
            raise ValidationError("DNS verification is disabled")

        if auto_verify_domain and await self.store.get_domain(name) is None:
            await self.domains.create_domain(name)

        route = Route(
            service_id=service_id,
            domain=name,
            port=port,
            path=path,
            tls=tls,
            service_host=service_host,
        )
        if tls:
            certificate = await self.certificates.current_certificate(name)
            if certificate is not None and certificate.status == CertificateStatus.ISSUED:
                route.certificate_id = certificate.id
        route = await self.store.save_route(route)
        logger.info("Route created", route_id=route.id, domain=name, port=port, tls=tls)

        progress = None
        if tls and (auto_verify_domain or auto_issue_cert):
            progress = await self.pipeline.start(
                name,
                auto_verify=auto_verify_domain,
                auto_issue=auto_issue_cert,
                email=email,
            )
        return route, progress

    async def get_route(self, route_id: int) -> Route:
        route = await self.store.get_route(route_id)
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    async def list_routes(self, domain: str | None = None) -> list[Route]:
        return await self.store.list_routes(validate_domain(domain) if domain else None)

    async def delete_route(self, route_id: int) -> None:
        if not await self.store.delete_route(route_id):
            raise NotFoundError(f"Route {route_id} not found")
        logger.info("Route deleted", route_id=route_id)

    async def start_provisioning(
        self,
        domain: str,
        auto_verify: bool = True,
        auto_issue: bool = True,
        email: str | None = None,
    ) -> ProvisioningProgress:
        if auto_verify:
            self._require_verification_enabled()
        return await self.pipeline.start(
            domain, auto_verify=auto_verify, auto_issue=auto_issue, email=email
        )

    def get_progress(self, domain: str) -> ProvisioningProgress:
        return self.pipeline.get_progress(domain)

    async def wait_for_provisioning(self, domain: str) -> ProvisioningProgress:
        return await self.pipeline.wait(domain)

    async def reconcile(self) -> ReconcileResult:
        return await self.reconciler.reconcile()

    async def status(self) -> dict[str, Any]:
        """Counts of domains by status plus certificate and route totals."""
        domains = await self.domains.list_domains()
        by_status = {status.value: 0 for status in DomainStatus}
        for domain in domains:
            by_status[domain.status.value] += 1
        return {
            "domains": by_status,
            "certificates": len(await self.certificates.list_certificates()),
            "routes": len(await self.store.list_routes()),
            "applied_hash": self.reconciler.applied_hash,
        }
