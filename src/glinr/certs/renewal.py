"""Periodic certificate renewal.

Scans for issued certificates that expire within ``renew_before`` and renews
each one. The proxy is reconciled once per scan, and only if at least one
certificate was replaced.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from glinr.certs.manager import CertificateManager
from glinr.core.errors import GlinrError
from glinr.domains.manager import DomainManager
from glinr.proxy.reconciler import ProxyReconciler
from glinr.store import CertificateStatus, DomainStatus, utc_now

logger = structlog.get_logger()

DEFAULT_RENEW_BEFORE = timedelta(days=30)
DEFAULT_CHECK_INTERVAL = 24 * 60 * 60.0


@dataclass
class RenewalStats:
    """Outcome of one renewal scan."""

    start_time: datetime = field(default_factory=utc_now)
    total_scanned: int = 0
    eligible_for_renewal: int = 0
    successful_renewals: int = 0
    failed_renewals: int = 0
    duration: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_scanned": self.total_scanned,
            "eligible_for_renewal": self.eligible_for_renewal,
            "successful_renewals": self.successful_renewals,
            "failed_renewals": self.failed_renewals,
            "start_time": self.start_time.isoformat(),
            "duration": round(self.duration, 3),
            "errors": self.errors,
        }


class RenewalService:
    """Renews expiring certificates on a fixed interval.

    Args:
        certificates: Certificate lifecycle manager.
        domains: Domain manager, used to flag active domains whose
            certificate could not be renewed before it expired.
        reconciler: Proxy reconciler run after successful renewals.
        renew_before: Renew certificates expiring within this window.
        check_interval: Seconds between scans.
    """

    def __init__(
        self,
        certificates: CertificateManager,
        domains: DomainManager,
        reconciler: ProxyReconciler,
        renew_before: timedelta = DEFAULT_RENEW_BEFORE,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
    ) -> None:
        self.certificates = certificates
        self.domains = domains
        self.reconciler = reconciler
        self.renew_before = renew_before
        self.check_interval = check_interval
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self, now: datetime | None = None) -> RenewalStats:
        """Renew every certificate inside the renewal window."""
        stats = RenewalStats()
        started = time.monotonic()

        expiring = await self.certificates.list_expiring_soon(self.renew_before, now=now)
        stats.total_scanned = len(expiring)
        logger.info(
            "Certificates due for renewal",
            count=len(expiring),
            renew_before_days=self.renew_before.days,
        )

        for certificate in expiring:
            stats.eligible_for_renewal += 1
            try:
                renewed = await self.certificates.renew(certificate.domain)
            except GlinrError as e:
                stats.failed_renewals += 1
                stats.errors.append(f"{certificate.domain}: {e.message}")
                logger.error("Certificate renewal rejected", domain=certificate.domain, error=e.message)
                continue

            if renewed.error is None and renewed.status == CertificateStatus.ISSUED:
                stats.successful_renewals += 1
                continue

            stats.failed_renewals += 1
            stats.errors.append(f"{certificate.domain}: {renewed.error}")
            if renewed.status == CertificateStatus.FAILED:
                await self._flag_domain(certificate.domain, renewed.error or "Certificate expired")

        if stats.successful_renewals:
            try:
                await self.reconciler.reconcile()
            except GlinrError as e:
                stats.errors.append(f"proxy: {e.message}")
                logger.error("Proxy reconcile after renewal failed", error=e.message)

        stats.duration = time.monotonic() - started
        logger.info(
            "Certificate renewal scan completed",
            scanned=stats.total_scanned,
            renewed=stats.successful_renewals,
            failed=stats.failed_renewals,
            duration=round(stats.duration, 3),
        )
        return stats

    async def _flag_domain(self, name: str, reason: str) -> None:
        try:
            domain = await self.domains.get_domain(name)
        except GlinrError:
            return
        if domain.status == DomainStatus.ACTIVE:
            await self.domains.mark_error(name, f"Certificate renewal failed: {reason}")

    async def start(self) -> None:
        """Start the background scan loop. The first scan runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._renewal_loop(), name="certificate-renewal")
        logger.info(
            "Certificate renewal service started",
            renew_before_days=self.renew_before.days,
            check_interval=self.check_interval,
        )

    async def stop(self) -> None:
        """Stop the background scan loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Certificate renewal service stopped")

    async def _renewal_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except GlinrError as e:
                logger.error("Certificate renewal scan failed", error=e.message)
            except OSError as e:
                logger.error("Certificate renewal scan failed", error=str(e))
            await asyncio.sleep(self.check_interval)
