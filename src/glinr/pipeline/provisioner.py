"""Background provisioning: verification, certificate issuance, proxy reload.

A run is an ``asyncio.Task`` owned by the pipeline, so cancelling the
coroutine that started it does not stop it. There is at most one live run
per domain and its progress record is the only way to observe it.

Usage:
    pipeline = ProvisioningPipeline(domains, certificates, reconciler, store)
    progress = await pipeline.start("app.example.com", email="ops@example.com")
    ...
    progress = pipeline.get_progress("app.example.com")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from glinr.certs.manager import CertificateManager
from glinr.core.errors import GlinrError, NotFoundError
from glinr.domains.manager import DomainManager
from glinr.domains.names import validate_domain
from glinr.pipeline.progress import ProvisioningProgress, ProvisioningStage
from glinr.proxy.reconciler import ProxyReconciler
from glinr.store import CertificateStatus, DomainStatus, Store

logger = structlog.get_logger()

START_MESSAGE = "Starting domain verification and certificate issuance"


class ProvisioningPipeline:
    """Sequences verification, issuance and reconcile for one domain at a time.

    Args:
        domains: Domain verification state machine.
        certificates: Certificate lifecycle manager.
        reconciler: Proxy reconciler.
        store: Storage backend, used to attach certificates to routes.
        attempts: Verification checks before giving up.
        backoff_step: Attempt ``i`` (1-based) waits ``i * backoff_step`` seconds.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        domains: DomainManager,
        certificates: CertificateManager,
        reconciler: ProxyReconciler,
        store: Store,
        attempts: int = 5,
        backoff_step: float = 10.0,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.domains = domains
        self.certificates = certificates
        self.reconciler = reconciler
        self.store = store
        self.attempts = attempts
        self.backoff_step = backoff_step
        self._sleep = sleep
        self._progress: dict[str, ProvisioningProgress] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def is_running(self, domain: str) -> bool:
        task = self._tasks.get(domain)
        return task is not None and not task.done()

    async def start(
        self,
        domain: str,
        *,
        auto_verify: bool = True,
        auto_issue: bool = True,
        email: str | None = None,
    ) -> ProvisioningProgress:
        """Schedule a run and return its progress immediately.

        If a run for the domain is already live, its progress is returned and
        no new run is started.
        """
        name = validate_domain(domain)
        if self.is_running(name):
            logger.debug("Provisioning already running", domain=name)
            return self._progress[name].snapshot()

        progress = ProvisioningProgress(domain=name, message=START_MESSAGE)
        self._progress[name] = progress
        task = asyncio.create_task(
            self._run(progress, auto_verify=auto_verify, auto_issue=auto_issue, email=email),
            name=f"provision:{name}",
        )
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._forget(name, t))
        logger.info(
            "Provisioning started",
            domain=name,
            auto_verify=auto_verify,
            auto_issue=auto_issue,
        )
        return progress.snapshot()

    def _forget(self, name: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]

    def get_progress(self, domain: str) -> ProvisioningProgress:
        """Return a copy of the latest run's progress.

        Raises:
            NotFoundError: If no run was ever started for the domain.
        """
        name = validate_domain(domain)
        progress = self._progress.get(name)
        if progress is None:
            raise NotFoundError(f"No provisioning run for {name}")
        return progress.snapshot()

    async def wait(self, domain: str) -> ProvisioningProgress:
        """Wait for the domain's live run, if any, and return its progress."""
        name = validate_domain(domain)
        task = self._tasks.get(name)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return self.get_progress(name)

    async def cancel(self, domain: str) -> bool:
        """Cancel the domain's live run. Returns False if none was running."""
        task = self._tasks.get(validate_domain(domain))
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def shutdown(self) -> None:
        """Cancel every live run."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Provisioning runs cancelled", count=len(tasks))

    async def _run(
        self,
        progress: ProvisioningProgress,
        *,
        auto_verify: bool,
        auto_issue: bool,
        email: str | None,
    ) -> None:
        try:
            await self._provision(progress, auto_verify=auto_verify, auto_issue=auto_issue, email=email)
        except asyncio.CancelledError:
            progress.fail("Provisioning cancelled")
            logger.info("Provisioning cancelled", domain=progress.domain, stage=progress.stage.value)
            raise
        except GlinrError as e:
            progress.fail(e.message)
            logger.error("Provisioning failed", domain=progress.domain, stage=progress.stage.value, error=e.message)
        except Exception as e:
            progress.fail(f"Unexpected error: {e}")
            logger.exception("Provisioning crashed", domain=progress.domain, stage=progress.stage.value)

    async def _provision(
        self,
        progress: ProvisioningProgress,
        *,
        auto_verify: bool,
        auto_issue: bool,
        email: str | None,
    ) -> None:
        name = progress.domain

        # Step 1: domain verification
        if auto_verify:
            if not await self._verify(progress):
                return
        else:
            progress.domain_verified = True
            progress.update("Domain verification skipped; domain assumed verified")

        # Step 2: certificate issuance
        if not auto_issue:
            progress.update("Domain verified; certificate issuance skipped", ProvisioningStage.COMPLETE)
            logger.info("Provisioning completed", domain=name, certificate_issued=False)
            return

        progress.update("Requesting certificate", ProvisioningStage.CERTIFICATE_ISSUANCE)
        certificate = await self.certificates.issue(name, email)
        if certificate.status == CertificateStatus.FAILED:
            progress.fail(f"Certificate issuance failed: {certificate.error}")
            logger.error("Provisioning failed", domain=name, stage=progress.stage.value, error=certificate.error)
            return
        progress.certificate_issued = True
        progress.certificate_id = certificate.id
        attached = await self.store.attach_certificate(name, certificate.id)
        progress.update(f"Certificate issued; attached to {attached} route(s)")

        # Step 3: proxy reload
        progress.update("Reloading proxy configuration", ProvisioningStage.PROXY_RELOAD)
        reload_error: str | None = None
        try:
            await self.reconciler.reconcile()
            progress.proxy_reloaded = True
        except GlinrError as e:
            reload_error = e.message
            logger.warning("Proxy reload failed during provisioning", domain=name, error=e.message)

        # Step 4: activation
        domain = await self.domains.get_domain(name)
        if domain.status == DomainStatus.VERIFIED:
            await self.domains.activate(name, certificate_id=certificate.id)
        elif domain.status == DomainStatus.ACTIVE:
            await self.domains.attach_certificate(name, certificate.id)

        if reload_error:
            message = f"Certificate issued but proxy reload failed: {reload_error}"
        else:
            message = "Domain verified, certificate issued and proxy reloaded"
        progress.update(message, ProvisioningStage.COMPLETE)
        logger.info(
            "Provisioning completed",
            domain=name,
            certificate_id=certificate.id,
            proxy_reloaded=progress.proxy_reloaded,
        )

    async def _verify(self, progress: ProvisioningProgress) -> bool:
        name = progress.domain
        challenge = await self.domains.issue_challenge(name)
        progress.update(f"Waiting for TXT record {challenge.record_name}")

        domain = await self.domains.get_domain(name)
        if self.domains.can_auto_configure(domain):
            try:
                result = await self.domains.auto_configure(name)
                progress.update(f"DNS records configured through {domain.provider}")
                for warning in result.warnings:
                    logger.warning("DNS auto-configuration warning", domain=name, warning=warning)
            except GlinrError as e:
                logger.warning("DNS auto-configuration failed", domain=name, error=e.message)

        for attempt in range(1, self.attempts + 1):
            await self._sleep(attempt * self.backoff_step)
            try:
                result = await self.domains.check_challenge(name)
            except Exception as e:
                logger.warning("Domain verification check failed", domain=name, attempt=attempt, error=str(e))
                progress.update(f"Verification attempt {attempt}/{self.attempts} failed: {e}")
                continue

            if result.verified:
                progress.domain_verified = True
                progress.update("Domain verified")
                logger.info("Domain verification successful", domain=name, attempt=attempt)
                return True

            detail = result.error or "TXT record not found yet"
            progress.update(f"Verification attempt {attempt}/{self.attempts}: {detail}")
            logger.debug("Domain verification still pending", domain=name, attempt=attempt)

        progress.fail(f"Domain verification failed after {self.attempts} attempts")
        logger.error("Domain verification failed after retries", domain=name)
        return False
