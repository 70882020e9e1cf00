"""Tests for the background provisioning pipeline."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from glinr.core.errors import CertificateAuthorityError, NotFoundError
from glinr.domains import DomainManager
from glinr.pipeline import ProvisioningPipeline, ProvisioningProgress, ProvisioningStage
from glinr.pipeline.provisioner import START_MESSAGE
from glinr.store import CertificateStatus, DomainStatus, Route


class BlockingSleep:
    """Sleep that parks the run until released."""

    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.entered.set()
        await self.release.wait()


@pytest.fixture
def blocking_pipeline(domains, certificates, reconciler, store):
    sleep = BlockingSleep()
    return ProvisioningPipeline(domains, certificates, reconciler, store, sleep=sleep), sleep


class TestProgress:
    def test_finished_and_succeeded(self):
        progress = ProvisioningProgress(domain="app.example.com")
        assert not progress.finished

        progress.update("done", ProvisioningStage.COMPLETE)
        assert progress.finished and progress.succeeded

    def test_fail_keeps_stage(self):
        progress = ProvisioningProgress(domain="app.example.com")
        progress.update("issuing", ProvisioningStage.CERTIFICATE_ISSUANCE)

        progress.fail("boom")

        assert progress.finished and not progress.succeeded
        assert progress.stage == ProvisioningStage.CERTIFICATE_ISSUANCE
        assert progress.to_dict()["message"] == "boom"

    def test_snapshot_is_a_copy(self):
        progress = ProvisioningProgress(domain="app.example.com")
        copy = progress.snapshot()

        progress.update("moved on")

        assert copy.message == ""


class TestProvisioning:
    @pytest.mark.asyncio
    async def test_end_to_end(self, pipeline, domains, resolver, store, control, sleeps):
        created = await domains.create_domain("example.com")
        route = await store.save_route(Route(service_id=1, domain="example.com", port=8080, tls=True))
        resolver.publish("example.com", created.verification_token)

        started = await pipeline.start("example.com")
        assert started.message == START_MESSAGE
        assert started.stage == ProvisioningStage.VERIFICATION

        progress = await pipeline.wait("example.com")

        assert progress.succeeded
        assert progress.domain_verified and progress.certificate_issued and progress.proxy_reloaded
        assert progress.message == "Domain verified, certificate issued and proxy reloaded"
        assert sleeps.delays == [10.0]

        domain = await domains.get_domain("example.com")
        assert domain.status == DomainStatus.ACTIVE
        assert domain.certificate_id == progress.certificate_id
        assert (await store.get_route(route.id)).certificate_id == progress.certificate_id
        assert "listen 443 ssl http2;" in control.installed

    @pytest.mark.asyncio
    async def test_verification_backoff_schedule(self, pipeline, domains, authority, sleeps):
        await domains.create_domain("app.example.com")

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert sleeps.delays == [10.0, 20.0, 30.0, 40.0, 50.0]
        assert sum(sleeps.delays) == 150.0
        assert progress.stage == ProvisioningStage.VERIFICATION
        assert progress.error == "Domain verification failed after 5 attempts"
        assert authority.calls == []
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.VERIFYING

    @pytest.mark.asyncio
    async def test_verified_on_later_attempt(self, pipeline, domains, resolver, sleeps):
        created = await domains.create_domain("app.example.com")

        async def publish_on_third(delay):
            sleeps.delays.append(delay)
            if len(sleeps.delays) == 3:
                resolver.publish("app.example.com", created.verification_token)

        pipeline._sleep = publish_on_third
        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert progress.succeeded
        assert sleeps.delays == [10.0, 20.0, 30.0]

    @pytest.mark.asyncio
    async def test_check_errors_count_as_attempts(self, pipeline, domains, sleeps):
        await domains.create_domain("app.example.com")
        domains.check_challenge = AsyncMock(side_effect=RuntimeError("resolver crashed"))

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert domains.check_challenge.await_count == 5
        assert progress.error == "Domain verification failed after 5 attempts"

    @pytest.mark.asyncio
    async def test_issuance_failure(self, pipeline, domains, resolver, authority, control):
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)
        authority.error = CertificateAuthorityError("rate limited")

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert progress.stage == ProvisioningStage.CERTIFICATE_ISSUANCE
        assert progress.error == "Certificate issuance failed: rate limited"
        assert progress.domain_verified and not progress.certificate_issued
        assert control.applied == []
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_reload_failure_still_completes(self, pipeline, domains, resolver, control):
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)
        control.reload_error = "nginx is not running"

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert progress.stage == ProvisioningStage.COMPLETE
        assert progress.error is None
        assert progress.certificate_issued and not progress.proxy_reloaded
        assert progress.message.startswith("Certificate issued but proxy reload failed")
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_config_write_failure_still_completes(self, pipeline, domains, resolver, control):
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)
        control.apply = AsyncMock(side_effect=PermissionError(13, "Permission denied"))

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert progress.stage == ProvisioningStage.COMPLETE
        assert progress.error is None
        assert progress.certificate_issued and not progress.proxy_reloaded
        assert "Permission denied" in progress.message
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_without_issuance(self, pipeline, domains, resolver, authority):
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)

        await pipeline.start("app.example.com", auto_issue=False)
        progress = await pipeline.wait("app.example.com")

        assert progress.succeeded
        assert progress.message == "Domain verified; certificate issuance skipped"
        assert authority.calls == []
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_skipped_verification_on_pending_domain(self, pipeline, domains, sleeps):
        await domains.create_domain("app.example.com")

        await pipeline.start("app.example.com", auto_verify=False)
        progress = await pipeline.wait("app.example.com")

        assert sleeps.delays == []
        assert progress.stage == ProvisioningStage.CERTIFICATE_ISSUANCE
        assert "must be verified" in progress.error
        assert (await domains.get_domain("app.example.com")).status == DomainStatus.PENDING

    @pytest.mark.asyncio
    async def test_active_domain_gets_new_certificate(
        self, pipeline, domains, resolver, certificates, authority
    ):
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)
        await pipeline.start("app.example.com")
        first = await pipeline.wait("app.example.com")

        await pipeline.start("app.example.com", auto_verify=False)
        second = await pipeline.wait("app.example.com")

        assert second.succeeded
        assert second.certificate_id == first.certificate_id
        assert len(authority.calls) == 1
        domain = await domains.get_domain("app.example.com")
        assert domain.status == DomainStatus.ACTIVE
        assert (await certificates.get_certificate("app.example.com")).status == CertificateStatus.ISSUED

    @pytest.mark.asyncio
    async def test_cloudflare_records_are_configured(
        self, store, resolver, provider, cloudflare_zone, certificates, reconciler, sleeps
    ):
        domains = DomainManager(
            store,
            resolver=resolver,
            zone_source=cloudflare_zone,
            provider_factory=lambda: provider,
            public_edge_host="edge.example.net",
        )
        pipeline = ProvisioningPipeline(domains, certificates, reconciler, store, sleep=sleeps)
        created = await domains.create_domain("app.example.com")
        resolver.publish("app.example.com", created.verification_token)

        await pipeline.start("app.example.com")
        progress = await pipeline.wait("app.example.com")

        assert progress.succeeded
        assert provider.records[("TXT", "_glinr-verify.app.example.com")] == created.verification_token
        assert provider.records[("CNAME", "app.example.com")] == "edge.example.net"


class TestRunControl:
    @pytest.mark.asyncio
    async def test_single_live_run_per_domain(self, blocking_pipeline, domains):
        pipeline, sleep = blocking_pipeline
        await domains.create_domain("app.example.com")

        await pipeline.start("app.example.com")
        await sleep.entered.wait()
        again = await pipeline.start("app.example.com")

        assert pipeline.is_running("app.example.com")
        assert again.message.startswith("Waiting for TXT record")
        assert len([t for t in asyncio.all_tasks() if t.get_name() == "provision:app.example.com"]) == 1

        await pipeline.shutdown()

    @pytest.mark.asyncio
    async def test_cancel(self, blocking_pipeline, domains):
        pipeline, sleep = blocking_pipeline
        await domains.create_domain("app.example.com")
        await pipeline.start("app.example.com")
        await sleep.entered.wait()

        assert await pipeline.cancel("app.example.com") is True
        assert await pipeline.cancel("app.example.com") is False

        progress = pipeline.get_progress("app.example.com")
        assert progress.error == "Provisioning cancelled"
        assert not pipeline.is_running("app.example.com")

    @pytest.mark.asyncio
    async def test_wait_after_cancel_returns_progress(self, blocking_pipeline, domains):
        pipeline, sleep = blocking_pipeline
        await domains.create_domain("app.example.com")
        await pipeline.start("app.example.com")
        await sleep.entered.wait()

        waiter = asyncio.create_task(pipeline.wait("app.example.com"))
        await asyncio.sleep(0)
        await pipeline.cancel("app.example.com")

        progress = await waiter
        assert progress.error == "Provisioning cancelled"

    @pytest.mark.asyncio
    async def test_get_progress_unknown(self, pipeline):
        with pytest.raises(NotFoundError):
            pipeline.get_progress("app.example.com")

    @pytest.mark.asyncio
    async def test_start_snapshot_is_detached(self, blocking_pipeline, domains):
        pipeline, sleep = blocking_pipeline
        await domains.create_domain("app.example.com")

        started = await pipeline.start("app.example.com")
        await sleep.entered.wait()

        assert started.message == START_MESSAGE
        assert pipeline.get_progress("app.example.com").message != START_MESSAGE
        await pipeline.shutdown()
