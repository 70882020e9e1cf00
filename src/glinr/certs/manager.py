"""Certificate lifecycle: issuance, renewal and expiry tracking.

A domain has at most one current certificate: the newest one that has not
failed. While it is being renewed it keeps its paths and expiry, so the
proxy keeps serving it until the replacement is in place.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timedelta

import structlog

from glinr.core.errors import (
    CertificateAuthorityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from glinr.domains.names import validate_domain, validate_email
from glinr.interfaces import CertificateAuthority, IssuedCertificate
from glinr.store import Certificate, CertificateStatus, DomainStatus, Store, utc_now

logger = structlog.get_logger()

_ISSUABLE_STATUSES = (DomainStatus.VERIFIED, DomainStatus.ACTIVE)


class CertificateManager:
    """Drives the certificate authority and records the outcome.

    Issuance and renewal are single-flight per domain: a caller arriving while
    a CA request for the same domain is running awaits that request and gets
    its certificate instead of starting another one.

    Args:
        store: Storage backend.
        authority: Certificate authority client.
        timeout: Upper bound for one CA request (seconds).
        default_email: Contact used when a caller passes no email.
    """

    def __init__(
        self,
        store: Store,
        authority: CertificateAuthority,
        timeout: float = 120.0,
        default_email: str | None = None,
    ) -> None:
        self.store = store
        self.authority = authority
        self.timeout = timeout
        self.default_email = default_email
        self._inflight: dict[str, asyncio.Task[Certificate]] = {}

    async def current_certificate(self, domain: str) -> Certificate | None:
        certificates = await self.store.list_certificates(validate_domain(domain))
        for certificate in reversed(certificates):
            if certificate.status != CertificateStatus.FAILED:
                return certificate
        return None

    async def get_certificate(self, domain: str) -> Certificate:
        """Return the domain's current certificate, else its latest failed one.

        Raises:
            NotFoundError: If no certificate was ever requested for the domain.
        """
        domain = validate_domain(domain)
        current = await self.current_certificate(domain)
        if current is not None:
            return current
        certificates = await self.store.list_certificates(domain)
        if not certificates:
            raise NotFoundError(f"No certificate for {domain}")
        return certificates[-1]

    async def list_certificates(self) -> list[Certificate]:
        return await self.store.list_certificates()

    async def list_expiring_soon(
        self, within: timedelta, now: datetime | None = None
    ) -> list[Certificate]:
        """Issued certificates expiring in ``[now, now + within)``.

        Certificates without a known expiry are never included.
        """
        now = now or utc_now()
        horizon = now + within
        return [
            c
            for c in await self.store.list_certificates()
            if c.status == CertificateStatus.ISSUED
            and c.expires_at is not None
            and now <= c.expires_at < horizon
        ]

    async def issue(self, domain: str, email: str | None = None) -> Certificate:
        """Obtain a certificate for a verified (or active) domain.

        Returns the resulting record, which is ``issued`` on success and
        ``failed`` with ``error`` set when the CA rejected the order. A domain
        that already has a current certificate gets that one back.

        Raises:
            ValidationError: If the domain or email is malformed, or the domain
                is not verified.
            NotFoundError: If the domain does not exist.
        """
        domain = validate_domain(domain)
        email = validate_email(email or self.default_email or "")

        running = self._inflight.get(domain)
        if running is not None:
            logger.debug("Joining in-flight certificate request", domain=domain)
            return await asyncio.shield(running)

        record = await self.store.get_domain(domain)
        if record is None:
            raise NotFoundError(f"Domain {domain} is not registered")
        if record.status not in _ISSUABLE_STATUSES:
            raise InvalidTransitionError(
                f"Domain {domain} must be verified before issuing a certificate "
                f"(status: {record.status.value})"
            )

        running = self._inflight.get(domain)
        if running is not None:
            return await asyncio.shield(running)
        return await self._single_flight(domain, lambda: self._issue(domain, email))

    async def renew(self, domain: str) -> Certificate:
        """Request a fresh certificate to replace the current one.

        On failure the certificate returns to ``issued`` if it has not expired
        yet, and becomes ``failed`` otherwise.

        Raises:
            ValidationError: If the domain has no current certificate.
        """
        domain = validate_domain(domain)

        running = self._inflight.get(domain)
        if running is not None:
            return await asyncio.shield(running)

        current = await self.current_certificate(domain)
        if current is None:
            raise ValidationError(f"No certificate to renew for {domain}")

        running = self._inflight.get(domain)
        if running is not None:
            return await asyncio.shield(running)

        return await self._single_flight(domain, lambda: self._renew(current))

    async def _single_flight(
        self, domain: str, factory: Callable[[], Awaitable[Certificate]]
    ) -> Certificate:
        task = asyncio.create_task(factory(), name=f"certificate:{domain}")
        self._inflight[domain] = task
        task.add_done_callback(lambda _: self._inflight.pop(domain, None))
        return await asyncio.shield(task)

    async def _request(self, domain: str, email: str) -> IssuedCertificate:
        async with asyncio.timeout(self.timeout):
            return await self.authority.issue_certificate(domain, email)

    async def _issue(self, domain: str, email: str) -> Certificate:
        current = await self.current_certificate(domain)
        if current is not None and current.status == CertificateStatus.ISSUED:
            logger.info("Certificate already issued", domain=domain, certificate_id=current.id)
            return current
        if current is not None and current.status == CertificateStatus.RENEWING:
            # Left over from an interrupted renewal; the old files are still served.
            return await self._renew(current)

        if current is not None:
            # Left over from an interrupted request.
            certificate = replace(current, email=email, error=None)
        else:
            certificate = Certificate(domain=domain, email=email)
        certificate = await self.store.save_certificate(certificate)
        logger.info("Certificate requested", domain=domain, certificate_id=certificate.id)

        try:
            issued = await self._request(domain, email)
        except asyncio.CancelledError:
            await self._issue_failed(certificate, "Certificate request cancelled")
            raise
        except Exception as e:
            return await self._issue_failed(certificate, _describe(e))

        certificate.status = CertificateStatus.ISSUED
        certificate.expires_at = issued.expires_at
        certificate.last_issued_at = utc_now()
        certificate.cert_path = issued.cert_path
        certificate.key_path = issued.key_path
        certificate.error = None
        certificate = await self.store.save_certificate(certificate)
        logger.info(
            "Certificate issued",
            domain=domain,
            certificate_id=certificate.id,
            expires_at=certificate.expires_at.isoformat() if certificate.expires_at else None,
        )
        return certificate

    async def _issue_failed(self, certificate: Certificate, error: str) -> Certificate:
        certificate.status = CertificateStatus.FAILED
        certificate.error = error
        certificate = await self.store.save_certificate(certificate)
        logger.error("Certificate issuance failed", domain=certificate.domain, error=error)
        return certificate

    async def _renew(self, certificate: Certificate) -> Certificate:
        certificate.status = CertificateStatus.RENEWING
        certificate = await self.store.save_certificate(certificate)
        logger.info("Certificate renewal started", domain=certificate.domain)

        try:
            issued = await self._request(certificate.domain, certificate.email)
        except asyncio.CancelledError:
            await self._renewal_failed(certificate, "Certificate renewal cancelled")
            raise
        except Exception as e:
            return await self._renewal_failed(certificate, _describe(e))

        certificate.status = CertificateStatus.ISSUED
        certificate.expires_at = issued.expires_at
        certificate.last_issued_at = utc_now()
        certificate.cert_path = issued.cert_path or certificate.cert_path
        certificate.key_path = issued.key_path or certificate.key_path
        certificate.error = None
        certificate = await self.store.save_certificate(certificate)
        logger.info("Certificate renewed", domain=certificate.domain, certificate_id=certificate.id)
        return certificate

    async def _renewal_failed(self, certificate: Certificate, error: str) -> Certificate:
        """Keep serving a still-valid certificate; an expired one becomes failed."""
        certificate.error = error
        if certificate.is_expired():
            certificate.status = CertificateStatus.FAILED
        else:
            certificate.status = CertificateStatus.ISSUED
        certificate = await self.store.save_certificate(certificate)
        logger.error(
            "Certificate renewal failed",
            domain=certificate.domain,
            status=certificate.status.value,
            error=error,
        )
        return certificate


def _describe(error: Exception) -> str:
    if isinstance(error, TimeoutError):
        return "Certificate authority request timed out"
    if isinstance(error, CertificateAuthorityError):
        return str(error)
    return f"Certificate authority request failed: {error!r}"
