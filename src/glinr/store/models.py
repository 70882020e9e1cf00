"""Persisted records: domains, certificates and routes.

Every record round-trips through to_dict()/from_dict() unchanged; timestamps
are stored as ISO-8601 strings and missing values as null.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class DomainStatus(str, Enum):
    """Lifecycle of a custom domain.

    pending -> verifying -> verified -> active, with error reachable from any
    state and error -> pending as the only way back.
    """

    PENDING = "pending"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    ACTIVE = "active"
    ERROR = "error"

    def can_transition_to(self, target: DomainStatus) -> bool:
        if target == self:
            return True
        return target in _DOMAIN_TRANSITIONS[self]


_DOMAIN_TRANSITIONS: dict[DomainStatus, frozenset[DomainStatus]] = {
    DomainStatus.PENDING: frozenset(
        {DomainStatus.VERIFYING, DomainStatus.VERIFIED, DomainStatus.ERROR}
    ),
    DomainStatus.VERIFYING: frozenset({DomainStatus.VERIFIED, DomainStatus.ERROR}),
    DomainStatus.VERIFIED: frozenset({DomainStatus.ACTIVE, DomainStatus.ERROR}),
    DomainStatus.ACTIVE: frozenset({DomainStatus.ERROR}),
    DomainStatus.ERROR: frozenset({DomainStatus.PENDING}),
}


class CertificateStatus(str, Enum):
    QUEUED = "queued"
    ISSUED = "issued"
    RENEWING = "renewing"
    FAILED = "failed"


@dataclass
class Domain:
    """A custom domain and its verification state."""

    name: str
    verification_token: str
    status: DomainStatus = DomainStatus.PENDING
    id: int | None = None
    provider: str | None = None
    zone_id: str | None = None
    verification_checked_at: datetime | None = None
    certificate_id: int | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "provider": self.provider,
            "zone_id": self.zone_id,
            "verification_token": self.verification_token,
            "verification_checked_at": _format_dt(self.verification_checked_at),
            "certificate_id": self.certificate_id,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Domain:
        return cls(
            id=data.get("id"),
            name=data["name"],
            status=DomainStatus(data.get("status", DomainStatus.PENDING.value)),
            provider=data.get("provider"),
            zone_id=data.get("zone_id"),
            verification_token=data["verification_token"],
            verification_checked_at=_parse_dt(data.get("verification_checked_at")),
            certificate_id=data.get("certificate_id"),
            error=data.get("error"),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Certificate:
    """An ACME certificate for one domain."""

    domain: str
    email: str
    status: CertificateStatus = CertificateStatus.QUEUED
    id: int | None = None
    expires_at: datetime | None = None
    last_issued_at: datetime | None = None
    error: str | None = None
    cert_path: str | None = None
    key_path: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utc_now())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "email": self.email,
            "status": self.status.value,
            "expires_at": _format_dt(self.expires_at),
            "last_issued_at": _format_dt(self.last_issued_at),
            "error": self.error,
            "cert_path": self.cert_path,
            "key_path": self.key_path,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Certificate:
        return cls(
            id=data.get("id"),
            domain=data["domain"],
            email=data["email"],
            status=CertificateStatus(data.get("status", CertificateStatus.QUEUED.value)),
            expires_at=_parse_dt(data.get("expires_at")),
            last_issued_at=_parse_dt(data.get("last_issued_at")),
            error=data.get("error"),
            cert_path=data.get("cert_path"),
            key_path=data.get("key_path"),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
            updated_at=_parse_dt(data.get("updated_at")) or utc_now(),
        )


@dataclass
class Route:
    """Maps a domain (and optional path prefix) to a service port."""

    service_id: int
    domain: str
    port: int
    path: str | None = None
    tls: bool = False
    id: int | None = None
    certificate_id: int | None = None
    service_host: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def upstream_host(self) -> str:
        return self.service_host or f"svc-{self.service_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "service_id": self.service_id,
            "domain": self.domain,
            "port": self.port,
            "path": self.path,
            "tls": self.tls,
            "certificate_id": self.certificate_id,
            "service_host": self.service_host,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Route:
        return cls(
            id=data.get("id"),
            service_id=data["service_id"],
            domain=data["domain"],
            port=data["port"],
            path=data.get("path"),
            tls=data.get("tls", False),
            certificate_id=data.get("certificate_id"),
            service_host=data.get("service_host"),
            created_at=_parse_dt(data.get("created_at")) or utc_now(),
        )
