"""Persistence for domains, certificates and routes."""

from glinr.store.models import (
    Certificate,
    CertificateStatus,
    Domain,
    DomainStatus,
    Route,
    utc_now,
)
from glinr.store.storage import Snapshot, Store

__all__ = [
    "Certificate",
    "CertificateStatus",
    "Domain",
    "DomainStatus",
    "Route",
    "Snapshot",
    "Store",
    "utc_now",
]
