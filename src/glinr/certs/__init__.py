"""Certificate issuance, renewal and the ACME client."""

from glinr.certs.acme import ACMEClient, certificate_expiry
from glinr.certs.manager import CertificateManager
from glinr.certs.renewal import RenewalService, RenewalStats

__all__ = [
    "ACMEClient",
    "CertificateManager",
    "RenewalService",
    "RenewalStats",
    "certificate_expiry",
]
