"""Shared configuration and error types."""

from glinr.core.config import GlinrConfig, clear_config, get_config
from glinr.core.errors import (
    CertificateAuthorityError,
    ConflictError,
    DNSLookupError,
    GlinrError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    ProxyReloadError,
    ProxyValidationError,
    ValidationError,
)

__all__ = [
    "GlinrConfig",
    "get_config",
    "clear_config",
    "GlinrError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "ConflictError",
    "DNSLookupError",
    "ProviderError",
    "CertificateAuthorityError",
    "ProxyValidationError",
    "ProxyReloadError",
]
