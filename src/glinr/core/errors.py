"""Exception hierarchy shared by every glinr component.

Each exception carries the HTTP status code an API layer should answer with,
so callers can tell a synchronous rejection (4xx) from an upstream failure
(5xx) without inspecting messages.
"""

from __future__ import annotations


class GlinrError(Exception):
    """Base class for all glinr errors."""

    status_code: int = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(GlinrError, ValueError):
    """Input or precondition rejected before any state was touched."""

    status_code = 400


class InvalidTransitionError(ValidationError):
    """A status change that the state machine does not allow."""


class NotFoundError(GlinrError, LookupError):
    status_code = 404


class ConflictError(GlinrError):
    status_code = 409


class DNSLookupError(GlinrError):
    """Resolver failure (timeout, SERVFAIL). NXDOMAIN is not an error."""

    status_code = 503


class ProviderError(GlinrError):
    """DNS provider API call failed."""

    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        errors: list[dict] | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.errors = errors or []

    def __str__(self) -> str:
        if self.errors:
            first = self.errors[0]
            return f"{self.message} (code: {first.get('code')}, api_error: {first.get('message')})"
        return self.message


class CertificateAuthorityError(GlinrError):
    """The ACME server rejected or failed a request."""

    status_code = 502


class ProxyValidationError(GlinrError):
    """Generated proxy configuration did not pass validation; nothing was applied."""

    status_code = 422


class ProxyReloadError(GlinrError):
    """Configuration was written but the proxy failed to reload it."""

    status_code = 502
