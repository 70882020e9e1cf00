"""Domain name helpers.

Normalisation, syntax validation and the apex/wildcard distinctions that
decide which DNS records a domain needs:

    - app.example.com needs a TXT challenge and a CNAME to the edge host
    - example.com (apex) cannot carry a CNAME, so only the TXT challenge
"""

from __future__ import annotations

import re

from glinr.core.errors import ValidationError

_LABEL = r"[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?"
DOMAIN_PATTERN = re.compile(rf"^{_LABEL}(\.{_LABEL})*$")

MAX_DOMAIN_LENGTH = 253


def normalize_domain(domain: str) -> str:
    """Lower-case a domain and strip whitespace and a trailing dot."""
    return domain.strip().lower().rstrip(".")


def is_wildcard_pattern(domain: str) -> bool:
    """Check if a domain string is a wildcard pattern like *.example.com."""
    return domain.startswith("*.")


def is_apex(domain: str) -> bool:
    """Whether ``domain`` is a registrable apex (exactly two labels)."""
    return domain.count(".") == 1


def needs_cname(domain: str) -> bool:
    """Whether routing ``domain`` to the edge host needs a CNAME record."""
    return "." in domain and not is_wildcard_pattern(domain) and not is_apex(domain)


def is_valid_domain(domain: str) -> bool:
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False
    if is_wildcard_pattern(domain):
        domain = domain[2:]
        if "." not in domain:
            return False
    return bool(DOMAIN_PATTERN.match(domain))


def validate_domain(domain: str) -> str:
    """Normalise and validate a fully qualified domain name.

    Args:
        domain: Raw domain input.

    Returns:
        The normalised domain.

    Raises:
        ValidationError: If the name is empty, too long or malformed.
    """
    normalized = normalize_domain(domain)
    if not normalized:
        raise ValidationError("Domain name is required")
    if "." not in normalized:
        raise ValidationError(f"Domain must be fully qualified: {normalized}")
    if not is_valid_domain(normalized):
        raise ValidationError(f"Invalid domain name: {normalized}")
    return normalized


def validate_email(email: str) -> str:
    email = email.strip()
    if not email or "@" not in email:
        raise ValidationError(f"Invalid email address: {email!r}")
    return email



ROUTE_PATH_PATTERN = re.compile(r"^/[A-Za-z0-9._~%/-]*$")


def validate_route_path(path: str) -> str:
    """Validate a route path prefix such as ``/api``.

    Only unreserved URL characters, ``%`` escapes and ``/`` are allowed;
    the path is written into an nginx ``location`` directive as is.
    """
    if not ROUTE_PATH_PATTERN.match(path):
        raise ValidationError(f"Invalid route path: {path!r}")
    return path


def validate_service_host(host: str) -> str:
    """Validate an upstream host override (hostname or IPv4 address)."""
    host = host.strip()
    if not host or len(host) > MAX_DOMAIN_LENGTH or not DOMAIN_PATTERN.match(host):
        raise ValidationError(f"Invalid service host: {host!r}")
    return host
