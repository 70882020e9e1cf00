"""glinr custom domain management.

Features:
- TXT-record verification of domain ownership (_glinr-verify.<domain>)
- Provider/zone auto-detection and Cloudflare DNS auto-configuration
- Status tracking: pending -> verifying -> verified -> active, with error

Usage:
    from glinr.domains import DomainManager

    manager = DomainManager(store, resolver=DNSInspector())
    domain = await manager.create_domain("app.example.com")
    challenge = await manager.issue_challenge("app.example.com")
"""

from glinr.domains.manager import AutoConfigureResult, DomainManager, parse_statuses
from glinr.domains.names import (
    is_apex,
    is_wildcard_pattern,
    needs_cname,
    normalize_domain,
    validate_domain,
    validate_email,
)
from glinr.domains.verification import (
    CHALLENGE_PREFIX,
    Challenge,
    CheckResult,
    challenge_name,
    generate_token,
)

__all__ = [
    "DomainManager",
    "AutoConfigureResult",
    "parse_statuses",
    "Challenge",
    "CheckResult",
    "CHALLENGE_PREFIX",
    "challenge_name",
    "generate_token",
    "is_apex",
    "is_wildcard_pattern",
    "needs_cname",
    "normalize_domain",
    "validate_domain",
    "validate_email",
]
