"""TXT challenge records for domain ownership verification.

Example DNS setup required by the user:

    _glinr-verify.app.example.com  TXT  "<verification token>"
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

CHALLENGE_PREFIX = "_glinr-verify"


def challenge_name(domain: str) -> str:
    return f"{CHALLENGE_PREFIX}.{domain}"


def generate_token() -> str:
    """Generate a verification token (64 hex chars, 256 bits of entropy)."""
    return secrets.token_hex(32)


@dataclass
class Challenge:
    """The TXT record a domain owner has to publish."""

    domain: str
    record_name: str
    value: str
    record_type: str = "TXT"

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "type": self.record_type,
            "name": self.record_name,
            "value": self.value,
        }


@dataclass
class CheckResult:
    """Outcome of one challenge check.

    A lookup failure is reported through ``error`` rather than raised, so a
    caller polling for propagation treats it like a mismatch.
    """

    domain: str
    record_name: str
    verified: bool
    checked_at: datetime
    found: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "record_name": self.record_name,
            "verified": self.verified,
            "checked_at": self.checked_at.isoformat(),
            "found": self.found,
            "error": self.error,
        }


def token_matches(values: list[str], token: str) -> bool:
    """Exact comparison of published TXT values against the token."""
    return any(value == token for value in values)
