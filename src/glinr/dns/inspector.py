"""DNS queries used for verification and zone detection.

A missing name (NXDOMAIN) or a name without records of the requested type
(NODATA) is an empty answer, not an error: DNS propagation delay looks
exactly like that. Resolver failures raise DNSLookupError.
"""

from __future__ import annotations

import asyncio
import sys

import aiodns
import structlog

from glinr.core.errors import DNSLookupError

logger = structlog.get_logger()

_EMPTY_ANSWER_CODES = frozenset({aiodns.error.ARES_ENOTFOUND, aiodns.error.ARES_ENODATA})


def _record_text(record: object) -> str:
    value = getattr(record, "text", record)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return str(value).strip('"').strip("'")


class DNSInspector:
    """Asynchronous resolver wrapper built on aiodns.

    Args:
        nameservers: Resolver IPs to query. Empty uses the system resolvers.
        timeout: Upper bound for a single lookup (seconds).
        tries: Attempts per resolver.
    """

    def __init__(
        self,
        nameservers: list[str] | None = None,
        timeout: float = 10.0,
        tries: int = 2,
    ) -> None:
        self.nameservers = list(nameservers or [])
        self.timeout = timeout
        self.tries = tries
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            kwargs: dict = {"timeout": self.timeout, "tries": self.tries}
            if self.nameservers:
                kwargs["nameservers"] = self.nameservers
            if sys.platform == "win32":
                kwargs["loop"] = asyncio.get_running_loop()
            self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    async def _query(self, name: str, record_type: str) -> list:
        resolver = self._get_resolver()
        try:
            async with asyncio.timeout(self.timeout):
                result = await resolver.query_dns(name, record_type)
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            if code in _EMPTY_ANSWER_CODES:
                return []
            logger.warning("DNS lookup failed", name=name, type=record_type, error=str(e))
            raise DNSLookupError(f"{record_type} lookup for {name} failed: {e}") from e
        except TimeoutError as e:
            logger.warning("DNS lookup timed out", name=name, type=record_type)
            raise DNSLookupError(f"{record_type} lookup for {name} timed out") from e
        if result is None:
            return []
        return result if isinstance(result, list) else [result]

    async def lookup_txt(self, name: str) -> list[str]:
        """Return the TXT values at ``name`` with surrounding quotes stripped."""
        records = await self._query(name, "TXT")
        return [_record_text(record) for record in records]

    async def lookup_ns(self, name: str) -> list[str]:
        """Return nameserver host names for ``name`` (lower-cased, no trailing dot)."""
        records = await self._query(name, "NS")
        return [str(record.host).rstrip(".").lower() for record in records]


    async def lookup_cname(self, name: str) -> str | None:
        """Return the CNAME target of ``name`` (no trailing dot), if any."""
        records = await self._query(name, "CNAME")
        if not records:
            return None
        return str(getattr(records[0], "cname", records[0])).rstrip(".").lower()
