"""JSON file storage for domains, certificates and routes.

Storage file format (glinr.json):
    {
        "sequences": {"domains": 2, "certificates": 1, "routes": 1},
        "domains": {"app.example.com": {"id": 1, "name": "app.example.com", ...}},
        "certificates": {"1": {"id": 1, "domain": "app.example.com", ...}},
        "routes": {"1": {"id": 1, "service_id": 7, "domain": "app.example.com", ...}}
    }

Reads return copies, so a caller mutating a record never changes stored state
until it calls the matching save method.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import structlog

from glinr.core.files import atomic_write
from glinr.store.models import Certificate, Domain, DomainStatus, Route, utc_now

logger = structlog.get_logger()


@dataclass
class _Tables:
    domains: dict[str, Domain] = field(default_factory=dict)
    certificates: dict[int, Certificate] = field(default_factory=dict)
    routes: dict[int, Route] = field(default_factory=dict)
    sequences: dict[str, int] = field(default_factory=dict)

    def next_id(self, table: str) -> int:
        value = self.sequences.get(table, 0) + 1
        self.sequences[table] = value
        return value

    def copy(self) -> _Tables:
        """Shallow copy; records are replaced, never mutated, inside a write."""
        return _Tables(
            domains=dict(self.domains),
            certificates=dict(self.certificates),
            routes=dict(self.routes),
            sequences=dict(self.sequences),
        )


@dataclass
class Snapshot:
    """Point-in-time copy of every route and certificate."""

    routes: list[Route]
    certificates: list[Certificate]


class Store:
    """JSON file-based storage.

    Thread-safe via an asyncio lock. Pass ``storage_path=None`` for a purely
    in-memory store (tests, dry runs).
    """

    def __init__(self, storage_path: str | Path | None = "glinr.json") -> None:
        self.storage_path = Path(storage_path) if storage_path is not None else None
        self._lock = asyncio.Lock()
        self._cache: _Tables | None = None

    async def _load(self) -> _Tables:
        if self._cache is not None:
            return self._cache

        if self.storage_path is None or not self.storage_path.exists():
            self._cache = _Tables()
            return self._cache

        content = await asyncio.to_thread(self.storage_path.read_text, encoding="utf-8")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt storage file {self.storage_path}: {e}") from e

        self._cache = _Tables(
            domains={
                name: Domain.from_dict(item) for name, item in data.get("domains", {}).items()
            },
            certificates={
                int(key): Certificate.from_dict(item)
                for key, item in data.get("certificates", {}).items()
            },
            routes={int(key): Route.from_dict(item) for key, item in data.get("routes", {}).items()},
            sequences=dict(data.get("sequences", {})),
        )
        return self._cache

    async def _edit(self) -> _Tables:
        """Working copy for a write; committed to the cache by _save."""
        return (await self._load()).copy()

    async def _save(self, tables: _Tables) -> None:
        if self.storage_path is None:
            self._cache = tables
            return
        data: dict[str, Any] = {
            "sequences": tables.sequences,
            "domains": {name: d.to_dict() for name, d in tables.domains.items()},
            "certificates": {str(k): c.to_dict() for k, c in tables.certificates.items()},
            "routes": {str(k): r.to_dict() for k, r in tables.routes.items()},
        }
        await asyncio.to_thread(
            atomic_write, self.storage_path, json.dumps(data, indent=2), 0o600
        )
        self._cache = tables

    # Domains

    async def add_domain(self, domain: Domain) -> Domain:
        """Insert a new domain, assigning its id.

        Raises:
            KeyError: If a domain with the same name already exists.
        """
        async with self._lock:
            tables = await self._edit()
            if domain.name in tables.domains:
                raise KeyError(domain.name)
            stored = replace(domain, id=tables.next_id("domains"))
            tables.domains[stored.name] = stored
            await self._save(tables)
            return replace(stored)

    async def save_domain(self, domain: Domain) -> Domain:
        async with self._lock:
            tables = await self._edit()
            stored = replace(domain, updated_at=utc_now())
            if stored.id is None:
                stored.id = tables.next_id("domains")
            tables.domains[stored.name] = stored
            await self._save(tables)
            return replace(stored)

    async def get_domain(self, name: str) -> Domain | None:
        async with self._lock:
            tables = await self._load()
            domain = tables.domains.get(name)
            return replace(domain) if domain else None

    async def list_domains(self, statuses: set[DomainStatus] | None = None) -> list[Domain]:
        """List domains ordered by id, optionally filtered by status."""
        async with self._lock:
            tables = await self._load()
            domains = sorted(tables.domains.values(), key=lambda d: d.id or 0)
            return [replace(d) for d in domains if not statuses or d.status in statuses]

    async def delete_domain(self, name: str) -> bool:
        async with self._lock:
            tables = await self._edit()
            if name not in tables.domains:
                return False
            del tables.domains[name]
            await self._save(tables)
            return True

    # Certificates

    async def save_certificate(self, certificate: Certificate) -> Certificate:
        async with self._lock:
            tables = await self._edit()
            stored = replace(certificate, updated_at=utc_now())
            if stored.id is None:
                stored.id = tables.next_id("certificates")
            tables.certificates[stored.id] = stored
            await self._save(tables)
            return replace(stored)

    async def get_certificate(self, certificate_id: int) -> Certificate | None:
        async with self._lock:
            tables = await self._load()
            certificate = tables.certificates.get(certificate_id)
            return replace(certificate) if certificate else None

    async def list_certificates(self, domain: str | None = None) -> list[Certificate]:
        async with self._lock:
            tables = await self._load()
            certificates = sorted(tables.certificates.values(), key=lambda c: c.id or 0)
            return [replace(c) for c in certificates if domain is None or c.domain == domain]

    # Routes

    async def save_route(self, route: Route) -> Route:
        async with self._lock:
            tables = await self._edit()
            stored = replace(route)
            if stored.id is None:
                stored.id = tables.next_id("routes")
            tables.routes[stored.id] = stored
            await self._save(tables)
            return replace(stored)

    async def get_route(self, route_id: int) -> Route | None:
        async with self._lock:
            tables = await self._load()
            route = tables.routes.get(route_id)
            return replace(route) if route else None

    async def list_routes(self, domain: str | None = None) -> list[Route]:
        async with self._lock:
            tables = await self._load()
            routes = sorted(tables.routes.values(), key=lambda r: r.id or 0)
            return [replace(r) for r in routes if domain is None or r.domain == domain]

    async def delete_route(self, route_id: int) -> bool:
        async with self._lock:
            tables = await self._edit()
            if route_id not in tables.routes:
                return False
            del tables.routes[route_id]
            await self._save(tables)
            return True

    async def attach_certificate(self, domain: str, certificate_id: int) -> int:
        """Set certificate_id on every TLS route of a domain.

        Returns:
            Number of routes updated.
        """
        async with self._lock:
            tables = await self._edit()
            updated = 0
            for route_id, route in tables.routes.items():
                if route.domain == domain and route.tls and route.certificate_id != certificate_id:
                    tables.routes[route_id] = replace(route, certificate_id=certificate_id)
                    updated += 1
            if updated:
                await self._save(tables)
            return updated

    async def snapshot(self) -> Snapshot:
        """Consistent copy of all routes and certificates taken under one lock."""
        async with self._lock:
            tables = await self._load()
            return Snapshot(
                routes=[replace(r) for r in tables.routes.values()],
                certificates=[replace(c) for c in tables.certificates.values()],
            )

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory cache.

        Call this after external modifications to the storage file.
        """
        self._cache = None

