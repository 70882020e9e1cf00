"""Full-rebuild reconciliation of the proxy configuration.

Every reconcile renders the complete configuration from a consistent store
snapshot; nothing is patched incrementally. Calls are serialised per
reconciler and each one snapshots inside the critical section, so the file
always matches the store as of the latest completed call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog

from glinr.core.errors import ProxyReloadError, ProxyValidationError
from glinr.interfaces import ProxyControl
from glinr.proxy.generator import (
    DEFAULT_UPSTREAM,
    DEFAULT_WEBROOT,
    RenderedConfig,
    render_config,
)
from glinr.store import Store

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    hash: str
    route_count: int
    changed: bool
    tls_domains: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "route_count": self.route_count,
            "changed": self.changed,
            "tls_domains": self.tls_domains,
        }


class ProxyReconciler:
    """Keeps the proxy configuration equal to the store's routes and certificates.

    Args:
        store: Storage backend holding routes and certificates.
        control: Validates and installs configuration.
        webroot: HTTP-01 challenge directory served on port 80.
        default_upstream: Target of the catch-all upstream.
        timeout: Bound for validate+apply (seconds).
    """

    def __init__(
        self,
        store: Store,
        control: ProxyControl,
        webroot: str = DEFAULT_WEBROOT,
        default_upstream: str = DEFAULT_UPSTREAM,
        timeout: float = 30.0,
    ) -> None:
        self.store = store
        self.control = control
        self.webroot = webroot
        self.default_upstream = default_upstream
        self.timeout = timeout
        self._lock = asyncio.Lock()
        self._applied_hash: str | None = None

    @property
    def applied_hash(self) -> str | None:
        """Hash of the last configuration that was installed and reloaded."""
        return self._applied_hash

    async def render(self) -> RenderedConfig:
        snapshot = await self.store.snapshot()
        return render_config(
            snapshot.routes,
            snapshot.certificates,
            webroot=self.webroot,
            default_upstream=self.default_upstream,
        )

    async def reconcile(self) -> ReconcileResult:
        """Rebuild, validate and apply the configuration.

        When the rendered configuration equals the last successfully applied
        one nothing is written or reloaded.

        Raises:
            ProxyValidationError: If the configuration is invalid; the
                installed file is left untouched.
            ProxyReloadError: If the file was installed but nginx did not
                reload. A later reconcile retries the reload.
        """
        async with self._lock:
            # Snapshot under the lock so a slower caller never installs an older view.
            rendered = await self.render()
            if rendered.hash == self._applied_hash:
                logger.debug("Proxy configuration unchanged", hash=rendered.hash[:12])
                return ReconcileResult(
                    hash=rendered.hash,
                    route_count=rendered.route_count,
                    changed=False,
                    tls_domains=rendered.tls_domains,
                )

            try:
                async with asyncio.timeout(self.timeout):
                    await self.control.validate(rendered.content)
            except TimeoutError as e:
                raise ProxyValidationError("Proxy configuration validation timed out") from e

            # The installed file may now differ from the applied hash.
            self._applied_hash = None
            try:
                async with asyncio.timeout(self.timeout):
                    await self.control.apply(rendered.content)
            except TimeoutError as e:
                raise ProxyReloadError("Proxy apply timed out") from e
            except OSError as e:
                raise ProxyReloadError(f"Proxy apply failed: {e}") from e
            self._applied_hash = rendered.hash

        logger.info(
            "Proxy configuration applied",
            hash=rendered.hash[:12],
            routes=rendered.route_count,
            tls_domains=len(rendered.tls_domains),
        )
        return ReconcileResult(
            hash=rendered.hash,
            route_count=rendered.route_count,
            changed=True,
            tls_domains=rendered.tls_domains,
        )
