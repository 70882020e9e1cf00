"""Reverse proxy configuration: rendering, control and reconciliation."""

from glinr.proxy.control import NginxControl, check_structure
from glinr.proxy.generator import RenderedConfig, render_config, upstream_name
from glinr.proxy.reconciler import ProxyReconciler, ReconcileResult

__all__ = [
    "NginxControl",
    "ProxyReconciler",
    "ReconcileResult",
    "RenderedConfig",
    "check_structure",
    "render_config",
    "upstream_name",
]
