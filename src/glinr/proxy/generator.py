"""nginx configuration rendering.

The output is a complete, self-contained set of ``upstream`` and ``server``
blocks meant to be included from the ``http`` context. Rendering is a pure
function of its input: routes are grouped by domain and ordered by domain,
then path, so the same database snapshot always yields the same bytes and
the same hash.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from itertools import groupby

from glinr.store import Certificate, CertificateStatus, Route

DEFAULT_WEBROOT = "/var/lib/glinr/acme-http01"
DEFAULT_UPSTREAM = "127.0.0.1:8080"

_SERVABLE_CERTIFICATE_STATUSES = (CertificateStatus.ISSUED, CertificateStatus.RENEWING)


@dataclass
class RenderedConfig:
    content: str
    hash: str
    route_count: int
    tls_domains: list[str]


def upstream_name(service_id: int, port: int) -> str:
    return f"svc_{service_id}_{port}"


def certificates_by_domain(certificates: list[Certificate]) -> dict[str, Certificate]:
    """Newest servable certificate with files on disk, keyed by domain."""
    result: dict[str, Certificate] = {}
    for certificate in sorted(certificates, key=lambda c: c.id or 0):
        if (
            certificate.status in _SERVABLE_CERTIFICATE_STATUSES
            and certificate.cert_path
            and certificate.key_path
        ):
            result[certificate.domain] = certificate
    return result


def _route_sort_key(route: Route) -> tuple[str, str, int]:
    return (route.domain, route.path or "", route.id or 0)


def _render_upstreams(routes: list[Route]) -> list[str]:
    lines: list[str] = []
    seen: set[str] = set()
    for route in sorted(routes, key=lambda r: (r.service_id, r.port, r.upstream_host)):
        name = upstream_name(route.service_id, route.port)
        if name in seen:
            continue
        seen.add(name)
        lines += [
            f"upstream {name} {{",
            f"    server {route.upstream_host}:{route.port};",
            "}",
            "",
        ]
    return lines


def _render_locations(routes: list[Route]) -> list[str]:
    lines: list[str] = []
    seen: set[str] = set()
    for route in routes:
        path = route.path or "/"
        if path in seen:
            continue
        seen.add(path)
        lines += [
            f"    location {path} {{",
            f"        proxy_pass http://{upstream_name(route.service_id, route.port)};",
            "    }",
        ]
    return lines


def _render_server(
    domain: str,
    routes: list[Route],
    certificate: Certificate | None,
    webroot: str,
) -> list[str]:
    tls = any(route.tls for route in routes)
    lines = [
        f"# Server block for {domain}",
        "server {",
        "    listen 80;",
    ]
    if tls and certificate is not None:
        lines.append("    listen 443 ssl http2;")
    lines += [
        f"    server_name {domain};",
        "",
        "    location ^~ /.well-known/acme-challenge/ {",
        f"        root {webroot};",
        "        try_files $uri =404;",
        "    }",
    ]

    if tls and certificate is not None:
        issued = certificate.last_issued_at.isoformat() if certificate.last_issued_at else "unknown"
        lines += [
            "",
            # Per-issuance marker; part of the config hash.
            f"    # certificate {certificate.id} issued {issued}",
            f"    ssl_certificate {certificate.cert_path};",
            f"    ssl_certificate_key {certificate.key_path};",
            "    ssl_protocols TLSv1.2 TLSv1.3;",
            "    ssl_prefer_server_ciphers off;",
            "    ssl_session_cache shared:SSL:10m;",
            "    ssl_session_timeout 10m;",
            '    add_header Strict-Transport-Security "max-age=31536000; includeSubDomains" always;',
            "    add_header X-Content-Type-Options nosniff always;",
            "    add_header X-Frame-Options DENY always;",
            "",
            "    if ($scheme = http) {",
            "        return 301 https://$host$request_uri;",
            "    }",
        ]
    elif tls:
        lines += [
            "",
            f"    # No certificate attached yet for {domain}; HTTPS is not served",
        ]

    lines += [
        "",
        "    proxy_set_header Host $host;",
        "    proxy_set_header X-Real-IP $remote_addr;",
        "    proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;",
        "    proxy_set_header X-Forwarded-Proto $scheme;",
        "    proxy_set_header X-Forwarded-Host $host;",
        "    proxy_connect_timeout 30s;",
        "    proxy_send_timeout 30s;",
        "    proxy_read_timeout 30s;",
        "    proxy_redirect off;",
        "",
    ]
    lines += _render_locations(routes)
    lines += ["}", ""]
    return lines


def render_config(
    routes: list[Route],
    certificates: list[Certificate],
    webroot: str = DEFAULT_WEBROOT,
    default_upstream: str = DEFAULT_UPSTREAM,
) -> RenderedConfig:
    """Render the complete proxy configuration for a snapshot.

    A TLS route is served over HTTPS only once it has a certificate_id and its
    domain has a servable certificate with files on disk.

    Args:
        routes: Every route in the snapshot.
        certificates: Every certificate in the snapshot.
        webroot: Directory holding HTTP-01 challenge responses.
        default_upstream: Target of the catch-all ``backend_default`` upstream.

    Returns:
        RenderedConfig with the file content and its sha256 hash.
    """
    certs = certificates_by_domain(certificates)
    ordered = sorted(routes, key=_route_sort_key)

    lines = [
        "# Auto-generated by glinr; changes are overwritten on the next reconcile.",
        "upstream backend_default {",
        f"    server {default_upstream};",
        "}",
        "",
    ]
    lines += _render_upstreams(ordered)

    tls_domains: list[str] = []
    for domain, group in groupby(ordered, key=lambda r: r.domain):
        domain_routes = list(group)
        certificate = None
        if any(r.tls and r.certificate_id is not None for r in domain_routes):
            certificate = certs.get(domain)
        if certificate is not None:
            tls_domains.append(domain)
        lines += _render_server(domain, domain_routes, certificate, webroot)

    content = "\n".join(lines).rstrip("\n") + "\n"
    return RenderedConfig(
        content=content,
        hash=hashlib.sha256(content.encode("utf-8")).hexdigest(),
        route_count=len(routes),
        tls_domains=tls_domains,
    )
