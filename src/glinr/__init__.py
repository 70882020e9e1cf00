"""glinr edge automation core.

Turns a bare domain name into a working HTTPS route to a running service:

- DNS verification of domain ownership (TXT challenge at _glinr-verify.<domain>)
- Optional DNS auto-configuration through a provider API (Cloudflare)
- ACME certificate issuance and renewal
- Full-rebuild nginx configuration reconciliation
- A background provisioning pipeline with pollable progress

Usage:
    from glinr import EdgePlatform

    platform = EdgePlatform.from_config()
    domain = await platform.create_domain("app.example.com")
    route, progress = await platform.create_tls_route(
        service_id=1,
        domain="app.example.com",
        port=8080,
        auto_verify_domain=True,
        auto_issue_cert=True,
    )
"""

from glinr.platform import EdgePlatform

__version__ = "0.4.0"

__all__ = ["EdgePlatform", "__version__"]
