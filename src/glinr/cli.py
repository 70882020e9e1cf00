"""glinr CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from glinr import __version__
from glinr.core.config import GlinrConfig, clear_config, get_config, set_config
from glinr.core.errors import GlinrError
from glinr.dns.inspector import DNSInspector
from glinr.domains.verification import challenge_name
from glinr.pipeline.progress import ProvisioningProgress
from glinr.platform import EdgePlatform
from glinr.store import Certificate, CertificateStatus, DomainStatus

console = Console()

T = TypeVar("T")

STATUS_COLORS = {
    DomainStatus.PENDING: "yellow",
    DomainStatus.VERIFYING: "cyan",
    DomainStatus.VERIFIED: "green",
    DomainStatus.ACTIVE: "green",
    DomainStatus.ERROR: "red",
    CertificateStatus.QUEUED: "yellow",
    CertificateStatus.ISSUED: "green",
    CertificateStatus.RENEWING: "cyan",
    CertificateStatus.FAILED: "red",
}


def _configure_logging(verbose: bool) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.WARNING
        ),
    )


def _build_platform(ctx: click.Context) -> EdgePlatform:
    return EdgePlatform.from_config(get_config())


def _run(ctx: click.Context, action: Callable[[EdgePlatform], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh platform and exit 1 on a glinr error."""

    async def runner() -> T:
        platform = _build_platform(ctx)
        try:
            return await action(platform)
        finally:
            await platform.close()

    try:
        return asyncio.run(runner())
    except GlinrError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)


def _print_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _colored(status: Any) -> str:
    color = STATUS_COLORS.get(status, "white")
    return f"[{color}]{status.value}[/{color}]"


def _format_time(value: Any) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "N/A"


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, verbose: bool):
    """glinr - Domains, certificates and proxy routes for self-hosted services.

    Examples:

        glinr domain add app.example.com

        glinr domain verify app.example.com

        glinr route add 7 app.example.com 8080 --auto-verify --auto-issue

        glinr cert expiring --days 30

    All settings can be configured via GLINR_* environment variables or a
    config file passed with --config.
    """
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file

    if config_file:
        try:
            set_config(GlinrConfig.from_file(config_file))
        except (OSError, ValueError) as e:
            console.print(f"[red]Failed to load config: {e}[/red]")
            sys.exit(1)


@main.command()
def version():
    """Show version information."""
    console.print(f"[bold]glinr[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version.split()[0]}")


@main.command()
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, json_output: bool):
    """Show domain, certificate and route counts."""
    summary = _run(ctx, lambda platform: platform.status())
    if json_output:
        _print_json(summary)
        return

    table = Table(title="Domains")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for name, count in summary["domains"].items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"[bold]Certificates:[/bold] {summary['certificates']}")
    console.print(f"[bold]Routes:[/bold] {summary['routes']}")


# Domains


@main.group()
def domain():
    """Manage custom domains and their DNS verification.

    Examples:

        glinr domain add app.example.com

        glinr domain show app.example.com

        glinr domain verify app.example.com

        glinr domain activate app.example.com
    """


@domain.command("add")
@click.argument("name")
@click.pass_context
def domain_add(ctx: click.Context, name: str):
    """Register a new custom domain and show the DNS records to create."""

    async def action(platform: EdgePlatform) -> dict[str, Any]:
        record = await platform.create_domain(name)
        return platform.describe_domain(record)

    view = _run(ctx, action)
    instructions = view.get("instructions", {})
    txt = instructions.get("txt_record", {})
    content = (
        f"[green]Domain registered![/green]\n\n"
        f"[bold]Domain:[/bold] {view['name']}\n"
        f"[bold]Provider:[/bold] {view['provider'] or 'manual'}\n"
        f"[bold]Status:[/bold] {view['status']}\n\n"
        f"[yellow]Configure these DNS records:[/yellow]\n\n"
        f"[bold]TXT Record[/bold]\n"
        f"   Name: {txt.get('name')}\n"
        f"   Value: {txt.get('value')}\n"
    )
    cname = instructions.get("cname_record")
    if cname:
        content += (
            f"\n[bold]CNAME Record[/bold]\n"
            f"   Name: {cname['name']}\n"
            f"   Value: {cname['value']}\n"
        )
    content += f"\nThen run:\n  [cyan]glinr domain verify {view['name']}[/cyan]"
    console.print(Panel(content, title="Domain Registration", border_style="green"))


@domain.command("list")
@click.option(
    "--status", "-s",
    "statuses",
    multiple=True,
    type=click.Choice([s.value for s in DomainStatus]),
    help="Only show domains in this status (repeatable)",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_list(ctx: click.Context, statuses: tuple[str, ...], json_output: bool):
    """List registered domains."""
    domains = _run(ctx, lambda platform: platform.list_domains(statuses or None))

    if json_output:
        _print_json([d.to_dict() for d in domains])
        return
    if not domains:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title="Domains")
    table.add_column("Domain", style="cyan")
    table.add_column("Status")
    table.add_column("Provider", style="dim")
    table.add_column("Certificate", justify="right")
    table.add_column("Last Checked")
    for item in domains:
        table.add_row(
            item.name,
            _colored(item.status),
            item.provider or "manual",
            str(item.certificate_id) if item.certificate_id else "-",
            _format_time(item.verification_checked_at),
        )
    console.print(table)


@domain.command("show")
@click.argument("name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_show(ctx: click.Context, name: str, json_output: bool):
    """Show a domain with its next action and DNS instructions."""

    async def action(platform: EdgePlatform) -> dict[str, Any]:
        return platform.describe_domain(await platform.get_domain(name))

    view = _run(ctx, action)
    if json_output:
        _print_json(view)
        return

    status_value = DomainStatus(view["status"])
    color = STATUS_COLORS[status_value]
    content = (
        f"[bold]Domain:[/bold] {view['name']}\n"
        f"[bold]Status:[/bold] {_colored(status_value)}\n"
        f"[bold]Next action:[/bold] {view['next_action']}\n"
        f"[bold]Provider:[/bold] {view['provider'] or 'manual'}\n"
        f"[bold]Last checked:[/bold] {view['last_checked'] or 'never'}"
    )
    if view.get("error"):
        content += f"\n[bold]Error:[/bold] [red]{view['error']}[/red]"
    instructions = view.get("instructions")
    if instructions:
        content += f"\n\n[yellow]{instructions['message']}[/yellow]"
        for key in ("txt_record", "cname_record"):
            record = instructions.get(key)
            if record:
                content += f"\n  {record['type']}  {record['name']}  {record['value']}"
    console.print(Panel(content, title=f"Domain: {view['name']}", border_style=color))


@domain.command("challenge")
@click.argument("name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_challenge(ctx: click.Context, name: str, json_output: bool):
    """Show the TXT challenge and start verification."""
    challenge = _run(ctx, lambda platform: platform.issue_challenge(name))
    if json_output:
        _print_json(challenge.to_dict())
        return
    console.print(f"[bold]{challenge.record_type}[/bold] {challenge.record_name}")
    console.print(challenge.value, style="cyan")


@domain.command("verify")
@click.argument("name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_verify(ctx: click.Context, name: str, json_output: bool):
    """Check the TXT challenge once."""
    result = _run(ctx, lambda platform: platform.verify_domain(name))
    if json_output:
        _print_json(result.to_dict())
        if not result.verified:
            sys.exit(1)
        return

    if result.verified:
        console.print(f"[green]Domain verified:[/green] {result.domain}")
        return
    detail = result.error or (
        f"found {', '.join(result.found)}" if result.found else "no TXT record found"
    )
    console.print(
        Panel(
            f"[yellow]Verification incomplete[/yellow]\n\n"
            f"[bold]Record:[/bold] {result.record_name}\n"
            f"[bold]Result:[/bold] {detail}",
            title="Verification Status",
            border_style="yellow",
        )
    )
    sys.exit(1)


@domain.command("configure")
@click.argument("name")
@click.pass_context
def domain_configure(ctx: click.Context, name: str):
    """Create the DNS records through the provider API."""
    result = _run(ctx, lambda platform: platform.auto_configure_domain(name))
    console.print(f"[green]DNS records configured for[/green] {result.domain}")
    console.print(f"  TXT record: {result.txt_record_id}", style="dim")
    if result.cname_record_id:
        console.print(f"  CNAME record: {result.cname_record_id}", style="dim")
    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")


@domain.command("activate")
@click.argument("name")
@click.pass_context
def domain_activate(ctx: click.Context, name: str):
    """Activate a verified domain."""
    record = _run(ctx, lambda platform: platform.activate_domain(name))
    console.print(f"[green]Domain active:[/green] {record.name}")


@domain.command("reset")
@click.argument("name")
@click.pass_context
def domain_reset(ctx: click.Context, name: str):
    """Move a domain in error back to pending."""
    record = _run(ctx, lambda platform: platform.reset_domain(name))
    console.print(f"[green]Domain reset:[/green] {record.name} ({record.status.value})")


@domain.command("remove")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def domain_remove(ctx: click.Context, name: str, yes: bool):
    """Remove a registered domain. Issued certificates are kept."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{name}'?"):
        console.print("[dim]Cancelled[/dim]")
        return
    _run(ctx, lambda platform: platform.delete_domain(name))
    console.print(f"[green]Domain removed:[/green] {name}")


@domain.command("dns")
@click.argument("name")
@click.pass_context
def domain_dns(ctx: click.Context, name: str):
    """Show what public DNS currently answers for a domain."""
    cfg = get_config()
    inspector = DNSInspector(
        nameservers=cfg.dns.dns_nameservers,
        timeout=cfg.dns.dns_timeout,
        tries=cfg.dns.dns_tries,
    )

    async def lookup() -> tuple[list[str], str | None]:
        txt = await inspector.lookup_txt(challenge_name(name))
        cname = await inspector.lookup_cname(name)
        return txt, cname

    try:
        txt, cname = asyncio.run(lookup())
    except GlinrError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        sys.exit(1)

    table = Table(title=f"DNS for {name}")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Value")
    table.add_row("TXT", challenge_name(name), "\n".join(txt) or "[dim]none[/dim]")
    table.add_row("CNAME", name, cname or "[dim]none[/dim]")
    console.print(table)
    if cname and cname != cfg.dns.public_edge_host:
        console.print(f"[yellow]CNAME does not point to {cfg.dns.public_edge_host}[/yellow]")


# Certificates


def _certificate_table(certificates: list[Certificate], title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Domain", style="cyan")
    table.add_column("Status")
    table.add_column("Expires")
    table.add_column("Last Issued")
    table.add_column("Error", style="red")
    for certificate in certificates:
        table.add_row(
            str(certificate.id),
            certificate.domain,
            _colored(certificate.status),
            _format_time(certificate.expires_at),
            _format_time(certificate.last_issued_at),
            certificate.error or "",
        )
    return table


@main.group()
def cert():
    """Issue, renew and inspect TLS certificates."""


@cert.command("issue")
@click.argument("domain_name")
@click.option("--email", "-e", help="ACME contact email (default: GLINR_ACME_EMAIL)")
@click.pass_context
def cert_issue(ctx: click.Context, domain_name: str, email: str | None):
    """Issue a certificate for a verified domain."""
    certificate = _run(ctx, lambda platform: platform.issue_certificate(domain_name, email))
    if certificate.status == CertificateStatus.FAILED:
        console.print(f"[red]Certificate issuance failed:[/red] {certificate.error}")
        sys.exit(1)
    console.print(
        f"[green]Certificate issued[/green] for {certificate.domain}, "
        f"expires {_format_time(certificate.expires_at)}"
    )


@cert.command("show")
@click.argument("domain_name")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cert_show(ctx: click.Context, domain_name: str, json_output: bool):
    """Show the current certificate of a domain."""
    certificate = _run(ctx, lambda platform: platform.get_certificate(domain_name))
    if json_output:
        _print_json(certificate.to_dict())
        return
    console.print(_certificate_table([certificate], f"Certificate: {certificate.domain}"))


@cert.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cert_list(ctx: click.Context, json_output: bool):
    """List all certificates."""
    certificates = _run(ctx, lambda platform: platform.list_certificates())
    if json_output:
        _print_json([c.to_dict() for c in certificates])
        return
    if not certificates:
        console.print("[dim]No certificates[/dim]")
        return
    console.print(_certificate_table(certificates, "Certificates"))


@cert.command("expiring")
@click.option("--days", "-d", type=int, default=30, show_default=True, help="Window in days")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def cert_expiring(ctx: click.Context, days: int, json_output: bool):
    """List issued certificates expiring within the window."""
    certificates = _run(
        ctx, lambda platform: platform.list_expiring_certificates(timedelta(days=days))
    )
    if json_output:
        _print_json([c.to_dict() for c in certificates])
        return
    if not certificates:
        console.print(f"[dim]No certificates expire within {days} days[/dim]")
        return
    console.print(_certificate_table(certificates, f"Expiring within {days} days"))


@cert.command("renew")
@click.argument("domain_name")
@click.pass_context
def cert_renew(ctx: click.Context, domain_name: str):
    """Renew the current certificate of a domain."""
    certificate = _run(ctx, lambda platform: platform.renew_certificate(domain_name))
    if certificate.error:
        console.print(f"[red]Renewal failed:[/red] {certificate.error}")
        sys.exit(1)
    console.print(
        f"[green]Certificate renewed[/green] for {certificate.domain}, "
        f"expires {_format_time(certificate.expires_at)}"
    )


@main.command()
@click.option("--loop", is_flag=True, help="Keep running and scan on the configured interval")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def renew(ctx: click.Context, loop: bool, json_output: bool):
    """Renew every certificate that is close to expiry."""
    if loop:

        async def forever(platform: EdgePlatform) -> None:
            await platform.renewal.start()
            await asyncio.Event().wait()

        console.print("Certificate renewal service running. Press Ctrl+C to stop.", style="dim")
        try:
            _run(ctx, forever)
        except KeyboardInterrupt:
            console.print("\nShutting down...", style="yellow")
        return

    stats = _run(ctx, lambda platform: platform.renewal.run_once())
    if json_output:
        _print_json(stats.to_dict())
    else:
        console.print(
            f"[bold]Scanned:[/bold] {stats.total_scanned}  "
            f"[green]Renewed:[/green] {stats.successful_renewals}  "
            f"[red]Failed:[/red] {stats.failed_renewals}"
        )
        for error in stats.errors:
            console.print(f"  [red]x[/red] {error}")
    if stats.failed_renewals:
        sys.exit(1)


# Proxy


@main.group()
def proxy():
    """Render and apply the reverse proxy configuration."""


@proxy.command("render")
@click.pass_context
def proxy_render(ctx: click.Context):
    """Print the configuration that would be applied."""
    rendered = _run(ctx, lambda platform: platform.reconciler.render())
    click.echo(rendered.content, nl=False)


@proxy.command("reconcile")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def proxy_reconcile(ctx: click.Context, json_output: bool):
    """Rebuild, validate and apply the proxy configuration."""
    result = _run(ctx, lambda platform: platform.reconcile())
    if json_output:
        _print_json(result.to_dict())
        return
    state = "[green]applied[/green]" if result.changed else "[dim]unchanged[/dim]"
    console.print(
        f"Proxy configuration {state}: {result.route_count} route(s), "
        f"{len(result.tls_domains)} TLS domain(s), hash {result.hash[:12]}"
    )


# Routes


def _print_progress(progress: ProvisioningProgress) -> None:
    color = "red" if progress.error else ("green" if progress.succeeded else "yellow")
    console.print(
        Panel(
            f"[bold]Stage:[/bold] {progress.stage.value}\n"
            f"[bold]Domain verified:[/bold] {'Yes' if progress.domain_verified else 'No'}\n"
            f"[bold]Certificate issued:[/bold] {'Yes' if progress.certificate_issued else 'No'}\n"
            f"[bold]Proxy reloaded:[/bold] {'Yes' if progress.proxy_reloaded else 'No'}\n\n"
            f"{progress.message}",
            title=f"Provisioning: {progress.domain}",
            border_style=color,
        )
    )


@main.group()
def route():
    """Manage proxy routes."""


@route.command("add")
@click.argument("service_id", type=int)
@click.argument("domain_name")
@click.argument("port", type=int)
@click.option("--path", help="Path prefix (default: /)")
@click.option("--host", "service_host", help="Upstream host (default: svc-<service_id>)")
@click.option("--tls/--no-tls", default=True, help="Serve over HTTPS once a certificate exists")
@click.option("--auto-verify", is_flag=True, help="Verify the domain in the background")
@click.option("--auto-issue", is_flag=True, help="Issue a certificate in the background")
@click.option("--email", "-e", help="ACME contact email")
@click.pass_context
def route_add(
    ctx: click.Context,
    service_id: int,
    domain_name: str,
    port: int,
    path: str | None,
    service_host: str | None,
    tls: bool,
    auto_verify: bool,
    auto_issue: bool,
    email: str | None,
):
    """Create a route from DOMAIN_NAME to PORT of service SERVICE_ID.

    With --auto-verify or --auto-issue the command stays until provisioning
    of the domain has finished.
    """

    async def action(platform: EdgePlatform) -> tuple[Any, ProvisioningProgress | None]:
        created, progress = await platform.create_tls_route(
            service_id=service_id,
            domain=domain_name,
            port=port,
            path=path,
            tls=tls,
            auto_verify_domain=auto_verify,
            auto_issue_cert=auto_issue,
            email=email,
            service_host=service_host,
        )
        if progress is not None:
            progress = await platform.wait_for_provisioning(domain_name)
        return created, progress

    created, progress = _run(ctx, action)
    console.print(f"[green]Route created:[/green] #{created.id} {created.domain}{created.path or '/'} -> :{created.port}")
    if progress is not None:
        _print_progress(progress)
        if progress.error:
            sys.exit(1)


@route.command("list")
@click.option("--domain", "-d", "domain_name", help="Only routes for this domain")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def route_list(ctx: click.Context, domain_name: str | None, json_output: bool):
    """List routes."""
    routes = _run(ctx, lambda platform: platform.list_routes(domain_name))
    if json_output:
        _print_json([r.to_dict() for r in routes])
        return
    if not routes:
        console.print("[dim]No routes[/dim]")
        return

    table = Table(title="Routes")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Domain", style="cyan")
    table.add_column("Path")
    table.add_column("Upstream")
    table.add_column("TLS", justify="center")
    table.add_column("Certificate", justify="right")
    for item in routes:
        table.add_row(
            str(item.id),
            item.domain,
            item.path or "/",
            f"{item.upstream_host}:{item.port}",
            "[green]Yes[/green]" if item.tls else "No",
            str(item.certificate_id) if item.certificate_id else "-",
        )
    console.print(table)


@route.command("remove")
@click.argument("route_id", type=int)
@click.pass_context
def route_remove(ctx: click.Context, route_id: int):
    """Remove a route. Run 'glinr proxy reconcile' to apply."""
    _run(ctx, lambda platform: platform.delete_route(route_id))
    console.print(f"[green]Route removed:[/green] #{route_id}")


@main.command()
@click.argument("domain_name")
@click.option("--verify/--no-verify", default=True, help="Run DNS verification first")
@click.option("--issue/--no-issue", default=True, help="Issue a certificate")
@click.option("--email", "-e", help="ACME contact email")
@click.pass_context
def provision(ctx: click.Context, domain_name: str, verify: bool, issue: bool, email: str | None):
    """Verify DOMAIN_NAME, issue its certificate and reload the proxy."""

    async def action(platform: EdgePlatform) -> ProvisioningProgress:
        await platform.start_provisioning(
            domain_name, auto_verify=verify, auto_issue=issue, email=email
        )
        return await platform.wait_for_provisioning(domain_name)

    progress = _run(ctx, action)
    _print_progress(progress)
    if progress.error:
        sys.exit(1)


# Configuration


@main.group()
def config():
    """View and validate configuration settings.

    All settings can be configured via environment variables with the
    GLINR_ prefix, or loaded from the file given with --config.
    """


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only one section (dns, cloudflare, acme, proxy, pipeline, storage)")
def config_show(json_output: bool, section: str | None):
    """Show current configuration settings. Secrets are masked."""
    display = get_config().to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        _print_json(display)
        return

    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")
        for key, value in settings.items():
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, f"GLINR_{key.upper()}")
        console.print(table)
        console.print()


@config.command("validate")
@click.pass_context
def config_validate(ctx: click.Context):
    """Validate current configuration."""
    if not ctx.obj.get("config_file"):
        clear_config()

    try:
        cfg = get_config()
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    errors: list[str] = []
    warnings: list[str] = []

    if not cfg.acme.acme_email:
        warnings.append("acme_email is not set; every issuance must pass an email")
    if cfg.cloudflare.cloudflare_api_token is None:
        warnings.append("cloudflare_api_token is not set; DNS auto-configuration is disabled")
    if cfg.pipeline.verify_attempts * cfg.pipeline.verify_backoff_step <= 0:
        warnings.append("verification retries do not wait for DNS propagation")
    if cfg.acme.renew_before_days >= 90:
        errors.append(
            f"renew_before_days ({cfg.acme.renew_before_days}) must be shorter than a certificate lifetime"
        )
    if cfg.acme.acme_timeout <= 0 or cfg.proxy.proxy_timeout <= 0 or cfg.dns.dns_timeout <= 0:
        errors.append("timeouts must be positive")

    if errors:
        console.print("[red bold]Configuration Errors:[/red bold]")
        for error in errors:
            console.print(f"  [red]x[/red] {error}")
    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning}")

    if errors:
        console.print("[red]ERROR - Configuration has errors[/red]")
        sys.exit(1)
    console.print("[green]OK - Configuration is valid[/green]")


if __name__ == "__main__":
    main()
