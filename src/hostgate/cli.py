"""Hostgate CLI - operator commands for tenant custom domains."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from hostgate import __version__
from hostgate.core.config import HostgateConfig, clear_config, flatten_config, get_config
from hostgate.core.errors import HostgateError
from hostgate.core.logging import configure_logging
from hostgate.lifecycle.factory import build_lifecycle
from hostgate.lifecycle.machine import DomainLifecycle
from hostgate.tenants.models import TenantRecord

console = Console()


def _load_config(ctx: click.Context) -> HostgateConfig:
    if ctx.obj.get("config") is None:
        clear_config()
        ctx.obj["config"] = get_config(ctx.obj.get("config_file"))
    return ctx.obj["config"]


def _print_error(e: HostgateError) -> None:
    console.print(f"[red]Error:[/red] {escape(e.message)}")
    for tip in e.troubleshooting:
        console.print(f"  [yellow]-[/yellow] {escape(tip)}")
    for key, value in e.details.items():
        if key in ("stdout", "stderr") and value:
            console.print(Panel(escape(str(value).strip()), title=key, border_style="dim"))
        elif isinstance(value, list):
            for item in value:
                console.print(f"  [dim]-[/dim] {escape(str(item))}")
        elif value:
            console.print(f"  [dim]{key}: {escape(str(value))}[/dim]")


def _run_tenant_op(
    ctx: click.Context,
    tenant_id: str,
    op: Callable[[DomainLifecycle, str], Awaitable[Any]],
) -> Any:
    """Run a lifecycle operation for a tenant, acting as --actor or the tenant owner."""
    config = _load_config(ctx)

    async def runner() -> Any:
        lifecycle = build_lifecycle(config)
        try:
            actor = ctx.obj.get("actor")
            if not actor:
                record = await lifecycle.store.get(tenant_id)
                actor = record.owner_id if record else ""
            return await op(lifecycle, actor)
        finally:
            await lifecycle.admission.limiter.close()
            if lifecycle.admission.churn_limiter is not None:
                await lifecycle.admission.churn_limiter.close()

    try:
        return asyncio.run(runner())
    except HostgateError as e:
        _print_error(e)
        sys.exit(1)


def _emit_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def _status_style(value: str | None) -> str:
    styles = {
        "ACTIVE": "green",
        "VERIFIED": "green",
        "PENDING": "yellow",
        "VERIFYING": "yellow",
        "REQUESTING": "yellow",
        "FAILED": "red",
        "EXPIRED": "red",
    }
    if value is None:
        return "[dim]-[/dim]"
    return f"[{styles.get(value, 'white')}]{value}[/{styles.get(value, 'white')}]"


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--actor",
    envvar="HOSTGATE_ACTOR",
    help="Actor id to act as (defaults to the tenant owner)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, actor: str | None, verbose: bool):
    """Hostgate - custom domains, DNS verification and TLS for tenants."""
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["actor"] = actor
    ctx.obj["config"] = None
    configure_logging("debug" if verbose else "warning")


@main.command()
def version():
    """Show version."""
    console.print(f"hostgate {__version__}")


@main.command()
@click.option("--host", help="Bind address (overrides config)")
@click.option("--port", type=int, help="Bind port (overrides config)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Run the HTTP API."""
    from hostgate.server.main import run_server

    config = _load_config(ctx)
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    configure_logging(config.logging.level, config.logging.json_output)

    console.print(
        Panel(
            f"[bold]Listening:[/bold] http://{config.server.host}:{config.server.port}\n"
            f"[bold]Platform:[/bold] {config.platform.domain}",
            title="Hostgate",
            border_style="green",
        )
    )
    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        console.print("[green]Server stopped.[/green]")


@main.group()
def config():
    """View and validate configuration settings.

    All settings can be configured via environment variables with the
    HOSTGATE_ prefix (HOSTGATE_SECTION__FIELD) or a YAML/TOML file.
    """


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--section", "-s", help="Show only one section (platform, dns, certbot, ...)")
@click.pass_context
def config_show(ctx: click.Context, json_output: bool, section: str | None):
    """Show current configuration settings."""
    display = _load_config(ctx).to_display_dict()

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        _emit_json(display)
        return

    for section_name, settings in display.items():
        table = Table(title=section_name.replace("_", " ").title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in flatten_config(settings).items():
            env_var = f"HOSTGATE_{section_name.upper()}__{key.upper()}"
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, env_var)

        console.print(table)
        console.print()


@config.command("validate")
@click.pass_context
def config_validate(ctx: click.Context):
    """Validate configuration and warn about risky settings."""
    try:
        cfg = _load_config(ctx)
    except Exception as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    warnings = []
    if cfg.rate_limit.backend == "memory":
        warnings.append("rate_limit.backend is 'memory'; counts are per process only")
    if not cfg.server.cron_secret:
        warnings.append("server.cron_secret is unset; sweep endpoints are disabled")
    if cfg.platform.domain in ("platform.example", ""):
        warnings.append("platform.domain is still the placeholder value")

    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        console.print()
        console.print("[green]OK - Configuration is valid (with warnings)[/green]")
    else:
        console.print("[green]OK - Configuration is valid[/green]")


@main.group()
def tenant():
    """Manage tenant records in the local store."""


@tenant.command("add")
@click.argument("tenant_id")
@click.option("--slug", required=True, help="DNS-safe tenant slug")
@click.option("--owner", required=True, help="Owner actor id")
@click.option("--email", help="Contact email for certificate registration")
@click.option("--plan", default="ENTERPRISE", show_default=True, help="Subscription plan")
@click.option("--status", "sub_status", default="ACTIVE", show_default=True, help="Subscription status")
@click.pass_context
def tenant_add(
    ctx: click.Context,
    tenant_id: str,
    slug: str,
    owner: str,
    email: str | None,
    plan: str,
    sub_status: str,
):
    """Add or update a tenant record."""
    from hostgate.lifecycle.factory import create_store

    store = create_store(_load_config(ctx))

    async def add() -> TenantRecord:
        record = await store.get(tenant_id)
        if record is None:
            record = TenantRecord(tenant_id=tenant_id, slug=slug, owner_id=owner)
        record.slug = slug
        record.owner_id = owner
        record.contact_email = email or record.contact_email
        record.subscription_plan = plan.upper()
        record.subscription_status = sub_status.upper()
        await store.save(record)
        return record

    record = asyncio.run(add())
    console.print(
        f"[green]Tenant saved:[/green] {record.tenant_id} "
        f"(slug={record.slug}, plan={record.subscription_plan})"
    )


@tenant.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def tenant_list(ctx: click.Context, json_output: bool):
    """List tenants and their domain state."""
    from hostgate.lifecycle.factory import create_store

    records = asyncio.run(create_store(_load_config(ctx)).list_all())

    if json_output:
        _emit_json([r.to_dict() for r in records])
        return

    if not records:
        console.print("[dim]No tenants[/dim]")
        return

    table = Table(title="Tenants")
    table.add_column("Tenant", style="cyan")
    table.add_column("Slug")
    table.add_column("Custom Domain")
    table.add_column("Domain", justify="center")
    table.add_column("SSL", justify="center")
    table.add_column("Expiry")

    for r in records:
        table.add_row(
            r.tenant_id,
            r.slug,
            r.custom_domain or "[dim]-[/dim]",
            _status_style(r.custom_domain_status.value),
            _status_style(r.ssl_certificate_status.value),
            r.ssl_certificate_expiry.strftime("%Y-%m-%d") if r.ssl_certificate_expiry else "-",
        )
    console.print(table)


@main.group()
def domain():
    """Claim, verify and remove custom domains.

    Examples:

        hostgate domain claim t-1 shop.mycompany.com

        hostgate domain verify t-1

        hostgate domain status t-1
    """


@domain.command("claim")
@click.argument("tenant_id")
@click.argument("domain_name")
@click.pass_context
def domain_claim(ctx: click.Context, tenant_id: str, domain_name: str):
    """Claim a custom domain for a tenant and print the DNS records to set."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.claim_domain(tenant_id, domain_name, actor)
    )
    cname = result["dns_instructions"]["cname"]
    txt = result["dns_instructions"]["txt"]
    console.print(
        Panel(
            f"[green]Domain claimed![/green]\n\n"
            f"[bold]Domain:[/bold] {result['domain']}\n"
            f"[bold]Status:[/bold] {result['status']}\n\n"
            f"[yellow]Configure these DNS records:[/yellow]\n\n"
            f"1. [bold]CNAME Record[/bold]\n"
            f"   Name: {cname['host']}\n"
            f"   Value: {cname['value']}\n\n"
            f"2. [bold]TXT Record[/bold]\n"
            f"   Name: {txt['host']}\n"
            f"   Value: {txt['value']}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]hostgate domain verify {tenant_id}[/cyan]",
            title="Custom Domain",
            border_style="green",
        )
    )


@domain.command("verify")
@click.argument("tenant_id")
@click.pass_context
def domain_verify(ctx: click.Context, tenant_id: str):
    """Verify DNS records for the tenant's domain."""
    result = _run_tenant_op(ctx, tenant_id, lambda lc, actor: lc.verify_domain(tenant_id, actor))

    if result["success"]:
        console.print(
            Panel(
                f"[green]{result['message']}[/green]\n\n"
                f"[bold]Domain:[/bold] {result['domain']}\n"
                f"[bold]Status:[/bold] {result['status']}",
                title="Verification",
                border_style="green",
            )
        )
        return

    verification = result["verification"]
    cname_status = "[green]OK[/green]" if verification["cname"]["valid"] else "[red]FAIL[/red]"
    txt_status = "[green]OK[/green]" if verification["txt"]["valid"] else "[red]FAIL[/red]"
    console.print(
        Panel(
            f"[red]{result['message']}[/red]\n\n"
            f"CNAME Record: {cname_status}\n"
            f"TXT Record: {txt_status}\n\n"
            + "\n".join(f"- {tip}" for tip in result["troubleshooting"]),
            title="Verification Failed",
            border_style="red",
        )
    )
    sys.exit(1)


@domain.command("status")
@click.argument("tenant_id")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def domain_status(ctx: click.Context, tenant_id: str, json_output: bool):
    """Show domain and certificate state for a tenant."""
    view = _run_tenant_op(ctx, tenant_id, lambda lc, actor: lc.get_domain(tenant_id, actor))

    if json_output:
        _emit_json(view)
        return

    table = Table(title=f"Tenant {tenant_id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Platform URL", view["platform_url"])
    table.add_row("Custom domain", view["custom_domain"] or "[dim]none[/dim]")
    table.add_row("Verified", "[green]Yes[/green]" if view["custom_domain_verified"] else "No")
    table.add_row("Domain status", _status_style(view["custom_domain_status"]))
    table.add_row("SSL status", _status_style(view["ssl_certificate_status"]))
    table.add_row("SSL expiry", view["ssl_certificate_expiry"] or "-")
    table.add_row("Last checked", view["ssl_last_checked_at"] or "-")
    if view["ssl_last_renewal_failed"]:
        table.add_row("Last renewal", f"[red]failed[/red] {view['ssl_last_error'] or ''}")
    table.add_row("Plan", f"{view['subscription_plan']} ({view['subscription_status']})")
    console.print(table)


@domain.command("remove")
@click.argument("tenant_id")
@click.option("--teardown", is_flag=True, help="Also delete the certificate")
@click.confirmation_option(prompt="Remove the custom domain?")
@click.pass_context
def domain_remove(ctx: click.Context, tenant_id: str, teardown: bool):
    """Remove the tenant's custom domain."""
    result = _run_tenant_op(
        ctx,
        tenant_id,
        lambda lc, actor: lc.remove_domain(tenant_id, actor, teardown=teardown),
    )
    cleanup = result["cleanup"]
    console.print(f"[green]Removed:[/green] {result['removed_domain']}")
    if cleanup["proxy_removed"]:
        console.print("[dim]Proxy config removed[/dim]")
    if "warning" in cleanup:
        console.print(f"[yellow]Warning:[/yellow] {escape(cleanup['warning'])}")
    if teardown:
        _emit_json(cleanup)


@main.group()
def ssl():
    """Request, renew and revoke TLS certificates."""


@ssl.command("request")
@click.argument("tenant_id")
@click.option("--email", help="ACME contact email (defaults to the tenant's)")
@click.pass_context
def ssl_request(ctx: click.Context, tenant_id: str, email: str | None):
    """Request a certificate for a verified domain."""
    console.print("Requesting certificate (this can take up to two minutes)...", style="yellow")
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.request_certificate(tenant_id, actor, email=email)
    )
    console.print(
        f"[green]{result['message']}[/green] "
        f"(expires {result['expiry']}, {result['days_until_expiry']} days)"
    )


@ssl.command("renew")
@click.argument("tenant_id")
@click.pass_context
def ssl_renew(ctx: click.Context, tenant_id: str):
    """Renew the tenant's certificate."""
    result = _run_tenant_op(ctx, tenant_id, lambda lc, actor: lc.renew_certificate(tenant_id, actor))
    console.print(f"[green]{result['message']}[/green] (expires {result['expiry']})")


@ssl.command("revoke")
@click.argument("tenant_id")
@click.confirmation_option(prompt="Revoke and delete the certificate?")
@click.pass_context
def ssl_revoke(ctx: click.Context, tenant_id: str):
    """Delete the tenant's certificate."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.revoke_certificate(tenant_id, actor)
    )
    console.print(f"[green]{result['message']}[/green]")
    if "warning" in result:
        console.print(f"[yellow]Warning:[/yellow] {result['warning']}")


@ssl.command("status")
@click.argument("tenant_id")
@click.pass_context
def ssl_status(ctx: click.Context, tenant_id: str):
    """Refresh and show certificate status."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.get_certificate_status(tenant_id, actor)
    )
    _emit_json(result)


@ssl.command("inventory")
@click.pass_context
def ssl_inventory(ctx: click.Context):
    """Show the certbot installation and the certificates it manages."""
    inventory = _run_tenant_op(ctx, "", lambda lc, _actor: lc.certificates.inventory())

    if not inventory["installed"]:
        console.print("[red]certbot is not installed or cannot be run[/red]")
        sys.exit(1)

    console.print(f"certbot {inventory['version']}")
    if not inventory["certificates"]:
        console.print("[dim]No certificates[/dim]")
        return
    for name in inventory["certificates"]:
        console.print(f"  [green]-[/green] {name}")


@main.group()
def proxy():
    """Manage the tenant's reverse proxy config."""


@proxy.command("create")
@click.argument("tenant_id")
@click.pass_context
def proxy_create(ctx: click.Context, tenant_id: str):
    """Write and activate the initial proxy config."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.create_proxy_config(tenant_id, actor)
    )
    console.print(f"[green]{result['message']}[/green] -> {result['config_path']}")


@proxy.command("update")
@click.argument("tenant_id")
@click.pass_context
def proxy_update(ctx: click.Context, tenant_id: str):
    """Rewrite the proxy config with HTTPS."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.update_proxy_config(tenant_id, actor)
    )
    console.print(f"[green]{result['message']}[/green] -> {result['config_path']}")


@proxy.command("remove")
@click.argument("tenant_id")
@click.pass_context
def proxy_remove(ctx: click.Context, tenant_id: str):
    """Remove the proxy config and reload."""
    result = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.remove_proxy_config(tenant_id, actor)
    )
    console.print(f"[green]{result['message']}[/green]")


@proxy.command("status")
@click.argument("tenant_id")
@click.pass_context
def proxy_status(ctx: click.Context, tenant_id: str):
    """Show whether a proxy config exists."""
    result = _run_tenant_op(ctx, tenant_id, lambda lc, actor: lc.get_proxy_config(tenant_id, actor))
    _emit_json(result)


@proxy.command("preview")
@click.argument("tenant_id")
@click.option("--tls/--no-tls", default=None, help="Force the HTTPS or HTTP-only shape")
@click.pass_context
def proxy_preview(ctx: click.Context, tenant_id: str, tls: bool | None):
    """Print the config that would be written, without writing it."""
    text = _run_tenant_op(
        ctx, tenant_id, lambda lc, actor: lc.preview_proxy_config(tenant_id, actor, with_tls=tls)
    )
    click.echo(text, nl=False)


@main.group()
def sweep():
    """Run the periodic DNS and certificate sweeps once."""


@sweep.command("dns")
@click.pass_context
def sweep_dns(ctx: click.Context):
    """Re-check DNS for every unverified domain."""
    summary = _run_tenant_op(ctx, "", lambda lc, _actor: lc.sweep_pending_domains())
    _print_sweep("DNS Sweep", summary, ("total", "verified", "failed", "pending", "errors"))


@sweep.command("ssl")
@click.pass_context
def sweep_ssl(ctx: click.Context):
    """Renew certificates that are close to expiry."""
    summary = _run_tenant_op(ctx, "", lambda lc, _actor: lc.sweep_certificate_renewals())
    _print_sweep("Renewal Sweep", summary, ("total", "renewed", "valid", "failed", "proxy_reloaded"))


def _print_sweep(title: str, summary: dict[str, Any], keys: tuple[str, ...]) -> None:
    table = Table(title=title)
    for key in keys:
        table.add_column(key.replace("_", " ").title(), justify="center")
    table.add_row(*(str(summary[key]) for key in keys))
    console.print(table)
    for entry in summary["results"]:
        if "error" in entry:
            console.print(f"  [red]x[/red] {entry['domain']}: {entry['error']}")


if __name__ == "__main__":
    main()
