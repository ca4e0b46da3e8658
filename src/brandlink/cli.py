"""Brandlink CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from brandlink.domains.errors import DomainError

console = Console()

STATUS_COLORS = {
    "active": "green",
    "certificate_pending": "cyan",
    "ssl_failed": "red",
    "pending_verification": "yellow",
    "verification_failed": "red",
}


def _configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper())),
    )


def _fail(error: DomainError | Exception) -> None:
    message = error.message if isinstance(error, DomainError) else str(error)
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


@click.group()
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False),
    envvar="BRANDLINK_CONFIG_FILE",
    help="YAML or TOML config file",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default from BRANDLINK_LOG_LEVEL)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, log_level: str | None, verbose: bool):
    """Brandlink - branded custom domains for short links.

    Examples:

        brandlink domain add example.com --subdomain links

        brandlink domain verify links.example.com

        brandlink serve --port 8000

    Use 'brandlink COMMAND --help' for more info on specific commands.
    """
    from brandlink.core.config import clear_config, get_config

    if config_file:
        os.environ["BRANDLINK_CONFIG_FILE"] = config_file
        clear_config()

    try:
        cfg = get_config()
        effective_log_level = "debug" if verbose else (log_level or cfg.log_level)
        _configure_logging(effective_log_level)
    except (ValueError, AttributeError) as e:
        console.print(f"[red]Failed to load config:[/red] {e}")
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file


@main.command()
def version():
    """Show version information."""
    from brandlink import __version__

    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


@main.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", "-p", type=int, default=None, help="Port (default from config)")
def serve(host: str | None, port: int | None):
    """Run the domain API server."""
    import uvicorn

    from brandlink.core.config import get_config
    from brandlink.domains import DomainManager
    from brandlink.server import create_app

    cfg = get_config()
    server_settings = cfg.server
    if not server_settings.api_tokens:
        console.print(
            "[yellow]No API tokens configured (BRANDLINK_API_TOKENS); "
            "every request will be rejected.[/yellow]"
        )

    manager = DomainManager.from_settings(cfg.domains)
    app = create_app(manager, server_settings.api_tokens)

    bind_host = host or server_settings.host
    bind_port = port or server_settings.port
    console.print(f"Serving domain API on [cyan]http://{bind_host}:{bind_port}[/cyan]")
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=cfg.log_level.lower())


@main.group()
def config():
    """View and export configuration settings.

    All settings can be configured via environment variables with the
    BRANDLINK_ prefix or a YAML/TOML file passed with --config.

    Examples:

        brandlink config show            # Show all config settings

        brandlink config export          # Export as env vars

        brandlink config validate        # Validate current config
    """
    pass


@config.command("show")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--flat", is_flag=True, help="Output as flat key = value lines")
@click.option("--section", "-s", help="Show only specific section (domains, api, server)")
def config_show(json_output: bool, flat: bool, section: str | None):
    """Show current configuration settings.

    Values come from the config file, environment variables or defaults.
    Secrets are masked.
    """
    from brandlink.core.config import flatten_config, get_config

    try:
        display = get_config().to_display_dict()
    except (ValueError, FileNotFoundError) as e:
        _fail(e)
        return

    if section:
        section = section.lower()
        if section not in display:
            console.print(f"[red]Unknown section:[/red] {section}")
            console.print(f"[dim]Available: {', '.join(display.keys())}[/dim]")
            sys.exit(1)
        display = {section: display[section]}

    if json_output:
        click.echo(json.dumps(display, indent=2))
        return

    if flat:
        for key, value in flatten_config(display).items():
            console.print(f"{key} = {value}")
        return

    console.print("[bold]Current Configuration[/bold]\n")
    for section_name, settings in display.items():
        table = Table(title=section_name.title())
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Env Variable", style="dim")

        for key, value in settings.items():
            value_str = str(value) if value is not None else "[dim]None[/dim]"
            table.add_row(key, value_str, f"BRANDLINK_{key.upper()}")

        console.print(table)
        console.print()


@config.command("export")
@click.option("--shell", type=click.Choice(["bash", "powershell", "cmd"]), default="bash", help="Shell format")
def config_export(shell: str):
    """Export current configuration as environment variables."""
    from brandlink.core.config import get_config

    env_dict = get_config().to_env_dict()

    console.print(f"# Brandlink Configuration Export ({shell})")
    for key, value in env_dict.items():
        if shell == "bash":
            console.print(f"export {key}='{value}'", markup=False)
        elif shell == "powershell":
            console.print(f"$env:{key}='{value}'", markup=False)
        elif shell == "cmd":
            console.print(f"set {key}={value}", markup=False)


@config.command("validate")
def config_validate():
    """Validate current configuration."""
    from pydantic import ValidationError as SettingsError

    from brandlink.core.config import clear_config, get_config
    from brandlink.domains.hostnames import is_valid_hostname

    clear_config()

    try:
        cfg = get_config()
        domains = cfg.domains
        server = cfg.server
    except (SettingsError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(1)

    errors = []
    warnings = []

    if not is_valid_hostname(domains.cname_target.lower().rstrip(".")):
        errors.append(f"cname_target ({domains.cname_target}) is not a valid hostname")
    if domains.dns_timeout > 30:
        warnings.append(f"dns_timeout ({domains.dns_timeout}s) is long, checks may feel stuck")
    if domains.allow_delete_default:
        warnings.append("allow_delete_default is on, tenants may lose their default domain")
    if not server.api_tokens:
        warnings.append("api_tokens is empty, the API server will reject every request")

    if errors:
        console.print("[red bold]Configuration Errors:[/red bold]")
        for error in errors:
            console.print(f"  [red]x[/red] {error}")
        console.print()

    if warnings:
        console.print("[yellow bold]Configuration Warnings:[/yellow bold]")
        for warning in warnings:
            console.print(f"  [yellow]![/yellow] {warning}")
        console.print()

    if not errors and not warnings:
        console.print("[green]OK - Configuration is valid[/green]")
    elif not errors:
        console.print("[green]OK - Configuration is valid (with warnings)[/green]")
    else:
        console.print("[red]ERROR - Configuration has errors[/red]")
        sys.exit(1)


@main.group()
@click.option("--tenant", "-t", envvar="BRANDLINK_TENANT", default="default", help="Tenant id")
@click.option("--storage", default=None, help="Path to domain storage file")
@click.pass_context
def domain(ctx: click.Context, tenant: str, storage: str | None):
    """Manage a tenant's custom domains.

    Custom domains let a tenant shorten links on its own hostname
    (e.g., links.mycompany.com) instead of the shared short domain.

    Examples:

        brandlink domain add example.com --subdomain links

        brandlink domain verify links.example.com

        brandlink domain list

        brandlink domain set-default links.example.com

        brandlink domain remove links.example.com
    """
    ctx.ensure_object(dict)
    ctx.obj["tenant"] = tenant
    ctx.obj["storage"] = storage


def _build_manager(storage: str | None):
    from brandlink.core.config import get_config
    from brandlink.domains import DomainManager

    settings = get_config().domains
    if storage:
        settings = settings.model_copy(update={"storage_path": storage})
    return DomainManager.from_settings(settings)


def _instructions_text(instructions) -> str:
    return (
        f"[bold]Type:[/bold] {instructions.record_type}\n"
        f"[bold]Host:[/bold] {instructions.host}\n"
        f"[bold]Value:[/bold] {instructions.value}\n"
        f"[bold]TTL:[/bold] {instructions.ttl}"
    )


@domain.command("add")
@click.argument("domain_name")
@click.option("--subdomain", "-s", default=None, help="Subdomain in front of the domain")
@click.option("--added-by", default=None, help="Who registers the domain")
@click.pass_context
def domain_add(ctx: click.Context, domain_name: str, subdomain: str | None, added_by: str | None):
    """Register a new custom domain.

    After registration, you'll receive the DNS record to configure.
    """
    asyncio.run(
        _domain_add_async(ctx.obj["tenant"], ctx.obj["storage"], domain_name, subdomain, added_by)
    )


async def _domain_add_async(
    tenant: str,
    storage: str | None,
    domain_name: str,
    subdomain: str | None,
    added_by: str | None,
):
    """Async implementation of domain add command."""
    manager = _build_manager(storage)

    try:
        record = await manager.register_domain(tenant, domain_name, subdomain, added_by=added_by)
    except DomainError as e:
        _fail(e)
        return

    instructions = manager.setup_instructions(record)
    console.print(
        Panel(
            f"[green]Domain registered successfully![/green]\n\n"
            f"[bold]Domain:[/bold] {record.unicode_domain}\n"
            f"[bold]ID:[/bold] {record.id}\n"
            f"[bold]Status:[/bold] Pending verification\n\n"
            f"[yellow]Configure this DNS record:[/yellow]\n\n"
            f"{_instructions_text(instructions)}\n\n"
            f"After configuring DNS, run:\n"
            f"  [cyan]brandlink domain verify {record.full_domain}[/cyan]",
            title="Domain Registration",
            border_style="green",
        )
    )


@domain.command("verify")
@click.argument("ref")
@click.pass_context
def domain_verify(ctx: click.Context, ref: str):
    """Verify DNS records for a domain (by id or hostname)."""
    asyncio.run(_domain_verify_async(ctx.obj["tenant"], ctx.obj["storage"], ref))


async def _domain_verify_async(tenant: str, storage: str | None, ref: str):
    """Async implementation of domain verify command."""
    manager = _build_manager(storage)

    try:
        record = await manager.resolve(tenant, ref)
        console.print(f"Verifying DNS records for [cyan]{record.full_domain}[/cyan]...", style="yellow")
        report = await manager.verify_domain(tenant, record.id, verified_by="cli")
        await manager.drain()
    except DomainError as e:
        _fail(e)
        return

    if report.is_verified:
        console.print(
            Panel(
                f"[green]Domain verified successfully![/green]\n\n"
                f"[bold]Domain:[/bold] {report.domain}\n"
                f"[bold]{report.record_type}:[/bold] [green]Valid[/green] -> {report.expected}\n\n"
                f"Activate it with:\n"
                f"  [cyan]brandlink domain promote {report.domain}[/cyan]",
                title="Verification Successful",
                border_style="green",
            )
        )
        return

    found = ", ".join(report.found) or "none"
    console.print(
        Panel(
            f"[yellow]Verification incomplete[/yellow]\n\n"
            f"[bold]Domain:[/bold] {report.domain}\n"
            f"[bold]Outcome:[/bold] {report.outcome.value}\n"
            f"[bold]Expected:[/bold] {report.expected}\n"
            f"[bold]Found:[/bold] {found}\n\n"
            f"{report.message}",
            title="Verification Status",
            border_style="yellow",
        )
    )
    sys.exit(1)


@domain.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--search", default=None, help="Only hostnames containing this text")
@click.pass_context
def domain_list(ctx: click.Context, json_output: bool, search: str | None):
    """List the tenant's domains."""
    asyncio.run(_domain_list_async(ctx.obj["tenant"], ctx.obj["storage"], json_output, search))


async def _domain_list_async(tenant: str, storage: str | None, json_output: bool, search: str | None):
    """Async implementation of domain list command."""
    manager = _build_manager(storage)
    records = await manager.list_domains(tenant, search=search)

    if json_output:
        click.echo(json.dumps([rec.to_api() for rec in records], indent=2))
        return

    if not records:
        console.print("[dim]No domains registered[/dim]")
        return

    table = Table(title=f"Domains for {tenant}")
    table.add_column("Domain", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Verification")
    table.add_column("Default", justify="center")
    table.add_column("Created At")

    for record in records:
        verification = record.verification_status.value
        if record.is_verified:
            verification = f"[green]{verification}[/green]"
        table.add_row(
            record.unicode_domain,
            record.id[:12],
            record.operational_status.value,
            verification,
            "[green]*[/green]" if record.is_default else "",
            record.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@domain.command("status")
@click.argument("ref")
@click.option("--dns", "include_dns", is_flag=True, help="Also show live DNS records")
@click.pass_context
def domain_status(ctx: click.Context, ref: str, include_dns: bool):
    """Show detailed status for a domain."""
    asyncio.run(_domain_status_async(ctx.obj["tenant"], ctx.obj["storage"], ref, include_dns))


async def _domain_status_async(tenant: str, storage: str | None, ref: str, include_dns: bool):
    """Async implementation of domain status command."""
    manager = _build_manager(storage)

    try:
        record = await manager.resolve(tenant, ref)
        info = await manager.get_domain_info(tenant, record.id, include_dns=include_dns)
    except DomainError as e:
        _fail(e)
        return

    record = info.record
    status_color = STATUS_COLORS.get(info.status, "white")
    content = (
        f"[bold]Domain:[/bold] {record.unicode_domain}\n"
        f"[bold]Status:[/bold] [{status_color}]{info.status}[/{status_color}]\n"
        f"[bold]Verification:[/bold] {record.verification_status.value}\n"
        f"[bold]Default:[/bold] {'Yes' if record.is_default else 'No'}\n"
        f"[bold]Redirect:[/bold] {record.redirect_type}"
    )
    if record.verified_at:
        content += f"\n[bold]Verified At:[/bold] {record.verified_at.strftime('%Y-%m-%d %H:%M')}"
    if record.last_checked_at:
        content += (
            f"\n[bold]Last Check:[/bold] {record.last_checked_at.strftime('%Y-%m-%d %H:%M')}"
            f" ({record.last_outcome})"
        )
    if record.notes:
        content += f"\n[bold]Notes:[/bold] {record.notes}"
    if info.instructions:
        content += f"\n\n[yellow]DNS Setup Required:[/yellow]\n{_instructions_text(info.instructions)}"
    if info.dns:
        for record_type, values in info.dns.items():
            content += f"\n[bold]{record_type.upper()}:[/bold] {', '.join(values) or '-'}"

    console.print(Panel(content, title=f"Domain Status: {record.full_domain}", border_style=status_color))


@domain.command("set-default")
@click.argument("ref")
@click.pass_context
def domain_set_default(ctx: click.Context, ref: str):
    """Make an active domain the tenant's default."""
    asyncio.run(_domain_set_default_async(ctx.obj["tenant"], ctx.obj["storage"], ref))


async def _domain_set_default_async(tenant: str, storage: str | None, ref: str):
    manager = _build_manager(storage)
    try:
        record = await manager.resolve(tenant, ref)
        record = await manager.set_default(tenant, record.id)
    except DomainError as e:
        _fail(e)
        return
    console.print(f"[green]Default domain:[/green] {record.full_domain}")


@domain.command("promote")
@click.argument("ref")
@click.option("--ssl-failed", is_flag=True, help="Record a failed certificate instead of activating")
@click.pass_context
def domain_promote(ctx: click.Context, ref: str, ssl_failed: bool):
    """Activate a verified domain."""
    asyncio.run(_domain_promote_async(ctx.obj["tenant"], ctx.obj["storage"], ref, ssl_failed))


async def _domain_promote_async(tenant: str, storage: str | None, ref: str, ssl_failed: bool):
    manager = _build_manager(storage)
    try:
        record = await manager.resolve(tenant, ref)
        record = await manager.promote_domain(tenant, record.id, ssl_ok=not ssl_failed)
    except DomainError as e:
        _fail(e)
        return
    default = " (default)" if record.is_default else ""
    console.print(
        f"[green]{record.full_domain}[/green] is now {record.operational_status.value}{default}"
    )


@domain.command("settings")
@click.argument("ref")
@click.option("--notes", default=None, help="Free-form notes (max 1000 characters)")
@click.option("--redirect-type", type=click.Choice(["301", "302", "307"]), default=None, help="HTTP redirect status")
@click.pass_context
def domain_settings(ctx: click.Context, ref: str, notes: str | None, redirect_type: str | None):
    """Update a domain's notes or redirect type."""
    asyncio.run(
        _domain_settings_async(
            ctx.obj["tenant"],
            ctx.obj["storage"],
            ref,
            notes,
            int(redirect_type) if redirect_type else None,
        )
    )


async def _domain_settings_async(
    tenant: str, storage: str | None, ref: str, notes: str | None, redirect_type: int | None
):
    manager = _build_manager(storage)
    try:
        record = await manager.resolve(tenant, ref)
        if notes is None:
            record = await manager.update_settings(tenant, record.id, redirect_type=redirect_type)
        else:
            record = await manager.update_settings(
                tenant, record.id, notes=notes, redirect_type=redirect_type
            )
    except DomainError as e:
        _fail(e)
        return
    console.print(f"[green]Updated[/green] {record.full_domain} (redirect {record.redirect_type})")


@domain.command("remove")
@click.argument("ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def domain_remove(ctx: click.Context, ref: str, yes: bool):
    """Remove a registered domain."""
    if not yes and not click.confirm(f"Are you sure you want to remove '{ref}'?"):
        console.print("[dim]Cancelled[/dim]")
        return

    asyncio.run(_domain_remove_async(ctx.obj["tenant"], ctx.obj["storage"], ref))


async def _domain_remove_async(tenant: str, storage: str | None, ref: str):
    """Async implementation of domain remove command."""
    manager = _build_manager(storage)

    try:
        record = await manager.resolve(tenant, ref)
        deleted = await manager.delete_domain(tenant, record.id)
    except DomainError as e:
        _fail(e)
        return

    if deleted:
        console.print(f"[green]Domain removed:[/green] {record.full_domain}")
    else:
        console.print(f"[red]Domain not found:[/red] {ref}")
        sys.exit(1)


@domain.command("info")
@click.argument("domain_name")
@click.pass_context
def domain_info(ctx: click.Context, domain_name: str):
    """Look up live DNS records and the DNS provider of any hostname."""
    asyncio.run(_domain_info_async(ctx.obj["storage"], domain_name))


async def _domain_info_async(storage: str | None, domain_name: str):
    manager = _build_manager(storage)
    try:
        records, providers = await manager.lookup(domain_name)
    except DomainError as e:
        _fail(e)
        return

    table = Table(title=f"DNS for {domain_name}")
    table.add_column("Type", style="cyan")
    table.add_column("Values")
    for record_type, values in records.items():
        table.add_row(record_type.upper(), "\n".join(values) or "[dim]-[/dim]")
    console.print(table)

    names = ", ".join(sorted({p.name for p in providers}))
    console.print(f"[bold]DNS provider:[/bold] {names}")


@domain.command("sweep")
@click.option("--all-tenants", is_flag=True, help="Check unverified domains of every tenant")
@click.pass_context
def domain_sweep(ctx: click.Context, all_tenants: bool):
    """Re-check every unverified domain once."""
    tenant = None if all_tenants else ctx.obj["tenant"]
    asyncio.run(_domain_sweep_async(tenant, ctx.obj["storage"]))


async def _domain_sweep_async(tenant: str | None, storage: str | None):
    manager = _build_manager(storage)
    reports = await manager.verify_pending(tenant)
    await manager.drain()

    if not reports:
        console.print("[dim]No domains awaiting verification[/dim]")
        return

    table = Table(title="Verification Sweep")
    table.add_column("Domain", style="cyan")
    table.add_column("Outcome")
    for report in reports:
        color = "green" if report.is_verified else "yellow"
        table.add_row(report.domain, f"[{color}]{report.outcome.value}[/{color}]")
    console.print(table)


if __name__ == "__main__":
    main()
