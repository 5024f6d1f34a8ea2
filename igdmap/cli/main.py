"""Command line interface for gateway discovery and port mapping."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from igdmap.config.config import init_config
from igdmap.exceptions import IGDError
from igdmap.logging_config import LoggingContext, setup_logging
from igdmap.models import AddMappingOptions, Config, LogLevel, MappingOptions
from igdmap.upnp.gateway import Gateway
from igdmap.upnp.http import HttpClient
from igdmap.upnp.session import discover_gateways

logger = logging.getLogger(__name__)

T = TypeVar("T")

NO_GATEWAY_MSG = "No UPnP Internet Gateway Device found"


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine, turning igdmap errors into click errors."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except IGDError as e:
        raise click.ClickException(str(e)) from e


async def _with_gateway(
    config: Config,
    url: str | None,
    timeout: float | None,
    operation: Callable[[Gateway], Awaitable[T]],
) -> T:
    """Connect to ``url`` or the first discovered gateway and run ``operation``."""
    http = HttpClient(timeout=config.http.request_timeout)
    operation_name = operation.__name__.lstrip("_")
    try:
        with LoggingContext(operation_name, logger=logger):
            return await _run_operation(config, url, timeout, operation, http)
    finally:
        await http.close()


async def _run_operation(
    config: Config,
    url: str | None,
    timeout: float | None,
    operation: Callable[[Gateway], Awaitable[T]],
    http: HttpClient,
) -> T:
    if url:
        gateway = await Gateway.connect(
            url,
            services=config.discovery.accepted_services,
            http=http,
        )
    else:
        gateways = await discover_gateways(config, timeout, http=http)
        if not gateways:
            raise click.ClickException(NO_GATEWAY_MSG)
        gateway = gateways[0]
    return await operation(gateway)


def gateway_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add the --url and --timeout options shared by gateway commands."""
    func = click.option(
        "--timeout",
        "-t",
        type=float,
        help="Discovery duration in seconds",
    )(func)
    return click.option(
        "--url",
        "-u",
        help="Device description URL (skips discovery)",
    )(func)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Lower the configured log level one step per use (INFO to DEBUG)",
)
@click.pass_context
def cli(ctx, config, verbose):
    """igdmap - UPnP Internet Gateway Device port mapping."""
    ctx.ensure_object(dict)
    try:
        config_manager = init_config(config)
    except IGDError as e:
        raise click.ClickException(str(e)) from e

    cfg = config_manager.config
    observability = cfg.observability
    if verbose:
        levels = list(LogLevel)
        index = max(levels.index(observability.log_level) - verbose, 0)
        observability = observability.model_copy(update={"log_level": levels[index]})
    setup_logging(observability)

    ctx.obj["config"] = cfg


@cli.command("discover")
@click.option(
    "--timeout",
    "-t",
    type=float,
    help="Discovery duration in seconds",
)
@click.pass_context
def discover(ctx, timeout) -> None:
    """Discover gateways on every local network interface."""
    config: Config = ctx.obj["config"]
    console = Console()

    async def _discover() -> list[Gateway]:
        http = HttpClient(timeout=config.http.request_timeout)
        try:
            return await discover_gateways(config, timeout, http=http)
        finally:
            await http.close()

    console.print("[bold]Searching for gateways...[/bold]")
    gateways = _run(_discover())
    if not gateways:
        console.print(f"[yellow]{NO_GATEWAY_MSG}[/yellow]")
        return

    table = Table(title="Gateways")
    table.add_column("Description URL", style="cyan")
    table.add_column("Interface", style="magenta")
    table.add_column("Local Address", style="magenta")
    table.add_column("Service", style="green")
    table.add_column("Control URL", style="blue")
    for gateway in gateways:
        info = gateway.info
        table.add_row(
            gateway.url,
            gateway.interface.name or "-",
            gateway.interface.address,
            info.service_type if info else "-",
            info.control_url if info else "-",
        )
    console.print(table)


@cli.command("external-ip")
@gateway_options
@click.pass_context
def external_ip(ctx, url, timeout) -> None:
    """Show the gateway's external IP address."""
    config: Config = ctx.obj["config"]
    console = Console()

    async def _external_ip(gateway: Gateway) -> str | None:
        return await gateway.get_external_ip()

    address = _run(_with_gateway(config, url, timeout, _external_ip))
    if address:
        console.print(f"[green]External IP:[/green] {address}")
    else:
        console.print("[yellow]External IP:[/yellow] Not reported by gateway")


@cli.command("mappings")
@gateway_options
@click.pass_context
def mappings(ctx, url, timeout) -> None:
    """List the gateway's port mappings."""
    config: Config = ctx.obj["config"]
    console = Console()

    async def _mappings(gateway: Gateway):
        return await gateway.get_mappings()

    entries = _run(_with_gateway(config, url, timeout, _mappings))
    if not entries:
        console.print("[dim]No port mappings[/dim]")
        return

    table = Table(title="Port Mappings")
    table.add_column("Protocol", style="cyan")
    table.add_column("Public", style="yellow")
    table.add_column("Private", style="magenta")
    table.add_column("Enabled", style="green")
    table.add_column("Description")
    table.add_column("TTL", style="blue")
    for entry in entries:
        table.add_row(
            entry.protocol.upper(),
            f"{entry.public.host or '*'}:{entry.public.port}",
            f"{entry.private.host}:{entry.private.port}",
            "yes" if entry.enabled else "no",
            entry.description,
            f"{entry.ttl}s" if entry.ttl else "permanent",
        )
    console.print(table)


@cli.command("map")
@click.argument("port", type=click.IntRange(1, 65535))
@click.option(
    "--external-port",
    "-e",
    type=click.IntRange(1, 65535),
    help="External port (defaults to PORT)",
)
@click.option(
    "--protocol",
    "-p",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    help="Protocol to forward",
)
@click.option("--description", "-d", help="Mapping description")
@click.option("--ttl", type=click.IntRange(min=0), help="Lease duration in seconds (0 for permanent)")
@click.option("--internal-host", help="Internal host (defaults to the local interface address)")
@click.option("--no-port-scan", is_flag=True, help="Skip the local reachability check")
@gateway_options
@click.pass_context
def map_port(
    ctx,
    port,
    external_port,
    protocol,
    description,
    ttl,
    internal_host,
    no_port_scan,
    url,
    timeout,
) -> None:
    """Forward external PORT to this host."""
    config: Config = ctx.obj["config"]
    console = Console()

    overrides: dict[str, Any] = {
        "protocol": protocol,
        "description": description,
        "ttl": ttl,
        "internal_host": internal_host,
    }
    values = config.mapping.model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    if no_port_scan:
        values["port_scan"] = False
    options = AddMappingOptions.model_validate(values)
    remote_port = external_port or port

    async def _map(gateway: Gateway) -> None:
        await gateway.add_mapping(port, remote_port, options)

    _run(_with_gateway(config, url, timeout, _map))
    console.print(
        f"[green]Mapped[/green] {options.protocol.value} {remote_port} -> "
        f"{options.internal_host or 'local'}:{port}"
    )


@cli.command("unmap")
@click.argument("port", type=click.IntRange(1, 65535))
@click.option(
    "--external-port",
    "-e",
    type=click.IntRange(1, 65535),
    help="External port (defaults to PORT)",
)
@click.option(
    "--protocol",
    "-p",
    type=click.Choice(["tcp", "udp"], case_sensitive=False),
    help="Forwarded protocol",
)
@click.option("--internal-host", help="Internal host (defaults to the local interface address)")
@gateway_options
@click.pass_context
def unmap_port(ctx, port, external_port, protocol, internal_host, url, timeout) -> None:
    """Remove the mapping of external PORT."""
    config: Config = ctx.obj["config"]
    console = Console()

    values = config.mapping.model_dump(
        include={"internal_host", "remote_host", "protocol", "description"}
    )
    if protocol is not None:
        values["protocol"] = protocol
    if internal_host is not None:
        values["internal_host"] = internal_host
    options = MappingOptions.model_validate(values)
    remote_port = external_port or port

    async def _unmap(gateway: Gateway) -> None:
        await gateway.delete_mapping(port, remote_port, options)

    _run(_with_gateway(config, url, timeout, _unmap))
    console.print(f"[green]Removed[/green] {options.protocol.value} mapping of port {remote_port}")


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
