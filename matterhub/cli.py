"""
matterhub CLI - run the hub and poke chip-tool by hand.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import PAIRING_METHODS, Config, get_config, set_config
from .chiptool.commands import build_discover_args, build_read_args
from .chiptool.parsers import is_raw_value, parse_attribute_value, parse_discovery_output
from .chiptool.runner import ProcessRunner

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Data directory')
@click.pass_context
def main(ctx, verbose, data_dir):
    """matterhub - WebSocket bridge to chip-tool"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)
    if data_dir:
        set_config(Config.load(Path(data_dir)))


@main.command()
@click.option('--host', '-h', default=None, help='Host to bind to')
@click.option('--port', '-p', default=None, type=int, help='Port to bind to')
@click.option('--chip-tool', 'chip_tool', default=None, help='Path to the chip-tool binary')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(host: Optional[str], port: Optional[int], chip_tool: Optional[str], reload: bool):
    """Start the hub server."""

    config = get_config()
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if chip_tool:
        config.chip_tool.path = chip_tool

    console.print(f"\n[bold blue]Starting matterhub[/bold blue]")
    console.print(f"   Listening on: http://{config.server.host}:{config.server.port}")
    console.print(f"   WebSocket:    ws://{config.server.host}:{config.server.port}/ws")
    console.print(f"   chip-tool:    {config.chip_tool.path}")
    console.print(f"   Press Ctrl+C to stop\n")

    from .api.server import run_server

    run_server(host=config.server.host, port=config.server.port, reload=reload, config=config)


@main.command()
def check():
    """Check that chip-tool can be started."""

    config = get_config()
    runner = ProcessRunner(config.chip_tool.path)
    result = run_async(runner.check())

    if result.ok:
        version = (result.stdout.strip() or result.stderr.strip() or "unknown").splitlines()[0]
        console.print(f"[green]✓ {config.chip_tool.path}[/green] {version}")
        return

    console.print(f"[red]✗ {config.chip_tool.path}: {result.error}[/red]")
    if result.stderr.strip():
        console.print(f"[dim]{result.stderr.strip()}[/dim]")
    sys.exit(1)


@main.command()
@click.option('--timeout', '-t', default=None, type=float, help='Seconds to scan')
def discover(timeout: Optional[float]):
    """Scan for commissionable devices."""

    config = get_config()
    runner = ProcessRunner(config.chip_tool.path)
    timeout = timeout or config.chip_tool.discovery_timeout

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        progress.add_task(f"Discovering devices ({timeout:g}s)...", total=None)
        result = run_async(runner.run(build_discover_args(), timeout=timeout))

    devices = parse_discovery_output(result.stdout)

    if not result.ok:
        console.print(f"[yellow]⚠️  Discovery ended early: {result.error}[/yellow]")

    if not devices:
        console.print("[yellow]No commissionable devices found.[/yellow]")
        return

    table = Table(title=f"Commissionable devices ({len(devices)})")
    table.add_column("Name", style="cyan")
    table.add_column("Discriminator")
    table.add_column("Vendor/Product")
    table.add_column("Transport")
    table.add_column("Addresses", style="dim")

    for device in devices:
        table.add_row(
            device.name or device.id,
            device.discriminator,
            f"{device.vendor_id or '?'}/{device.product_id or '?'}",
            device.transport or device.type,
            ", ".join(device.ip_addresses),
        )

    console.print(table)


@main.command()
@click.argument('node_id')
@click.argument('cluster')
@click.argument('attribute')
@click.option('--endpoint', '-e', default=None, help='Endpoint id')
def read(node_id: str, cluster: str, attribute: str, endpoint: Optional[str]):
    """Read one attribute, e.g. `matterhub read 7 OnOff OnOff`."""

    config = get_config()
    runner = ProcessRunner(config.chip_tool.path)
    endpoint = endpoint or config.chip_tool.default_endpoint

    args = build_read_args(cluster, attribute, node_id, endpoint)
    result = run_async(runner.run(args, timeout=config.chip_tool.read_timeout))

    if not result.ok:
        console.print(f"[red]✗ Read failed: {result.error}[/red]")
        sys.exit(1)

    value = parse_attribute_value(result.stdout)
    if is_raw_value(value):
        console.print("[yellow]No value line in output:[/yellow]")
        console.print(result.stdout)
        return

    console.print(f"{cluster}.{attribute} = [cyan]{value!r}[/cyan]")


@main.command('config')
@click.option('--chip-tool', 'chip_tool', default=None, help='Set the chip-tool path')
@click.option('--pairing-method', type=click.Choice(PAIRING_METHODS), default=None, help='Set the pairing method')
def config_cmd(chip_tool: Optional[str], pairing_method: Optional[str]):
    """Show or update the configuration."""

    config = get_config()

    if chip_tool or pairing_method:
        if chip_tool:
            config.chip_tool.path = chip_tool
        if pairing_method:
            config.chip_tool.pairing_method = pairing_method
        config.save()
        console.print(f"[green]✓ Saved {config.config_path}[/green]")

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Config file", str(config.config_path))
    table.add_row("chip-tool", config.chip_tool.path)
    table.add_row("Pairing method", config.chip_tool.pairing_method)
    table.add_row("Default node id", config.chip_tool.commissioning_node_id)
    table.add_row("Default endpoint", config.chip_tool.default_endpoint)
    table.add_row("Server", f"{config.server.host}:{config.server.port}")
    table.add_row("CORS origins", ", ".join(config.server.cors_origins))

    console.print(table)


if __name__ == '__main__':
    main()
