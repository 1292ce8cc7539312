"""
libdetect CLI - Command line interface for subnet peer discovery.
"""

import asyncio
import json
import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import DEFAULT_PORT, DetectSettings, get_settings, set_settings
from .discovery import CallbackListener, DiscoveryService, PeerReachable, PeerUnreachable
from .errors import LibDetectError
from .network import expand, get_local_addresses

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def main(ctx, verbose):
    """📡 libdetect - Find peers on your local subnets"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


@main.command()
@click.option('--json', 'as_json', is_flag=True, help='Output as JSON')
def interfaces(as_json: bool):
    """List local interface addresses."""

    try:
        addresses = get_local_addresses()
    except LibDetectError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps([iface.to_dict() for iface in addresses], indent=2))
        return

    table = Table(title="Local Addresses")
    table.add_column("Interface", style="cyan")
    table.add_column("Address")
    table.add_column("Family", style="dim")
    table.add_column("Private")
    table.add_column("Scanned")

    for iface in addresses:
        scanned = iface.is_ipv4 and not iface.is_loopback
        table.add_row(
            iface.name,
            iface.ip,
            f"IPv{iface.family}",
            "yes" if iface.is_private else "",
            "[green]yes[/green]" if scanned else "[dim]no[/dim]",
        )

    console.print(table)


@main.command()
@click.argument('address')
@click.option('--include-self', is_flag=True, help='Keep ADDRESS in the output')
def candidates(address: str, include_self: bool):
    """Print the addresses that would be dialed for ADDRESS."""

    found = list(expand(address, skip_self=not include_self))
    if not found:
        console.print(f"[yellow]No candidates for {address} (IPv4 /24 only)[/yellow]")
        return

    for candidate in found:
        click.echo(candidate)
    console.print(f"[dim]{len(found)} candidates[/dim]", highlight=False)


@main.command()
@click.option('--port', '-p', default=DEFAULT_PORT, type=int, help='Discovery port')
@click.option('--include-self', is_flag=True, help='Also dial our own addresses')
@click.option('--duration', '-d', type=float, help='Stop after this many seconds')
@click.option('--timeout', '-t', default=2.0, type=float, help='Connect timeout per candidate')
@click.option('--heartbeat', type=float, help='Heartbeat interval in seconds')
def watch(port: int, include_self: bool, duration: Optional[float], timeout: float, heartbeat: Optional[float]):
    """Discover peers and print reachability changes."""

    settings = DetectSettings(
        port=port,
        skip_self=not include_self,
        connect_timeout=timeout,
        heartbeat_interval=heartbeat,
    )
    try:
        set_settings(settings)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"\n[bold blue]📡 Watching for peers on port {port}[/bold blue]")
    console.print("   Press Ctrl+C to stop\n")

    try:
        run_async(_watch(duration))
    except KeyboardInterrupt:
        pass
    except LibDetectError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


def _on_reachable(event: PeerReachable):
    direction = event.connection.direction.value
    console.print(f"  [green]✓[/green] {event.address} reachable [dim]({direction})[/dim]")


def _on_unreachable(event: PeerUnreachable):
    console.print(f"  [red]✗[/red] {event.address} unreachable [dim]({event.reason})[/dim]")


async def _watch(duration: Optional[float]):
    """Run discovery with the global settings until cancelled or ``duration`` elapses."""
    settings = get_settings()
    listener = CallbackListener(on_reachable=_on_reachable, on_unreachable=_on_unreachable)
    service = DiscoveryService(
        settings.port,
        listener,
        skip_self=settings.skip_self,
    )
    await service.start()
    console.print(
        f"[dim]Dialing {service.candidate_count} candidates from "
        f"{', '.join(service.local_addresses) or 'no local IPv4 addresses'}[/dim]"
    )
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        await service.stop()
        console.print("\n[dim]Discovery stopped[/dim]")


if __name__ == '__main__':
    main()
