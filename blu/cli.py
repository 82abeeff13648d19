#!/usr/bin/env python3
"""
blu CLI

Command-line interface for finding and selecting BluOS players.

Usage:
    blu devices                # Discover players and refresh the cache
    blu devices --json         # Same, as JSON
    blu resolve "Living Room"  # Show which player a device argument selects
"""

import asyncio
import json
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .cache import DiscoveryCache
from .config import load_config
from .discovery import DiscoveryError, DiscoveryManager
from .resolve import DeviceResolutionError, resolve_device

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
        force=True,
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(path_type=Path), help='Config file')
@click.pass_context
def cli(ctx, verbose, config_path):
    """blu - control BluOS players from the command line."""
    ctx.ensure_object(dict)
    config = load_config(config_path)
    setup_logging(verbose, config.log_level)
    ctx.obj['config'] = config
    ctx.obj.setdefault('manager', None)


def _manager(ctx) -> DiscoveryManager:
    return ctx.obj.get('manager') or DiscoveryManager()


@cli.command()
@click.option('--timeout', type=float, help='Discovery timeout in seconds')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
@click.pass_context
def devices(ctx, timeout, as_json):
    """Discover players on the LAN and refresh the cache."""
    config = ctx.obj['config']
    timeout = config.discover_timeout if timeout is None else timeout
    try:
        previous = DiscoveryCache.load(config.cache_path)
    except (OSError, ValueError) as e:
        err_console.print(f"[red]cache: {e}[/red]")
        ctx.exit(1)

    try:
        found = asyncio.run(_manager(ctx).discover(timeout))
    except DiscoveryError as e:
        err_console.print(f"[red]discover: {e}[/red]")
        ctx.exit(1)

    cache = DiscoveryCache.from_devices(found)
    try:
        cache.save(config.cache_path)
    except OSError as e:
        err_console.print(f"[red]cache write: {e}[/red]")
        ctx.exit(1)

    if not found and previous.devices:
        err_console.print(
            f"[yellow]no devices discovered; cache has {len(previous.devices)} devices "
            f"(run with a longer --timeout)[/yellow]"
        )

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in cache.devices], indent=2))
        return

    if not cache.devices:
        console.print("[yellow]No players found[/yellow]")
        return

    table = Table(title="Discovered Players")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type", style="yellow")
    table.add_column("Version")
    table.add_column("Source", style="green")
    for d in cache.devices:
        table.add_row(d.id, d.name, d.type, d.version, d.source)
    console.print(table)


@cli.command()
@click.argument('device', required=False, default='')
@click.option('--no-discover', is_flag=True, help='Only use the config and cache')
@click.option('--timeout', type=float, help='Discovery timeout in seconds')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
@click.pass_context
def resolve(ctx, device, no_discover, timeout, as_json):
    """Show which player DEVICE (a name, alias or address) selects."""
    config = ctx.obj['config']
    try:
        cache = DiscoveryCache.load(config.cache_path)
    except (OSError, ValueError) as e:
        err_console.print(f"[red]cache: {e}[/red]")
        ctx.exit(1)

    try:
        selected = asyncio.run(resolve_device(
            device, config, cache,
            manager=_manager(ctx),
            allow_discover=not no_discover,
            timeout=timeout,
        ))
    except (DeviceResolutionError, DiscoveryError) as e:
        err_console.print(f"[red]{e}[/red]")
        ctx.exit(1)

    if as_json:
        click.echo(json.dumps(selected.to_dict(), indent=2))
    else:
        console.print(f"{selected.name or selected.id} [dim]{selected.base_url}[/dim]")


if __name__ == '__main__':
    cli()
