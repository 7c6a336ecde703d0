#!/usr/bin/env python3
"""
VRT Discovery Relay CLI

Command-line interface for relaying radio discovery packets to VPN clients.

Usage:
    vrtrelay run info -i eth0                        # Show the relay interface
    vrtrelay run pcap -i eth0 --pcapfile FILE        # Replay a capture
    vrtrelay run listen -i eth0 --broadcast true     # Relay live packets
    vrtrelay interfaces                              # List host interfaces
    vrtrelay peers                                   # List directory peers
    vrtrelay sync-users                              # Pull VPN users from OPNsense
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.logging import RichHandler
from rich.markup import escape

from .config import Settings, load_settings
from .discovery import DiscoveryDispatcher, PacketListener, format_payload, iter_pcap_payloads
from .errors import RelayError
from .interfaces import describe_interface, list_interfaces, render_interfaces
from .options import Mode, RuntimeConfig, parse_bool_flag, validate_config_options
from .opnsense import OpnsenseClient, sync_vpn_users
from .storage import PeerDirectory

logger = logging.getLogger(__name__)

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', default=None, help='Data directory (peer directory database)')
@click.option('--config', 'config_path', type=click.Path(path_type=Path), default=None,
              help='JSON settings file')
@click.pass_context
def cli(ctx, verbose, data_dir, config_path):
    """VRT Discovery Relay - forward radio discovery packets to VPN clients."""
    try:
        settings = load_settings(config_path)
    except RelayError as e:
        console.print(f"[red]Invalid settings: {escape(str(e))}[/red]")
        ctx.exit(1)
    if data_dir:
        settings.data_dir = Path(data_dir)

    setup_logging(verbose, settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj['settings'] = settings


@cli.command()
@click.argument('mode')
@click.option('--interface', '-i', default='', help='Interface to send discovery packets from')
@click.option('--pcapfile', default='', help='pcap file to replay (pcap mode)')
@click.option('--broadcast', default='false', help='"true" to send packets to peers')
@click.option('--debug', default='false', help='"true" to dump every packet')
@click.option('--clients', default='', help='Extra peer addresses, comma separated')
@click.option('--filter', 'bpf_filter', default='', help='BPF filter for discovery packets')
@click.pass_context
def run(ctx, mode, interface, pcapfile, broadcast, debug, clients, bpf_filter):
    """Run the relay in MODE (info, pcap or listen)."""
    settings: Settings = ctx.obj['settings']

    flags = {
        'interface': interface,
        'pcapfile': pcapfile,
        'broadcast': broadcast,
        'debug': debug,
        'clients': clients,
        'filter': bpf_filter,
    }

    try:
        config = validate_config_options(mode, flags, api_connection=settings.api_connection)
    except (RelayError, OSError) as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        ctx.exit(1)

    if config.debug_enabled:
        logging.getLogger().setLevel(logging.DEBUG)

    if config.mode is Mode.INFO:
        show_info(config)
        return

    try:
        stats = asyncio.run(relay(config, settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
        return
    except (RelayError, OSError) as e:
        console.print(f"[red]Relay failed: {escape(str(e))}[/red]")
        ctx.exit(1)

    console.print(Panel.fit(
        f"Packets relayed: [yellow]{stats['packets']}[/yellow]\n"
        f"Peer sends: [green]{stats['sent']}[/green]\n"
        f"Peer failures: [red]{stats['failed']}[/red]",
        title="Relay Summary"
    ))


def show_info(config: RuntimeConfig):
    """Print the resolved interface and effective settings."""
    render_interfaces([describe_interface(config.network_interface.name)], console,
                      title="Relay Interface")

    iface = config.network_interface
    console.print(Panel.fit(
        f"Mode: [cyan]{config.mode.value}[/cyan]\n"
        f"Interface: [cyan]{iface.name}[/cyan]\n"
        f"IPv4 Address: [yellow]{iface.ipv4_address or 'none'}[/yellow]\n"
        f"Hardware Address: [yellow]{iface.hardware_address or 'none'}[/yellow]\n"
        f"Broadcast: [{'green' if config.broadcast_enabled else 'red'}]"
        f"{'Yes' if config.broadcast_enabled else 'No'}[/]\n"
        f"BPF Filter: [blue]{escape(config.packet_filter)}[/blue]",
        title="Relay Configuration"
    ))


async def relay(config: RuntimeConfig, settings: Settings,
                directory: Optional[PeerDirectory] = None) -> dict:
    """
    Capture discovery packets and dispatch each to the peer directory.

    The directory is only opened when broadcast is enabled. Failing to open
    it is then the only fatal failure: without it there is nobody to send to.
    """
    if config.broadcast_enabled:
        directory = directory or PeerDirectory(settings.db_path)
        await directory.open()
    else:
        logger.info("Send discovery packet disabled, packets are captured only")
        directory = None

    stats = {'packets': 0, 'sent': 0, 'failed': 0}

    try:
        if directory is not None:
            await directory.add_static_clients(config.client_addresses)
        dispatcher = DiscoveryDispatcher(config, directory, timeout=settings.send_timeout)

        if config.mode is Mode.PCAP:
            for payload in iter_pcap_payloads(config.pcap_file, config.packet_filter):
                await relay_payload(dispatcher, payload, config.debug_enabled, stats)
        else:
            listener = PacketListener(config.network_interface.name, config.packet_filter)
            listener.start()
            try:
                async for payload in listener:
                    await relay_payload(dispatcher, payload, config.debug_enabled, stats)
            finally:
                listener.stop()
    finally:
        if directory is not None:
            await directory.close()

    return stats


async def relay_payload(dispatcher: DiscoveryDispatcher, payload: bytes,
                        debug: bool, stats: dict):
    """Dispatch one captured payload and update the counters."""
    stats['packets'] += 1
    if debug:
        logger.debug(f"Discovery packet ({len(payload)} bytes):\n{format_payload(payload)}")

    results = await dispatcher.dispatch(payload)
    for result in results:
        if result.ok:
            stats['sent'] += 1
        else:
            stats['failed'] += 1


@cli.command()
def interfaces():
    """List host network interfaces."""
    render_interfaces(list_interfaces(), console)


@cli.command()
@click.pass_context
def peers(ctx):
    """List peers in the directory."""
    settings: Settings = ctx.obj['settings']

    async def run_query():
        async with PeerDirectory(settings.db_path) as directory:
            return await directory.get_users()

    try:
        users = asyncio.run(run_query())
    except RelayError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        ctx.exit(1)

    if not users:
        console.print("[yellow]No peers in directory[/yellow]")
        return

    table = Table(title="Peer Directory")
    table.add_column("Common Name", style="cyan")
    table.add_column("Virtual Address", style="yellow")
    table.add_column("Real Address")
    table.add_column("Source", style="green")
    table.add_column("Updated")

    for user in users:
        table.add_row(
            user['common_name'],
            user['virtual_address'],
            user['real_address'] or "-",
            user['source'],
            str(user['updated_at']),
        )

    console.print(table)


@cli.command('sync-users')
@click.option('--delete-users', default='false',
              help='"true" to remove users no longer connected to the VPN')
@click.pass_context
def sync_users(ctx, delete_users):
    """Pull connected VPN users from OPNsense into the directory."""
    settings: Settings = ctx.obj['settings']

    async def run_sync():
        client = OpnsenseClient(settings.api_connection, timeout=settings.api_timeout)
        async with PeerDirectory(settings.db_path) as directory:
            return await sync_vpn_users(client, directory,
                                        delete_missing=parse_bool_flag(delete_users))

    try:
        result = asyncio.run(run_sync())
    except RelayError as e:
        console.print(f"[red]Sync failed: {escape(str(e))}[/red]")
        ctx.exit(1)

    console.print(Panel.fit(
        f"Stored: [green]{result.stored}[/green]\n"
        f"Skipped: [yellow]{result.skipped}[/yellow]\n"
        f"Deleted: [red]{result.deleted}[/red]",
        title="VPN User Sync"
    ))


def main():
    cli()


if __name__ == '__main__':
    main()
