import asyncio
import os
import sys
from functools import partial
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from . import __version__
from .cache import LocationCache
from .config import Settings, get_settings
from .enrichment import GeoLookup, PTRResolver
from .log import setup_logging
from .models import PACKET_TYPES, TraceOptions, TraceStatus
from .output import ConsoleOutput, JsonExporter
from .probe import build_command
from .service import DiscoveryService
from .store import TraceStore


console = Console()


def is_admin() -> bool:
    """Check if running with elevated privileges (admin on Windows, root elsewhere)"""
    if sys.platform == 'win32':
        try:
            import ctypes
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except (AttributeError, OSError):
            return False
    return os.geteuid() == 0


def needs_privileges(options: TraceOptions) -> bool:
    """Linux traceroute needs root for ICMP (-I) and TCP (-T) probes"""
    return (sys.platform.startswith('linux') and not options.use_ipv6
            and options.packet_type in ('icmp', 'tcp'))


async def run_trace(target: str, options: TraceOptions, settings: Settings,
                    output: ConsoleOutput, geo_enabled: bool = True,
                    json_dir: Optional[Path] = None):
    """Run one trace to completion, rendering snapshots as they arrive"""
    store = TraceStore(capacity=settings.store_capacity)
    geo = None
    if geo_enabled:
        geo = GeoLookup(
            api_key=settings.ipstack_api_key,
            ipinfo_token=settings.ipinfo_token,
            timeout=settings.geo_timeout,
            cache=LocationCache(),
        )
    ptr = PTRResolver(timeout=settings.ptr_timeout) if options.numeric else None

    service = DiscoveryService(
        store,
        geo=geo,
        ptr=ptr,
        command_builder=partial(
            build_command,
            traceroute_bin=settings.traceroute_bin,
            traceroute6_bin=settings.traceroute6_bin,
            tracert_bin=settings.tracert_bin,
        ),
    )
    service.subscribe(output.update)
    if json_dir is not None:
        service.subscribe(JsonExporter(json_dir))

    try:
        trace = service.start(target, options)
        output.selected = trace.id
        output.print_header(trace)
        output.start()
        try:
            final = await service.wait(trace.id)
        except asyncio.CancelledError:
            service.stop(trace.id)
            raise
        finally:
            output.stop()
        return final
    finally:
        service.shutdown()
        if geo is not None:
            await geo.close()
        if ptr is not None:
            ptr.close()


@click.command()
@click.argument('target')
@click.option('-p', '--protocol', default='icmp',
              type=click.Choice(list(PACKET_TYPES), case_sensitive=False),
              help='Probe packet type (default: icmp)')
@click.option('-m', '--max-hops', default=30, type=int,
              help='Maximum hops (default: 30)')
@click.option('-q', '--queries', default=3, type=int,
              help='Probes per hop (default: 3)')
@click.option('-w', '--timeout', 'timeout_ms', default=5000, type=int,
              help='Timeout per probe in milliseconds (default: 5000)')
@click.option('-s', '--packet-size', default=64, type=int,
              help='Probe packet size in bytes (default: 64)')
@click.option('-6', '--ipv6', is_flag=True,
              help='Trace over IPv6')
@click.option('--df/--no-df', default=True,
              help="Set the don't-fragment bit (default: set)")
@click.option('-n', '--numeric', is_flag=True,
              help='Skip name lookups in the probe tool; resolve names afterwards')
@click.option('--geo/--no-geo', default=True,
              help='Enable/disable geolocation lookups (default: enabled)')
@click.option('--json', 'json_dir', type=click.Path(file_okay=False, path_type=Path),
              help='Write trace snapshots as JSON into this directory')
@click.option('-v', '--verbose', count=True,
              help='Increase log verbosity (-v info, -vv debug)')
@click.version_option(version=__version__)
def main(target: str, protocol: str, max_hops: int, queries: int, timeout_ms: int,
         packet_size: int, ipv6: bool, df: bool, numeric: bool, geo: bool,
         json_dir: Optional[Path], verbose: int):
    """
    VisTrace - traceroute with live geolocation.

    Trace the route to TARGET (IP address or hostname) using the
    platform traceroute tool, enriching public hops with location
    and ISP information as they are discovered.

    Examples:

        vistrace 8.8.8.8

        vistrace example.com -p udp -q 1

        vistrace 1.1.1.1 --json traces/
    """
    settings = get_settings()
    level = {0: settings.log_level, 1: 'INFO'}.get(verbose, 'DEBUG')
    setup_logging(level, console=Console(stderr=True))

    output = ConsoleOutput(console=console)

    try:
        options = TraceOptions(
            max_hops=max_hops,
            packet_size=packet_size,
            timeout_ms=timeout_ms,
            queries=queries,
            use_ipv6=ipv6,
            dont_fragment=df,
            packet_type=protocol,
            numeric=numeric,
        )
    except ValueError as e:
        output.print_error(str(e))
        sys.exit(1)

    if needs_privileges(options) and not is_admin():
        output.print_warning(
            f"{options.packet_type.upper()} probes usually need root privileges; "
            "try sudo or -p udp."
        )

    try:
        final = asyncio.run(run_trace(target, options, settings, output,
                                      geo_enabled=geo, json_dir=json_dir))
    except ValueError as e:
        output.print_error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/]")
        sys.exit(130)

    if final is None:
        output.print_error("Trace was lost before it finished")
        sys.exit(1)

    output.print_summary(final)
    if json_dir is not None:
        console.print(f"\n[dim]Snapshots written to:[/] {json_dir.absolute()}")

    sys.exit(0 if final.status == TraceStatus.COMPLETED else 1)


if __name__ == '__main__':
    main()
