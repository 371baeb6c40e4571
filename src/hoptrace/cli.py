"""
HopTrace CLI commands.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import asyncio
import json
import sys

import click
from rich.console import Console
from rich.table import Table

from hoptrace import __version__
from hoptrace.config import ConfigError, get_config
from hoptrace.logging_config import configure_logging
from hoptrace.trace.base import ProbeSendError
from hoptrace.trace.controller import HopController
from hoptrace.trace.icmp import DestinationResolveError, RawSocketPermissionError, run_trace
from hoptrace.trace.report import silent_marks

console = Console()

EXIT_REACHED = 0
EXIT_NOT_REACHED = 1
EXIT_ERROR = 2


@click.group()
@click.version_option(__version__, prog_name="hoptrace")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
def main(debug: bool, log_file: str | None):
    """HopTrace - ICMP network path discovery."""
    configure_logging(debug=debug, log_file=log_file)


def display_report(engine: HopController) -> None:
    """Print the final report as a table."""
    table = Table(title=f"Traceroute: {engine.config.destination}", box=None)
    table.add_column("Hop", style="cyan", width=4)
    table.add_column("IP", style="white", width=16)
    table.add_column("RTT", style="white", width=32)
    table.add_column("Avg", style="dim", width=10)

    for hop in engine.report.records:
        if not hop.answered:
            table.add_row(str(hop.hop_limit), "*", silent_marks(hop), "-")
            continue
        rtt_str = "  ".join(f"{s:.1f}ms" if s is not None else "*" for s in hop.samples)
        table.add_row(
            str(hop.hop_limit),
            hop.responder,
            rtt_str or "-",
            f"{hop.avg_ms:.1f}ms" if hop.avg_ms is not None else "-",
        )

    console.print(table)
    color = "green" if engine.destination_reached else "yellow"
    console.print(f"[{color}]{engine.summary()}[/{color}]")


def _print_line(line: str) -> None:
    console.print(line, highlight=False)


@main.command()
@click.argument("host")
@click.option("-m", "--max-hops", type=int, help="Maximum number of hops (TTL) to probe")
@click.option("-q", "--probes", type=int, help="Probes per hop before giving up on it")
@click.option("-w", "--timeout", type=float, help="Seconds to wait for each reply")
@click.option("-i", "--interval", type=float, help="Seconds to pause between probes")
@click.option("-s", "--size", type=int, help="Bytes of ICMP data per probe")
@click.option("--quiet", is_flag=True, help="Only print the final report")
@click.option("--json-output", "json_out", is_flag=True, help="Output as JSON")
def trace(
    host: str,
    max_hops: int | None,
    probes: int | None,
    timeout: float | None,
    interval: float | None,
    size: int | None,
    quiet: bool,
    json_out: bool,
):
    """Trace the route to a host with ICMP echo probes.

    Requires root or the CAP_NET_RAW capability.

    \b
    Examples:
        hoptrace trace 8.8.8.8
        hoptrace trace example.com -m 20 -q 1
        hoptrace trace 1.1.1.1 --json-output
    """
    try:
        config = get_config().with_overrides(
            destination=host,
            max_hop_limit=max_hops,
            max_probes_per_hop=probes,
            wait_reply_timeout=timeout,
            interval=interval,
            probe_size=size,
            verbose=False if (quiet or json_out) else None,
        ).validate()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(EXIT_ERROR)

    on_line = _print_line if config.verbose else None

    try:
        engine = asyncio.run(run_trace(config, on_line))
    except RawSocketPermissionError:
        console.print("[red]Error: Permission denied. Run as root or with CAP_NET_RAW capability.[/red]")
        sys.exit(EXIT_ERROR)
    except (DestinationResolveError, ProbeSendError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(EXIT_ERROR)
    except KeyboardInterrupt:
        console.print("[yellow]Trace interrupted[/yellow]")
        sys.exit(EXIT_NOT_REACHED)

    if json_out:
        output = {
            "success": engine.destination_reached,
            "stop_reason": engine.stop_reason.value if engine.stop_reason else None,
            "probes_sent": engine.session.probes_sent,
            "packets": engine.correlator.stats.to_dict(),
            **engine.report.to_dict(),
        }
        click.echo(json.dumps(output, indent=2))
    elif not config.verbose:
        display_report(engine)

    sys.exit(EXIT_REACHED if engine.destination_reached else EXIT_NOT_REACHED)


if __name__ == "__main__":
    main()
