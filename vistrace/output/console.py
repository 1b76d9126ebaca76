"""
Rich console output for VisTrace - live hop table fed by trace snapshots
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..enrichment.ip_classifier import IPClassifier
from ..models import Hop, Location, Trace, TraceStatus


STATUS_STYLES = {
    TraceStatus.RUNNING: 'cyan',
    TraceStatus.COMPLETED: 'green',
    TraceStatus.FAILED: 'red',
    TraceStatus.TIMEOUT: 'yellow',
    TraceStatus.STOPPED: 'yellow',
}


class ConsoleOutput:
    """
    Rich console renderer for trace snapshots.

    Subscribe update() to the discovery service; the hop table is
    redrawn in place on every snapshot of the selected trace.
    """

    def __init__(self, console: Optional[Console] = None, selected: Optional[str] = None):
        self.console = console or Console()
        self.selected = selected
        self._live: Optional[Live] = None
        self._last: Optional[Trace] = None

    def print_header(self, trace: Trace):
        """Print trace header"""
        options = trace.options
        content = Text()
        content.append("VisTrace", style="bold cyan")
        content.append("\nTarget: ", style="dim")
        content.append(trace.destination, style="bold")
        content.append("\n")
        content.append(f"Protocol: {options.packet_type.upper()}", style="dim")
        if options.use_ipv6:
            content.append(" (IPv6)", style="dim")
        content.append(f"  |  Probes: {options.queries} x {options.max_hops} hops", style="dim")
        content.append(f"  |  {options.packet_size} bytes", style="dim")

        self.console.print(Panel(content, border_style="cyan", padding=(0, 1)))

    def start(self):
        """Begin live rendering"""
        if self._live is None:
            self._live = Live(self._render(self._last), console=self.console,
                              refresh_per_second=8, transient=False)
            self._live.start()

    def stop(self):
        """End live rendering, leaving the last table on screen"""
        if self._live is not None:
            self._live.update(self._render(self._last))
            self._live.stop()
            self._live = None

    def update(self, trace: Trace):
        """Snapshot subscriber"""
        if self.selected is not None and trace.id != self.selected:
            return
        self._last = trace
        if self._live is not None:
            self._live.update(self._render(trace))

    def build_table(self, trace: Optional[Trace]) -> Table:
        table = Table(
            show_header=True,
            header_style="bold magenta",
            box=box.SIMPLE_HEAD,
            padding=(0, 1)
        )

        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("RTT (min/avg/max)", width=20, justify="center")
        table.add_column("Loss", width=6, justify="right")
        table.add_column("IP", width=18)
        table.add_column("Host", overflow="ellipsis")
        table.add_column("Location", overflow="ellipsis")
        table.add_column("ISP", overflow="ellipsis")

        for hop in (trace.hops if trace else []):
            table.add_row(
                str(hop.hop_number),
                self._format_rtt(hop),
                f"{hop.loss_percent:.0f}%",
                Text(hop.address, style="yellow" if not hop.responded else self._ip_style(hop)),
                hop.hostname or "-",
                self._format_geo(hop.location),
                self._format_org(hop.location.isp if hop.location else None),
            )
        return table

    def _render(self, trace: Optional[Trace]) -> Table:
        table = self.build_table(trace)
        if trace is not None:
            style = STATUS_STYLES.get(trace.status, 'dim')
            table.caption = f"[{style}]{trace.status.value}[/]"
        return table

    def print_summary(self, trace: Trace):
        """Print final summary panel"""
        style = STATUS_STYLES.get(trace.status, 'dim')
        content = Text()
        content.append("Status: ", style="bold")
        content.append(trace.status.value, style=style)
        content.append(f"\nHops: {len(trace.hops)}", style="dim")
        content.append(
            f"\nPackets: {trace.successful_packets}/{trace.total_packets} answered",
            style="dim"
        )
        if trace.completed_at is not None:
            elapsed = (trace.completed_at - trace.started_at).total_seconds()
            content.append(f"\nElapsed: {elapsed:.1f}s", style="dim")

        self.console.print(Panel(
            content,
            title=Text("Summary", style="bold"),
            border_style=style,
            padding=(0, 1)
        ))

    def print_error(self, message: str):
        """Print error message"""
        self.console.print(f"[bold red]Error:[/] {message}")

    def print_warning(self, message: str):
        """Print warning message"""
        self.console.print(f"[yellow]Warning:[/] {message}")

    def _ip_style(self, hop: Hop) -> str:
        return "" if IPClassifier.is_public(hop.address) else "dim"

    def _format_rtt(self, hop: Hop) -> str:
        """Format RTT values"""
        if not hop.probes:
            return "* / * / *"
        if hop.min_ms < 0:
            return "* / * / *"
        return f"{hop.min_ms:.1f} / {hop.avg_ms:.1f} / {hop.max_ms:.1f}"

    def _format_org(self, org: Optional[str]) -> str:
        """Format organization name, dropping a leading AS number"""
        if not org:
            return "-"
        org = org.strip()
        # ipinfo reports "AS15169 Google LLC"
        if org.startswith("AS") and " " in org:
            head, rest = org.split(" ", 1)
            if head[2:].isdigit():
                org = rest
        return org

    def _format_geo(self, location: Optional[Location]) -> str:
        """Format location as 'City, Country'"""
        if not location:
            return "-"
        parts = [p for p in (location.city, location.country) if p]
        return ", ".join(parts) if parts else "-"
