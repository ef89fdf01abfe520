"""sbcmon - Textual dashboard."""

import argparse
import logging
from collections.abc import Sequence
from queue import Empty, Queue

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.logging import TextualHandler
from textual.widgets import DataTable, Footer, Static

from sbcmon.config import MonitorConfig
from sbcmon.cpu import TOTAL_KEY
from sbcmon.errors import ConfigError, SbcmonError
from sbcmon.models import NetworkStatus
from sbcmon.monitor import HardwareMonitor, HardwareSnapshot
from sbcmon.processes import ProcessHandle

logger = logging.getLogger(__name__)


def usage_bar(usage: float, width: int = 20) -> str:
    """Render a usage percentage as a bar of block characters."""
    filled = min(max(int(usage * width / 100), 0), width)
    return "[green]█[/green]" * filled + "[dim]░[/dim]" * (width - filled)


def format_duration(seconds: int) -> str:
    """Format a duration in seconds as [D days, ]HH:MM:SS."""
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def _core_order(core: str) -> tuple[int, int]:
    if core == TOTAL_KEY:
        return (0, 0)
    suffix = core.removeprefix(TOTAL_KEY)
    return (1, int(suffix)) if suffix.isdigit() else (2, 0)


class CpuPanel(Static):
    """Per-core CPU usage bars."""

    def __init__(self, *args, **kwargs) -> None:
        """Initialize CpuPanel."""
        super().__init__("Loading CPU info...", *args, **kwargs)
        self._cpu_usage: dict[str, float] = {}

    def update_usage(self, usage: dict[str, float]) -> None:
        """Update the bars from a per-core usage mapping."""
        self._cpu_usage = dict(usage)
        self.update(self.render_usage())

    def render_usage(self) -> str:
        """Get the CPU bars display, aggregate first."""
        if not self._cpu_usage:
            return "Loading CPU info..."
        lines = []
        for core in sorted(self._cpu_usage, key=_core_order):
            label = "All" if core == TOTAL_KEY else core.removeprefix(TOTAL_KEY)
            usage = self._cpu_usage[core]
            # Escaped bracket for the bar container
            lines.append(f"CPU{label:<3} \\[{usage_bar(usage)}] {usage:6.2f}%")
        return "\n".join(lines)


class LinkPanel(Static):
    """Wireless link status."""

    def __init__(self, adapter: str, *args, **kwargs) -> None:
        """Initialize LinkPanel for one adapter."""
        super().__init__(f"{adapter}: waiting for data...", *args, **kwargs)
        self._adapter_name = adapter
        self._link_status: NetworkStatus | None = None
        self._link_error = ""

    def update_status(self, status: NetworkStatus | None, error: str = "") -> None:
        """Update the panel from a link status and error text."""
        self._link_status = status
        self._link_error = error
        self.update(self.render_status())

    def render_status(self) -> str:
        """Get the link status display."""
        status = self._link_status
        if status is None:
            return f"{self._adapter_name}: {escape(self._link_error) or 'no data'}"
        lines = [
            f"{self._adapter_name}: {escape(status.network_name)}",
            f"Signal: {status.signal_strength} dBm",
            f"Tx/Rx: {status.tx_speed_mbps:.1f} / {status.rx_speed_mbps:.1f} Mbps",
        ]
        if status.frequency_mhz:
            lines.append(f"Freq: {status.frequency_mhz} MHz")
        if status.connected_time_sec:
            lines.append(
                f"Retries: {status.tx_retries}  Failed: {status.tx_failed}  "
                f"Beacon: {status.beacon_signal_avg} dBm"
            )
            lines.append(f"Connected: {format_duration(status.connected_time_sec)}")
        if self._link_error:
            lines.append(f"[yellow]{escape(self._link_error)}[/yellow]")
        return "\n".join(lines)


class ProcessTable(Container):
    """Container for the watched process table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._current_rows: set[str] = set()

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("WATCH", key="watch", width=16)
        table.add_column("PID", key="pid", width=8)
        table.add_column("NAME", key="name", width=16)
        table.add_column("EXE", key="exe", width=32)
        table.add_column("Command", key="command")

    def update_processes(self, processes: dict[str, list[ProcessHandle]]) -> None:
        """
        Update the table with the processes found for each watched name.

        Rows of processes that disappeared are removed, new ones are added.
        """
        table = self.query_one("#process-table", DataTable)

        new_rows: dict[str, tuple[str, ProcessHandle]] = {}
        for watch, handles in processes.items():
            for handle in handles:
                new_rows[f"{watch}:{handle.pid}"] = (watch, handle)

        for row_key in self._current_rows - new_rows.keys():
            table.remove_row(row_key)

        for row_key, (watch, handle) in new_rows.items():
            if row_key in self._current_rows:
                continue
            table.add_row(
                watch[:16],
                str(handle.pid),
                escape(handle.name[:16]),
                escape(self._describe(handle.exe)),
                escape(self._describe(handle.cmdline)[:60]),
                key=row_key,
            )

        self._current_rows = set(new_rows)

    @staticmethod
    def _describe(getter) -> str:
        try:
            return getter()
        except SbcmonError as err:
            logger.debug("%s", err)
            return "?"


class SbcmonApp(App):
    """Main sbcmon application."""

    TITLE = "sbcmon"
    SUB_TITLE = "Single Board Computer Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    Horizontal {
        height: auto;
        min-height: 6;
        padding: 1;
        background: $surface;
    }

    #cpu-panel {
        width: 1fr;
        padding-right: 2;
    }

    #link-panel {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, config: MonitorConfig | None = None) -> None:
        """Initialize the SbcmonApp."""
        super().__init__()
        self._config = config or MonitorConfig()
        self._update_queue: Queue[HardwareSnapshot] = Queue()
        self._monitor = HardwareMonitor(self._update_queue, self._config)

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield Horizontal(
            CpuPanel(id="cpu-panel"),
            LinkPanel(self._config.adapter, id="link-panel"),
        )
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the hardware monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent snapshot."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self.show_snapshot(snapshot)

    def show_snapshot(self, snapshot: HardwareSnapshot) -> None:
        """Update the UI with a hardware snapshot."""
        self.query_one("#cpu-panel", CpuPanel).update_usage(snapshot.cpu_usage)
        self.query_one("#link-panel", LinkPanel).update_status(snapshot.network, snapshot.link_error)
        self.query_one(ProcessTable).update_processes(snapshot.processes)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sbcmon", description="Monitor CPU, processes and wifi.")
    parser.add_argument("--adapter", default="wlan0", help="wireless adapter to report on")
    parser.add_argument(
        "--process",
        dest="process_names",
        action="append",
        default=[],
        metavar="NAME",
        help="process name to watch (repeatable)",
    )
    parser.add_argument(
        "--disable-pid-caching",
        action="store_true",
        help="rescan the process list on every poll",
    )
    parser.add_argument("--poll-rate", type=float, default=2.0, help="seconds between polls")
    parser.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", help="write logs to this file instead of the Textual console")
    return parser


def configure_logging(level: str, log_file: str | None = None) -> logging.Logger:
    """Send sbcmon log records to a file, or to the Textual devtools console."""
    handler: logging.Handler = logging.FileHandler(log_file) if log_file else TextualHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    package_logger = logging.getLogger("sbcmon")
    for old in package_logger.handlers[:]:
        package_logger.removeHandler(old)
        old.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    # Records must not reach stderr while the UI owns the terminal
    package_logger.propagate = False
    return package_logger


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for sbcmon application."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = MonitorConfig.from_mapping(
            {
                "adapter": args.adapter,
                "process_names": args.process_names,
                "disable_pid_caching": args.disable_pid_caching,
                "poll_rate": args.poll_rate,
            }
        )
    except ConfigError as err:
        parser.error(str(err))
    configure_logging(args.log_level, args.log_file)
    app = SbcmonApp(config)
    app.run()


if __name__ == "__main__":
    main()
