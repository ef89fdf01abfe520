"""Polling engine for sbcmon."""

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from queue import Queue

from sbcmon.config import MIN_POLL_RATE, MonitorConfig
from sbcmon.cpu import CpuUsageTracker, read_cpu_stats
from sbcmon.errors import LinkStatusError, SbcmonError, StatusParseError
from sbcmon.models import CoreCounterSnapshot, NetworkStatus
from sbcmon.processes import ProcessCache, ProcessHandle
from sbcmon.wifi import LinkStatusProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HardwareSnapshot:
    """Readings of one poll cycle."""

    cpu_usage: dict[str, float]
    processes: dict[str, list[ProcessHandle]] = field(default_factory=dict)
    network: NetworkStatus | None = None
    link_error: str = ""


class HardwareMonitor:
    """
    Hardware monitor that samples CPU, process and wifi readings.

    Runs in a separate daemon thread and pushes updates to a thread-safe Queue.
    A failing reading is logged and left out of the snapshot; it never stops
    the loop.
    """

    def __init__(
        self,
        update_queue: Queue[HardwareSnapshot],
        config: MonitorConfig | None = None,
        *,
        link_provider: LinkStatusProvider | None = None,
        process_caches: list[ProcessCache] | None = None,
        read_counters: Callable[[], dict[str, CoreCounterSnapshot]] = read_cpu_stats,
    ) -> None:
        """
        Initialize the HardwareMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            config: What to monitor. Defaults to MonitorConfig().
            link_provider: Wifi status source. Built from config.adapter if omitted.
            process_caches: Process lookups. Built from config.process_names if omitted.
            read_counters: Reads the CPU counter table.
        """
        self._config = config or MonitorConfig()
        self._queue = update_queue
        self._poll_rate = self._config.poll_rate
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._read_counters = read_counters
        self._cpu = CpuUsageTracker()
        if link_provider is None:
            link_provider = LinkStatusProvider(self._config.adapter)
        self._link = link_provider
        if process_caches is None:
            process_caches = [
                ProcessCache(name, self._config.disable_pid_caching)
                for name in self._config.process_names
            ]
        self._process_caches = process_caches
        # Prime the tracker so the first snapshot already has usage figures
        self._sample_cpu()

    @property
    def config(self) -> MonitorConfig:
        """Get the monitor configuration."""
        return self._config

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        if not math.isfinite(value):
            raise ValueError(f"poll rate must be finite, got {value}")
        self._poll_rate = max(MIN_POLL_RATE, value)

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="HardwareMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.collect())
            except Exception:
                logger.exception("Unexpected error while collecting a snapshot")

            self._stop_event.wait(timeout=self._poll_rate)

    def collect(self) -> HardwareSnapshot:
        """Collect a snapshot of the current readings."""
        snapshot = HardwareSnapshot(cpu_usage=self._sample_cpu())
        snapshot.processes = self._collect_processes()
        snapshot.network, snapshot.link_error = self._collect_network()
        return snapshot

    def _sample_cpu(self) -> dict[str, float]:
        try:
            counters = self._read_counters()
        except SbcmonError as err:
            logger.warning("Failed to read CPU counters: %s", err)
            return self._cpu.usage
        return self._cpu.update(counters)

    def _collect_processes(self) -> dict[str, list[ProcessHandle]]:
        processes: dict[str, list[ProcessHandle]] = {}
        for cache in self._process_caches:
            try:
                processes[cache.name] = list(cache.get_processes().values())
            except SbcmonError as err:
                logger.warning("Failed to look up processes named %s: %s", cache.name, err)
                processes[cache.name] = []
        return processes

    def _collect_network(self) -> tuple[NetworkStatus | None, str]:
        try:
            return self._link.get_status(), ""
        except StatusParseError as err:
            logger.warning("Partial wifi status for %s: %s", self._link.adapter, err)
            return err.partial, str(err)
        except LinkStatusError as err:
            logger.debug("No wifi status for %s: %s", self._link.adapter, err)
            return None, str(err)
