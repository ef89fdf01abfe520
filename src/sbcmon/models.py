"""Data models for sbcmon."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class CoreCounterSnapshot:
    """Cumulative time-in-state counters of one CPU core, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0

    @property
    def idle_time(self) -> float:
        """Time spent idle, including time waiting on I/O."""
        return self.idle + self.iowait

    @property
    def busy_time(self) -> float:
        """Time spent doing work."""
        return self.user + self.nice + self.system + self.irq + self.softirq + self.steal

    @property
    def total_time(self) -> float:
        return self.idle_time + self.busy_time


@dataclass(slots=True, frozen=True)
class NetworkStatus:
    """Wireless link status, normalized across diagnostic backends."""

    network_name: str
    signal_strength: int  # dBm, negative
    tx_speed_mbps: float = 0.0
    rx_speed_mbps: float = 0.0
    frequency_mhz: int = 0
    # Only filled by backends that can report them
    tx_retries: int = 0
    tx_failed: int = 0
    beacon_signal_avg: int = 0  # dBm
    connected_time_sec: int = 0
    inactive_time_ms: int = 0
