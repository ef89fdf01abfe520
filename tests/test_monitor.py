"""Tests for the HardwareMonitor class."""

import time
from queue import Queue

import pytest

from sbcmon.config import MonitorConfig
from sbcmon.cpu import TOTAL_KEY
from sbcmon.errors import CounterReadError, NotConnected, ProcessEnumerationError, StatusParseError
from sbcmon.models import CoreCounterSnapshot, NetworkStatus
from sbcmon.monitor import HardwareMonitor, HardwareSnapshot
from sbcmon.processes import ProcessHandle
from sbcmon.wifi import LinkStatusProvider, ProcWirelessBackend


class StubBackend(ProcWirelessBackend):
    """Backend returning a fixed status or raising a fixed error."""

    def __init__(self, result):
        super().__init__("wlan0")
        self.result = result

    def get_status(self):
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class StubCache:
    """Process cache returning fixed handles or raising a fixed error."""

    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = 0

    def get_processes(self):
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return {handle.pid: handle for handle in self.result}


class CounterFeed:
    """Returns a growing counter table on every call."""

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        busy = self.calls * 10.0
        snapshot = CoreCounterSnapshot(user=busy, idle=busy)
        return {"cpu0": snapshot, TOTAL_KEY: snapshot}


STATUS = NetworkStatus(network_name="HomeNetwork", signal_strength=-52, tx_speed_mbps=390.0)


def make_monitor(link_result=STATUS, caches=None, read_counters=None, **config):
    queue: Queue[HardwareSnapshot] = Queue()
    monitor = HardwareMonitor(
        queue,
        MonitorConfig(**config),
        link_provider=LinkStatusProvider("wlan0", StubBackend(link_result)),
        process_caches=caches or [],
        read_counters=read_counters or CounterFeed(),
    )
    return monitor, queue


class TestHardwareSnapshot:
    """Tests for HardwareSnapshot dataclass."""

    def test_defaults(self):
        """Test HardwareSnapshot optional fields default to empty."""
        snapshot = HardwareSnapshot(cpu_usage={})

        assert snapshot.processes == {}
        assert snapshot.network is None
        assert snapshot.link_error == ""

    def test_uses_slots(self):
        """Test HardwareSnapshot uses __slots__ for memory efficiency."""
        assert not hasattr(HardwareSnapshot(cpu_usage={}), "__dict__")


class TestCollect:
    """Tests for HardwareMonitor.collect."""

    def test_first_snapshot_has_cpu_usage(self):
        """Test the tracker is primed at construction."""
        monitor, _ = make_monitor()

        snapshot = monitor.collect()

        assert snapshot.cpu_usage == {"cpu0": 50.0, TOTAL_KEY: 50.0}

    def test_counter_failure_keeps_last_usage(self):
        """Test a failing counter read repeats the previous usage."""
        feed = CounterFeed()
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] == 3:
                raise CounterReadError("boom")
            return feed()

        monitor, _ = make_monitor(read_counters=flaky)
        first = monitor.collect()
        second = monitor.collect()

        assert second.cpu_usage == first.cpu_usage

    def test_network_status(self):
        """Test the link status is part of the snapshot."""
        monitor, _ = make_monitor()

        snapshot = monitor.collect()

        assert snapshot.network == STATUS
        assert snapshot.link_error == ""

    def test_link_error_reported(self):
        """Test link errors are reported as text."""
        monitor, _ = make_monitor(link_result=NotConnected("wlan0"))

        snapshot = monitor.collect()

        assert snapshot.network is None
        assert "not connected" in snapshot.link_error

    def test_partial_status_kept(self):
        """Test a partially parsed status is kept with its errors."""
        partial = NetworkStatus(network_name="HomeNetwork", signal_strength=-1)
        monitor, _ = make_monitor(link_result=StatusParseError([ValueError("bad signal")], partial))

        snapshot = monitor.collect()

        assert snapshot.network is partial
        assert snapshot.link_error == "bad signal"

    def test_processes_per_name(self):
        """Test processes are grouped by watched name."""
        nginx = ProcessHandle(10, "nginx")
        broken = StubCache("viam-server", ProcessEnumerationError("denied"))
        monitor, _ = make_monitor(caches=[StubCache("nginx", [nginx]), broken])

        snapshot = monitor.collect()

        assert snapshot.processes == {"nginx": [nginx], "viam-server": []}

    def test_caches_built_from_config(self):
        """Test one process cache is created per configured name."""
        queue: Queue[HardwareSnapshot] = Queue()
        monitor = HardwareMonitor(
            queue,
            MonitorConfig(process_names=("nginx", "sshd"), disable_pid_caching=True),
            link_provider=LinkStatusProvider("wlan0", StubBackend(STATUS)),
        )

        names = [cache.name for cache in monitor._process_caches]
        assert names == ["nginx", "sshd"]
        assert all(cache.disable_pid_caching for cache in monitor._process_caches)


class TestHardwareMonitor:
    """Tests for the polling thread."""

    def test_monitor_creation(self):
        """Test HardwareMonitor takes its poll rate from the config."""
        monitor, _ = make_monitor(poll_rate=1.0)

        assert monitor.poll_rate == 1.0
        assert not monitor.is_running

    def test_poll_rate_minimum(self):
        """Test poll rate has a minimum value."""
        monitor, _ = make_monitor()

        monitor.poll_rate = 0.01
        assert monitor.poll_rate >= 0.1

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_poll_rate_must_be_finite(self, value):
        """Test a non-finite poll rate is rejected and the old rate kept."""
        monitor, _ = make_monitor()

        with pytest.raises(ValueError, match="finite"):
            monitor.poll_rate = value
        assert monitor.poll_rate == 2.0

    def test_monitor_start_stop(self):
        """Test HardwareMonitor can be started and stopped."""
        monitor, _ = make_monitor(poll_rate=0.1)

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self):
        """Test starting an already running monitor is safe."""
        monitor, _ = make_monitor(poll_rate=0.1)

        monitor.start()
        thread1 = monitor._thread
        monitor.start()
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()

    def test_monitor_queues_snapshots(self):
        """Test the polling thread keeps pushing snapshots."""
        cache = StubCache("nginx", [ProcessHandle(10, "nginx")])
        monitor, queue = make_monitor(caches=[cache], poll_rate=0.1)

        monitor.start()
        try:
            first = queue.get(timeout=2.0)
            second = queue.get(timeout=2.0)
        finally:
            monitor.stop()

        assert isinstance(first, HardwareSnapshot)
        assert isinstance(second, HardwareSnapshot)
        assert cache.calls >= 2

    def test_unexpected_error_does_not_stop_loop(self):
        """Test the loop survives an unexpected exception."""
        cache = StubCache("nginx", RuntimeError("unexpected"))
        monitor, queue = make_monitor(caches=[cache], poll_rate=0.1)

        monitor.start()
        try:
            deadline = time.monotonic() + 5.0
            while cache.calls < 3 and time.monotonic() < deadline:
                time.sleep(0.05)
            assert cache.calls >= 3
            assert monitor.is_running
        finally:
            monitor.stop()
        assert queue.empty()

    def test_daemon_thread(self):
        """Test monitor thread is a daemon thread."""
        monitor, _ = make_monitor(poll_rate=0.1)

        monitor.start()
        try:
            assert monitor._thread is not None
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "HardwareMonitor"
        finally:
            monitor.stop()
