"""Tests for sbcmon data models."""

import dataclasses

import pytest

from sbcmon.models import CoreCounterSnapshot, NetworkStatus


def test_core_counter_snapshot_defaults():
    """Test CoreCounterSnapshot counters default to zero."""
    snapshot = CoreCounterSnapshot()

    assert snapshot.user == 0.0
    assert snapshot.steal == 0.0
    assert snapshot.total_time == 0.0


def test_core_counter_snapshot_times():
    """Test idle, busy and total times are derived from the counters."""
    snapshot = CoreCounterSnapshot(
        user=1.0,
        nice=2.0,
        system=3.0,
        idle=10.0,
        iowait=5.0,
        irq=0.5,
        softirq=0.25,
        steal=0.25,
    )

    assert snapshot.idle_time == 15.0
    assert snapshot.busy_time == 7.0
    assert snapshot.total_time == 22.0


def test_core_counter_snapshot_is_frozen():
    """Test that CoreCounterSnapshot is immutable (frozen)."""
    snapshot = CoreCounterSnapshot(user=1.0)

    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.user = 2.0


def test_network_status_enrichment_defaults():
    """Test optional NetworkStatus fields are zero-valued."""
    status = NetworkStatus(network_name="home", signal_strength=-50)

    assert status.tx_speed_mbps == 0.0
    assert status.rx_speed_mbps == 0.0
    assert status.frequency_mhz == 0
    assert status.tx_retries == 0
    assert status.tx_failed == 0
    assert status.beacon_signal_avg == 0
    assert status.connected_time_sec == 0
    assert status.inactive_time_ms == 0


def test_models_use_slots():
    """Test that the models use __slots__ for memory efficiency."""
    assert not hasattr(CoreCounterSnapshot(), "__dict__")
    assert not hasattr(NetworkStatus(network_name="x", signal_strength=0), "__dict__")
