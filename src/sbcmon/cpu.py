"""CPU usage sampling for sbcmon."""

import logging
import math
from dataclasses import fields

import psutil

from sbcmon.errors import CounterReadError
from sbcmon.models import CoreCounterSnapshot

logger = logging.getLogger(__name__)

# Returned by calculate_usage() when the counters went backwards
INVALID_USAGE = -1.0

TOTAL_KEY = "cpu"

_COUNTER_FIELDS = tuple(f.name for f in fields(CoreCounterSnapshot))


def calculate_usage(prev: CoreCounterSnapshot, curr: CoreCounterSnapshot) -> float:
    """
    Calculate the CPU usage percentage between two counter snapshots.

    Kernel counters are not guaranteed to be monotonic: they can appear to
    move backwards because of unlocked counter updates, CPU hotplug or a
    suspend/resume cycle. When that happens INVALID_USAGE is returned and the
    caller should keep its previous reading.

    Args:
        prev: Counters from the previous sample.
        curr: Counters from the current sample.

    Returns:
        Usage in percent, clamped to 0.0 - 100.0 and rounded to two decimals,
        or INVALID_USAGE.
    """
    prev_idle = prev.idle_time
    curr_idle = curr.idle_time
    prev_total = prev.total_time
    curr_total = curr.total_time

    if curr_total <= prev_total:
        return INVALID_USAGE
    if curr_idle < prev_idle:
        return INVALID_USAGE

    total_delta = curr_total - prev_total
    idle_delta = curr_idle - prev_idle

    usage = (total_delta - idle_delta) / total_delta * 100
    usage = min(max(usage, 0.0), 100.0)
    # Ties round away from zero, not to even
    return math.floor(usage * 100 + 0.5) / 100


def read_cpu_stats() -> dict[str, CoreCounterSnapshot]:
    """
    Read the per-core counter table.

    Keys are "cpu0" ... "cpuN" in core order, plus TOTAL_KEY holding the sum
    of all cores. Counters the platform does not report are read as 0.0.
    """
    try:
        raw_times = psutil.cpu_times(percpu=True)
    except (psutil.Error, OSError) as err:
        raise CounterReadError("failed to read CPU times") from err

    stats: dict[str, CoreCounterSnapshot] = {}
    totals = dict.fromkeys(_COUNTER_FIELDS, 0.0)
    for index, times in enumerate(raw_times):
        values = {name: float(getattr(times, name, 0.0)) for name in _COUNTER_FIELDS}
        stats[f"cpu{index}"] = CoreCounterSnapshot(**values)
        for name, value in values.items():
            totals[name] += value

    stats[TOTAL_KEY] = CoreCounterSnapshot(**totals)
    return stats


class CpuUsageTracker:
    """
    Turns successive counter tables into per-core usage percentages.

    Keeps the last known-good percentage of every core so an invalid sample
    repeats the previous reading instead of reporting a bogus value.
    """

    def __init__(self) -> None:
        self._prev: dict[str, CoreCounterSnapshot] = {}
        self._usage: dict[str, float] = {}

    @property
    def usage(self) -> dict[str, float]:
        """Get the last computed usage per core."""
        return dict(self._usage)

    def update(self, counters: dict[str, CoreCounterSnapshot]) -> dict[str, float]:
        """Feed a new counter table and return the usage per core."""
        for core, curr in counters.items():
            prev = self._prev.get(core)
            if prev is None:
                continue
            usage = calculate_usage(prev, curr)
            if usage == INVALID_USAGE:
                logger.debug("Counter regression on %s, keeping previous reading", core)
                continue
            self._usage[core] = usage

        # Cores that went offline must not linger
        for core in list(self._usage):
            if core not in counters:
                del self._usage[core]

        self._prev = dict(counters)
        return dict(self._usage)
