"""Monitor configuration."""

import math
from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any

from sbcmon.errors import ConfigError

MIN_POLL_RATE = 0.1


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """What to monitor and how often."""

    adapter: str = "wlan0"
    process_names: tuple[str, ...] = ()
    disable_pid_caching: bool = False
    poll_rate: float = 2.0  # seconds

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MonitorConfig":
        """
        Build a config from plain values, validating each of them.

        Raises:
            ConfigError: On an unknown key or a value of the wrong type.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown config keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        if "adapter" in data:
            adapter = data["adapter"]
            if not isinstance(adapter, str) or not adapter:
                raise ConfigError("adapter must be a non-empty string")
            values["adapter"] = adapter

        if "process_names" in data:
            names = data["process_names"]
            if isinstance(names, str) or not all(isinstance(n, str) and n for n in names):
                raise ConfigError("process_names must be a list of non-empty strings")
            # Keep the first occurrence of each name
            values["process_names"] = tuple(dict.fromkeys(names))

        if "disable_pid_caching" in data:
            if not isinstance(data["disable_pid_caching"], bool):
                raise ConfigError("disable_pid_caching must be a boolean")
            values["disable_pid_caching"] = data["disable_pid_caching"]

        if "poll_rate" in data:
            rate = data["poll_rate"]
            if isinstance(rate, bool) or not isinstance(rate, (int, float)):
                raise ConfigError("poll_rate must be a number")
            if not math.isfinite(rate):
                raise ConfigError("poll_rate must be a finite number")
            if rate < MIN_POLL_RATE:
                raise ConfigError(f"poll_rate must be at least {MIN_POLL_RATE} seconds")
            values["poll_rate"] = float(rate)

        return cls(**values)
