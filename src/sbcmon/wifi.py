"""Wireless link status from the best diagnostic source available."""

import abc
import dataclasses
import logging
import os
import shutil
import subprocess
from collections.abc import Callable

from sbcmon.errors import (
    AdapterNotFound,
    LinkCommandError,
    LinkUnavailable,
    NotConnected,
    StatusParseError,
)
from sbcmon.models import NetworkStatus

logger = logging.getLogger(__name__)

PROC_NET_WIRELESS = "/proc/net/wireless"

# iw exits with -ENODEV when the device does not exist
IW_NO_DEVICE_EXIT = 237

NMCLI_FIELDS = "ACTIVE,NAME,SSID,CHAN,FREQ,RATE,SIGNAL,DEVICE"


def _run(args: list[str]) -> subprocess.CompletedProcess[str]:
    # Tool output may carry raw SSID bytes that are not valid UTF-8
    return subprocess.run(args, capture_output=True, text=True, errors="replace", check=True)


def _split_terse(line: str) -> list[str]:
    """Split an nmcli terse row on colons, honoring its backslash escapes."""
    fields = [""]
    chars = iter(line)
    for char in chars:
        if char == "\\":
            fields[-1] += next(chars, "")
        elif char == ":":
            fields.append("")
        else:
            fields[-1] += char
    return fields


def _field_value(line: str) -> str:
    """Get the text after the first colon of a "key: value" line."""
    return line.split(":", 1)[1].strip()


def _strip_unit(value: str, unit: str) -> str:
    return value.removesuffix(unit).strip()


def _first_token(value: str) -> str:
    tokens = value.split()
    if not tokens:
        raise ValueError("empty value")
    return tokens[0]


class LinkStatusBackend(abc.ABC):
    """A source of wireless link diagnostics for one adapter."""

    tool = ""

    def __init__(self, adapter: str) -> None:
        self.adapter = adapter

    def __repr__(self) -> str:
        return f"{type(self).__name__}(adapter={self.adapter!r})"

    @abc.abstractmethod
    def get_status(self) -> NetworkStatus:
        """
        Get the current link status of the adapter.

        Raises:
            AdapterNotFound: The adapter is unknown to the source.
            NotConnected: The adapter is not associated.
            StatusParseError: Some fields could not be parsed; the partial
                status is attached to the error.
            LinkCommandError: The source could not be queried.
        """


class IwBackend(LinkStatusBackend):
    """Backend using `iw`, which has the most detailed statistics."""

    tool = "iw"

    def get_status(self) -> NetworkStatus:
        try:
            result = _run([self.tool, "dev", self.adapter, "link"])
        except subprocess.CalledProcessError as err:
            if err.returncode == IW_NO_DEVICE_EXIT or "No such device" in (err.stderr or ""):
                raise AdapterNotFound(self.adapter) from err
            raise LinkCommandError(f"iw link failed with exit status {err.returncode}") from err
        except OSError as err:
            raise LinkCommandError("failed to run iw") from err

        status = self.parse_link(result.stdout)
        return self._enrich_with_station_dump(status)

    def parse_link(self, output: str) -> NetworkStatus:
        """Parse the output of `iw dev <adapter> link`."""
        if "Not connected" in output:
            raise NotConnected(self.adapter)
        if "No such device" in output:
            raise AdapterNotFound(self.adapter)

        errors: list[Exception] = []
        values: dict[str, object] = {"network_name": "", "signal_strength": 0}
        for line in output.splitlines():
            line = line.strip()
            if line.startswith("SSID:"):
                values["network_name"] = _field_value(line)
            elif line.startswith("freq:"):
                # Either "2412" or "5200.0"
                try:
                    values["frequency_mhz"] = int(float(_field_value(line)))
                except ValueError as err:
                    errors.append(ValueError(f"invalid frequency in {line!r}: {err}"))
            elif line.startswith("signal:"):
                try:
                    values["signal_strength"] = int(_strip_unit(_field_value(line), "dBm"))
                except ValueError as err:
                    values["signal_strength"] = -1
                    errors.append(ValueError(f"invalid signal in {line!r}: {err}"))
            elif line.startswith(("rx bitrate:", "tx bitrate:")):
                key = "rx_speed_mbps" if line.startswith("rx") else "tx_speed_mbps"
                try:
                    values[key] = float(_first_token(_field_value(line)))
                except ValueError as err:
                    values[key] = -1.0
                    errors.append(ValueError(f"invalid bitrate in {line!r}: {err}"))

        status = NetworkStatus(**values)
        if errors:
            raise StatusParseError(errors, status)
        return status

    def parse_station_dump(self, output: str, status: NetworkStatus) -> NetworkStatus:
        """
        Add retry and failure statistics from `iw dev <adapter> station dump`.

        These fields are optional, so unparsable lines are ignored.
        """
        prefixes = {
            "tx retries:": ("tx_retries", ""),
            "tx failed:": ("tx_failed", ""),
            "beacon signal avg:": ("beacon_signal_avg", "dBm"),
            "connected time:": ("connected_time_sec", "seconds"),
            "inactive time:": ("inactive_time_ms", "ms"),
        }
        extra: dict[str, int] = {}
        for line in output.splitlines():
            line = line.strip()
            for prefix, (key, unit) in prefixes.items():
                if line.startswith(prefix):
                    try:
                        extra[key] = int(_strip_unit(line[len(prefix):].strip(), unit))
                    except ValueError:
                        pass
                    break
        return dataclasses.replace(status, **extra)

    def _enrich_with_station_dump(self, status: NetworkStatus) -> NetworkStatus:
        try:
            result = _run([self.tool, "dev", self.adapter, "station", "dump"])
        except (subprocess.CalledProcessError, OSError) as err:
            logger.debug("iw station dump failed for %s: %s", self.adapter, err)
            return status
        return self.parse_station_dump(result.stdout, status)


class NmcliBackend(LinkStatusBackend):
    """Backend using NetworkManager's `nmcli`."""

    tool = "nmcli"

    def get_status(self) -> NetworkStatus:
        try:
            result = _run([self.tool, "-t", "-f", NMCLI_FIELDS, "dev", "wifi"])
        except subprocess.CalledProcessError as err:
            raise LinkCommandError(f"nmcli failed with exit status {err.returncode}") from err
        except OSError as err:
            raise LinkCommandError("failed to run nmcli") from err
        return self.parse(result.stdout)

    def parse(self, output: str) -> NetworkStatus:
        """
        Parse the terse network listing of `nmcli dev wifi`.

        Rows look like ACTIVE:NAME:SSID:CHAN:FREQ:RATE:SIGNAL:DEVICE, with
        colons inside a field escaped as "\\:". nmcli reports signal quality
        as a positive number, so it is negated.
        """
        adapter_found = False
        for line in output.splitlines():
            if not line.endswith(self.adapter):
                continue
            adapter_found = True
            if not line.startswith("yes:"):
                continue

            errors: list[Exception] = []
            col = _split_terse(line)
            try:
                signal_strength = -int(col[6])
            except (ValueError, IndexError) as err:
                signal_strength = -1
                errors.append(ValueError(f"invalid signal in {line!r}: {err}"))
            try:
                tx_speed = float(_first_token(col[5]))
            except (ValueError, IndexError) as err:
                tx_speed = -1.0
                errors.append(ValueError(f"invalid rate in {line!r}: {err}"))

            status = NetworkStatus(
                network_name=col[2] if len(col) > 2 else "",
                signal_strength=signal_strength,
                tx_speed_mbps=tx_speed,
            )
            if errors:
                raise StatusParseError(errors, status)
            return status

        if adapter_found:
            raise NotConnected(self.adapter)
        raise AdapterNotFound(self.adapter)


class ProcWirelessBackend(LinkStatusBackend):
    """Backend reading the kernel's /proc/net/wireless, with basic statistics only."""

    tool = PROC_NET_WIRELESS

    def __init__(self, adapter: str, path: str | os.PathLike = PROC_NET_WIRELESS) -> None:
        super().__init__(adapter)
        self.path = path

    def get_status(self) -> NetworkStatus:
        try:
            with open(self.path, encoding="utf-8", errors="replace") as f:
                contents = f.read()
        except OSError as err:
            raise LinkCommandError(f"failed to read {self.path}") from err
        return self.parse(contents)

    def parse(self, output: str) -> NetworkStatus:
        """
        Parse the wireless statistics table.

        The network name is not available from this source.
        """
        for line in output.splitlines():
            col = line.split()
            if not col or col[0].removesuffix(":") != self.adapter:
                continue

            errors: list[Exception] = []
            signal_strength = 0
            link = 0.0
            try:
                signal_strength = int(col[3].removesuffix("."))
            except (ValueError, IndexError) as err:
                errors.append(ValueError(f"invalid signal level in {line!r}: {err}"))
            try:
                link = float(col[2])
            except (ValueError, IndexError) as err:
                errors.append(ValueError(f"invalid link quality in {line!r}: {err}"))

            status = NetworkStatus(
                network_name="unknown",
                signal_strength=signal_strength,
                tx_speed_mbps=link,
            )
            if errors:
                raise StatusParseError(errors, status)
            return status

        raise AdapterNotFound(self.adapter)


def select_backend(
    adapter: str,
    *,
    which: Callable[[str], str | None] = shutil.which,
    proc_wireless: str | os.PathLike = PROC_NET_WIRELESS,
) -> LinkStatusBackend | None:
    """
    Pick the richest wireless diagnostic source present on the system.

    The order is iw, then nmcli, then /proc/net/wireless. Returns None when
    none of them exists.
    """
    if which(IwBackend.tool):
        logger.info("Using iw for wifi stats")
        return IwBackend(adapter)
    if which(NmcliBackend.tool):
        logger.info("Using nmcli for wifi stats")
        return NmcliBackend(adapter)
    if os.path.exists(proc_wireless):
        logger.info("Using %s for wifi stats", proc_wireless)
        return ProcWirelessBackend(adapter, proc_wireless)
    logger.info("No wifi stats source available")
    return None


class LinkStatusProvider:
    """
    Wireless link status of one adapter.

    The backend is chosen once, when the provider is created. Backends hold
    no lock, so a shared provider must be serialized by its callers.
    """

    def __init__(self, adapter: str, backend: LinkStatusBackend | None = None) -> None:
        self._adapter = adapter
        self._backend = backend if backend is not None else select_backend(adapter)

    @property
    def adapter(self) -> str:
        """Get the adapter this provider reports on."""
        return self._adapter

    @property
    def backend(self) -> LinkStatusBackend | None:
        """Get the selected backend, or None when nothing is available."""
        return self._backend

    @property
    def available(self) -> bool:
        """Check if a diagnostic source was found."""
        return self._backend is not None

    def get_status(self) -> NetworkStatus:
        """Get the link status from the selected backend."""
        if self._backend is None:
            raise LinkUnavailable("no wifi stats source available")
        return self._backend.get_status()
