"""Discovery and caching of processes matching a name."""

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import psutil

from sbcmon.errors import ProcessDetailError, ProcessEnumerationError, ProcessNotFound

logger = logging.getLogger(__name__)

# The kernel truncates /proc/<pid>/comm to 15 bytes
COMM_MAX_LEN = 15

SYNC_INTERVAL = 10.0

_UNRESOLVED = object()


class ProcessHandle:
    """
    A matched OS process.

    The executable path and command line are fixed when the process is
    created, so both are fetched on first access and then kept for the
    lifetime of the handle.
    """

    def __init__(self, pid: int, name: str, process: psutil.Process | None = None) -> None:
        self.pid = pid
        self.name = name
        self._process = process
        self._exe: object = _UNRESOLVED
        self._cmdline: object = _UNRESOLVED
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, name={self.name!r})"

    def exe(self) -> str:
        """Get the path of the process executable."""
        with self._lock:
            if self._exe is _UNRESOLVED:
                self._exe = self._query("exe", lambda proc: proc.exe())
            return self._exe

    def cmdline(self) -> str:
        """Get the command line of the process, arguments joined by spaces."""
        with self._lock:
            if self._cmdline is _UNRESOLVED:
                self._cmdline = self._query("cmdline", lambda proc: " ".join(proc.cmdline()))
            return self._cmdline

    def _query(self, what: str, getter: Callable[[psutil.Process], str]) -> str:
        if self._process is None:
            raise ProcessNotFound(f"no process attached to handle for pid {self.pid}")
        try:
            return getter(self._process)
        except (psutil.Error, OSError) as err:
            raise ProcessDetailError(f"failed to read {what} of pid {self.pid}") from err


class ProcessCache:
    """
    Keeps the set of processes whose name matches a target name.

    Lookups are serialized by a per-instance lock, so concurrent callers
    never trigger more than one scan at a time.
    """

    def __init__(
        self,
        name: str,
        disable_pid_caching: bool = False,
        *,
        proc_root: str | os.PathLike = "/proc",
        process_iter: Callable[[], Iterable[psutil.Process]] = psutil.process_iter,
        pid_exists: Callable[[int], bool] = psutil.pid_exists,
    ) -> None:
        """
        Initialize the ProcessCache.

        Args:
            name: Process name to look for. Names longer than the kernel's
                comm field are matched against the first command line argument.
            disable_pid_caching: Rescan the system on every lookup.
            proc_root: Mount point of procfs.
            process_iter: Enumerates the processes of the system.
            pid_exists: Tells whether a pid is still alive.
        """
        self._name = name
        self._disable_pid_caching = disable_pid_caching
        self._proc_root = Path(proc_root)
        self._process_iter = process_iter
        self._pid_exists = pid_exists
        self._processes: dict[int, ProcessHandle] = {}
        self._last_sync: float | None = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        """Get the process name being looked for."""
        return self._name

    @property
    def disable_pid_caching(self) -> bool:
        """Check if every lookup rescans the system."""
        return self._disable_pid_caching

    @property
    def last_sync(self) -> float | None:
        """Get the monotonic time of the last full scan."""
        return self._last_sync

    def get_processes(self) -> dict[int, ProcessHandle]:
        """
        Get the processes matching the target name, keyed by pid.

        Raises:
            ProcessEnumerationError: If the process list could not be read.
        """
        with self._lock:
            if self._processes:
                if not self._disable_pid_caching:
                    # Both outcomes serve the cache; the interval only shows in the logs
                    now = time.monotonic()
                    if self._last_sync is not None and self._last_sync + SYNC_INTERVAL < now:
                        logger.debug(
                            "Returning %d cached processes for %s, sync interval elapsed",
                            len(self._processes),
                            self._name,
                        )
                    else:
                        logger.debug(
                            "Returning %d cached processes for %s", len(self._processes), self._name
                        )
                    return dict(self._processes)
                logger.debug(
                    "Have %d cached processes for %s, but pid caching is disabled",
                    len(self._processes),
                    self._name,
                )
            else:
                logger.debug("No cached processes found for %s, performing a sync", self._name)

            self._purge_dead()
            found = self._scan()
            self._processes = found
            self._last_sync = time.monotonic()
            logger.debug("Synced processes for %s, found %d", self._name, len(found))
            return dict(found)

    def _purge_dead(self) -> None:
        for pid in list(self._processes):
            try:
                alive = self._pid_exists(pid)
            except (psutil.Error, OSError):
                alive = False
            if not alive:
                del self._processes[pid]

    def _scan(self) -> dict[int, ProcessHandle]:
        found: dict[int, ProcessHandle] = {}
        try:
            for proc in self._process_iter():
                handle = self._match(proc)
                if handle is not None:
                    found[handle.pid] = handle
        except (psutil.Error, OSError) as err:
            raise ProcessEnumerationError("failed to get processes") from err
        return found

    def _match(self, proc: psutil.Process) -> ProcessHandle | None:
        pid = proc.pid
        if len(self._name) <= COMM_MAX_LEN:
            try:
                comm = self._read_comm(pid)
            except OSError as err:
                logger.debug("Failed to get process name for PID %d: %s", pid, err)
                return None
            if comm == self._name:
                logger.debug("Found process %s with PID %d", comm, pid)
                return ProcessHandle(pid, comm, proc)
            return None

        try:
            arg0 = self._read_first_arg(pid)
        except OSError as err:
            logger.debug("Failed to get process cmdline for PID %d: %s", pid, err)
            return None
        if not arg0:
            return None
        base = os.path.basename(arg0)
        if base == self._name:
            logger.debug("Found process %s with PID %d", base, pid)
            return ProcessHandle(pid, base, proc)
        if arg0 == self._name:
            logger.debug("Found process %s with PID %d", arg0, pid)
            return ProcessHandle(pid, arg0, proc)
        return None

    def _read_comm(self, pid: int) -> str:
        contents = (self._proc_root / str(pid) / "comm").read_text(errors="replace")
        return contents.removesuffix("\n")

    def _read_first_arg(self, pid: int) -> str:
        data = (self._proc_root / str(pid) / "cmdline").read_bytes()
        return data.split(b"\x00")[0].decode(errors="replace")
