"""Exceptions raised by sbcmon."""

from sbcmon.models import NetworkStatus


class SbcmonError(Exception):
    """Base class for all sbcmon errors."""


class ConfigError(SbcmonError, ValueError):
    """Invalid monitor configuration."""


class CounterReadError(SbcmonError):
    """The CPU counter table could not be read."""


class ProcessNotFound(SbcmonError):
    """A process handle has no process to query."""


class ProcessDetailError(SbcmonError):
    """Reading a detail of a known process failed."""


class ProcessEnumerationError(SbcmonError):
    """Listing the processes of the system failed."""


class LinkStatusError(SbcmonError):
    """Base class for wireless link status errors."""


class AdapterNotFound(LinkStatusError):
    """The network adapter is absent from the diagnostic source."""

    def __init__(self, adapter: str) -> None:
        super().__init__(f"adapter {adapter!r} not found")
        self.adapter = adapter


class NotConnected(LinkStatusError):
    """The adapter exists but is not associated with a network."""

    def __init__(self, adapter: str) -> None:
        super().__init__(f"adapter {adapter!r} is not connected")
        self.adapter = adapter


class LinkUnavailable(LinkStatusError):
    """No wireless diagnostic backend exists on this system."""


class LinkCommandError(LinkStatusError):
    """A diagnostic tool or file could not be run or read."""


class StatusParseError(LinkStatusError):
    """
    One or more fields of a diagnostic output could not be parsed.

    Carries every field error and the partially populated status so the
    caller can decide whether to keep the partial reading.
    """

    def __init__(self, errors: list[Exception], partial: NetworkStatus) -> None:
        super().__init__("\n".join(str(err) for err in errors))
        self.errors = list(errors)
        self.partial = partial
