"""
CDPTap Replay Errors

Exception taxonomy for protocol log replay.
"""

from typing import Any, Optional


class ReplayError(Exception):
    """Base class for all replay errors."""


class MalformedLogError(ReplayError):
    """The recorded log is structurally invalid. Replay never starts."""

    def __init__(self, message: str, entry_index: Optional[int] = None):
        self.entry_index = entry_index
        if entry_index is not None:
            message = f"Entry {entry_index}: {message}"
        super().__init__(message)


class UnresolvedIdentifierError(ReplayError):
    """A parameter references an identifier with no substitution yet (strict mode)."""

    def __init__(self, kind: str, value: Any):
        self.kind = kind
        self.value = value
        super().__init__(f"No {kind} substitution recorded for {value!r}")


class TransportError(ReplayError):
    """
    The live session rejected a request or the channel closed.

    When raised by the engine, carries the position of the failing pair so
    debugging can resume exactly where the replay diverged.
    """

    def __init__(
        self,
        message: str,
        index: Optional[int] = None,
        method: Optional[str] = None,
        correlation_id: Optional[int] = None
    ):
        self.index = index
        self.method = method
        self.correlation_id = correlation_id
        super().__init__(message)


class HookError(ReplayError):
    """A built-in lifecycle hook failed while doing its own diagnostic work."""


class ReplayConfigError(ReplayError):
    """Invalid replay configuration."""
