"""Exception hierarchy for kubedump."""

from __future__ import annotations


class KubedumpError(Exception):
    """Base class for every error raised by kubedump."""


class FilterParseError(KubedumpError, ValueError):
    """Raised when a filter expression cannot be compiled."""

    def __init__(self, message: str, text: str = "") -> None:
        super().__init__(message)
        self.text = text


class UnsupportedResourceError(KubedumpError):
    """Raised when a payload does not describe one of the supported kinds."""


class ResourceNotFoundError(KubedumpError, KeyError):
    """Raised when a lookup targets an entry that does not exist."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "resource not found"


class ControllerStateError(KubedumpError):
    """Raised on lifecycle misuse (start while running, stop while stopped)."""


class CacheSyncError(KubedumpError):
    """Raised when the informer caches never finish their initial listing."""


class ClusterError(KubedumpError):
    """Raised by cluster clients when an API call fails.

    ``transient`` marks failures worth retrying (timeouts, 5xx, 429).
    """

    def __init__(self, message: str, status: int | None = None, transient: bool = True) -> None:
        super().__init__(message)
        self.status = status
        self.transient = transient


class LogStreamError(KubedumpError):
    """Raised when a container log stream cannot be synced or closed."""


class PathBuilderError(KubedumpError, ValueError):
    """Raised when a resource path cannot be built from the given fields."""
