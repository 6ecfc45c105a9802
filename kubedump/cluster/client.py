"""The boundary between kubedump and the cluster API.

Payloads cross this boundary as plain JSON-like dicts in the API's camelCase
form; conversion to :class:`kubedump.models.Resource` happens in the
controller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from kubedump.models.resource import ResourceKind


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class WatchEvent:
    type: WatchEventType
    object: dict[str, Any]


@dataclass(frozen=True)
class ResourceList:
    items: list[dict[str, Any]] = field(default_factory=list)
    resource_version: str = ""


class ClusterClient(ABC):
    """List, watch and log access for the kinds kubedump follows.

    Implementations raise :class:`kubedump.errors.ClusterError` on API
    failures; ``status=410`` signals an expired resource version.
    """

    @abstractmethod
    async def list(self, kind: ResourceKind) -> ResourceList:
        """List every object of *kind* across all namespaces."""

    @abstractmethod
    def watch(self, kind: ResourceKind, resource_version: str) -> AsyncIterator[WatchEvent]:
        """Stream changes to *kind* starting after *resource_version*."""

    @abstractmethod
    async def read_log(
        self,
        namespace: str,
        pod: str,
        container: str,
        since: datetime | None = None,
    ) -> bytes:
        """Return the container's log output, optionally only lines newer than *since*."""

    async def close(self) -> None:
        """Release connections; the default does nothing."""
