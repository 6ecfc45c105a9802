"""Incremental container log synchronisation."""

from __future__ import annotations

import asyncio
import os
import threading
from datetime import UTC, datetime
from typing import IO

from kubedump.cluster.client import ClusterClient
from kubedump.errors import ClusterError, LogStreamError
from kubedump.models.resource import Resource
from kubedump.tree.files import create_path_parents
from kubedump.tree.paths import ResourcePathBuilder

StreamKey = tuple[str, str, str]


def container_log_path(base: str, pod: Resource, container: str) -> str:
    """``<pod dir>/logs/<container>.log``."""
    pod_dir = ResourcePathBuilder(base=base).with_resource(pod).build()
    return os.path.join(pod_dir, "logs", f"{container}.log")


class LogStream:
    """One container's log file, appended to on every :meth:`sync`.

    The timestamp of the last successful sync only moves forward; each sync
    asks the cluster for lines emitted since then.
    """

    def __init__(
        self,
        client: ClusterClient,
        pod: Resource,
        container: str,
        path: str,
        handle: IO[bytes],
        timeout: float,
    ) -> None:
        self._client = client
        self.pod = pod
        self.container = container
        self.path = path
        self._handle = handle
        self._timeout = timeout
        self._last_sync: datetime | None = None

    @classmethod
    def open(
        cls,
        client: ClusterClient,
        pod: Resource,
        container: str,
        base_path: str,
        timeout: float = 5.0,
    ) -> LogStream:
        path = container_log_path(base_path, pod, container)
        create_path_parents(path)
        handle = open(path, "ab")
        return cls(client, pod, container, path, handle, timeout)

    @property
    def key(self) -> StreamKey:
        return (self.pod.namespace, self.pod.name, self.container)

    @property
    def last_sync(self) -> datetime | None:
        return self._last_sync

    @property
    def closed(self) -> bool:
        return self._handle.closed

    async def sync(self) -> int:
        """Append everything logged since the last sync; returns bytes written.

        Raises:
            LogStreamError: the logs could not be fetched or appended.
        """
        if self._handle.closed:
            raise LogStreamError(f"log stream for {self.pod}/{self.container} is closed")

        now = datetime.now(UTC)
        try:
            data = await asyncio.wait_for(
                self._client.read_log(self.pod.namespace, self.pod.name, self.container, since=self._last_sync),
                timeout=self._timeout,
            )
        except TimeoutError as exc:
            raise LogStreamError(
                f"timed out after {self._timeout}s reading logs for {self.pod}/{self.container}"
            ) from exc
        except ClusterError as exc:
            raise LogStreamError(f"could not read logs for {self.pod}/{self.container}: {exc}") from exc

        if self._handle.closed:
            # Closed while the fetch was in flight.
            raise LogStreamError(f"log stream for {self.pod}/{self.container} was closed during sync")
        try:
            if data:
                self._handle.write(data)
                self._handle.flush()
        except (OSError, ValueError) as exc:
            raise LogStreamError(f"could not write logs for {self.pod}/{self.container}: {exc}") from exc
        self._last_sync = now
        return len(data)

    def close(self) -> None:
        if self._handle.closed:
            raise LogStreamError(f"log stream for {self.pod}/{self.container} is already closed")
        self._handle.close()


class LogStreamRegistry:
    """The open log streams, keyed by (namespace, pod, container)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._streams: dict[StreamKey, LogStream] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._streams

    def add(self, stream: LogStream) -> bool:
        """Register *stream*; returns False if one already exists for its key."""
        with self._lock:
            if stream.key in self._streams:
                return False
            self._streams[stream.key] = stream
            return True

    def pop(self, key: StreamKey) -> LogStream | None:
        with self._lock:
            return self._streams.pop(key, None)

    def snapshot(self) -> list[LogStream]:
        with self._lock:
            return list(self._streams.values())

    def drain(self) -> list[LogStream]:
        """Remove and return every stream."""
        with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
            return streams
