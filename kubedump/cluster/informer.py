"""List-then-watch cache for one resource kind.

An informer lists every object of its kind, fills a local cache keyed by
namespace/name, dispatches an add for each listed object and flags itself
synced.  It then watches from the listed resource version, applying and
dispatching every change.  An expired resource version (410 Gone) triggers a
relist whose differences are dispatched as updates and deletes; any other
failure reconnects after an exponential backoff.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from kubedump.cluster.client import ClusterClient, WatchEventType
from kubedump.errors import ClusterError
from kubedump.models.resource import ResourceKind
from kubedump.observability.logging import get_logger

_INITIAL_BACKOFF = 1.0
_MAX_BACKOFF = 30.0

CacheKey = tuple[str, str]


class EventHandler(Protocol):
    def on_add(self, kind: ResourceKind, obj: dict[str, Any]) -> None: ...

    def on_update(self, kind: ResourceKind, old: dict[str, Any], new: dict[str, Any]) -> None: ...

    def on_delete(self, kind: ResourceKind, obj: dict[str, Any]) -> None: ...


def _key(obj: dict[str, Any]) -> CacheKey:
    metadata = obj.get("metadata") or {}
    return (str(metadata.get("namespace") or ""), str(metadata.get("name") or ""))


def _resource_version(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("resourceVersion") or "")


class Informer:
    def __init__(self, client: ClusterClient, kind: ResourceKind) -> None:
        self.kind = kind
        self._client = client
        self._handlers: list[EventHandler] = []
        self._cache: dict[CacheKey, dict[str, Any]] = {}
        self._resource_version = ""
        self._synced = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._log = get_logger("informer").bind(kind=str(kind))

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    @property
    def has_synced(self) -> bool:
        return self._synced.is_set()

    async def wait_for_sync(self) -> None:
        await self._synced.wait()

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        return self._cache.get((namespace, name))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"informer-{self.kind}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        backoff = _INITIAL_BACKOFF
        needs_list = True

        while True:
            try:
                if needs_list:
                    await self._list()
                    needs_list = False
                    backoff = _INITIAL_BACKOFF
                await self._watch()
                # Server closed the watch; resume from the last seen version.
                backoff = _INITIAL_BACKOFF
                continue
            except ClusterError as exc:
                if exc.status == 410:
                    self._log.info("resource version expired, relisting", resource_version=self._resource_version)
                    needs_list = True
                    continue
                self._log.warning("watch failed, backing off", error=str(exc), backoff=backoff)
            except Exception as exc:
                self._log.error("informer loop error, backing off", error=str(exc), backoff=backoff)

            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF)
            if not self._resource_version:
                needs_list = True

    async def _list(self) -> None:
        listing = await self._client.list(self.kind)
        previous = self._cache
        current = {_key(item): item for item in listing.items}
        self._cache = current
        self._resource_version = listing.resource_version

        for key, obj in current.items():
            old = previous.get(key)
            if old is None:
                self._dispatch_add(obj)
            elif _resource_version(old) != _resource_version(obj):
                self._dispatch_update(old, obj)
        for key, obj in previous.items():
            if key not in current:
                self._dispatch_delete(obj)

        if not self._synced.is_set():
            self._log.info("informer synced", count=len(current))
            self._synced.set()

    async def _watch(self) -> None:
        async for event in self._client.watch(self.kind, self._resource_version):
            obj = event.object
            version = _resource_version(obj)
            if version:
                self._resource_version = version

            if event.type is WatchEventType.BOOKMARK:
                continue

            key = _key(obj)
            if event.type is WatchEventType.DELETED:
                self._cache.pop(key, None)
                self._dispatch_delete(obj)
                continue

            old = self._cache.get(key)
            self._cache[key] = obj
            if old is None:
                self._dispatch_add(obj)
            else:
                self._dispatch_update(old, obj)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch_add(self, obj: dict[str, Any]) -> None:
        for handler in self._handlers:
            try:
                handler.on_add(self.kind, obj)
            except Exception as exc:
                self._log.error("add handler failed", name=_key(obj)[1], error=str(exc))

    def _dispatch_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        for handler in self._handlers:
            try:
                handler.on_update(self.kind, old, new)
            except Exception as exc:
                self._log.error("update handler failed", name=_key(new)[1], error=str(exc))

    def _dispatch_delete(self, obj: dict[str, Any]) -> None:
        for handler in self._handlers:
            try:
                handler.on_delete(self.kind, obj)
            except Exception as exc:
                self._log.error("delete handler failed", name=_key(obj)[1], error=str(exc))
