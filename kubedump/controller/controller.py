"""The event controller.

Watches every supported kind through one informer each, decides which
resources belong in the dump (the filter matches them, or an owner already
in the dump claims them), and turns every decision into Jobs on a shared
work queue.  A bounded pool of worker tasks drains the queue: writing
descriptions, appending event lines, creating owner links and syncing
container logs.

Informer handlers never touch the filesystem or the network; all I/O happens
inside Jobs.
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
from functools import partial
from typing import Any

from kubedump.cluster.client import ClusterClient
from kubedump.cluster.informer import Informer
from kubedump.controller.job import Job, JobFn
from kubedump.controller.matcher import matcher_for
from kubedump.controller.queue import WorkQueue, default_controller_rate_limiter
from kubedump.controller.store import CorrelationStore
from kubedump.controller.stream import LogStream, LogStreamRegistry
from kubedump.errors import (
    CacheSyncError,
    ClusterError,
    ControllerStateError,
    LogStreamError,
    PathBuilderError,
    ResourceNotFoundError,
    UnsupportedResourceError,
)
from kubedump.filter import Expression, parse
from kubedump.models.config import ControllerConfig, QueueConfig
from kubedump.models.events import EventRecord
from kubedump.models.resource import HandleKind, Resource, ResourceKind
from kubedump.observability.logging import get_logger
from kubedump.observability.metrics import (
    events_dropped_total,
    events_handled_total,
    jobs_total,
    links_total,
    log_sync_total,
)
from kubedump.tree.files import append_event_line, dump_resource_description, events_path, link_to_parent
from kubedump.tree.paths import ResourcePathBuilder

WATCHED_KINDS: tuple[ResourceKind, ...] = (
    ResourceKind.POD,
    ResourceKind.SERVICE,
    ResourceKind.SECRET,
    ResourceKind.CONFIG_MAP,
    ResourceKind.JOB,
    ResourceKind.REPLICA_SET,
    ResourceKind.DEPLOYMENT,
    ResourceKind.EVENT,
)

_SHUTDOWN_GRACE_SECONDS = 15

# Log reads for containers that are not running yet fail with these in the message.
_PENDING_CONTAINER_MARKERS = ("ContainerCreating", "PodInitializing")


class Controller:
    """Stopped -> Running -> Stopped.

    ``start`` and ``stop`` raise :class:`ControllerStateError` when called in
    the wrong state and leave the controller untouched.
    """

    def __init__(
        self,
        client: ClusterClient,
        config: ControllerConfig | None = None,
        queue_config: QueueConfig | None = None,
    ) -> None:
        self._client = client
        self._config = config or ControllerConfig()
        self._queue_config = queue_config or QueueConfig()
        self._base = self._config.destination

        self._store = CorrelationStore()
        self._streams = LogStreamRegistry()
        self._informers: dict[ResourceKind, Informer] = {}
        self._queue: WorkQueue[Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._expression: Expression | None = None
        self._stop_event = asyncio.Event()
        self._start_time = datetime.now(UTC)
        self._log_sync_job: Job | None = None

        self._running = False
        self._log = get_logger("controller")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def base_path(self) -> str:
        return self._base

    @property
    def store(self) -> CorrelationStore:
        return self._store

    @property
    def streams(self) -> LogStreamRegistry:
        return self._streams

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, workers: int | None = None, expression: Expression | str | None = None) -> None:
        """Start watching and writing.

        Raises:
            ControllerStateError: already running.
            CacheSyncError: the informers did not finish listing in time.
            FilterParseError: *expression* is a string that does not parse.
        """
        if self._running:
            raise ControllerStateError("controller is already running")

        if expression is None:
            expression = self._config.filter
        if isinstance(expression, str):
            expression = parse(expression)
        worker_count = workers if workers is not None else self._config.workers

        os.makedirs(self._base, exist_ok=True)

        self._expression = expression
        self._stop_event = asyncio.Event()
        self._queue = WorkQueue(default_controller_rate_limiter(self._queue_config.qps, self._queue_config.burst))
        # Events emitted before this point are history, not part of the dump.
        self._start_time = datetime.now(UTC)

        self._informers = {kind: Informer(self._client, kind) for kind in WATCHED_KINDS}
        for informer in self._informers.values():
            informer.add_handler(self)
            informer.start()

        try:
            await asyncio.wait_for(
                asyncio.gather(*(informer.wait_for_sync() for informer in self._informers.values())),
                timeout=self._config.cache_sync_timeout,
            )
        except TimeoutError as exc:
            unsynced = [str(kind) for kind, informer in self._informers.items() if not informer.has_synced]
            self._log.error("informer caches did not sync", kinds=unsynced, timeout=self._config.cache_sync_timeout)
            await self._stop_informers()
            self._queue.shutdown()
            self._queue = None
            self._expression = None
            raise CacheSyncError(f"timed out waiting for caches to sync: {', '.join(unsynced)}") from exc

        self._workers = [
            asyncio.create_task(self._worker(index), name=f"kubedump-worker-{index}") for index in range(worker_count)
        ]

        self._log_sync_job = Job(fn=self._sync_logs, description="sync container logs")
        self._queue.add(self._log_sync_job)

        self._running = True
        self._log.info("controller started", workers=worker_count, destination=self._base)

    async def stop(self) -> None:
        """Stop informers, drain the queue, join the workers and close every log stream.

        Raises:
            ControllerStateError: not running.
        """
        if not self._running:
            raise ControllerStateError("controller is not running")

        self._running = False
        self._stop_event.set()

        await self._stop_informers()

        assert self._queue is not None
        try:
            await asyncio.wait_for(self._queue.shutdown_with_drain(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            self._log.warning("work queue did not drain", timeout=_SHUTDOWN_GRACE_SECONDS, remaining=len(self._queue))

        pending: set[asyncio.Task[None]] = set()
        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=_SHUTDOWN_GRACE_SECONDS)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._workers = []

        for stream in self._streams.drain():
            try:
                stream.close()
            except LogStreamError as exc:
                self._log.warning("log stream close failed", error=str(exc))

        self._queue = None
        self._expression = None
        self._log.info("controller stopped")

    async def _stop_informers(self) -> None:
        await asyncio.gather(*(informer.stop() for informer in self._informers.values()))

    # ------------------------------------------------------------------
    # Informer handlers
    # ------------------------------------------------------------------

    def on_add(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        self._resource_handler(kind, HandleKind.ADD, obj)

    def on_update(self, kind: ResourceKind, old: dict[str, Any], new: dict[str, Any]) -> None:
        self._resource_handler(kind, HandleKind.UPDATE, new)

    def on_delete(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        self._resource_handler(kind, HandleKind.DELETE, obj)

    def _resource_handler(self, kind: ResourceKind, handle_kind: HandleKind, obj: dict[str, Any]) -> None:
        if self._queue is None or self._expression is None:
            return

        try:
            resource = Resource.from_raw(kind, handle_kind, obj)
        except UnsupportedResourceError as exc:
            events_dropped_total.labels(reason="unsupported").inc()
            self._log.warning("dropping malformed payload", kind=str(kind), error=str(exc))
            return

        events_handled_total.labels(kind=str(kind), handle=str(handle_kind)).inc()

        if resource.kind is ResourceKind.EVENT:
            self._handle_event(resource)
        else:
            self._handle_resource(resource)

    def _is_wanted(self, resource: Resource) -> bool:
        assert self._expression is not None
        return self._expression.matches(resource) or self._store.is_claimed(resource)

    def _handle_event(self, event: Resource) -> None:
        if event.handle_kind is HandleKind.DELETE:
            return

        try:
            record = EventRecord.from_resource(event)
        except UnsupportedResourceError as exc:
            events_dropped_total.labels(reason="unsupported").inc()
            self._log.warning("dropping malformed event", name=event.name, error=str(exc))
            return

        if self._is_stale(record):
            events_dropped_total.labels(reason="stale").inc()
            return

        regarding = self._resolve(record)
        if regarding is None:
            events_dropped_total.labels(reason="unresolved").inc()
            self._log.debug(
                "event regards an unknown resource",
                kind=record.regarding.kind,
                namespace=record.regarding.namespace,
                name=record.regarding.name,
            )
            return

        if not self._is_wanted(regarding):
            events_dropped_total.labels(reason="filtered").inc()
            return

        self._enqueue(partial(self._write_event, regarding, record), f"event {record.reason} for {regarding}")

    def _is_stale(self, record: EventRecord) -> bool:
        if record.event_time is None:
            return False
        # core/v1 timestamps only carry whole seconds.
        return record.event_time < self._start_time.replace(microsecond=0)

    def _resolve(self, record: EventRecord) -> Resource | None:
        try:
            kind = ResourceKind.parse(record.regarding.kind)
        except UnsupportedResourceError:
            return None
        informer = self._informers.get(kind)
        if informer is None:
            return None
        raw = informer.get(record.regarding.namespace, record.regarding.name)
        if raw is None:
            return None
        try:
            return Resource.from_raw(kind, HandleKind.ADD, raw)
        except UnsupportedResourceError as exc:
            self._log.warning("cached resource is malformed", kind=str(kind), error=str(exc))
            return None

    def _handle_resource(self, resource: Resource) -> None:
        owners = self._store.get_resources(resource)
        claimed_owners = [owner for owner in owners if self._store.is_claimed(owner)]
        wanted = self._is_wanted(resource) or bool(claimed_owners)

        if resource.handle_kind is HandleKind.DELETE:
            try:
                self._store.remove_resource(resource)
            except ResourceNotFoundError as exc:
                self._log.debug("deleted resource was not correlated", resource=str(resource), error=str(exc))
            if wanted:
                self._enqueue(partial(self._describe, resource), f"describe deleted {resource}")
                for container in resource.containers:
                    self._enqueue(partial(self._close_stream, resource, container), f"close logs {resource}/{container}")
            return

        matcher = matcher_for(resource)
        if matcher is not None:
            self._store.add_resource(resource, matcher)

        if not wanted:
            events_dropped_total.labels(reason="filtered").inc()
            return

        if self._store.claim(resource):
            self._log.debug("claimed resource", resource=str(resource))
        self._on_claimed(resource)

        for owner in claimed_owners:
            self._link(owner, resource)
        for dependent in self._store.get_dependents(resource):
            self._adopt(resource, dependent)

    def _on_claimed(self, resource: Resource) -> None:
        self._enqueue(partial(self._describe, resource), f"describe {resource}")
        if resource.kind is ResourceKind.POD:
            for container in resource.containers:
                if (resource.namespace, resource.name, container) not in self._streams:
                    self._enqueue(partial(self._open_stream, resource, container), f"open logs {resource}/{container}")

    def _adopt(self, owner: Resource, dependent: Resource) -> None:
        """Pull *dependent* into the dump under *owner*, then its own dependents."""
        self._link(owner, dependent)
        if not self._store.claim(dependent):
            return
        self._on_claimed(dependent)
        for next_dependent in self._store.get_dependents(dependent):
            self._adopt(dependent, next_dependent)

    def _link(self, owner: Resource, dependent: Resource) -> None:
        if not self._store.add_edge(owner, dependent):
            return
        builder = ResourcePathBuilder(base=self._base).with_resource(dependent).with_parent(owner)
        self._enqueue(partial(self._write_link, builder), f"link {dependent} under {owner}")

    def _enqueue(self, fn: JobFn, description: str) -> None:
        if self._queue is None:
            return
        self._queue.add(Job(fn=fn, description=description))

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def _describe(self, resource: Resource) -> None:
        try:
            dump_resource_description(self._base, resource)
        except OSError as exc:
            self._log.error(
                "could not write description",
                kind=str(resource.kind),
                namespace=resource.namespace,
                name=resource.name,
                error=str(exc),
            )

    async def _write_event(self, regarding: Resource, record: EventRecord) -> None:
        path = events_path(self._base, regarding)
        try:
            append_event_line(path, record)
        except OSError as exc:
            self._log.error("could not write event", path=path, reason=record.reason, error=str(exc))

    async def _write_link(self, builder: ResourcePathBuilder) -> None:
        try:
            created = link_to_parent(builder)
        except (OSError, PathBuilderError) as exc:
            links_total.labels(outcome="error").inc()
            self._log.error(
                "could not link resource",
                kind=builder.kind,
                namespace=builder.namespace,
                name=builder.name,
                parent_kind=builder.parent_kind,
                parent_name=builder.parent_name,
                error=str(exc),
            )
            return
        links_total.labels(outcome="created" if created else "exists").inc()

    async def _open_stream(self, pod: Resource, container: str) -> None:
        if not self._store.is_claimed(pod):
            # Deleted before this (possibly retried) job ran.
            return
        key = (pod.namespace, pod.name, container)
        stream = next((s for s in self._streams.snapshot() if s.key == key), None)
        if stream is None:
            try:
                stream = LogStream.open(self._client, pod, container, self._base, self._config.log_sync_timeout)
            except OSError as exc:
                self._log.error("could not open log file", pod=pod.name, container=container, error=str(exc))
                return
            if not self._streams.add(stream):
                stream.close()
                return

        try:
            await stream.sync()
            log_sync_total.labels(outcome="ok").inc()
        except LogStreamError as exc:
            cause = exc.__cause__
            if isinstance(cause, ClusterError) and cause.transient:
                # Let the queue retry the initial sync.
                raise ClusterError(str(cause), status=cause.status, transient=True) from exc
            self._log_sync_failure(stream, exc)

    async def _close_stream(self, pod: Resource, container: str) -> None:
        stream = self._streams.pop((pod.namespace, pod.name, container))
        if stream is None:
            return
        try:
            stream.close()
        except LogStreamError as exc:
            self._log.warning("log stream close failed", pod=pod.name, container=container, error=str(exc))

    async def _sync_logs(self) -> None:
        try:
            for stream in self._streams.snapshot():
                if stream.closed:
                    continue
                try:
                    await stream.sync()
                    log_sync_total.labels(outcome="ok").inc()
                except LogStreamError as exc:
                    self._log_sync_failure(stream, exc)
        finally:
            if not self._stop_event.is_set() and self._queue is not None and self._log_sync_job is not None:
                self._queue.add_after(self._log_sync_job, self._config.log_sync_interval)

    def _log_sync_failure(self, stream: LogStream, exc: LogStreamError) -> None:
        log_sync_total.labels(outcome="error").inc()
        message = str(exc)
        log_fn = self._log.debug if any(marker in message for marker in _PENDING_CONTAINER_MARKERS) else self._log.error
        log_fn(
            "log sync failed",
            namespace=stream.pod.namespace,
            pod=stream.pod.name,
            container=stream.container,
            error=message,
        )

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        log = self._log.bind(worker=index)

        while True:
            job = await queue.get()
            if job is None:
                return
            try:
                await job.run()
                queue.forget(job)
                jobs_total.labels(outcome="ok").inc()
            except ClusterError as exc:
                if exc.transient and queue.num_requeues(job) < self._queue_config.max_retries:
                    jobs_total.labels(outcome="retried").inc()
                    log.warning("job failed, retrying", job=str(job), error=str(exc), attempt=queue.num_requeues(job))
                    queue.add_rate_limited(job)
                else:
                    jobs_total.labels(outcome="failed").inc()
                    log.error("job failed", job=str(job), error=str(exc))
                    queue.forget(job)
            except Exception as exc:
                jobs_total.labels(outcome="failed").inc()
                log.error("job raised unexpectedly", job=str(job), error=str(exc))
                queue.forget(job)
            finally:
                queue.done(job)
