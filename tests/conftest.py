"""Shared fixtures for kubedump tests.

Provides an in-memory cluster (``FakeClusterClient``) that speaks the same
list/watch/log boundary as the real client, plus payload factories, so the
controller can be exercised end to end without a Kubernetes API server.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import os
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from kubedump.cluster.client import ClusterClient, ResourceList, WatchEvent, WatchEventType
from kubedump.controller import Controller
from kubedump.errors import ClusterError
from kubedump.models.config import ControllerConfig, QueueConfig
from kubedump.models.resource import HandleKind, Resource, ResourceKind

FAKE_LOGS = b"fake logs\n"

# ---------------------------------------------------------------------------
# Fake cluster
# ---------------------------------------------------------------------------


class FakeClusterClient(ClusterClient):
    """An in-memory API server.

    ``create``/``update``/``delete`` change the stored objects and notify
    every open watch of that kind.  A watch opened with a resource version
    first replays the changes made after it.
    """

    def __init__(self) -> None:
        self._objects: dict[ResourceKind, dict[tuple[str, str], dict[str, Any]]] = {}
        self._history: list[tuple[int, ResourceKind, WatchEvent]] = []
        self._watchers: dict[ResourceKind, list[asyncio.Queue[WatchEvent]]] = {}
        self._versions = itertools.count(1)
        self._current_version = 0

        self.logs = FAKE_LOGS
        self.log_errors: list[Exception] = []
        self.log_calls: list[tuple[str, str, str, datetime | None]] = []
        self.failing_lists: set[ResourceKind] = set()
        self.closed = False

    # -- ClusterClient --------------------------------------------------

    async def list(self, kind: ResourceKind) -> ResourceList:
        if kind in self.failing_lists:
            raise ClusterError(f"list {kind} failed: 503 Service Unavailable", status=503)
        items = [copy.deepcopy(obj) for obj in self._objects.get(kind, {}).values()]
        return ResourceList(items=items, resource_version=str(self._current_version))

    async def watch(self, kind: ResourceKind, resource_version: str) -> AsyncIterator[WatchEvent]:
        queue: asyncio.Queue[WatchEvent] = asyncio.Queue()
        since = int(resource_version or 0)
        for version, event_kind, event in self._history:
            if event_kind is kind and version > since:
                queue.put_nowait(event)
        self._watchers.setdefault(kind, []).append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._watchers[kind].remove(queue)

    async def read_log(
        self,
        namespace: str,
        pod: str,
        container: str,
        since: datetime | None = None,
    ) -> bytes:
        self.log_calls.append((namespace, pod, container, since))
        if self.log_errors:
            raise self.log_errors.pop(0)
        return self.logs

    async def close(self) -> None:
        self.closed = True

    # -- Mutations ------------------------------------------------------

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self._apply(WatchEventType.ADDED, obj)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self._apply(WatchEventType.MODIFIED, obj)

    def delete(self, obj: dict[str, Any]) -> dict[str, Any]:
        return self._apply(WatchEventType.DELETED, obj)

    def _apply(self, event_type: WatchEventType, obj: dict[str, Any]) -> dict[str, Any]:
        kind = ResourceKind.parse(obj["kind"])
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        metadata.setdefault("uid", str(uuid.uuid4()))
        version = next(self._versions)
        self._current_version = version
        metadata["resourceVersion"] = str(version)

        # Callers keep mutating their dicts; the server holds its own copy.
        stored = copy.deepcopy(obj)
        key = (metadata["namespace"], metadata["name"])
        objects = self._objects.setdefault(kind, {})
        if event_type is WatchEventType.DELETED:
            objects.pop(key, None)
        else:
            objects[key] = stored

        event = WatchEvent(type=event_type, object=copy.deepcopy(stored))
        self._history.append((version, kind, event))
        for queue in self._watchers.get(kind, []):
            queue.put_nowait(event)
        return obj


# ---------------------------------------------------------------------------
# Payload factories
# ---------------------------------------------------------------------------


def _metadata(
    name: str,
    namespace: str,
    labels: dict[str, str] | None = None,
    owners: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "namespace": namespace, "uid": str(uuid.uuid4())}
    if labels:
        metadata["labels"] = dict(labels)
    if owners:
        metadata["ownerReferences"] = owners
    return metadata


def owner_reference(owner: dict[str, Any]) -> dict[str, Any]:
    return {
        "apiVersion": owner.get("apiVersion", "v1"),
        "kind": owner["kind"],
        "name": owner["metadata"]["name"],
        "uid": owner["metadata"]["uid"],
        "controller": True,
    }


def make_pod(
    name: str = "test-pod",
    namespace: str = "default",
    labels: dict[str, str] | None = None,
    containers: tuple[str, ...] = ("container",),
    config_maps: tuple[str, ...] = (),
    secrets: tuple[str, ...] = (),
    owners: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    volumes: list[dict[str, Any]] = [{"name": f"cm-{cm}", "configMap": {"name": cm}} for cm in config_maps]
    volumes += [{"name": f"secret-{s}", "secret": {"secretName": s}} for s in secrets]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": _metadata(name, namespace, labels, owners),
        "spec": {
            "containers": [{"name": c, "image": "busybox:latest"} for c in containers],
            "volumes": volumes,
        },
        "status": {"phase": "Running"},
    }


def make_job(
    name: str = "test-job",
    namespace: str = "default",
    match_labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _metadata(name, namespace),
        "spec": {"selector": {"matchLabels": dict(match_labels or {"job-name": name})}},
    }


def make_replica_set(
    name: str = "test-replicaset",
    namespace: str = "default",
    match_labels: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    owners: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "ReplicaSet",
        "metadata": _metadata(name, namespace, labels, owners),
        "spec": {"selector": {"matchLabels": dict(match_labels or {"app": name})}},
    }


def make_deployment(
    name: str = "test-deployment",
    namespace: str = "default",
    match_labels: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(name, namespace),
        "spec": {"selector": {"matchLabels": dict(match_labels or {"app": name})}},
    }


def make_service(
    name: str = "test-service",
    namespace: str = "default",
    selector: dict[str, str] | None = None,
) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(name, namespace),
        "spec": {"selector": dict(selector or {"app": name})},
    }


def make_config_map(name: str = "test-configmap", namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(name, namespace),
        "data": {"key": "value"},
    }


def make_secret(name: str = "test-secret", namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": _metadata(name, namespace),
        "type": "Opaque",
    }


def make_event(
    regarding: dict[str, Any],
    reason: str = "Testing",
    note: str = "some test event",
    event_type: str = "Normal",
    event_time: datetime | None = None,
    name: str | None = None,
) -> dict[str, Any]:
    when = event_time or datetime.now(UTC)
    meta = regarding["metadata"]
    return {
        "apiVersion": "events.k8s.io/v1",
        "kind": "Event",
        "metadata": _metadata(name or f"{meta['name']}.{uuid.uuid4().hex[:8]}", meta["namespace"]),
        "eventTime": when.isoformat().replace("+00:00", "Z"),
        "type": event_type,
        "reason": reason,
        "reportingController": "kubedump-test",
        "reportingInstance": "kubedump-test",
        "action": "Test",
        "note": note,
        "regarding": {
            "kind": regarding["kind"],
            "namespace": meta["namespace"],
            "name": meta["name"],
            "uid": meta["uid"],
        },
    }


def as_resource(obj: dict[str, Any], handle_kind: HandleKind = HandleKind.ADD) -> Resource:
    return Resource.from_raw(None, handle_kind, obj)


# ---------------------------------------------------------------------------
# Async helpers
# ---------------------------------------------------------------------------


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> None:
    """Poll *predicate* until it is true; fail the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


async def wait_for_path(path: str, timeout: float = 5.0) -> None:
    await wait_for(lambda: os.path.lexists(path), timeout=timeout)


async def wait_for_content(path: str, content: str, timeout: float = 5.0) -> None:
    def _has_content() -> bool:
        if not os.path.exists(path):
            return False
        with open(path, encoding="utf-8") as f:
            return content in f.read()

    await wait_for(_has_content, timeout=timeout)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture
def destination(tmp_path) -> str:
    return str(tmp_path / "kubedump")


@pytest.fixture
def controller_config(destination: str) -> ControllerConfig:
    return ControllerConfig(
        destination=destination,
        workers=4,
        log_sync_timeout=1.0,
        log_sync_interval=0.05,
        cache_sync_timeout=2.0,
    )


@pytest.fixture
async def start_controller(
    client: FakeClusterClient,
    controller_config: ControllerConfig,
) -> AsyncIterator[Callable[[str], Awaitable[Controller]]]:
    """Start a controller with the given filter; stopped at teardown."""
    started: list[Controller] = []

    async def _start(expression: str = "") -> Controller:
        controller = Controller(client, controller_config, QueueConfig(qps=1000.0, burst=1000))
        await controller.start(expression=expression)
        started.append(controller)
        return controller

    yield _start

    for controller in started:
        if controller.running:
            await controller.stop()
