"""ClusterClient backed by kubernetes-asyncio."""

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio import config as k8s_config  # type: ignore[import-untyped]
from kubernetes_asyncio import watch  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from kubedump.cluster.client import ClusterClient, ResourceList, WatchEvent, WatchEventType
from kubedump.errors import ClusterError
from kubedump.models.resource import ResourceKind
from kubedump.observability.logging import get_logger

_log = get_logger("cluster")

# Server-side timeout for one watch request; the informer reconnects after it.
_WATCH_TIMEOUT_SECONDS = 300


def _is_transient(status: int | None) -> bool:
    return status is None or status == 429 or status >= 500


def _status_message(body: Any) -> str:
    """The ``message`` of a ``metav1.Status`` error body, if there is one."""
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not isinstance(body, str) or not body:
        return ""
    try:
        status = json.loads(body)
    except ValueError:
        return body
    return str(status.get("message", "")) if isinstance(status, dict) else ""


def _cluster_error(action: str, exc: Exception) -> ClusterError:
    if isinstance(exc, ApiException):
        status = exc.status
        message = f"{action} failed: {status} {exc.reason}"
        detail = _status_message(exc.body)
        if detail:
            message = f"{message}: {detail}"
        return ClusterError(message, status=status, transient=_is_transient(status))
    return ClusterError(f"{action} failed: {exc}", transient=True)


async def load_kubernetes_config() -> None:
    """Configure kubernetes-asyncio from the in-cluster service account, or kubeconfig."""
    try:
        # load_incluster_config() is synchronous in kubernetes-asyncio
        k8s_config.load_incluster_config()
        _log.info("k8s client configured from in-cluster service account")
    except k8s_config.ConfigException:
        await k8s_config.load_kube_config()
        _log.info("k8s client configured from kubeconfig")


class KubernetesClusterClient(ClusterClient):
    """Talks to a real API server.

    Lists and watches skip model deserialisation and hand back the raw JSON
    payload, which is what gets written to disk.
    """

    def __init__(self, api_client: k8s_client.ApiClient | None = None) -> None:
        self._api_client = api_client or k8s_client.ApiClient()
        self._core = k8s_client.CoreV1Api(self._api_client)
        self._apps = k8s_client.AppsV1Api(self._api_client)
        self._batch = k8s_client.BatchV1Api(self._api_client)
        self._events = k8s_client.EventsV1Api(self._api_client)

    @classmethod
    async def create(cls) -> KubernetesClusterClient:
        await load_kubernetes_config()
        return cls()

    def _list_fn(self, kind: ResourceKind) -> Callable[..., Awaitable[Any]]:
        match kind:
            case ResourceKind.POD:
                return self._core.list_pod_for_all_namespaces
            case ResourceKind.SERVICE:
                return self._core.list_service_for_all_namespaces
            case ResourceKind.CONFIG_MAP:
                return self._core.list_config_map_for_all_namespaces
            case ResourceKind.SECRET:
                return self._core.list_secret_for_all_namespaces
            case ResourceKind.JOB:
                return self._batch.list_job_for_all_namespaces
            case ResourceKind.REPLICA_SET:
                return self._apps.list_replica_set_for_all_namespaces
            case ResourceKind.DEPLOYMENT:
                return self._apps.list_deployment_for_all_namespaces
            case ResourceKind.EVENT:
                return self._events.list_event_for_all_namespaces
        raise ValueError(f"no list call for kind {kind}")

    async def list(self, kind: ResourceKind) -> ResourceList:
        try:
            response = await self._list_fn(kind)(_preload_content=False)
            try:
                body = json.loads(await response.read())
            finally:
                response.release()
        except (ApiException, aiohttp.ClientError, TimeoutError) as exc:
            raise _cluster_error(f"list {kind}", exc) from exc

        items = []
        for item in body.get("items") or []:
            # List items omit kind and apiVersion.
            item.setdefault("kind", str(kind))
            items.append(item)
        return ResourceList(items=items, resource_version=str(body.get("metadata", {}).get("resourceVersion", "")))

    async def watch(self, kind: ResourceKind, resource_version: str) -> AsyncIterator[WatchEvent]:
        w = watch.Watch()
        try:
            async with w.stream(
                self._list_fn(kind),
                resource_version=resource_version,
                allow_watch_bookmarks=True,
                timeout_seconds=_WATCH_TIMEOUT_SECONDS,
            ) as stream:
                async for event in stream:
                    raw = event.get("raw_object")
                    if not isinstance(raw, dict):
                        continue
                    event_type = WatchEventType(event["type"])
                    if event_type is WatchEventType.ERROR:
                        code = raw.get("code")
                        raise ClusterError(
                            f"watch {kind} failed: {raw.get('message', '')}",
                            status=code,
                            transient=code != 410,
                        )
                    raw.setdefault("kind", str(kind))
                    yield WatchEvent(type=event_type, object=raw)
        except (ApiException, aiohttp.ClientError, TimeoutError) as exc:
            raise _cluster_error(f"watch {kind}", exc) from exc
        finally:
            w.stop()

    async def read_log(
        self,
        namespace: str,
        pod: str,
        container: str,
        since: datetime | None = None,
    ) -> bytes:
        kwargs: dict[str, Any] = {}
        if since is not None:
            elapsed = (datetime.now(UTC) - since).total_seconds()
            kwargs["since_seconds"] = max(1, math.ceil(elapsed))

        try:
            response = await self._core.read_namespaced_pod_log(
                name=pod,
                namespace=namespace,
                container=container,
                _preload_content=False,
                **kwargs,
            )
            try:
                return await response.read()
            finally:
                response.release()
        except (ApiException, aiohttp.ClientError, TimeoutError) as exc:
            raise _cluster_error(f"read logs {namespace}/{pod}/{container}", exc) from exc

    async def close(self) -> None:
        await self._api_client.close()
