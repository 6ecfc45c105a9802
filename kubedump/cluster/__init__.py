"""Cluster API access: the client boundary and per-kind informers."""

from kubedump.cluster.client import ClusterClient, ResourceList, WatchEvent, WatchEventType
from kubedump.cluster.informer import EventHandler, Informer

__all__ = [
    "ClusterClient",
    "EventHandler",
    "Informer",
    "ResourceList",
    "WatchEvent",
    "WatchEventType",
]
