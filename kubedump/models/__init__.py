"""Core data structures for kubedump."""

from kubedump.models.config import KubedumpConfig
from kubedump.models.events import EventRecord, ObjectReference
from kubedump.models.resource import (
    HandleKind,
    OwnerReference,
    Resource,
    ResourceKind,
    VolumeReference,
)

__all__ = [
    "EventRecord",
    "HandleKind",
    "KubedumpConfig",
    "ObjectReference",
    "OwnerReference",
    "Resource",
    "ResourceKind",
    "VolumeReference",
]
