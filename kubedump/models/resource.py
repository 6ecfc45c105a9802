"""Resource descriptors.

Every payload that enters kubedump from the cluster is converted exactly once,
at the boundary, into a :class:`Resource`.  Downstream components (filter,
correlation store, path model, controller) only ever see this closed form and
never re-inspect the raw payload's type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from kubedump.errors import UnsupportedResourceError


class ResourceKind(StrEnum):
    """The closed set of resource kinds kubedump watches."""

    POD = "Pod"
    SERVICE = "Service"
    JOB = "Job"
    REPLICA_SET = "ReplicaSet"
    DEPLOYMENT = "Deployment"
    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"
    EVENT = "Event"

    @classmethod
    def from_keyword(cls, keyword: str) -> ResourceKind:
        """Map a lower-case filter keyword (``pod``, ``replicaset``...) to a kind."""
        try:
            return _KEYWORDS[keyword]
        except KeyError:
            raise UnsupportedResourceError(f"unknown resource keyword '{keyword}'") from None

    @classmethod
    def parse(cls, value: str) -> ResourceKind:
        """Return the kind named by *value*; raise UnsupportedResourceError otherwise."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedResourceError(f"unsupported resource kind '{value}'") from None


_KEYWORDS: dict[str, ResourceKind] = {
    "pod": ResourceKind.POD,
    "service": ResourceKind.SERVICE,
    "job": ResourceKind.JOB,
    "replicaset": ResourceKind.REPLICA_SET,
    "deployment": ResourceKind.DEPLOYMENT,
    "configmap": ResourceKind.CONFIG_MAP,
    "secret": ResourceKind.SECRET,
}

# Keywords accepted by the filter language for resource expressions.
FILTER_KEYWORDS: frozenset[str] = frozenset(_KEYWORDS)


class HandleKind(StrEnum):
    """The watch notification that produced a resource snapshot."""

    ADD = "Add"
    UPDATE = "Update"
    DELETE = "Delete"


@dataclass(frozen=True)
class OwnerReference:
    """A metadata.ownerReferences entry."""

    kind: str
    name: str
    uid: str = ""


@dataclass(frozen=True)
class VolumeReference:
    """A ConfigMap or Secret referenced by one of a Pod's volumes."""

    kind: ResourceKind
    name: str


@dataclass(frozen=True)
class Resource:
    """An immutable snapshot of one cluster object.

    Identity is ``uid``; kind, namespace and name are display attributes.
    A later snapshot of the same object supersedes this one, it is never
    mutated in place.
    """

    kind: ResourceKind
    namespace: str
    name: str
    uid: str
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: tuple[OwnerReference, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    handle_kind: HandleKind = HandleKind.ADD

    @classmethod
    def from_raw(
        cls,
        kind: ResourceKind | str | None,
        handle_kind: HandleKind,
        raw: Any,
    ) -> Resource:
        """Build a Resource from a raw (camelCase, JSON-like) payload.

        ``kind`` may be omitted when the payload carries its own ``kind``.

        Raises:
            UnsupportedResourceError: the payload is not a mapping, has no
                name, or names a kind outside :class:`ResourceKind`.
        """
        if not isinstance(raw, dict):
            raise UnsupportedResourceError(f"value of type '{type(raw).__name__}' cannot be a resource")

        kind_name = kind if kind is not None else raw.get("kind")
        if not kind_name:
            raise UnsupportedResourceError("payload has no kind")
        resolved = ResourceKind.parse(str(kind_name))

        metadata = raw.get("metadata")
        if not isinstance(metadata, dict) or not metadata.get("name"):
            raise UnsupportedResourceError(f"{resolved} payload has no metadata.name")

        labels = metadata.get("labels") or {}
        owners = tuple(
            OwnerReference(
                kind=str(ref.get("kind", "")),
                name=str(ref.get("name", "")),
                uid=str(ref.get("uid", "")),
            )
            for ref in metadata.get("ownerReferences") or []
            if isinstance(ref, dict)
        )

        return cls(
            kind=resolved,
            namespace=str(metadata.get("namespace") or ""),
            name=str(metadata["name"]),
            uid=str(metadata.get("uid") or ""),
            labels={str(k): str(v) for k, v in labels.items()},
            owner_references=owners,
            raw=raw,
            handle_kind=handle_kind,
        )

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def spec(self) -> dict[str, Any]:
        spec = self.raw.get("spec")
        return spec if isinstance(spec, dict) else {}

    @property
    def containers(self) -> list[str]:
        """Names of the Pod's containers (empty for other kinds)."""
        if self.kind is not ResourceKind.POD:
            return []
        return [str(c["name"]) for c in self.spec.get("containers") or [] if isinstance(c, dict) and c.get("name")]

    @property
    def volume_references(self) -> list[VolumeReference]:
        """ConfigMaps and Secrets mounted by the Pod, including projected sources."""
        if self.kind is not ResourceKind.POD:
            return []

        refs: list[VolumeReference] = []
        for volume in self.spec.get("volumes") or []:
            if not isinstance(volume, dict):
                continue
            refs.extend(_volume_source_references(volume))
            projected = volume.get("projected") or {}
            for source in projected.get("sources") or []:
                if isinstance(source, dict):
                    refs.extend(_volume_source_references(source))
        return refs

    @property
    def selector(self) -> dict[str, Any] | None:
        """The ``spec.selector`` of a Service, Job, ReplicaSet or Deployment."""
        selector = self.spec.get("selector")
        return selector if isinstance(selector, dict) else None

    def is_owned_by(self, owner: Resource) -> bool:
        """True if an ownerReference on this resource names *owner*."""
        for ref in self.owner_references:
            if ref.uid and owner.uid:
                if ref.uid == owner.uid:
                    return True
            elif ref.kind == owner.kind and ref.name == owner.name:
                return True
        return False


def _volume_source_references(source: dict[str, Any]) -> list[VolumeReference]:
    refs = []
    config_map = source.get("configMap")
    if isinstance(config_map, dict) and config_map.get("name"):
        refs.append(VolumeReference(ResourceKind.CONFIG_MAP, str(config_map["name"])))
    secret = source.get("secret")
    if isinstance(secret, dict):
        # Volume sources use secretName, projected sources use name.
        name = secret.get("secretName") or secret.get("name")
        if name:
            refs.append(VolumeReference(ResourceKind.SECRET, str(name)))
    return refs
