"""Matchers decide whether one resource belongs to another.

Each owner-capable resource registers a matcher built from its own payload
(a Service's selector, a Job's label selector, a Pod's volumes).  The store
asks every registered matcher whether a candidate resource is one of its
dependents.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from kubedump.models.resource import Resource, ResourceKind, VolumeReference


class Matcher(ABC):
    @abstractmethod
    def matches(self, candidate: Resource) -> bool:
        """True if *candidate* is a dependent of the matcher's owner."""


def _kind_allowed(kinds: frozenset[ResourceKind], candidate: Resource) -> bool:
    return not kinds or candidate.kind in kinds


@dataclass(frozen=True)
class NullMatcher(Matcher):
    """Matches nothing; registers resources that can only be dependents."""

    def matches(self, candidate: Resource) -> bool:
        return False


@dataclass(frozen=True)
class LabelMatcher(Matcher):
    """Candidate labels must contain every fixed label; no labels matches everything."""

    labels: Mapping[str, str] = field(default_factory=dict)
    kinds: frozenset[ResourceKind] = frozenset()

    def matches(self, candidate: Resource) -> bool:
        if not _kind_allowed(self.kinds, candidate):
            return False
        return all(candidate.labels.get(key) == value for key, value in self.labels.items())


@dataclass(frozen=True)
class SelectorRequirement:
    key: str
    operator: str
    values: tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        match self.operator:
            case "In":
                return self.key in labels and labels[self.key] in self.values
            case "NotIn":
                return self.key not in labels or labels[self.key] not in self.values
            case "Exists":
                return self.key in labels
            case "DoesNotExist":
                return self.key not in labels
            case _:
                return False


@dataclass(frozen=True)
class LabelSelectorMatcher(Matcher):
    """A ``metav1.LabelSelector``: matchLabels and matchExpressions are ANDed.

    An empty selector matches every candidate of an allowed kind.
    """

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: tuple[SelectorRequirement, ...] = ()
    kinds: frozenset[ResourceKind] = frozenset()

    @classmethod
    def from_selector(
        cls,
        selector: Mapping[str, Any],
        kinds: Iterable[ResourceKind] = (),
    ) -> LabelSelectorMatcher:
        expressions = tuple(
            SelectorRequirement(
                key=str(expr.get("key", "")),
                operator=str(expr.get("operator", "")),
                values=tuple(str(v) for v in expr.get("values") or []),
            )
            for expr in selector.get("matchExpressions") or []
            if isinstance(expr, dict)
        )
        labels = {str(k): str(v) for k, v in (selector.get("matchLabels") or {}).items()}
        return cls(match_labels=labels, match_expressions=expressions, kinds=frozenset(kinds))

    def matches(self, candidate: Resource) -> bool:
        if not _kind_allowed(self.kinds, candidate):
            return False
        labels = candidate.labels
        if any(labels.get(key) != value for key, value in self.match_labels.items()):
            return False
        return all(requirement.matches(labels) for requirement in self.match_expressions)


@dataclass(frozen=True)
class VolumeMatcher(Matcher):
    """Matches the ConfigMaps and Secrets a Pod mounts, by name."""

    volumes: frozenset[VolumeReference] = frozenset()

    def matches(self, candidate: Resource) -> bool:
        return VolumeReference(candidate.kind, candidate.name) in self.volumes


_POD_ONLY = frozenset({ResourceKind.POD})


def matcher_for(resource: Resource) -> Matcher | None:
    """Build the matcher a resource registers in the correlation store.

    Returns None for kinds that take no part in correlation and for
    Services without a selector.
    """
    match resource.kind:
        case ResourceKind.SERVICE:
            selector = resource.selector
            if not selector:
                return None
            return LabelMatcher(labels={str(k): str(v) for k, v in selector.items()}, kinds=_POD_ONLY)
        case ResourceKind.JOB | ResourceKind.REPLICA_SET:
            if resource.selector is None:
                return NullMatcher()
            return LabelSelectorMatcher.from_selector(resource.selector, kinds=_POD_ONLY)
        case ResourceKind.DEPLOYMENT:
            if resource.selector is None:
                return NullMatcher()
            return LabelSelectorMatcher.from_selector(
                resource.selector,
                kinds=(ResourceKind.REPLICA_SET, ResourceKind.POD),
            )
        case ResourceKind.POD:
            return VolumeMatcher(volumes=frozenset(resource.volume_references))
        case ResourceKind.CONFIG_MAP | ResourceKind.SECRET:
            return NullMatcher()
        case _:
            return None
