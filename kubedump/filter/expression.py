"""Compiled filter expressions.

An expression tree is built once by :func:`kubedump.filter.parse` and then
evaluated against every resource the controller observes.  Every node is an
immutable dataclass, so two parses of the same text compare equal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from fnmatch import fnmatchcase

from kubedump.models.resource import Resource, ResourceKind


def wildcard_match(pattern: str, value: str) -> bool:
    """Shell-style match supporting only ``*`` and ``?``.

    ``[`` is escaped so that character classes are never interpreted.
    """
    return fnmatchcase(value, pattern.replace("[", "[[]"))


class Expression(ABC):
    """A predicate over resources."""

    @abstractmethod
    def matches(self, resource: Resource) -> bool:
        """Return True if *resource* satisfies this expression."""


@dataclass(frozen=True)
class TrueExpr(Expression):
    def matches(self, resource: Resource) -> bool:
        return True


@dataclass(frozen=True)
class FalseExpr(Expression):
    def matches(self, resource: Resource) -> bool:
        return False


@dataclass(frozen=True)
class NotExpr(Expression):
    inner: Expression

    def matches(self, resource: Resource) -> bool:
        return not self.inner.matches(resource)


@dataclass(frozen=True)
class AndExpr(Expression):
    left: Expression
    right: Expression

    def matches(self, resource: Resource) -> bool:
        return self.left.matches(resource) and self.right.matches(resource)


@dataclass(frozen=True)
class OrExpr(Expression):
    left: Expression
    right: Expression

    def matches(self, resource: Resource) -> bool:
        return self.left.matches(resource) or self.right.matches(resource)


@dataclass(frozen=True)
class ResourceExpr(Expression):
    """Matches one kind whose namespace and name both match their patterns."""

    kind: ResourceKind
    namespace_pattern: str
    name_pattern: str

    def matches(self, resource: Resource) -> bool:
        return (
            resource.kind == self.kind
            and wildcard_match(self.namespace_pattern, resource.namespace)
            and wildcard_match(self.name_pattern, resource.name)
        )


@dataclass(frozen=True)
class NamespaceExpr(Expression):
    """Matches any resource whose namespace matches the pattern."""

    namespace_pattern: str

    def matches(self, resource: Resource) -> bool:
        return wildcard_match(self.namespace_pattern, resource.namespace)


@dataclass(frozen=True)
class LabelExpr(Expression):
    """Matches resources carrying a label for every (key, value) pattern pair.

    Pairs are kept sorted so equality does not depend on the written order.
    The empty expression matches everything.
    """

    patterns: tuple[tuple[str, str], ...] = ()

    @classmethod
    def of(cls, patterns: Mapping[str, str]) -> LabelExpr:
        return cls(tuple(sorted(patterns.items())))

    def matches(self, resource: Resource) -> bool:
        labels = resource.labels
        for key_pattern, value_pattern in self.patterns:
            if not any(
                wildcard_match(key_pattern, key) and wildcard_match(value_pattern, value)
                for key, value in labels.items()
            ):
                return False
        return True
