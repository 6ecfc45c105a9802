"""In-memory correlation index.

Each observed resource is registered with the matcher built from its own
payload.  Lookups then answer "who owns this resource" and "what does this
resource own" within a namespace.  Links that were actually materialised on
disk are recorded as owner to dependent edges, and the set of resources the
controller decided to dump is tracked as *claimed*.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from kubedump.controller.matcher import Matcher
from kubedump.errors import ResourceNotFoundError
from kubedump.models.resource import Resource


def identity(resource: Resource) -> str:
    """The store key: the UID, or kind/namespace/name for payloads without one."""
    return resource.uid or str(resource)


@dataclass(frozen=True)
class _Entry:
    matcher: Matcher
    resource: Resource


class CorrelationStore:
    """Thread-safe map of resource identity to (matcher, resource).

    Only in-memory work happens under the lock; matchers never block.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._edges: dict[str, set[str]] = {}
        self._claimed: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, resource: object) -> bool:
        if not isinstance(resource, Resource):
            return False
        with self._lock:
            return identity(resource) in self._entries

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def add_resource(self, resource: Resource, matcher: Matcher) -> None:
        """Register or replace the entry for *resource*; last write wins."""
        with self._lock:
            self._entries[identity(resource)] = _Entry(matcher=matcher, resource=resource)

    def remove_resource(self, resource: Resource) -> None:
        """Drop the entry, its claim and every edge touching it.

        The claim and edges are dropped even when there is no entry.

        Raises:
            ResourceNotFoundError: nothing is registered for *resource*.
        """
        key = identity(resource)
        with self._lock:
            self._claimed.discard(key)
            self._edges.pop(key, None)
            for dependents in self._edges.values():
                dependents.discard(key)
            if self._entries.pop(key, None) is None:
                raise ResourceNotFoundError(f"no correlation entry for {resource}")

    def get(self, resource: Resource) -> Resource | None:
        with self._lock:
            entry = self._entries.get(identity(resource))
        return entry.resource if entry is not None else None

    def get_resources(self, resource: Resource) -> list[Resource]:
        """Owners of *resource*: entries whose matcher selects it or that it names as owner."""
        key = identity(resource)
        with self._lock:
            return [
                entry.resource
                for entry_key, entry in self._entries.items()
                if entry_key != key
                and entry.resource.namespace == resource.namespace
                and (entry.matcher.matches(resource) or resource.is_owned_by(entry.resource))
            ]

    def get_dependents(self, resource: Resource) -> list[Resource]:
        """Dependents of *resource*: entries its registered matcher selects or that name it as owner."""
        key = identity(resource)
        with self._lock:
            own = self._entries.get(key)
            return [
                entry.resource
                for entry_key, entry in self._entries.items()
                if entry_key != key
                and entry.resource.namespace == resource.namespace
                and (
                    (own is not None and own.matcher.matches(entry.resource))
                    or entry.resource.is_owned_by(resource)
                )
            ]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, owner: Resource, dependent: Resource) -> bool:
        """Record owner -> dependent; returns False if the edge already existed."""
        owner_key, dependent_key = identity(owner), identity(dependent)
        with self._lock:
            dependents = self._edges.setdefault(owner_key, set())
            if dependent_key in dependents:
                return False
            dependents.add(dependent_key)
            return True

    def dependents_of(self, owner: Resource) -> set[str]:
        with self._lock:
            return set(self._edges.get(identity(owner), ()))

    def owners_of(self, dependent: Resource) -> set[str]:
        key = identity(dependent)
        with self._lock:
            return {owner for owner, dependents in self._edges.items() if key in dependents}

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(self, resource: Resource) -> bool:
        """Mark *resource* as dumped; returns True the first time."""
        key = identity(resource)
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def is_claimed(self, resource: Resource) -> bool:
        with self._lock:
            return identity(resource) in self._claimed
