"""Canonical locations in the output tree.

Every resource lives at ``<base>/<namespace>/<Kind>/<name>/``; cluster-scoped
objects drop the namespace segment.  A dependent is linked into its owner's
directory at ``<owner dir>/<Kind>/<name>``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace

from kubedump.errors import PathBuilderError
from kubedump.models.resource import Resource


@dataclass(frozen=True)
class ResourcePathBuilder:
    """Immutable builder; every ``with_*`` call returns a new instance."""

    base: str = ""
    namespace: str = ""
    kind: str = ""
    name: str = ""
    parent_kind: str = ""
    parent_name: str = ""
    file_name: str = ""

    def with_base(self, base: str) -> ResourcePathBuilder:
        return replace(self, base=base)

    def with_namespace(self, namespace: str) -> ResourcePathBuilder:
        return replace(self, namespace=namespace)

    def with_kind(self, kind: str) -> ResourcePathBuilder:
        return replace(self, kind=str(kind))

    def with_name(self, name: str) -> ResourcePathBuilder:
        return replace(self, name=name)

    def with_resource(self, resource: Resource) -> ResourcePathBuilder:
        return replace(self, namespace=resource.namespace, kind=str(resource.kind), name=resource.name)

    def with_parent_kind(self, kind: str) -> ResourcePathBuilder:
        return replace(self, parent_kind=str(kind))

    def with_parent_name(self, name: str) -> ResourcePathBuilder:
        return replace(self, parent_name=name)

    def with_parent(self, owner: Resource) -> ResourcePathBuilder:
        return replace(self, parent_kind=str(owner.kind), parent_name=owner.name)

    def with_file_name(self, file_name: str) -> ResourcePathBuilder:
        return replace(self, file_name=file_name)

    def validate(self) -> None:
        missing = [field for field in ("base", "kind", "name") if not getattr(self, field)]
        if missing:
            raise PathBuilderError(f"cannot build resource path, missing: {', '.join(missing)}")

    def build_namespace(self) -> str:
        if not self.base:
            raise PathBuilderError("cannot build namespace path without a base")
        return os.path.join(self.base, self.namespace) if self.namespace else self.base

    def build_kind(self) -> str:
        if not self.kind:
            raise PathBuilderError("cannot build kind path without a kind")
        return os.path.join(self.build_namespace(), self.kind)

    def build(self) -> str:
        """``<base>/<namespace>/<Kind>/<name>[/<file>]``."""
        self.validate()
        path = os.path.join(self.build_kind(), self.name)
        return os.path.join(path, self.file_name) if self.file_name else path

    def build_parent(self) -> str:
        """The owner's directory, ``<base>/<namespace>/<parentKind>/<parentName>``."""
        self.validate()
        if not self.parent_kind or not self.parent_name:
            raise PathBuilderError("cannot build parent path without parent kind and name")
        return os.path.join(self.build_namespace(), self.parent_kind, self.parent_name)

    def build_with_parent(self) -> str:
        """Where this resource is linked under its owner."""
        return os.path.join(self.build_parent(), self.kind, self.name)

    def relative_link_target(self) -> str:
        """Path from the link's directory to :meth:`build`, for a relative symlink."""
        link_dir = os.path.dirname(self.build_with_parent())
        return os.path.relpath(replace(self, file_name="").build(), link_dir)
