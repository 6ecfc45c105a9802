"""Traversal of an existing output tree."""

from __future__ import annotations

import os
from collections.abc import Callable

from kubedump.tree.paths import ResourcePathBuilder

BuilderFn = Callable[[ResourcePathBuilder], None]


def _subdirectories(path: str) -> list[str]:
    """Real directories directly below *path*, sorted; files and symlinks are skipped."""
    with os.scandir(path) as entries:
        return sorted(
            entry.name for entry in entries if entry.is_dir(follow_symlinks=False)
        )


def for_each_namespace(base: str, fn: BuilderFn) -> None:
    root = ResourcePathBuilder(base=base)
    for namespace in _subdirectories(base):
        fn(root.with_namespace(namespace))


def for_each_kind(base: str, fn: BuilderFn) -> None:
    def _kinds(builder: ResourcePathBuilder) -> None:
        for kind in _subdirectories(builder.build_namespace()):
            fn(builder.with_kind(kind))

    for_each_namespace(base, _kinds)


def for_each_resource(base: str, fn: BuilderFn) -> None:
    """Call *fn* with a builder for every ``<namespace>/<Kind>/<name>`` directory."""

    def _resources(builder: ResourcePathBuilder) -> None:
        for name in _subdirectories(builder.build_kind()):
            fn(builder.with_name(name))

    for_each_kind(base, _resources)
