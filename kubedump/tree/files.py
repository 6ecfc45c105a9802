"""Filesystem writes for the output tree."""

from __future__ import annotations

import os

import yaml

from kubedump.models.events import EventRecord
from kubedump.models.resource import Resource
from kubedump.observability.logging import get_logger
from kubedump.tree.paths import ResourcePathBuilder

_log = get_logger("tree")


def create_path_parents(path: str) -> None:
    """Create every missing directory above *path*."""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def description_path(base: str, resource: Resource) -> str:
    builder = ResourcePathBuilder(base=base).with_resource(resource)
    return builder.with_file_name(f"{resource.name}.yaml").build()


def events_path(base: str, resource: Resource) -> str:
    builder = ResourcePathBuilder(base=base).with_resource(resource)
    return builder.with_file_name(f"{resource.name}.events").build()


def dump_resource_description(base: str, resource: Resource) -> str:
    """Write the resource's YAML description, replacing any previous one.

    Returns the path written.
    """
    path = description_path(base, resource)
    create_path_parents(path)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(resource.raw, f, default_flow_style=False, sort_keys=False)
    return path


def append_event_line(path: str, event: EventRecord) -> None:
    create_path_parents(path)
    with open(path, "a", encoding="utf-8") as f:
        f.write(event.format_line())


def link_to_parent(builder: ResourcePathBuilder) -> bool:
    """Create the owner-to-dependent symlink described by *builder*.

    The builder must carry the dependent's identity plus parent kind and
    name.  Returns False when the link already existed.
    """
    link = builder.build_with_parent()
    if os.path.islink(link):
        return False

    create_path_parents(link)
    target = builder.relative_link_target()
    try:
        os.symlink(target, link, target_is_directory=True)
    except FileExistsError:
        # Lost a race with a concurrent job creating the same link.
        return False
    _log.debug("linked resource", link=link, target=target)
    return True
