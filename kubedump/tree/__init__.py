"""The on-disk output tree: paths, writes, traversal and linking."""

from kubedump.tree.files import (
    append_event_line,
    create_path_parents,
    description_path,
    dump_resource_description,
    events_path,
    link_to_parent,
)
from kubedump.tree.link import link_dump
from kubedump.tree.paths import ResourcePathBuilder
from kubedump.tree.walk import for_each_kind, for_each_namespace, for_each_resource

__all__ = [
    "ResourcePathBuilder",
    "append_event_line",
    "create_path_parents",
    "description_path",
    "dump_resource_description",
    "events_path",
    "for_each_kind",
    "for_each_namespace",
    "for_each_resource",
    "link_dump",
    "link_to_parent",
]
