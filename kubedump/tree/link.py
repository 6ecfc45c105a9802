"""Offline linking pass over a finished dump.

Re-reads every resource description and materialises the links that can be
derived from the descriptions alone: a Pod's mounted ConfigMaps and Secrets,
and every resource's ownerReferences.  Links are only created between
directories that both exist.
"""

from __future__ import annotations

import os

import yaml

from kubedump.errors import PathBuilderError, UnsupportedResourceError
from kubedump.models.resource import HandleKind, Resource
from kubedump.observability.logging import get_logger
from kubedump.observability.metrics import links_total
from kubedump.tree.files import link_to_parent
from kubedump.tree.paths import ResourcePathBuilder
from kubedump.tree.walk import for_each_resource

_log = get_logger("link")


def _load_resource(builder: ResourcePathBuilder) -> Resource | None:
    path = builder.with_file_name(f"{builder.name}.yaml").build()
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        return Resource.from_raw(builder.kind, HandleKind.ADD, raw)
    except FileNotFoundError:
        _log.debug("resource has no description", path=path)
    except (OSError, yaml.YAMLError, UnsupportedResourceError) as exc:
        _log.warning("could not load resource description", path=path, error=str(exc))
    return None


def _link(dependent: ResourcePathBuilder) -> int:
    if not os.path.isdir(dependent.build()) or not os.path.isdir(dependent.build_parent()):
        return 0
    if link_to_parent(dependent):
        links_total.labels(outcome="created").inc()
        return 1
    links_total.labels(outcome="exists").inc()
    return 0


def link_dump(base: str) -> int:
    """Link every resource under *base* to its owners; returns the number of links created."""
    created = 0

    def _visit(builder: ResourcePathBuilder) -> None:
        nonlocal created
        resource = _load_resource(builder)
        if resource is None:
            return
        builder = builder.with_resource(resource)

        try:
            for volume in resource.volume_references:
                dependent = builder.with_kind(volume.kind).with_name(volume.name).with_parent(resource)
                created += _link(dependent)

            for owner in resource.owner_references:
                if not owner.kind or not owner.name:
                    continue
                created += _link(builder.with_parent_kind(owner.kind).with_parent_name(owner.name))
        except (OSError, PathBuilderError) as exc:
            links_total.labels(outcome="error").inc()
            _log.error("could not link resource", resource=str(resource), error=str(exc))

    for_each_resource(base, _visit)
    _log.info("linked dump", base=base, created=created)
    return created
