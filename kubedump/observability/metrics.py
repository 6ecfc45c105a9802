"""Prometheus counters for the controller pipeline."""

from __future__ import annotations

from prometheus_client import Counter, start_http_server

events_handled_total = Counter(
    "kubedump_events_handled_total",
    "Watch notifications routed by the controller.",
    ["kind", "handle"],
)

events_dropped_total = Counter(
    "kubedump_events_dropped_total",
    "Watch notifications dropped before any work was enqueued.",
    ["reason"],
)

jobs_total = Counter(
    "kubedump_jobs_total",
    "Work queue jobs executed, by outcome.",
    ["outcome"],
)

log_sync_total = Counter(
    "kubedump_log_sync_total",
    "Container log synchronisations, by outcome.",
    ["outcome"],
)

links_total = Counter(
    "kubedump_links_total",
    "Owner to dependent symlinks materialised, by outcome.",
    ["outcome"],
)


def serve_metrics(port: int) -> None:
    """Expose the default registry over HTTP on *port*."""
    start_http_server(port)
