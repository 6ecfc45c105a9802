"""Event controller, correlation store, work queue and log streams."""

from kubedump.controller.controller import WATCHED_KINDS, Controller
from kubedump.controller.job import Job
from kubedump.controller.matcher import (
    LabelMatcher,
    LabelSelectorMatcher,
    Matcher,
    NullMatcher,
    VolumeMatcher,
    matcher_for,
)
from kubedump.controller.queue import WorkQueue
from kubedump.controller.store import CorrelationStore
from kubedump.controller.stream import LogStream, LogStreamRegistry

__all__ = [
    "WATCHED_KINDS",
    "Controller",
    "CorrelationStore",
    "Job",
    "LabelMatcher",
    "LabelSelectorMatcher",
    "LogStream",
    "LogStreamRegistry",
    "Matcher",
    "NullMatcher",
    "VolumeMatcher",
    "WorkQueue",
    "matcher_for",
]
