"""Cluster Event data structures."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from kubedump.errors import UnsupportedResourceError
from kubedump.models.resource import Resource, ResourceKind

# [<event-time>] <type> <reason> <reporting-controller> <note>
EVENT_LINE_FORMAT = "[{time}] {type} {reason} {controller} {note}\n"


@dataclass(frozen=True)
class ObjectReference:
    """The object an Event is about."""

    kind: str
    namespace: str
    name: str
    uid: str = ""


@dataclass(frozen=True)
class EventRecord:
    """The fields of an Event that kubedump records.

    Accepts both ``events.k8s.io/v1`` (regarding, note, reportingController)
    and core ``v1`` (involvedObject, message, source.component) payloads.
    """

    regarding: ObjectReference
    event_time: datetime | None
    type: str
    reason: str
    reporting_controller: str
    note: str

    @classmethod
    def from_resource(cls, resource: Resource) -> EventRecord:
        if resource.kind is not ResourceKind.EVENT:
            raise UnsupportedResourceError(f"{resource} is not an Event")

        raw = resource.raw
        regarding = raw.get("regarding") or raw.get("involvedObject")
        if not isinstance(regarding, dict) or not regarding.get("kind") or not regarding.get("name"):
            raise UnsupportedResourceError(f"{resource} has no regarding object")

        source = raw.get("source") if isinstance(raw.get("source"), dict) else {}
        controller = raw.get("reportingController") or raw.get("reportingComponent") or source.get("component") or ""

        return cls(
            regarding=ObjectReference(
                kind=str(regarding["kind"]),
                namespace=str(regarding.get("namespace") or resource.namespace),
                name=str(regarding["name"]),
                uid=str(regarding.get("uid") or ""),
            ),
            event_time=_event_time(raw),
            type=str(raw.get("type") or ""),
            reason=str(raw.get("reason") or ""),
            reporting_controller=str(controller),
            note=str(raw.get("note") or raw.get("message") or ""),
        )

    def format_line(self) -> str:
        """Render the line appended to a resource's ``.events`` file."""
        when = self.event_time.isoformat() if self.event_time is not None else ""
        return EVENT_LINE_FORMAT.format(
            time=when,
            type=self.type,
            reason=self.reason,
            controller=self.reporting_controller,
            note=self.note,
        )


def _event_time(raw: dict[str, Any]) -> datetime | None:
    metadata = raw.get("metadata") if isinstance(raw.get("metadata"), dict) else {}
    for value in (
        raw.get("eventTime"),
        raw.get("deprecatedLastTimestamp"),
        raw.get("lastTimestamp"),
        raw.get("deprecatedFirstTimestamp"),
        raw.get("firstTimestamp"),
        metadata.get("creationTimestamp"),
    ):
        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed
    return None


def parse_timestamp(value: object) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime, or None."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
