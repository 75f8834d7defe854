"""Informer state, snapshot and delta data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from kubesync.models.events import Resource


class DeltaType(StrEnum):
    """Change classification carried by a ResourceDelta."""

    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class InformerOptions:
    """Options accepted by ``InformerPool.start_informer``.

    ``resync_period`` is in seconds and bounds the lifetime of a single
    watch stream before it is re-opened from the last resourceVersion.
    """

    context_name: str
    namespace: str | None = None
    label_selector: str | None = None
    field_selector: str | None = None
    resync_period: int | None = None


@dataclass
class InformerState:
    """Health and connectivity of one (context, resource type) informer.

    ``running`` only ever flips to False through an explicit stop; errors and
    disconnects leave it untouched.
    """

    context_name: str
    resource_type: str
    running: bool = True
    connected: bool = False
    resource_count: int = 0
    error_count: int = 0
    last_error: str | None = None
    last_sync_time: datetime | None = None
    reconnect_attempts: int = 0


@dataclass(frozen=True)
class InformerStatistics:
    """Totals across every informer in a pool."""

    total_informers: int = 0
    running_informers: int = 0
    total_resources: int = 0
    error_count: int = 0


@dataclass
class ResourceSnapshot:
    """Sanitized copy of a resource held by a DeltaCalculator for diffing."""

    uid: str
    resource: Resource
    last_updated: datetime


@dataclass(frozen=True)
class ResourceDelta:
    """A minimal description of one resource change.

    ADD carries ``full_resource`` and never ``patches``; UPDATE carries a
    non-empty ``patches`` list; DELETE carries neither.
    """

    type: DeltaType
    uid: str
    context_name: str
    resource_type: str
    name: str
    namespace: str | None = None
    patches: list[dict[str, Any]] | None = None
    full_resource: Resource | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render the delta for the push channel, omitting absent fields."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "uid": self.uid,
            "contextName": self.context_name,
            "resourceType": self.resource_type,
            "name": self.name,
        }
        if self.namespace is not None:
            data["namespace"] = self.namespace
        if self.patches is not None:
            data["patches"] = self.patches
        if self.full_resource is not None:
            data["fullResource"] = self.full_resource
        return data


@dataclass(frozen=True)
class DeltaBatch:
    """Deltas flushed together by one calculator.

    ``timestamp`` is milliseconds since the epoch at flush time.
    """

    timestamp: int
    deltas: list[ResourceDelta] = field(default_factory=list)
    total_changes: int = 0

    def to_payload(self, context_name: str, resource_type: str) -> dict[str, Any]:
        """Return the JSON-serialisable push payload for this batch."""
        return {
            "contextName": context_name,
            "resourceType": resource_type,
            "timestamp": self.timestamp,
            "deltas": [d.to_dict() for d in self.deltas],
            "totalChanges": self.total_changes,
        }


@dataclass(frozen=True)
class CalculatorStats:
    """Point-in-time counters for one DeltaCalculator."""

    cached_resources: int
    total_changes_processed: int
    pending_deltas: int

    def to_dict(self) -> dict[str, int]:
        return {
            "cachedResources": self.cached_resources,
            "totalChangesProcessed": self.total_changes_processed,
            "pendingDeltas": self.pending_deltas,
        }
