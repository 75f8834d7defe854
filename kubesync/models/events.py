"""Resource event types and raw-resource accessors.

Resources travel through the pipeline as the plain JSON dicts delivered by
the watch stream (``raw_object``).  The helpers below read identity fields
from such a dict without ever raising: a missing or ill-typed field yields
``None`` so callers can drop malformed objects at the point of detection.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

Resource = dict[str, Any]


class EventType(StrEnum):
    """Kind of change reported by an informer."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class ResourceEvent:
    """A single add/update/delete observed for one resource.

    Produced by the InformerPool, consumed by the DeltaPusher and the
    DeltaCalculators it routes to.
    """

    type: EventType
    resource: Resource
    context_name: str


@dataclass(frozen=True)
class InformerError:
    """A session error reported by the InformerPool."""

    context_name: str
    resource_type: str
    error: BaseException


# ---------------------------------------------------------------------------
# Raw resource accessors
# ---------------------------------------------------------------------------


def resource_metadata(resource: Any) -> dict[str, Any] | None:
    """Return the metadata dict of *resource*, or None when absent."""
    if not isinstance(resource, dict):
        return None
    metadata = resource.get("metadata")
    return metadata if isinstance(metadata, dict) else None


def resource_uid(resource: Any) -> str | None:
    """Return ``metadata.uid`` as a string, or None for an unidentifiable object."""
    metadata = resource_metadata(resource)
    if metadata is None:
        return None
    uid = metadata.get("uid")
    if uid is None or uid == "":
        return None
    return str(uid)


def resource_kind(resource: Any) -> str | None:
    """Return the ``kind`` of *resource*, or None."""
    if not isinstance(resource, dict):
        return None
    kind = resource.get("kind")
    return str(kind) if kind else None


def resource_name(resource: Any) -> str:
    """Return ``metadata.name`` or an empty string."""
    metadata = resource_metadata(resource)
    if metadata is None:
        return ""
    return str(metadata.get("name") or "")


def resource_namespace(resource: Any) -> str | None:
    """Return ``metadata.namespace``; cluster-scoped objects yield None."""
    metadata = resource_metadata(resource)
    if metadata is None:
        return None
    namespace = metadata.get("namespace")
    return str(namespace) if namespace else None


def resource_version(resource: Any) -> str:
    metadata = resource_metadata(resource)
    if metadata is None:
        return ""
    return str(metadata.get("resourceVersion") or "")
