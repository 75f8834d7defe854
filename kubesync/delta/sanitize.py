"""Resource sanitization for diffing.

The API server rewrites some metadata on every touch of an object, whether
or not anything meaningful changed.  Those fields are removed before a
resource is cached or compared, otherwise every MODIFIED event would
produce a non-empty diff.
"""

from __future__ import annotations

import copy
from typing import Any, Final

# metadata keys stripped before caching / diffing
_VOLATILE_METADATA_KEYS: Final[frozenset[str]] = frozenset(
    {
        "managedFields",
        "selfLink",
    }
)


def sanitize_resource(resource: dict[str, Any]) -> dict[str, Any]:
    """Return a deep copy of *resource* without volatile metadata fields.

    The input dict is never mutated: it is still owned by the informer cache.
    """
    sanitized = copy.deepcopy(resource)
    metadata = sanitized.get("metadata")
    if isinstance(metadata, dict):
        for key in _VOLATILE_METADATA_KEYS:
            metadata.pop(key, None)
    return sanitized
