"""Recursive JSON diff producing JSON-Patch style operations.

:func:`compute_patch` walks two resource dicts in parallel and returns the
ordered list of ``add`` / ``remove`` / ``replace`` operations that transforms
the old document into the new one.  Paths are RFC 6901 JSON pointers
(``/status/containerStatuses/0/ready``).

Arrays are compared by index.  When the new array is shorter, the surplus
elements are removed from the highest index down so that applying the
operations in order never shifts an index that a later operation relies on.
"""

from __future__ import annotations

import copy
from typing import Any

PatchOperation = dict[str, Any]


def compute_patch(old: dict[str, Any], new: dict[str, Any]) -> list[PatchOperation]:
    """Compute the operations that turn *old* into *new*.

    Args:
        old: The previously observed document.
        new: The current document.

    Returns:
        A list of operation dicts (``{"op", "path"[, "value"]}``).  An empty
        list means the two documents are deep-equal.
    """
    ops: list[PatchOperation] = []
    _diff_values(old, new, path="", ops=ops)
    return ops


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _escape(token: str) -> str:
    """Escape a key for use as a JSON pointer reference token."""
    return token.replace("~", "~0").replace("/", "~1")


def _same_scalar(old_val: Any, new_val: Any) -> bool:
    # bool is an int subclass: True == 1 must still count as a change
    return type(old_val) is type(new_val) and old_val == new_val


def _diff_values(old_val: Any, new_val: Any, path: str, ops: list[PatchOperation]) -> None:
    """Recursively compare *old_val* and *new_val*, appending to *ops*."""
    if isinstance(old_val, dict) and isinstance(new_val, dict):
        _diff_dicts(old_val, new_val, path=path, ops=ops)
        return

    if isinstance(old_val, list) and isinstance(new_val, list):
        _diff_lists(old_val, new_val, path=path, ops=ops)
        return

    # Structural type change or differing primitives
    if not _same_scalar(old_val, new_val):
        ops.append({"op": "replace", "path": path, "value": copy.deepcopy(new_val)})


def _diff_dicts(old_dict: dict[str, Any], new_dict: dict[str, Any], path: str, ops: list[PatchOperation]) -> None:
    """Diff two dicts: removals first, then changes and additions in key order."""
    for key in sorted(old_dict.keys() - new_dict.keys()):
        ops.append({"op": "remove", "path": f"{path}/{_escape(str(key))}"})

    for key in sorted(new_dict.keys()):
        child_path = f"{path}/{_escape(str(key))}"
        if key not in old_dict:
            ops.append({"op": "add", "path": child_path, "value": copy.deepcopy(new_dict[key])})
        else:
            _diff_values(old_dict[key], new_dict[key], path=child_path, ops=ops)


def _diff_lists(old_list: list[Any], new_list: list[Any], path: str, ops: list[PatchOperation]) -> None:
    """Diff two lists by index."""
    common = min(len(old_list), len(new_list))
    for i in range(common):
        _diff_values(old_list[i], new_list[i], path=f"{path}/{i}", ops=ops)

    for i in range(len(old_list) - 1, common - 1, -1):
        ops.append({"op": "remove", "path": f"{path}/{i}"})

    for i in range(common, len(new_list)):
        ops.append({"op": "add", "path": f"{path}/{i}", "value": copy.deepcopy(new_list[i])})
