"""
Structural diff detection for sync engine.

Compares the last stored snapshot of a trip ticket against the version
just fetched from the Clearinghouse and reports only what changed,
distinguishing records that are new from records that were modified at
every level of nesting.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from ..transform.values import canonicalize, deep_copy


class ChangeType(Enum):
    """Provenance tag carried by every composite diff result."""

    # Did not exist in the original snapshot
    NEW = "new"

    # Existed in the original snapshot, at least one field changed
    MODIFIED = "modified"


@dataclass
class DiffResult:
    """
    Changes detected for one map-shaped record.

    Attributes:
        change_type: Whether the record is new or modified
        changes: Changed or added fields. Nested maps are embedded as
            DiffResult, id-keyed collections as lists of DiffResult and
            opaque arrays as plain lists. For NEW results this is the
            entire modified record.
    """
    change_type: ChangeType
    changes: dict = field(default_factory=dict)

    @property
    def is_new(self) -> bool:
        """Check if the record did not exist before."""
        return self.change_type is ChangeType.NEW

    def get(self, key: str, default: Any = None) -> Any:
        return self.changes.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.changes

    def __repr__(self) -> str:
        return f"DiffResult({self.change_type.name}, keys={list(self.changes)})"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, (Mapping, list, tuple)) and len(value) == 0)


def compute_diff(
    original: Optional[Mapping],
    modified: Optional[Mapping],
    required_keys: Iterable[str] = (),
) -> Optional[DiffResult]:
    """
    Compute the changes between two nested record snapshots.

    Rules:
    - modified empty or absent → None
    - original empty or absent → all of modified, tagged NEW
    - nested map → recurse, embedded only if it changed
    - nested list → compute_array_diff, embedded only if it changed
    - scalar → included only if changed, or if named in required_keys

    Keys present only in original are never reported. Required keys are
    echoed but never make the result non-empty on their own, and they are
    not propagated into nested maps.

    Args:
        original: Previously stored snapshot
        modified: Newly fetched record
        required_keys: Keys always echoed when the result is non-empty

    Returns:
        DiffResult, or None if nothing changed
    """
    if _is_blank(modified):
        return None
    modified = canonicalize(modified)
    if _is_blank(original) or not isinstance(original, Mapping):
        return DiffResult(change_type=ChangeType.NEW, changes=deep_copy(modified))

    original = canonicalize(original)
    required = {str(key) for key in required_keys}
    changes = {}
    change_seen = False

    for key, mod_value in modified.items():
        orig_value = original.get(key)

        if isinstance(mod_value, Mapping):
            child = compute_diff(orig_value, mod_value)
            if child is not None:
                changes[key] = child
                change_seen = True
        elif isinstance(mod_value, list):
            child = compute_array_diff(orig_value, mod_value)
            if child is not None:
                changes[key] = child
                change_seen = True
        else:
            changed = mod_value != orig_value
            if changed:
                change_seen = True
            if changed or key in required:
                changes[key] = mod_value

    if not change_seen:
        return None
    return DiffResult(change_type=ChangeType.MODIFIED, changes=changes)


def compute_array_diff(original: Any, modified: Optional[list]) -> Optional[list]:
    """
    Compute the changes between two arrays.

    An array holding any element that is not a map, or a map without an
    ``id``, is opaque: it is returned whole when it differs from the
    original (ordered equality). Otherwise elements are matched to the
    original by ``id`` and each is diffed with ``id`` required, keeping
    only the non-empty results. Elements only in original are dropped.

    Args:
        original: Previously stored array (a non-list counts as empty)
        modified: Newly fetched array

    Returns:
        List of changes, or None if nothing changed
    """
    if modified is None:
        return None
    modified = canonicalize(modified)
    original = canonicalize(original) if isinstance(original, (list, tuple)) else []

    opaque = any(
        not isinstance(item, Mapping) or item.get("id") in (None, "")
        for item in modified
    )
    if opaque:
        return None if modified == original else deep_copy(modified)

    results = []
    for mod_item in modified:
        orig_item = next(
            (
                item for item in original
                if isinstance(item, Mapping) and item.get("id") == mod_item["id"]
            ),
            None,
        )
        result = compute_diff(orig_item, mod_item, required_keys=("id",))
        if result is not None:
            results.append(result)

    return results or None


def clean_diff(result: Any) -> Any:
    """
    Strip NEW/MODIFIED provenance from a diff result at every depth.

    Args:
        result: DiffResult, list of results, or scalar

    Returns:
        Plain nested dict/list structure
    """
    if isinstance(result, DiffResult):
        return {key: clean_diff(value) for key, value in result.changes.items()}
    if isinstance(result, Mapping):
        return {key: clean_diff(value) for key, value in result.items()}
    if isinstance(result, list):
        return [clean_diff(item) for item in result]
    return result
