"""
Canonical value model shared by the rule engines and the diff engine.

Records arrive from CSV rows, the Clearinghouse API and rule documents with
mixed key types and container classes. Every engine call canonicalizes its
input at the boundary so that internally a record is only ever built from
dict / list / str / int / float / bool / None.
"""

from collections.abc import Mapping
from typing import Any

from requests.structures import CaseInsensitiveDict


def canonicalize(value: Any) -> Any:
    """
    Convert a nested value to the canonical representation.

    Mapping keys become strings, tuples become lists and any mapping
    (including case-insensitive ones) becomes a plain dict.
    """
    if isinstance(value, Mapping):
        return {str(key): canonicalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def deep_copy(value: Any) -> Any:
    """Structural copy of a nested value, preserving container types."""
    if isinstance(value, CaseInsensitiveDict):
        return CaseInsensitiveDict((key, deep_copy(item)) for key, item in value.items())
    if isinstance(value, Mapping):
        return {key: deep_copy(item) for key, item in value.items()}
    if isinstance(value, list):
        return [deep_copy(item) for item in value]
    return value


def to_plain(value: Any) -> Any:
    """Convert engine output (case-insensitive containers) back to plain dicts and lists."""
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(item) for item in value]
    return value


def is_present(value: Any) -> bool:
    """
    Check whether a value carries data.

    None, False, whitespace-only strings and empty containers are blank.
    """
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (Mapping, list, tuple, set)):
        return len(value) > 0
    return True


def new_container(seed: Mapping | None = None) -> CaseInsensitiveDict:
    """Create an output container, copying nested maps of ``seed`` into case-insensitive ones."""
    container = CaseInsensitiveDict()
    for key, item in (seed or {}).items():
        container[str(key)] = _insensitive(item)
    return container


def _insensitive(value: Any) -> Any:
    if isinstance(value, Mapping):
        return new_container(value)
    if isinstance(value, (list, tuple)):
        return [_insensitive(item) for item in value]
    return value
