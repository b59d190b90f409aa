"""Reconciliation module: diff detection, identity resolution and cycle orchestration."""

from .diff import ChangeType, DiffResult, clean_diff, compute_array_diff, compute_diff
from .engine import (
    CollectionKind,
    CycleState,
    MissingIdentifierError,
    SyncError,
    SyncOrchestrator,
    SyncStats,
)
from .identity import IdentityResolver, parse_origin_timestamp

__all__ = [
    "ChangeType",
    "DiffResult",
    "clean_diff",
    "compute_array_diff",
    "compute_diff",
    "CollectionKind",
    "CycleState",
    "MissingIdentifierError",
    "SyncError",
    "SyncOrchestrator",
    "SyncStats",
    "IdentityResolver",
    "parse_origin_timestamp",
]
