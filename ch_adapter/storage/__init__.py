"""Persistent state storage module."""

from .state_store import StateStore, StateStoreError
from .models import ImportedFileRecord, TrackedRecord

__all__ = ["StateStore", "StateStoreError", "ImportedFileRecord", "TrackedRecord"]
