"""
Identity resolution for tracked trip tickets.

Two lookups, chosen by the direction a record is travelling:

- inbound (from the Clearinghouse): by Clearinghouse ID
- outbound (from an imported row): by origin trip ID and appointment time

An inbound trip falls back to its origin key only to claim an originated
record that never received its Clearinghouse ID. An origin trip ID alone
does not identify a trip because the provider may reuse it for a
different appointment.
"""

import logging
from typing import Any, Optional

from ..storage.models import TrackedRecord, canonical_origin_timestamp
from ..storage.state_store import StateStore

logger = logging.getLogger(__name__)


def parse_origin_timestamp(value: Any) -> Optional[str]:
    """
    Canonical form of an imported appointment time.

    "03/01/2024 09:30" and "2024-03-01T09:30:00" resolve to the same key;
    values that cannot be parsed are used verbatim.
    """
    return canonical_origin_timestamp(value)


class IdentityResolver:
    """
    Resolves remote and composite identifiers to tracked records.

    Usage:
        resolver = IdentityResolver(store)

        tracked = resolver.resolve_outbound(row["origin_trip_id"], row.get("appointment_time"))
        if tracked.is_synced:
            ...  # update on the Clearinghouse
    """

    def __init__(self, store: StateStore):
        self.store = store

    def resolve_inbound(self, remote_id: Any) -> Optional[TrackedRecord]:
        """
        Find the tracked record for a trip fetched from the Clearinghouse.

        Args:
            remote_id: Clearinghouse trip ticket ID

        Returns:
            TrackedRecord, or None if the trip has never been seen
        """
        return self.store.find_by_remote_id(remote_id)

    def resolve_unsynced(self, origin_id: Any, origin_timestamp: Any) -> Optional[TrackedRecord]:
        """
        Find an originated record the Clearinghouse never confirmed.

        A POST whose response was lost leaves such a record behind; when
        the trip later arrives from the sync endpoint it belongs to it.

        Args:
            origin_id: Trip ID assigned by the local provider
            origin_timestamp: Appointment time of the trip

        Returns:
            Unsynced TrackedRecord, or None
        """
        if origin_id is None or origin_id == "":
            return None
        tracked = self.store.find_by_origin_key(origin_id, parse_origin_timestamp(origin_timestamp))
        if tracked is None or tracked.is_synced:
            return None
        logger.info(f"Origin trip {origin_id} matched unsynced tracked record {tracked.local_id}")
        return tracked

    def resolve_outbound(self, origin_id: Any, origin_timestamp: Any) -> TrackedRecord:
        """
        Find or create the tracked record for an imported trip.

        Args:
            origin_id: Trip ID assigned by the local provider
            origin_timestamp: Appointment time of the trip

        Returns:
            Existing or newly created TrackedRecord; unsynced until the
            Clearinghouse assigns it an ID
        """
        tracked = self.store.find_or_create_by_origin_key(
            origin_id,
            parse_origin_timestamp(origin_timestamp),
        )
        logger.debug(
            f"Origin trip {origin_id} resolved to tracked record {tracked.local_id} "
            f"({'synced' if tracked.is_synced else 'unsynced'})"
        )
        return tracked
