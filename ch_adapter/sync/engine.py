"""
Reconciliation cycle orchestration.

Drives one pass of fetch → reconcile → export → import between the
Clearinghouse, the local state store and the provider's own files.
The whole pass runs inside one state store transaction.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..clearinghouse.client import ClearinghouseAPIError
from ..clearinghouse.models import RemoteRecord
from ..storage.models import TrackedRecord
from ..storage.state_store import StateStore
from ..transform.values import canonicalize, deep_copy, is_present
from .diff import DiffResult, compute_diff
from .identity import IdentityResolver

logger = logging.getLogger(__name__)

NEW_RECORD_FLAG = "new_record"

SYNC_PATH = "trip_tickets/sync"
TRIP_TICKETS_PATH = "trip_tickets"

# Clearinghouse filter format for incremental fetches
UPDATED_SINCE_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class CycleState(Enum):
    """States of one reconciliation cycle."""
    IDLE = "idle"
    FETCH_REMOTE = "fetch_remote"
    RECONCILE = "reconcile"
    EXPORT = "export"
    IMPORT = "import"
    COMMIT = "commit"
    ROLLBACK = "rollback"


class CollectionKind(Enum):
    """The trip ticket and the nested objects exported alongside it."""
    TRIP = "trip"
    CLAIM = "claim"
    COMMENT = "comment"
    RESULT = "result"


# kind → (attribute holding it on a trip ticket, empty container factory)
NESTED_COLLECTIONS: dict[CollectionKind, tuple[str, Callable[[], Any]]] = {
    CollectionKind.CLAIM: ("trip_claims", list),
    CollectionKind.COMMENT: ("trip_ticket_comments", list),
    CollectionKind.RESULT: ("trip_result", dict),
}


class MissingIdentifierError(Exception):
    """A record cannot be tracked because it carries no identifier."""
    pass


@dataclass
class SyncStats:
    """Statistics from a reconciliation cycle."""
    fetched: int = 0
    new_trips: int = 0
    updated_trips: int = 0
    exported: int = 0
    imported: int = 0
    skipped: int = 0
    unposted: int = 0
    errors: int = 0

    def __str__(self) -> str:
        return (
            f"Cycle complete: {self.fetched} fetched, "
            f"{self.new_trips} new, {self.updated_trips} updated, "
            f"{self.exported} exported, {self.imported} imported, "
            f"{self.skipped} skipped, {self.unposted} unposted, "
            f"{self.errors} errors"
        )


@dataclass
class SyncError:
    """Represents an error recorded during a cycle phase."""
    record_key: Any
    error_type: str
    message: str


class SyncOrchestrator:
    """
    Runs reconciliation cycles between the Clearinghouse and the local provider.

    Core principles:
    - One cycle is one state store transaction; any uncaught error rolls
      back every local write made during the cycle
    - A failed fetch aborts the cycle; a failed POST/PUT only skips its row
    - Errors are batched into one notification per phase

    Usage:
        orchestrator = SyncOrchestrator(
            remote=clearinghouse_client,
            store=state_store,
            importer=CsvImportProcessor(...),
            exporter=CsvExportProcessor(...),
            notifier=EmailNotifier(settings.notification),
        )

        stats = orchestrator.run_cycle()
        print(stats)
    """

    def __init__(
        self,
        remote,
        store: StateStore,
        importer=None,
        exporter=None,
        notifier=None,
        import_enabled: bool = True,
        export_enabled: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            remote: Clearinghouse client (get/post/put)
            store: Persistent state store
            importer: Import processor (process/finalize/errors), optional
            exporter: Export processor (process/errors), optional
            notifier: Notifier used for batched error reports, optional
            import_enabled: Run the import phase
            export_enabled: Run the export phase
        """
        self.remote = remote
        self.store = store
        self.identity = IdentityResolver(store)
        self.importer = importer
        self.exporter = exporter
        self.notifier = notifier
        self.import_enabled = import_enabled
        self.export_enabled = export_enabled

        self._state = CycleState.IDLE
        self._errors: list[SyncError] = []
        self._exported_trips: list[dict] = []
        self._stats = SyncStats()

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def errors(self) -> list[SyncError]:
        """Errors recorded during the last cycle, across all phases."""
        return list(self._errors)

    @property
    def exported_trips(self) -> list[dict]:
        """Trip tickets reconciled during the last cycle, tagged with ``new_record``."""
        return self._exported_trips

    @property
    def stats(self) -> SyncStats:
        return self._stats

    # ============================================================
    # Cycle
    # ============================================================

    def run_cycle(self) -> SyncStats:
        """
        Execute one full reconciliation cycle.

        Steps:
        1. Fetch trip tickets changed since the last seen update
        2. Reconcile them against the tracked records
        3. Hand the reconciled trips to the exporter
        4. Push imported rows to the Clearinghouse

        Returns:
            SyncStats with counts for every phase

        Raises:
            Whatever aborted the cycle, after local writes were rolled back
            and one notification was sent
        """
        self._errors = []
        self._exported_trips = []
        self._stats = SyncStats()

        logger.info("Starting reconciliation cycle...")

        try:
            with self.store.transaction():
                self._state = CycleState.FETCH_REMOTE
                trips = self.fetch_remote()

                self._state = CycleState.RECONCILE
                self.reconcile(trips)

                self._state = CycleState.EXPORT
                self.export()

                self._state = CycleState.IMPORT
                self.import_rows()

                self._state = CycleState.COMMIT
        except Exception as e:
            failed_phase = self._state
            self._state = CycleState.ROLLBACK
            logger.error(
                f"Reconciliation cycle failed during {failed_phase.value}, local changes rolled back: {e}",
                exc_info=True,
            )
            self._notify(
                f"The reconciliation cycle failed during {failed_phase.value} and its local "
                f"changes were rolled back:\n{type(e).__name__}: {e}"
            )
            raise
        finally:
            self._state = CycleState.IDLE

        self._stats.errors = len(self._errors)
        logger.info(str(self._stats))

        if self._errors:
            logger.warning(f"Cycle completed with {len(self._errors)} errors")

        return self._stats

    # ============================================================
    # Phases
    # ============================================================

    def fetch_remote(self) -> list:
        """
        Fetch trip tickets changed since the newest update already tracked.

        The filter is empty when nothing is tracked yet, which fetches
        everything visible to the provider.

        Raises:
            ClearinghouseAPIError: If the fetch fails
        """
        last_updated_at = self.store.max_remote_updated_at()
        updated_since = last_updated_at.strftime(UPDATED_SINCE_FORMAT) if last_updated_at else None

        logger.info(f"Fetching trip tickets updated since {updated_since or 'the beginning'}")
        result = self.remote.get(SYNC_PATH, {"updated_since": updated_since})

        if result is None:
            trips = []
        elif isinstance(result, list):
            trips = result
        else:
            trips = [result]

        self._stats.fetched = len(trips)
        logger.info(f"Retrieved {len(trips)} updated trips from the Clearinghouse")
        return trips

    def reconcile(self, trips: list) -> None:
        """
        Track every fetched trip and queue it for export.

        Trips without an ID are reported and dropped. New trips are tagged
        ``new_record`` throughout; for known trips only the claims,
        comments and result that did not exist in the stored snapshot are
        tagged new.
        """
        phase_errors = []

        for trip in trips:
            attributes = canonicalize(trip.attributes if isinstance(trip, RemoteRecord) else trip)
            try:
                self._reconcile_trip(attributes)
            except MissingIdentifierError as e:
                logger.warning(str(e))
                phase_errors.append(self._record_error(None, e))

        self._report("replicating Clearinghouse trips", phase_errors)

    def _reconcile_trip(self, attributes: dict) -> None:
        trip_id = attributes.get("id")
        if trip_id is None or trip_id == "":
            raise MissingIdentifierError("A trip ticket from the Clearinghouse was missing its ID")

        for field_name, empty in NESTED_COLLECTIONS.values():
            if attributes.get(field_name) is None:
                attributes[field_name] = empty()

        tracked = self.identity.resolve_inbound(trip_id)
        if tracked is None and attributes.get("is_originated"):
            tracked = self.identity.resolve_unsynced(
                attributes.get("origin_trip_id"),
                attributes.get("appointment_time"),
            )
        exported = deep_copy(attributes)

        if tracked is None or not tracked.is_synced:
            logger.debug(f"New trip ticket {trip_id}")
            if tracked is None:
                tracked = TrackedRecord()
            self._tag_new(exported)
            self._stats.new_trips += 1
        else:
            logger.debug(f"Updated trip ticket {trip_id} (tracked record {tracked.local_id})")
            self._tag_existing(exported, compute_diff(tracked.snapshot, attributes))
            self._stats.updated_trips += 1

        tracked.apply_remote(attributes)
        self.store.save(tracked)
        self._exported_trips.append(exported)

    def _tag_new(self, trip: dict) -> None:
        trip[NEW_RECORD_FLAG] = True
        for kind in NESTED_COLLECTIONS:
            for member in _members(trip, kind):
                member[NEW_RECORD_FLAG] = True

    def _tag_existing(self, trip: dict, diff: Optional[DiffResult]) -> None:
        trip[NEW_RECORD_FLAG] = False
        for kind, (field_name, _) in NESTED_COLLECTIONS.items():
            changes = diff.get(field_name) if diff is not None else None
            if kind is CollectionKind.RESULT:
                for member in _members(trip, kind):
                    member[NEW_RECORD_FLAG] = isinstance(changes, DiffResult) and changes.is_new
                continue

            new_ids = _new_member_ids(changes)
            for member in _members(trip, kind):
                member[NEW_RECORD_FLAG] = member.get("id") in new_ids

    def export(self) -> None:
        """Hand the reconciled trips to the exporter and report its errors."""
        if not self.export_enabled or self.exporter is None:
            logger.debug("Export disabled, skipping")
            return

        logger.info(f"Exporting {len(self._exported_trips)} trip tickets")
        self.exporter.process(self._exported_trips)
        self._stats.exported = len(self._exported_trips)

        phase_errors = [
            self._record_error(None, message, "ExportError")
            for message in getattr(self.exporter, "errors", [])
        ]
        self._report("exporting Clearinghouse changes", phase_errors)

    def import_rows(self) -> None:
        """
        Push imported rows to the Clearinghouse.

        Unsynced trips are created (POST), synced trips are updated (PUT).
        A row whose call fails is recorded as unposted and the phase
        carries on with the next row.
        """
        if not self.import_enabled or self.importer is None:
            logger.debug("Import disabled, skipping")
            return

        rows = self.importer.process() or []
        logger.info(f"Importing {len(rows)} rows")

        phase_errors = [
            self._record_error(None, message, "ImportError")
            for message in getattr(self.importer, "errors", [])
        ]
        imported, skipped, unposted = [], [], []

        for row in rows:
            origin_id = row.get("origin_trip_id")
            if not is_present(origin_id):
                error = MissingIdentifierError("Imported row does not contain an origin_trip_id value")
                logger.warning(str(error))
                phase_errors.append(self._record_error(None, error))
                skipped.append(row)
                continue

            tracked = self.identity.resolve_outbound(origin_id, row.get("appointment_time"))

            try:
                result = self._push_row(tracked, row)
            except ClearinghouseAPIError as e:
                logger.error(f"Failed to push origin trip {origin_id}: {e}")
                phase_errors.append(self._record_error(origin_id, e))
                unposted.append(row)
                continue

            attributes = result.attributes if isinstance(result, RemoteRecord) else result
            if not isinstance(attributes, Mapping) or attributes.get("id") is None:
                error = MissingIdentifierError("API result does not contain an ID")
                logger.warning(f"Origin trip {origin_id}: {error}")
                phase_errors.append(self._record_error(origin_id, error))
                unposted.append(row)
                continue

            # Keep the key the row was resolved by; the API may render the time differently
            origin_key = (tracked.origin_id, tracked.origin_timestamp)
            tracked.apply_remote(attributes)
            tracked.origin_id, tracked.origin_timestamp = origin_key
            self.store.save(tracked)
            imported.append(row)

        self.importer.finalize(imported, skipped, unposted)

        self._stats.imported += len(imported)
        self._stats.skipped += len(skipped)
        self._stats.unposted += len(unposted)
        logger.info(f"Imported {len(imported)} rows, skipped {len(skipped)}, unposted {len(unposted)}")

        self._report("importing trip tickets", phase_errors)

    def _push_row(self, tracked: TrackedRecord, row: Mapping):
        if tracked.is_synced:
            logger.debug(f"PUT trip ticket {tracked.remote_id}")
            return self.remote.put([TRIP_TICKETS_PATH, tracked.remote_id], row)
        logger.debug(f"POST trip ticket for origin trip {tracked.origin_id}")
        return self.remote.post(TRIP_TICKETS_PATH, row)

    # ============================================================
    # Errors and notifications
    # ============================================================

    def _record_error(self, record_key: Any, error: Any, error_type: Optional[str] = None) -> SyncError:
        sync_error = SyncError(
            record_key=record_key,
            error_type=error_type or type(error).__name__,
            message=str(error),
        )
        self._errors.append(sync_error)
        return sync_error

    def _report(self, phase: str, phase_errors: list[SyncError]) -> None:
        """Send one notification covering every error of a phase."""
        if not phase_errors:
            return
        lines = [f"Encountered {len(phase_errors)} errors while {phase}:"]
        lines.extend(f"- {error.message}" for error in phase_errors)
        self._notify("\n".join(lines))

    def _notify(self, message: str) -> None:
        if self.notifier is None:
            logger.warning(f"No notifier configured, notification dropped: {message}")
            return
        try:
            self.notifier.send(message)
        except Exception as e:
            logger.error(f"Error notification failed, could not send: {e}")


def _members(trip: dict, kind: CollectionKind) -> list[dict]:
    """Nested objects of one kind that can carry a ``new_record`` flag."""
    field_name, _ = NESTED_COLLECTIONS[kind]
    value = trip.get(field_name)
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict) and value:
        return [value]
    return []


def _new_member_ids(changes: Any) -> set:
    if not isinstance(changes, list):
        return set()
    return {
        change.get("id")
        for change in changes
        if isinstance(change, DiffResult) and change.is_new
    }
