"""
CSV export processor.

Writes the trip tickets reconciled during a cycle as four CSV files:
trips, claims, comments and results, each flattened to one row per
object and optionally run through the export rulesets.
"""

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from ..sync.engine import NESTED_COLLECTIONS, NEW_RECORD_FLAG, CollectionKind
from ..transform.mapping import map_attributes
from ..transform.normalization import normalize_attributes
from ..transform.values import is_present, to_plain
from .base import ExportProcessor, ProcessorError
from .helpers import flatten_hash, timestamp_string

logger = logging.getLogger(__name__)

# kind → (export file prefix, sub-ruleset name)
EXPORT_FILES = {
    CollectionKind.TRIP: ("trip_tickets", "trip_ticket"),
    CollectionKind.CLAIM: ("trip_claims", "trip_claim"),
    CollectionKind.COMMENT: ("trip_ticket_comments", "trip_comment"),
    CollectionKind.RESULT: ("trip_results", "trip_result"),
}


class CsvExportProcessor(ExportProcessor):
    """
    Exports reconciled trip tickets to CSV files.

    Usage:
        exporter = CsvExportProcessor(
            export_folder=Path("export"),
            mapping=load_ruleset(settings.exports.mapping_file),
        )
        exporter.process(orchestrator.exported_trips)
    """

    def __init__(
        self,
        export_folder: Optional[Path],
        mapping=None,
        normalization=None,
        options: Optional[dict] = None,
    ):
        """
        Initialize processor.

        Args:
            export_folder: Folder the CSV files are written to
            mapping: Export mapping document with trip_ticket, trip_claim,
                trip_comment and trip_result sub-rulesets, optional
            normalization: Export normalization document with the same
                sub-rulesets, optional
            options: Extra processor options
        """
        super().__init__(options)
        self.export_folder = Path(export_folder) if export_folder else None
        self.mapping = mapping
        self.normalization = normalization
        self.written_files: list[Path] = []

    def process(self, exported_trips: list[dict]) -> None:
        """
        Split, flatten and write one cycle's trip tickets.

        Raises:
            ProcessorError: If the export folder is missing
        """
        if self.export_folder is None:
            raise ProcessorError(
                "Export folder not configured, will not export new changes detected on the Clearinghouse"
            )
        if not self.export_folder.is_dir():
            raise ProcessorError(f"Export folder {self.export_folder} does not exist")

        self.errors = []
        self.written_files = []

        updates = self.split_updates(exported_trips)
        timestamp = timestamp_string()

        for kind, (file_prefix, sub) in EXPORT_FILES.items():
            rows = [self.prepare_row(data, sub) for data in updates[kind]]
            path = self.export_folder / f"{file_prefix}.{timestamp}.csv"
            if self.export_csv(path, rows):
                self.written_files.append(path)

        logger.info(f"Exported {len(exported_trips)} trips to {len(self.written_files)} files")

    def split_updates(self, exported_trips: list[dict]) -> dict[CollectionKind, list[dict]]:
        """
        Separate each trip from its claims, comments and result.

        Trip data left with nothing but its ``id`` and ``new_record`` flag
        is not exported.
        """
        updates = {kind: [] for kind in EXPORT_FILES}

        for trip in exported_trips:
            trip_data = dict(trip)
            nested = {
                kind: trip_data.pop(field_name, None)
                for kind, (field_name, _) in NESTED_COLLECTIONS.items()
            }

            if set(trip_data) - {"id", NEW_RECORD_FLAG}:
                updates[CollectionKind.TRIP].append(trip_data)

            for kind in (CollectionKind.CLAIM, CollectionKind.COMMENT):
                updates[kind].extend(item for item in nested[kind] or [] if is_present(item))

            result = nested[CollectionKind.RESULT]
            if is_present(result):
                updates[CollectionKind.RESULT].append(result)

        return updates

    def prepare_row(self, data: dict, sub: str) -> dict:
        """Flatten an object, then apply the export rulesets for its kind."""
        except_keys = self.mapping.attribute_names(sub) if hasattr(self.mapping, "attribute_names") else ()
        row = flatten_hash(data, except_keys)
        if self.mapping:
            row = to_plain(map_attributes(row, self.mapping, sub=sub))
        if self.normalization:
            row = to_plain(normalize_attributes(row, self.normalization, sub=sub))
        return row

    def export_csv(self, path: Path, rows: list[dict]) -> bool:
        """
        Write rows with the union of their keys as header.

        Returns:
            True if a file was written (nothing is written for no rows)
        """
        if not rows:
            return False

        headers = []
        for row in rows:
            for key in row:
                if key not in headers:
                    headers.append(key)

        frame = pd.DataFrame(rows, columns=headers)
        frame.to_csv(path, index=False)
        logger.info(f"Wrote {len(rows)} rows to {path}")
        return True
