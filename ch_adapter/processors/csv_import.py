"""
CSV import processor.

Reads trip ticket rows from CSV files dropped into an import folder by
the provider's scheduling system, and moves the files to a completed
folder once the cycle has pushed their rows.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from ..storage.models import ImportedFileRecord
from ..storage.state_store import StateStore
from ..transform.mapping import map_attributes
from ..transform.normalization import normalize_attributes
from ..transform.values import to_plain
from .base import ImportProcessor, ProcessorError
from .helpers import (
    handle_array_and_hstore_attributes,
    handle_date_conversions,
    handle_nested_objects,
)

logger = logging.getLogger(__name__)


class CsvImportProcessor(ImportProcessor):
    """
    Imports trip tickets from CSV files.

    Files already recorded in the imported-file ledger (same name, size
    and modification time) are skipped. A file that cannot be parsed is
    renamed to ``<name>.error`` and none of its rows are imported.

    Usage:
        importer = CsvImportProcessor(
            store=state_store,
            import_folder=Path("import"),
            completed_folder=Path("import/completed"),
            mapping=load_ruleset(settings.imports.mapping_file),
        )
        rows = importer.process()
        ...
        importer.finalize(imported, skipped, unposted)
    """

    FILE_PATTERNS = ("*.csv", "*.txt")

    def __init__(
        self,
        store: StateStore,
        import_folder: Optional[Path],
        completed_folder: Optional[Path] = None,
        mapping=None,
        normalization=None,
        options: Optional[dict] = None,
    ):
        """
        Initialize processor.

        Args:
            store: State store holding the imported-file ledger
            import_folder: Folder scanned for CSV files
            completed_folder: Folder imported files are moved to
            mapping: Import mapping ruleset, optional
            normalization: Import normalization ruleset, optional
            options: Extra processor options
        """
        super().__init__(options)
        self.store = store
        self.import_folder = Path(import_folder) if import_folder else None
        self.completed_folder = Path(completed_folder) if completed_folder else None
        self.mapping = mapping
        self.normalization = normalization

        self._results: list[ImportedFileRecord] = []
        self._row_files: dict[int, ImportedFileRecord] = {}

    def importable_files(self) -> list[Path]:
        """CSV and text files in the import folder, sorted by name."""
        files = set()
        for pattern in self.FILE_PATTERNS:
            files.update(self.import_folder.glob(pattern))
        return sorted(path for path in files if path.is_file())

    def from_file(self, path: Path) -> list[dict]:
        """
        Read a CSV file into rows keyed by header.

        Every cell is read as text; blank cells become None.

        Raises:
            pandas.errors.ParserError, UnicodeDecodeError, OSError: If the
                file cannot be read
        """
        try:
            frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            return []

        return [
            {str(column): (value if value != "" else None) for column, value in record.items()}
            for record in frame.to_dict(orient="records")
        ]

    def process(self) -> list[dict]:
        """
        Read every new file in the import folder.

        Returns:
            Rows reshaped for the Clearinghouse API

        Raises:
            ProcessorError: If the import folder is missing
        """
        if self.import_folder is None:
            raise ProcessorError("Import folder not configured, will not check for files to import")
        if not self.import_folder.is_dir():
            raise ProcessorError(f"Import folder {self.import_folder} does not exist")

        logger.info(f"Starting import from directory {self.import_folder}")

        self.errors = []
        self._results = []
        self._row_files = {}
        rows = []

        for path in self.importable_files():
            stat = path.stat()
            modified = datetime.utcfromtimestamp(stat.st_mtime)

            if self.store.imported_file_exists(str(path), stat.st_size, modified):
                logger.warning(f"Skipping file {path} which was previously imported")
                continue

            logger.info(f"Importing {path}")
            record = ImportedFileRecord(file_name=str(path), size=stat.st_size, modified=modified)

            try:
                file_rows = self.from_file(path)
            except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
                record.error = True
                record.error_msg = str(e)
                self._results.append(record)
                logger.error(f"Error importing {path}: {e}")
                self.errors.append(
                    f"An error was encountered while importing file {path} at {record.modified}:\n"
                    f"\t{e}\nThe file has been renamed and none of its rows were imported."
                )
                self._mark_error(path)
                continue

            record.rows = len(file_rows)
            self._results.append(record)
            logger.info(f"Successfully imported {len(file_rows)} rows")

            for raw_row in file_rows:
                row = self.prepare_row(raw_row)
                self._row_files[id(row)] = record
                rows.append(row)

        logger.info(f"Imported {len(self._results)} files")
        return rows

    def prepare_row(self, row: dict) -> dict:
        """Apply the import rulesets, then reshape nested, array and date columns."""
        if self.mapping:
            row = to_plain(map_attributes(row, self.mapping))
        if self.normalization:
            row = to_plain(normalize_attributes(row, self.normalization))

        handle_nested_objects(row)
        handle_array_and_hstore_attributes(row)
        handle_date_conversions(row)
        return row

    def finalize(self, imported: list[dict], skipped: list[dict], unposted: list[dict]) -> None:
        """
        Record successfully read files and move them to the completed folder.

        Rows that were skipped or unposted count as row errors of their file.

        Raises:
            ProcessorError: If the completed folder is missing
        """
        if self.completed_folder is None:
            raise ProcessorError("Completed folder not configured, cannot move imported files")
        if not self.completed_folder.is_dir():
            raise ProcessorError(f"Completed folder {self.completed_folder} does not exist")

        for row in list(skipped) + list(unposted):
            record = self._row_files.get(id(row))
            if record is not None:
                record.row_errors += 1

        for record in self._results:
            if record.error:
                continue

            self.store.record_imported_file(record)
            logger.info(str(record))

            try:
                shutil.move(record.file_name, str(self.completed_folder / Path(record.file_name).name))
            except OSError as e:
                logger.error(
                    f"Error marking file as imported, please make sure the adapter has read-write access "
                    f"to {record.file_name} and directory {self.completed_folder}: {e}"
                )

    def _mark_error(self, path: Path) -> None:
        """Rename a bad file so it is not picked up again."""
        try:
            path.rename(path.with_name(path.name + ".error"))
        except OSError as e:
            logger.error(
                f"Error marking file as imported with errors, please make sure the adapter "
                f"has read-write access to {path}: {e}"
            )
