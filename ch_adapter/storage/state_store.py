"""
SQLite-based persistent state store.

Holds the tracked trip tickets and the imported-file ledger. A whole
reconciliation cycle runs inside :meth:`StateStore.transaction`, so a
failure anywhere in the cycle leaves the store exactly as it was.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .models import (
    ImportedFileRecord,
    TrackedRecord,
    canonical_origin_timestamp,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)


class StateStoreError(Exception):
    """Raised when state store operations fail."""
    pass


class StateStore:
    """
    SQLite-based persistent state store.

    Features:
    - One long-lived connection, so a cycle-wide transaction spans every call
    - Writes outside a transaction commit immediately
    - Automatic schema migration

    Usage:
        store = StateStore(Path("data/adapter_state.db"))

        with store.transaction():
            record = store.find_or_create_by_origin_key("1234", "2024-03-01 09:30")
            record.apply_remote(api_result)
            store.save(record)
    """

    SCHEMA_VERSION = 1

    TRACKED_COLUMNS = """
        local_id,
        remote_id,
        remote_updated_at,
        is_originated,
        origin_id,
        origin_timestamp,
        snapshot,
        created_at,
        updated_at
    """

    IMPORTED_FILE_COLUMNS = """
        file_name,
        size,
        modified,
        rows,
        row_errors,
        error,
        error_msg,
        created_at
    """

    CREATE_TABLES_SQL = [
        """
        CREATE TABLE IF NOT EXISTS tracked_records (
            local_id INTEGER PRIMARY KEY AUTOINCREMENT,
            remote_id TEXT UNIQUE,
            remote_updated_at TEXT,
            is_originated INTEGER DEFAULT 0,
            origin_id TEXT,
            origin_timestamp TEXT,
            snapshot TEXT,
            created_at TEXT,
            updated_at TEXT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS imported_files (
            file_name TEXT NOT NULL,
            size INTEGER NOT NULL,
            modified TEXT NOT NULL,
            rows INTEGER DEFAULT 0,
            row_errors INTEGER DEFAULT 0,
            error INTEGER DEFAULT 0,
            error_msg TEXT,
            created_at TEXT
        )
        """,
    ]

    CREATE_INDEXES_SQL = [
        # Foreign trips may share an origin key with ours; only originated trips must be unique
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_origin_key
        ON tracked_records(origin_id, origin_timestamp) WHERE is_originated = 1
        """,
        "CREATE INDEX IF NOT EXISTS idx_remote_updated_at ON tracked_records(remote_updated_at)",
        "CREATE INDEX IF NOT EXISTS idx_imported_file ON imported_files(file_name, size, modified)",
    ]

    CREATE_METADATA_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS _metadata (
            key TEXT PRIMARY KEY,
            value TEXT
        )
    """

    def __init__(self, database_path: Path):
        """
        Initialize state store.

        Args:
            database_path: Path to SQLite database file
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transactions are opened explicitly
        self._conn = sqlite3.connect(self.database_path, timeout=30.0, isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._in_transaction = False

        self._initialize_database()

        logger.info(f"State store initialized at {self.database_path}")

    def _initialize_database(self) -> None:
        """Create tables and run migrations."""
        with self._write() as cursor:
            cursor.execute(self.CREATE_METADATA_TABLE_SQL)

            cursor.execute("SELECT value FROM _metadata WHERE key = 'schema_version'")
            row = cursor.fetchone()
            current_version = int(row[0]) if row else 0

            for table_sql in self.CREATE_TABLES_SQL:
                cursor.execute(table_sql)
            for index_sql in self.CREATE_INDEXES_SQL:
                cursor.execute(index_sql)

            if current_version < self.SCHEMA_VERSION:
                logger.info(f"Upgrading schema from v{current_version} to v{self.SCHEMA_VERSION}")
                cursor.execute(
                    "INSERT OR REPLACE INTO _metadata (key, value) VALUES (?, ?)",
                    ("schema_version", str(self.SCHEMA_VERSION)),
                )

    # ============================================================
    # Transactions
    # ============================================================

    @contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """
        Run a block of operations atomically.

        Commits when the block exits normally; rolls back every write made
        inside the block when it raises, then re-raises.

        Raises:
            StateStoreError: If a transaction is already open
        """
        if self._in_transaction:
            raise StateStoreError("A transaction is already in progress")

        self._conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            logger.warning("State store transaction rolled back")
            raise
        else:
            self._conn.execute("COMMIT")
            logger.debug("State store transaction committed")
        finally:
            self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Cursor]:
        """
        Cursor for a write; joins the open transaction or wraps its own.

        Yields:
            SQLite cursor
        """
        cursor = self._conn.cursor()
        if self._in_transaction:
            try:
                yield cursor
            except sqlite3.Error as e:
                raise StateStoreError(f"State store write failed: {e}") from e
            finally:
                cursor.close()
            return

        cursor.execute("BEGIN")
        try:
            yield cursor
            cursor.execute("COMMIT")
        except sqlite3.Error as e:
            cursor.execute("ROLLBACK")
            raise StateStoreError(f"State store write failed: {e}") from e
        except BaseException:
            cursor.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
        logger.debug("State store connection closed")

    def __enter__(self) -> "StateStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ============================================================
    # Tracked records
    # ============================================================

    def _fetch_tracked(self, where: str, params: tuple) -> Optional[TrackedRecord]:
        cursor = self._conn.execute(
            f"SELECT {self.TRACKED_COLUMNS} FROM tracked_records WHERE {where}",
            params,
        )
        row = cursor.fetchone()
        if row:
            return TrackedRecord.from_row(row)
        return None

    def find_by_remote_id(self, remote_id) -> Optional[TrackedRecord]:
        """
        Get a tracked record by Clearinghouse ID.

        Args:
            remote_id: Clearinghouse trip ticket ID

        Returns:
            TrackedRecord if found, None otherwise
        """
        if remote_id is None:
            return None
        return self._fetch_tracked("remote_id = ?", (str(remote_id),))

    def find_by_origin_key(self, origin_id, origin_timestamp) -> Optional[TrackedRecord]:
        """
        Get an originated tracked record by its origin key.

        Args:
            origin_id: Trip ID assigned by the local provider
            origin_timestamp: Appointment time

        Returns:
            TrackedRecord if found, None otherwise
        """
        return self._fetch_tracked(
            "origin_id = ? AND origin_timestamp IS ? AND is_originated = 1",
            (str(origin_id), canonical_origin_timestamp(origin_timestamp)),
        )

    def find_or_create_by_origin_key(self, origin_id, origin_timestamp) -> TrackedRecord:
        """
        Get the originated record for an origin key, creating it if needed.

        An origin id reused with a different appointment time creates a
        separate record.

        Args:
            origin_id: Trip ID assigned by the local provider
            origin_timestamp: Appointment time

        Returns:
            Existing or newly saved TrackedRecord
        """
        record = self.find_by_origin_key(origin_id, origin_timestamp)
        if record is not None:
            return record

        record = TrackedRecord(
            is_originated=True,
            origin_id=str(origin_id),
            origin_timestamp=canonical_origin_timestamp(origin_timestamp),
        )
        record = self.save(record)
        logger.debug(f"Created tracked record for origin trip {origin_id} at {record.origin_timestamp}")
        return record

    def max_remote_updated_at(self) -> Optional[datetime]:
        """
        Get the most recent Clearinghouse update time seen.

        Returns:
            Naive UTC datetime, or None if nothing is tracked
        """
        cursor = self._conn.execute("SELECT MAX(remote_updated_at) FROM tracked_records")
        row = cursor.fetchone()
        return parse_timestamp(row[0]) if row else None

    def save(self, record: TrackedRecord) -> TrackedRecord:
        """
        Insert or update a tracked record.

        Args:
            record: TrackedRecord to save

        Returns:
            The record with local_id and timestamps set
        """
        now = datetime.utcnow()
        if record.created_at is None:
            record.created_at = now
        record.updated_at = now

        values = (
            record.remote_id,
            format_timestamp(record.remote_updated_at),
            1 if record.is_originated else 0,
            record.origin_id,
            record.origin_timestamp,
            json.dumps(record.snapshot, default=str),
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
        )

        with self._write() as cursor:
            if record.local_id is None:
                cursor.execute(
                    """
                    INSERT INTO tracked_records (
                        remote_id,
                        remote_updated_at,
                        is_originated,
                        origin_id,
                        origin_timestamp,
                        snapshot,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                record.local_id = cursor.lastrowid
            else:
                cursor.execute(
                    """
                    UPDATE tracked_records SET
                        remote_id = ?,
                        remote_updated_at = ?,
                        is_originated = ?,
                        origin_id = ?,
                        origin_timestamp = ?,
                        snapshot = ?,
                        created_at = ?,
                        updated_at = ?
                    WHERE local_id = ?
                    """,
                    values + (record.local_id,),
                )

        logger.debug(f"Saved tracked record {record.local_id} (remote id {record.remote_id})")
        return record

    def get_all(self) -> list[TrackedRecord]:
        """
        Get all tracked records.

        Returns:
            List of TrackedRecord ordered by local_id
        """
        cursor = self._conn.execute(
            f"SELECT {self.TRACKED_COLUMNS} FROM tracked_records ORDER BY local_id"
        )
        return [TrackedRecord.from_row(row) for row in cursor.fetchall()]

    def count(self, synced_only: bool = False) -> int:
        """
        Count tracked records.

        Args:
            synced_only: Only count records with a Clearinghouse ID

        Returns:
            Record count
        """
        if synced_only:
            cursor = self._conn.execute("SELECT COUNT(*) FROM tracked_records WHERE remote_id IS NOT NULL")
        else:
            cursor = self._conn.execute("SELECT COUNT(*) FROM tracked_records")
        return cursor.fetchone()[0]

    # ============================================================
    # Imported files
    # ============================================================

    def imported_file_exists(self, file_name: str, size: int, modified: datetime) -> bool:
        """
        Check whether a file with this identity was already imported.

        Args:
            file_name: Path of the source file as seen when imported
            size: Size in bytes
            modified: Modification time

        Returns:
            True if an ImportedFileRecord matches
        """
        cursor = self._conn.execute(
            "SELECT COUNT(*) FROM imported_files WHERE file_name = ? AND size = ? AND modified = ?",
            (str(file_name), size, format_timestamp(modified)),
        )
        return cursor.fetchone()[0] > 0

    def record_imported_file(self, record: ImportedFileRecord) -> ImportedFileRecord:
        """
        Append a file to the imported-file ledger.

        Args:
            record: ImportedFileRecord to store

        Returns:
            The stored record with created_at set
        """
        if record.created_at is None:
            record.created_at = datetime.utcnow()

        with self._write() as cursor:
            cursor.execute(
                f"INSERT INTO imported_files ({self.IMPORTED_FILE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(record.file_name),
                    record.size,
                    format_timestamp(record.modified),
                    record.rows,
                    record.row_errors,
                    1 if record.error else 0,
                    record.error_msg,
                    format_timestamp(record.created_at),
                ),
            )

        logger.debug(f"Recorded imported file {record.file_name}")
        return record

    def imported_files(self) -> list[ImportedFileRecord]:
        """Get the imported-file ledger in insertion order."""
        cursor = self._conn.execute(
            f"SELECT {self.IMPORTED_FILE_COLUMNS} FROM imported_files ORDER BY rowid"
        )
        return [ImportedFileRecord.from_row(row) for row in cursor.fetchall()]
