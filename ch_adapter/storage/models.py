"""
Persistent state storage models.

These models track the local cache of Clearinghouse trip tickets and the
source files that have already been imported.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..transform.values import canonicalize

# Tried in order after ISO 8601
TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d %B %Y, %H:%M:%S %Z",
    "%d %B %Y %H:%M:%S",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp from storage, a CSV row or an API payload.

    Accepts datetimes, ISO 8601 strings (with ``Z`` or an offset) and the
    formats in TIMESTAMP_FORMATS. Aware values are converted to naive UTC.
    Unparseable values yield None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _to_utc(value)

    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _to_utc(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in TIMESTAMP_FORMATS:
        try:
            return _to_utc(datetime.strptime(text, fmt))
        except ValueError:
            continue
    return None


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a timestamp for storage: naive UTC with microsecond precision."""
    if value is None:
        return None
    return _to_utc(value).isoformat(timespec="microseconds")


def canonical_origin_timestamp(value: Any) -> Optional[str]:
    """
    Canonical text form of an appointment time.

    Parseable values are stored as formatted UTC timestamps so the same
    moment written two ways resolves to the same tracked record; anything
    else is kept verbatim.
    """
    if value is None or str(value).strip() == "":
        return None
    parsed = parse_timestamp(value)
    return format_timestamp(parsed) if parsed else str(value).strip()


@dataclass
class TrackedRecord:
    """
    Local cache entry for one trip ticket.

    Identity before the Clearinghouse knows the trip is the pair
    (origin_id, origin_timestamp); an origin id reused at a different
    appointment time is a different trip.

    Attributes:
        local_id: Owned primary key (None until first saved)
        remote_id: Clearinghouse trip ticket ID (None until synced)
        remote_updated_at: Clearinghouse updated_at, high-water mark for fetches
        is_originated: Whether the local provider originated the trip
        origin_id: Trip ID assigned by the local provider
        origin_timestamp: Appointment time of the trip
        snapshot: Last known full Clearinghouse record
        created_at: When this record was created
        updated_at: When this record was last saved
    """
    local_id: Optional[int] = None
    remote_id: Optional[str] = None
    remote_updated_at: Optional[datetime] = None
    is_originated: bool = False
    origin_id: Optional[str] = None
    origin_timestamp: Optional[str] = None
    snapshot: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_synced(self) -> bool:
        """Check if the Clearinghouse has assigned this trip an ID."""
        return self.remote_id is not None

    def apply_remote(self, attributes: dict) -> "TrackedRecord":
        """
        Copy a Clearinghouse record into this tracked record.

        The whole record becomes the snapshot; identifiers and the
        update time are lifted into their own columns.

        Args:
            attributes: Clearinghouse trip ticket attributes

        Returns:
            self, for chaining
        """
        attributes = canonicalize(attributes)
        self.snapshot = attributes
        if attributes.get("id") is not None:
            self.remote_id = str(attributes["id"])
        if "updated_at" in attributes:
            self.remote_updated_at = parse_timestamp(attributes["updated_at"])
        if "is_originated" in attributes:
            self.is_originated = bool(attributes["is_originated"])
        if attributes.get("origin_trip_id") is not None:
            self.origin_id = str(attributes["origin_trip_id"])
        if attributes.get("appointment_time") is not None:
            self.origin_timestamp = canonical_origin_timestamp(attributes["appointment_time"])
        return self

    @classmethod
    def from_row(cls, row: tuple) -> "TrackedRecord":
        """Create from SQLite row tuple."""
        (
            local_id,
            remote_id,
            remote_updated_at,
            is_originated,
            origin_id,
            origin_timestamp,
            snapshot,
            created_at,
            updated_at,
        ) = row

        return cls(
            local_id=local_id,
            remote_id=remote_id,
            remote_updated_at=parse_timestamp(remote_updated_at),
            is_originated=bool(is_originated),
            origin_id=origin_id,
            origin_timestamp=origin_timestamp,
            snapshot=json.loads(snapshot) if snapshot else {},
            created_at=parse_timestamp(created_at),
            updated_at=parse_timestamp(updated_at),
        )


@dataclass
class ImportedFileRecord:
    """
    A source file that has been fully processed.

    (file_name, size, modified) identifies the file; records are
    append-only and only used to prevent reprocessing.
    """
    file_name: str
    size: int
    modified: datetime
    rows: int = 0
    row_errors: int = 0
    error: bool = False
    error_msg: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: tuple) -> "ImportedFileRecord":
        """Create from SQLite row tuple."""
        file_name, size, modified, rows, row_errors, error, error_msg, created_at = row
        return cls(
            file_name=file_name,
            size=size,
            modified=parse_timestamp(modified),
            rows=rows or 0,
            row_errors=row_errors or 0,
            error=bool(error),
            error_msg=error_msg,
            created_at=parse_timestamp(created_at),
        )

    def __str__(self) -> str:
        status = f"error: {self.error_msg}" if self.error else f"{self.rows} rows, {self.row_errors} row errors"
        return f"{self.file_name} ({status})"
