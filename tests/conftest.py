"""
Pytest configuration and shared fixtures.

Provides in-memory collaborators and test data for reconciliation testing.
"""

import copy
import pytest
from pathlib import Path
from typing import Generator
import tempfile

from ch_adapter.clearinghouse.client import ClearinghouseAPIError
from ch_adapter.clearinghouse.models import RemoteRecord
from ch_adapter.notify.notifier import NotificationError, Notifier
from ch_adapter.storage.models import parse_timestamp
from ch_adapter.storage.state_store import StateStore


# ============================================================================
# Fake Collaborators
# ============================================================================

class FakeRemote:
    """
    In-memory Clearinghouse.

    ``get`` honours the ``updated_since`` filter the way the real sync
    endpoint does; ``post``/``put`` answer with the submitted row plus an ID.
    """

    def __init__(self, trips=None):
        self.trips = [copy.deepcopy(trip) for trip in (trips or [])]
        self.calls = []
        self.fetch_error = None
        self.failing_origin_ids = set()
        self.id_less_origin_ids = set()
        self._next_id = 1000

    def get(self, path, query=None):
        self.calls.append(("GET", path, dict(query or {})))
        if self.fetch_error is not None:
            raise self.fetch_error

        since = parse_timestamp((query or {}).get("updated_since"))
        return [
            RemoteRecord.from_api_response(copy.deepcopy(trip), path=f"trip_tickets/{trip.get('id')}")
            for trip in self.trips
            if since is None or parse_timestamp(trip.get("updated_at")) > since
        ]

    def post(self, path, body):
        self.calls.append(("POST", path, dict(body)))
        return self._respond(body, None)

    def put(self, path, body):
        self.calls.append(("PUT", path, dict(body)))
        return self._respond(body, path[-1])

    def _respond(self, body, remote_id):
        origin_id = body.get("origin_trip_id")
        if origin_id in self.failing_origin_ids:
            raise ClearinghouseAPIError("Validation failed", status_code=422, response={"error": "Validation failed"})
        if origin_id in self.id_less_origin_ids:
            return RemoteRecord.from_api_response({"origin_trip_id": origin_id}, path="trip_tickets")

        if remote_id is None:
            self._next_id += 1
            remote_id = self._next_id
        attributes = dict(body)
        attributes["id"] = int(remote_id)
        attributes["updated_at"] = "2024-01-01T00:00:00Z"
        return RemoteRecord.from_api_response(attributes, path="trip_tickets")

    def requests(self, method):
        return [call for call in self.calls if call[0] == method]


class FakeImporter:
    """Import processor returning fixed rows and recording finalize calls."""

    def __init__(self, rows=None, errors=None, process_error=None):
        self.rows = rows or []
        self.errors = list(errors or [])
        self.process_error = process_error
        self.finalized = None

    def process(self):
        if self.process_error is not None:
            raise self.process_error
        return [dict(row) for row in self.rows]

    def finalize(self, imported, skipped, unposted):
        self.finalized = (list(imported), list(skipped), list(unposted))


class FakeExporter:
    """Export processor recording every batch it receives."""

    def __init__(self, errors=None):
        self.errors = list(errors or [])
        self.batches = []

    def process(self, exported_trips):
        self.batches.append(copy.deepcopy(exported_trips))


class RecordingNotifier(Notifier):
    """Notifier keeping every message in memory."""

    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)


class FailingNotifier(Notifier):
    """Notifier that always fails."""

    def __init__(self):
        self.attempts = 0

    def send(self, message):
        self.attempts += 1
        raise NotificationError("SMTP server unavailable")


# ============================================================================
# Trip Ticket Fixtures
# ============================================================================

@pytest.fixture
def existing_trip() -> dict:
    """A trip ticket as returned by the sync endpoint."""
    return {
        "id": 1,
        "origin_trip_id": "A-100",
        "appointment_time": "2024-03-01T09:30:00Z",
        "customer_first_name": "Ada",
        "customer_last_name": "Lovelace",
        "updated_at": "2024-03-01T08:00:00Z",
        "customer_address": {"address_1": "1 Main St", "city": "Portland"},
        "trip_claims": [{"id": 1, "status": "pending"}],
        "trip_ticket_comments": [{"id": 1, "body": "Wheelchair user"}],
        "trip_result": {},
    }


@pytest.fixture
def new_trip() -> dict:
    """A second trip ticket with every nested object populated."""
    return {
        "id": 2,
        "origin_trip_id": "B-200",
        "appointment_time": "2024-03-02T14:00:00Z",
        "updated_at": "2024-03-01T09:00:00Z",
        "trip_claims": [{"id": 2, "status": "approved"}],
        "trip_ticket_comments": [{"id": 2, "body": "Call on arrival"}],
        "trip_result": {"id": 2, "outcome": "Completed"},
    }


@pytest.fixture
def import_row() -> dict:
    """A flat row as produced by an import processor."""
    return {
        "origin_trip_id": "P-1",
        "appointment_time": "2024-04-01 10:00",
        "customer_first_name": "Grace",
        "customer_last_name": "Hopper",
    }


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def exporter() -> FakeExporter:
    return FakeExporter()


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = Path(f.name)
    yield path
    # Cleanup
    for candidate in (path, Path(f"{path}-wal"), Path(f"{path}-shm")):
        if candidate.exists():
            candidate.unlink()


@pytest.fixture
def state_store(temp_db_path: Path) -> Generator[StateStore, None, None]:
    """Create a fresh StateStore with temp database."""
    store = StateStore(temp_db_path)
    yield store
    store.close()


# ============================================================================
# Environment Fixtures
# ============================================================================

ADAPTER_ENV_VARS = (
    "CLEARINGHOUSE_API_BASE_URL",
    "CLEARINGHOUSE_API_KEY",
    "CLEARINGHOUSE_API_PRIVATE_KEY",
    "CLEARINGHOUSE_API_VERSION",
    "CLEARINGHOUSE_TIMEOUT",
    "CLEARINGHOUSE_MAX_RETRIES",
    "IMPORT_ENABLED",
    "IMPORT_FOLDER",
    "IMPORT_COMPLETED_FOLDER",
    "IMPORT_MAPPING_FILE",
    "IMPORT_NORMALIZATION_FILE",
    "EXPORT_ENABLED",
    "EXPORT_FOLDER",
    "EXPORT_MAPPING_FILE",
    "EXPORT_NORMALIZATION_FILE",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASSWORD",
    "SMTP_STARTTLS",
    "NOTIFY_TO",
    "NOTIFY_FROM",
    "NOTIFY_SUBJECT",
    "STORAGE_DATABASE_PATH",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every adapter variable; anything set during the test is undone afterwards."""
    for name in ADAPTER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def mock_env(clean_env):
    """A complete, valid adapter environment."""
    clean_env.setenv("CLEARINGHOUSE_API_BASE_URL", "https://clearinghouse.test/api/")
    clean_env.setenv("CLEARINGHOUSE_API_KEY", "test_key")
    clean_env.setenv("CLEARINGHOUSE_API_PRIVATE_KEY", "test_private_key")
    clean_env.setenv("IMPORT_FOLDER", "import")
    clean_env.setenv("IMPORT_COMPLETED_FOLDER", "import/completed")
    clean_env.setenv("EXPORT_FOLDER", "export")
    return clean_env
