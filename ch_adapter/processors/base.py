"""
Import and export processor interfaces.

Processors sit between the reconciliation cycle and the provider's own
systems. An import processor produces rows to push to the Clearinghouse;
an export processor writes reconciled trip tickets somewhere the
provider can pick them up. Both collect non-fatal problems in ``errors``,
which the orchestrator reports in one notification per phase.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class ProcessorError(Exception):
    """Raised when a processor cannot run at all (e.g. missing folders)."""
    pass


class ImportProcessor(ABC):
    """Produces flat rows for the import phase."""

    def __init__(self, options: Optional[dict] = None):
        self.options = dict(options or {})
        self.errors: list[str] = []

    @abstractmethod
    def process(self) -> list[dict]:
        """
        Collect candidate rows.

        Returns:
            List of rows; each should carry ``origin_trip_id`` and
            ``appointment_time``
        """

    @abstractmethod
    def finalize(self, imported: list[dict], skipped: list[dict], unposted: list[dict]) -> None:
        """
        Bookkeeping after every row has been handled.

        Args:
            imported: Rows accepted by the Clearinghouse
            skipped: Rows never sent (no origin trip id)
            unposted: Rows whose API call failed or returned no ID
        """


class ExportProcessor(ABC):
    """Writes reconciled trip tickets for the provider."""

    def __init__(self, options: Optional[dict] = None):
        self.options = dict(options or {})
        self.errors: list[str] = []

    @abstractmethod
    def process(self, exported_trips: list[dict[str, Any]]) -> None:
        """
        Export one cycle's trip tickets.

        Args:
            exported_trips: Trip tickets tagged with ``new_record``, with
                nested ``trip_claims``, ``trip_ticket_comments`` and
                ``trip_result``
        """
