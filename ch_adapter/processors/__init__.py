"""Import and export processors."""

from .base import ExportProcessor, ImportProcessor, ProcessorError
from .csv_export import CsvExportProcessor
from .csv_import import CsvImportProcessor

__all__ = [
    "ExportProcessor",
    "ImportProcessor",
    "ProcessorError",
    "CsvExportProcessor",
    "CsvImportProcessor",
]
