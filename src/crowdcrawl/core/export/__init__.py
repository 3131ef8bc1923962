"""Dataset export - session discovery, durable row writes and quality checks."""

from .quality import DatasetReport, check_dataset
from .session import (
    ExportError,
    SessionExporter,
    SessionInfo,
    clear_marker,
    count_rows,
    current_session,
    read_marker,
)

__all__ = [
    "DatasetReport",
    "ExportError",
    "SessionExporter",
    "SessionInfo",
    "check_dataset",
    "clear_marker",
    "count_rows",
    "current_session",
    "read_marker",
]
