"""
Crash-safe, resumable dataset export.

A session is one timestamped directory under the output directory holding
a single CSV dataset. A small marker file names the active session so a
restarted crawl keeps appending to the same file instead of starting over.
Every row is flushed and fsynced before ``add_record`` returns.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Sequence

from crowdcrawl.core.normalize.features import DATASET_COLUMNS, build_row

if TYPE_CHECKING:
    from crowdcrawl.core.config.models import StorageConfig

logger = logging.getLogger(__name__)

SESSION_ID_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_DATASET_FILENAME = "ml_dataset.csv"
DEFAULT_MARKER_NAME = "current_session.txt"


class ExportError(Exception):
    """A row could not be written to the dataset."""


@dataclass(frozen=True)
class SessionInfo:
    """Summary of the active export session."""

    session_id: str
    output_path: Path
    row_count: int


def _write_csv_line(fields: Sequence[str]) -> str:
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(fields)
    return buffer.getvalue()


def _write_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` without ever exposing a partial file."""
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read_marker(marker_path: Path) -> str | None:
    """Session id named by the marker, or None if there is no marker."""
    try:
        value = Path(marker_path).read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return value or None


def clear_marker(marker_path: Path) -> bool:
    """Delete the marker so the next exporter starts a new session.

    Returns:
        True if a marker was removed
    """
    try:
        Path(marker_path).unlink()
    except FileNotFoundError:
        return False
    return True


def count_rows(dataset: Path) -> int:
    """Data rows in a dataset file, excluding the header."""
    if not dataset.exists():
        return 0
    with open(dataset, newline="", encoding="utf-8") as f:
        rows = sum(1 for _ in csv.reader(f))
    return max(0, rows - 1)


def current_session(
    output_dir: Path,
    marker_path: Path,
    dataset_filename: str = DEFAULT_DATASET_FILENAME,
) -> SessionInfo | None:
    """Describe the session the marker points at without opening or creating one."""
    session_id = read_marker(marker_path)
    if session_id is None:
        return None
    dataset = Path(output_dir) / session_id / dataset_filename
    if not dataset.is_file():
        return None
    return SessionInfo(session_id=session_id, output_path=dataset, row_count=count_rows(dataset))


class SessionExporter:
    """Append-only writer of dataset rows with session discovery.

    On construction the marker is consulted: if it names a session whose
    dataset exists and is non-empty, that session is resumed as-is.
    Otherwise a new session directory is created, the header written and
    the marker updated.
    """

    def __init__(
        self,
        output_dir: Path | str,
        marker_path: Path | str | None = None,
        dataset_filename: str = DEFAULT_DATASET_FILENAME,
        *,
        columns: Sequence[str] = DATASET_COLUMNS,
        row_builder: Callable[[Any], Sequence[str]] = build_row,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the exporter and open or create a session.

        Args:
            output_dir: Parent directory of session directories
            marker_path: Session marker file (default: ``<output_dir>/current_session.txt``)
            dataset_filename: Dataset file name inside a session directory
            columns: Header, in row order
            row_builder: Turns a record into a row of strings
            clock: Source of the session timestamp
        """
        self.output_dir = Path(output_dir)
        self.marker_path = Path(marker_path) if marker_path else self.output_dir / DEFAULT_MARKER_NAME
        self.dataset_filename = dataset_filename
        self.columns = tuple(columns)
        self._row_builder = row_builder
        self._clock = clock

        self.session_id: str = ""
        self.session_dir: Path = self.output_dir
        self.resumed = False

        existing = read_marker(self.marker_path)
        if existing and self._can_resume(existing):
            self._open_session(existing)
            self.resumed = True
            logger.info(f"Resuming export session {existing} ({self.row_count()} rows)")
        else:
            self._create_session()

    @classmethod
    def from_config(cls, storage: "StorageConfig", **kwargs: Any) -> "SessionExporter":
        return cls(
            storage.output_dir,
            storage.session_marker,
            storage.dataset_filename,
            **kwargs,
        )

    @property
    def output_path(self) -> Path:
        return self.session_dir / self.dataset_filename

    # =========================================================================
    # Session discovery
    # =========================================================================

    def _can_resume(self, session_id: str) -> bool:
        dataset = self.output_dir / session_id / self.dataset_filename
        if not dataset.is_file() or dataset.stat().st_size == 0:
            logger.info(f"Session {session_id} has no dataset; starting a new session")
            return False

        with open(dataset, newline="", encoding="utf-8") as f:
            header = next(csv.reader(f), None)
        if header is None or tuple(header) != self.columns:
            logger.warning(f"Session {session_id} has a different header; starting a new session")
            return False
        return True

    def _open_session(self, session_id: str) -> None:
        self.session_id = session_id
        self.session_dir = self.output_dir / session_id
        self._drop_partial_row()

    def _drop_partial_row(self) -> None:
        """Truncate a trailing row left unterminated by a crash mid-write."""
        path = self.output_path
        with open(path, "rb+") as f:
            data = f.read()
            if data.endswith(b"\n"):
                return
            keep = data.rfind(b"\n") + 1
            f.truncate(keep)
            f.flush()
            os.fsync(f.fileno())
        logger.warning(f"Dropped an incomplete trailing row from {path}")

    def _new_session_id(self) -> str:
        base = self._clock().strftime(SESSION_ID_FORMAT)
        session_id = base
        suffix = 1
        while (self.output_dir / session_id).exists():
            suffix += 1
            session_id = f"{base}_{suffix}"
        return session_id

    def _create_session(self) -> None:
        session_id = self._new_session_id()
        session_dir = self.output_dir / session_id
        session_dir.mkdir(parents=True, exist_ok=False)

        dataset = session_dir / self.dataset_filename
        with open(dataset, "w", newline="", encoding="utf-8") as f:
            f.write(_write_csv_line(self.columns))
            f.flush()
            os.fsync(f.fileno())

        self.marker_path.parent.mkdir(parents=True, exist_ok=True)
        _write_atomic(self.marker_path, session_id)

        self.session_id = session_id
        self.session_dir = session_dir
        self.resumed = False
        logger.info(f"Started export session {session_id}: {dataset}")

    # =========================================================================
    # Writing
    # =========================================================================

    def add_record(self, record: Any) -> None:
        """Append one record as a dataset row, durable on return.

        Raises:
            ExportError: If the row does not match the header or the write fails
        """
        try:
            row = list(self._row_builder(record))
        except Exception as e:
            raise ExportError(f"could not build row: {e}") from e

        if len(row) != len(self.columns):
            raise ExportError(
                f"row has {len(row)} fields, header has {len(self.columns)}"
            )

        line = _write_csv_line(row)
        try:
            with open(self.output_path, "a", newline="", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise ExportError(f"could not write to {self.output_path}: {e}") from e

    def start_new_session(self) -> None:
        """Forget the active session; the next exporter creates a new one.

        The session this exporter has open keeps receiving rows.
        """
        clear_marker(self.marker_path)
        logger.info("Session marker removed; a new session starts on next run")

    # =========================================================================
    # Inspection
    # =========================================================================

    def row_count(self) -> int:
        """Data rows in the dataset file, excluding the header."""
        return count_rows(self.output_path)

    def session_info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            output_path=self.output_path,
            row_count=self.row_count(),
        )
