"""
Telemetry Collector - CSV Writer

Writes one cycle's rows to a fixed-name "latest" CSV and a timestamped archive.
"""

import csv
import io
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .config import DEFAULT_FILE_PREFIX
from .errors import EmptyRowsError

logger = logging.getLogger(__name__)

ARCHIVE_STAMP_FORMAT = "%Y%m%d_%H%M%S"


@dataclass
class WriteResult:
    latest_path: Path
    archive_path: Path
    row_count: int
    size_bytes: int


def render_csv(rows: Sequence[Dict[str, Any]]) -> bytes:
    """
    Render rows as UTF-8 CSV bytes.

    Column order is the key order of the first row. None becomes an empty cell.

    Raises:
        EmptyRowsError: rows is empty
    """
    if not rows:
        raise EmptyRowsError("No rows to write: cannot infer CSV header")

    buffer = io.StringIO(newline="")
    writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


class CSVSnapshotWriter:
    """
    Writes the latest snapshot and an archive copy of each cycle.

    File naming:
        {prefix}_latest.csv           overwritten every cycle
        {prefix}_{YYYYmmdd_HHMMSS}.csv  one per cycle, UTC collection time
        {prefix}_{YYYYmmdd_HHMMSS}_N.csv  later cycles within the same second

    Both files receive identical bytes. Each is written to a temporary file
    in the same directory, fsynced and renamed into place. The archive is
    written before latest is replaced, so a failed cycle leaves the previous
    latest file untouched and never leaves latest without its archive.
    """

    def __init__(self, output_dir: Path, prefix: str = DEFAULT_FILE_PREFIX):
        """
        Args:
            output_dir: Directory for CSV files (created on first write)
            prefix: File name prefix
        """
        self.output_dir = Path(output_dir)
        self.prefix = prefix

    @property
    def latest_path(self) -> Path:
        return self.output_dir / f"{self.prefix}_latest.csv"

    def archive_path(self, collected_at: datetime) -> Path:
        stamp = collected_at.astimezone(timezone.utc).strftime(ARCHIVE_STAMP_FORMAT)
        return self.output_dir / f"{self.prefix}_{stamp}.csv"

    def _free_archive_path(self, collected_at: datetime) -> Path:
        """Archive path for collected_at, suffixed _1, _2, ... if already taken."""
        base = self.archive_path(collected_at)
        path = base
        counter = 0
        while path.exists():
            counter += 1
            path = base.with_name(f"{base.stem}_{counter}{base.suffix}")
        return path

    def write(self, rows: Sequence[Dict[str, Any]], collected_at: datetime) -> WriteResult:
        """
        Write rows to the latest and archive files.

        Args:
            rows: Flat rows sharing one field set
            collected_at: Collection instant, names the archive file

        Returns:
            WriteResult with both paths

        Raises:
            EmptyRowsError: rows is empty (nothing is written)
            OSError: The directory or a file could not be written
        """
        content = render_csv(rows)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # Archive first: latest is only replaced once the cycle is archived
        archive = self._free_archive_path(collected_at)
        self._write_atomic(archive, content)
        try:
            self._write_atomic(self.latest_path, content)
        except BaseException:
            archive.unlink(missing_ok=True)
            raise

        logger.info(f"Saved: {self.latest_path}")
        logger.info(f"Saved: {archive}")

        return WriteResult(
            latest_path=self.latest_path,
            archive_path=archive,
            row_count=len(rows),
            size_bytes=len(content),
        )

    def _write_atomic(self, target: Path, content: bytes):
        fd, tmp_name = tempfile.mkstemp(
            dir=self.output_dir, prefix=f".{target.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def list_archives(self) -> List[Path]:
        """Archive files in the directory, oldest first."""
        latest = self.latest_path.name
        files = [
            p for p in self.output_dir.glob(f"{self.prefix}_*.csv")
            if p.name != latest
        ]
        return sorted(files)


def write_csv(
    rows: Sequence[Dict[str, Any]],
    target_dir: Path,
    collected_at: datetime,
    prefix: str = DEFAULT_FILE_PREFIX,
) -> WriteResult:
    """Write latest CSV and timestamped CSV."""
    return CSVSnapshotWriter(target_dir, prefix).write(rows, collected_at)


def read_csv(path: Path) -> List[Dict[str, str]]:
    """
    Read a CSV written by this module.

    Returns:
        List of rows as string dictionaries; empty cells are ""

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"CSV file not found: {path}")

    with open(path, "r", encoding="utf-8", newline="") as f:
        return list(csv.DictReader(f))
