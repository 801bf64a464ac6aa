"""
CSV exporter — Streams enriched records to one or more CSV files.
"""

from __future__ import annotations

import csv
import logging
import re
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from ..config import CSV_DELIMITER, CSV_ENCODING

logger = logging.getLogger("m365_harvest.reporting.csv")


class ShapeMismatch(Exception):
    """Raised when a record's fields differ from the established header."""
    pass


class ExportMode(str, Enum):
    OVERWRITE = "overwrite"
    APPEND = "append"


class CsvExporter:
    """
    Writes records in arrival order; never sorts.

    The header comes from the first record and is repeated at the top of
    every file. With a ceiling, files are named <stem>_1<suffix>,
    <stem>_2<suffix>, ... and a new one is opened once the current file
    holds `ceiling` rows. Overwriting a split set removes every existing
    part first. Without a ceiling the path is used as given.
    """

    def __init__(
        self,
        path: str | Path,
        mode: ExportMode = ExportMode.OVERWRITE,
        ceiling: Optional[int] = None,
        delimiter: str = CSV_DELIMITER,
        encoding: str = CSV_ENCODING,
    ):
        if ceiling is not None and ceiling < 1:
            raise ValueError("ceiling must be at least 1")
        self.path = Path(path)
        self.mode = ExportMode(mode)
        self.ceiling = ceiling
        self.delimiter = delimiter
        self.encoding = encoding
        self.files: list[Path] = []
        self.counts: list[int] = []
        self._header: Optional[list[str]] = None
        self._index = 0
        self._rows_in_file = 0
        self._fh = None
        self._writer = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @property
    def total(self) -> int:
        return sum(self.counts)

    def write(self, record: Mapping[str, Any]):
        if self._fh is None:
            self._open(self._first_index(), record)
        elif self.ceiling is not None and self._rows_in_file >= self.ceiling:
            self._check_shape(record, self.files[-1])
            self._open(self._index + 1, record)
        else:
            self._check_shape(record, self.files[-1])

        self._writer.writerow(["" if record[k] is None else record[k] for k in self._header])
        self.counts[-1] += 1
        self._rows_in_file += 1

    def write_all(self, records: Iterable[Mapping[str, Any]]) -> list[Path]:
        for record in records:
            self.write(record)
        if not self.files:
            logger.warning(f"No records to export; {self.path} not written")
        return list(self.files)

    def close(self):
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None
            logger.info(f"Wrote {self.counts[-1]} rows to {self.files[-1]}")

    def path_for(self, index: int) -> Path:
        if self.ceiling is None:
            return self.path
        return self.path.with_name(f"{self.path.stem}_{index}{self.path.suffix}")

    def split_files(self) -> dict[int, Path]:
        """Existing <stem>_<N><suffix> files next to the output path, by N."""
        pattern = re.compile(rf"^{re.escape(self.path.stem)}_(\d+){re.escape(self.path.suffix)}$")
        return {
            int(m.group(1)): p
            for p in self.path.parent.glob(f"{self.path.stem}_*{self.path.suffix}")
            if (m := pattern.match(p.name))
        }

    def _first_index(self) -> int:
        if self.ceiling is None:
            return 1
        existing = self.split_files()
        if self.mode is ExportMode.OVERWRITE:
            # every part of the split set belongs to this run
            for index in sorted(existing):
                logger.info(f"Removing stale output file {existing[index]}")
                existing[index].unlink()
            return 1
        return max(existing, default=1)

    def _open(self, index: int, record: Mapping[str, Any]):
        self.close()
        path = self.path_for(index)
        existing_rows = 0

        if self.mode is ExportMode.APPEND and path.exists() and path.stat().st_size > 0:
            header, existing_rows = _read_existing(path, self.delimiter)
            if self._header is None:
                self._header = header
            elif header != self._header:
                raise ShapeMismatch(f"{path} has header {header}, expected {self._header}")
            if self.ceiling is not None and existing_rows >= self.ceiling:
                self._open(index + 1, record)
                return
            write_header = False
            file_mode = "a"
        else:
            if self._header is None:
                self._header = list(record.keys())
            write_header = True
            file_mode = "w"

        self._check_shape(record, path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(path, file_mode, newline="", encoding=self.encoding)
        self._writer = csv.writer(self._fh, delimiter=self.delimiter)
        if write_header:
            self._writer.writerow(self._header)
        self._index = index
        self.files.append(path)
        self.counts.append(0)
        self._rows_in_file = existing_rows
        if existing_rows:
            logger.info(f"Appending to {path} after {existing_rows} existing rows")

    def _check_shape(self, record: Mapping[str, Any], path: Path):
        if set(record.keys()) != set(self._header):
            missing = sorted(set(self._header) - set(record.keys()))
            extra = sorted(set(record.keys()) - set(self._header))
            raise ShapeMismatch(
                f"Record does not match header of {path}: "
                f"missing={missing} unexpected={extra}"
            )


def _read_existing(path: Path, delimiter: str) -> tuple[list[str], int]:
    with open(path, "r", newline="", encoding="utf-8-sig") as fh:
        reader = csv.reader(fh, delimiter=delimiter)
        header = next(reader, [])
        rows = sum(1 for _ in reader)
    return header, rows


def export_csv(
    records: Iterable[Mapping[str, Any]],
    path: str | Path,
    mode: ExportMode = ExportMode.OVERWRITE,
    ceiling: Optional[int] = None,
    delimiter: str = CSV_DELIMITER,
    encoding: str = CSV_ENCODING,
) -> list[Path]:
    """
    Write a record stream to CSV.

    Returns:
        List of written CSV file paths.
    """
    with CsvExporter(path, mode=mode, ceiling=ceiling, delimiter=delimiter, encoding=encoding) as exporter:
        return exporter.write_all(records)


def load_csv(path: str | Path, delimiter: str = CSV_DELIMITER) -> list[dict[str, str]]:
    """Read a CSV file back into dict rows."""
    with open(path, "r", newline="", encoding="utf-8-sig") as fh:
        return list(csv.DictReader(fh, delimiter=delimiter))
