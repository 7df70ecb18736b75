from __future__ import annotations

import csv
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence, TextIO

from .models import ComputerDetailRow, UpdateRecord, UpdateSummaryRow, row_columns, row_values
from .utils import ensure_dir, server_to_path_segment

LOGGER = logging.getLogger(__name__)

CSV_ENCODING = "utf-8-sig"


class ReportWriteError(Exception):
    """Raised when a report file cannot be written."""

    def __init__(self, path: Path, message: str | None = None) -> None:
        self.path = path
        super().__init__(message or f"Unable to write {path}")


def detail_filename(server: str, kb_number: int, timestamp: str) -> str:
    return f"ComputerDetail-{server_to_path_segment(server)}-KB{kb_number}-{timestamp}.csv"


def summary_filename(server: str, timestamp: str) -> str:
    return f"UpdateSummary-{server_to_path_segment(server)}-{timestamp}.csv"


def append_rows_csv(path: Path, row_type: type, rows: Sequence[Any]) -> int:
    """Append rows to a CSV file, writing the header only when the file is new."""
    if not rows:
        return 0
    columns = row_columns(row_type)
    try:
        ensure_dir(path.parent)
        new_file = not path.exists() or path.stat().st_size == 0
        with path.open("a", encoding=CSV_ENCODING if new_file else "utf-8", newline="") as handle:
            writer = csv.writer(handle)
            if new_file:
                writer.writerow(columns)
            for row in rows:
                writer.writerow(row_values(row))
    except OSError as exc:
        raise ReportWriteError(path, f"Unable to write {path}: {exc}") from exc
    return len(rows)


def format_table(row_type: type, rows: Sequence[Any]) -> str:
    columns = row_columns(row_type)
    cells = [["" if v is None else str(v) for v in row_values(row)] for row in rows]
    widths = [len(c) for c in columns]
    for line in cells:
        for idx, value in enumerate(line):
            widths[idx] = max(widths[idx], len(value))

    def _render(values: list[str]) -> str:
        return " ".join(value.ljust(widths[idx]) for idx, value in enumerate(values)).rstrip()

    lines = [_render(columns), _render(["-" * w for w in widths])]
    lines.extend(_render(line) for line in cells)
    return "\n".join(lines) + "\n"


@dataclass
class CsvReportWriter:
    output_dir: Path
    timestamp: str

    def write_detail(
        self, server: str, kb_number: int, update: UpdateRecord, rows: list[ComputerDetailRow]
    ) -> str | None:
        path = self.output_dir / detail_filename(server, kb_number, self.timestamp)
        written = append_rows_csv(path, ComputerDetailRow, rows)
        if not written:
            LOGGER.info("%s: no Install-approved computers for %r", server, update.title)
            return None
        LOGGER.info("%s: wrote %s rows for %r to %s", server, written, update.title, path)
        return str(path)

    def write_summary(self, server: str, rows: list[UpdateSummaryRow]) -> str | None:
        path = self.output_dir / summary_filename(server, self.timestamp)
        written = append_rows_csv(path, UpdateSummaryRow, rows)
        if not written:
            LOGGER.info("%s: no matching updates, summary not written", server)
            return None
        LOGGER.info("%s: wrote summary of %s updates to %s", server, written, path)
        return str(path)


@dataclass
class ConsoleWriter:
    stream: TextIO | None = None

    def _out(self) -> TextIO:
        return self.stream if self.stream is not None else sys.stdout

    def write_detail(
        self, server: str, kb_number: int, update: UpdateRecord, rows: list[ComputerDetailRow]
    ) -> str | None:
        out = self._out()
        out.write(f"\n{server} KB{kb_number}: {update.title}\n")
        out.write(format_table(ComputerDetailRow, rows))
        return None

    def write_summary(self, server: str, rows: list[UpdateSummaryRow]) -> str | None:
        out = self._out()
        out.write(f"\n{server} update summary\n")
        out.write(format_table(UpdateSummaryRow, rows))
        return None
