"""
Raw Table Reader.

Turns uploaded bytes into a ``RawTable``:

- Delimited text (``.csv``, ``.tsv``, ``.txt``) with the delimiter sniffed
  from the header line and a BOM / Latin-1 tolerant decode
- Excel workbooks (``.xlsx``, ``.xlsm``), first worksheet only
- pandas DataFrames and plain dict rows, for callers that already hold them

Blank header cells become ``Column_<n>``, repeated headers get a ``_<n>``
suffix, and fully empty rows are skipped.
"""

from __future__ import annotations

import csv
from datetime import date, datetime
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Union
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from sheet_mapper.config import ReaderConfig
from sheet_mapper.errors import ParseError
from sheet_mapper.logging_setup import get_logger
from sheet_mapper.normalizer import is_blank
from sheet_mapper.schema import RawTable

logger = get_logger("table_reader")

DELIMITED_EXTENSIONS = frozenset({".csv", ".tsv", ".txt"})
WORKBOOK_EXTENSIONS = frozenset({".xlsx", ".xlsm"})


class TableReader:
    """Reads one uploaded file into a ``RawTable``.

    Parameters
    ----------
    config:
        Size limit and candidate delimiters.
    """

    def __init__(self, config: ReaderConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def read(self, content: bytes, file_name: str) -> RawTable:
        """Parse *content* according to the extension of *file_name*.

        Raises
        ------
        ParseError
            Empty, oversized, unsupported or unreadable input, or a file
            without a header row or without data rows.
        """
        if not content:
            raise ParseError("File is empty", file_name)
        if len(content) > self._config.max_bytes:
            raise ParseError(
                f"File exceeds {self._config.max_bytes // (1024 * 1024)} MB limit",
                file_name,
            )

        ext = Path(file_name).suffix.lower()
        if ext in DELIMITED_EXTENSIONS:
            grid = self._read_delimited(content, file_name)
        elif ext in WORKBOOK_EXTENSIONS:
            grid = self._read_workbook(content, file_name)
        else:
            raise ParseError(f"Unsupported file type {ext or '(none)'!r}", file_name)

        table = self._to_table(grid, file_name)
        logger.info(
            "Read %r: %d column(s), %d row(s)",
            file_name, len(table.headers), len(table.rows),
        )
        return table

    def read_path(self, path: Union[str, Path]) -> RawTable:
        """Convenience wrapper reading from disk."""
        path = Path(path)
        try:
            content = path.read_bytes()
        except OSError as exc:
            raise ParseError(str(exc), path.name) from exc
        return self.read(content, path.name)

    def read_dataframe(self, df: Any, file_name: str = "") -> RawTable:
        """Build a ``RawTable`` from a pandas DataFrame."""
        import pandas as pd

        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"Expected pandas DataFrame, got {type(df).__name__}")

        frame = df.astype(object).where(pd.notna(df), None)
        grid: List[List[Any]] = [list(frame.columns)]
        grid.extend(list(r) for r in frame.itertuples(index=False, name=None))
        return self._to_table(grid, file_name)

    def read_records(
        self, records: Sequence[Mapping[str, Any]], file_name: str = ""
    ) -> RawTable:
        """Build a ``RawTable`` from already-parsed dict rows.

        Headers are the union of the row keys in first-seen order.
        """
        headers: List[str] = []
        for record in records:
            headers.extend(k for k in record if k not in headers)
        grid: List[List[Any]] = [list(headers)]
        grid.extend([record.get(h) for h in headers] for record in records)
        return self._to_table(grid, file_name)

    # ------------------------------------------------------------------ #
    # Format readers, producing a grid of cells
    # ------------------------------------------------------------------ #

    def _read_delimited(self, content: bytes, file_name: str) -> List[List[Any]]:
        text = self._decode(content)
        try:
            delimiter = self.sniff_delimiter(text)
            return [row for row in csv.reader(StringIO(text), delimiter=delimiter)]
        except csv.Error as exc:
            raise ParseError(f"Malformed delimited text: {exc}", file_name) from exc

    @staticmethod
    def _decode(content: bytes) -> str:
        try:
            return content.decode("utf-8-sig")
        except UnicodeDecodeError:
            logger.info("Input is not UTF-8; decoding as Latin-1")
            return content.decode("latin-1")

    def sniff_delimiter(self, text: str) -> str:
        """Delimiter yielding the most header columns (first wins ties)."""
        first_line = next((line for line in text.splitlines() if line.strip()), "")
        best, best_count = self._config.delimiters[0], 1
        for delimiter in self._config.delimiters:
            row = next(csv.reader([first_line], delimiter=delimiter), [])
            if len(row) > best_count:
                best, best_count = delimiter, len(row)
        logger.debug("Sniffed delimiter %r (%d column(s))", best, best_count)
        return best

    @staticmethod
    def _read_workbook(content: bytes, file_name: str) -> List[List[Any]]:
        try:
            wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, BadZipFile, KeyError, ValueError, OSError) as exc:
            raise ParseError(f"Unreadable workbook: {exc}", file_name) from exc
        try:
            if not wb.worksheets:
                raise ParseError("Workbook has no worksheets", file_name)
            ws = wb.worksheets[0]
            logger.debug("Reading worksheet %r of %r", ws.title, file_name)
            return [list(row) for row in ws.iter_rows(values_only=True)]
        finally:
            wb.close()

    # ------------------------------------------------------------------ #
    # Grid → RawTable
    # ------------------------------------------------------------------ #

    def _to_table(self, grid: Sequence[Sequence[Any]], file_name: str) -> RawTable:
        rows = [list(r) for r in grid if any(not is_blank(c) for c in r)]
        if not rows:
            raise ParseError("No header row", file_name)

        # Data cells beyond the header row get a generated header.
        width = max(len(r) for r in rows)
        rows[0] += [None] * (width - len(rows[0]))

        # Drop trailing header cells whose whole column is empty.
        while width and is_blank(rows[0][width - 1]) and all(
            len(r) < width or is_blank(r[width - 1]) for r in rows[1:]
        ):
            width -= 1

        headers = self.repair_headers(rows[0][:width])
        if not headers:
            raise ParseError("No header row", file_name)
        records = []
        for raw in rows[1:]:
            cells = [_clean_cell(c) for c in raw[: len(headers)]]
            cells += [None] * (len(headers) - len(cells))
            records.append(dict(zip(headers, cells)))

        if not records:
            raise ParseError("No data rows", file_name)
        return RawTable.from_records(headers, records, file_name)

    @staticmethod
    def repair_headers(cells: Sequence[Any]) -> List[str]:
        """Name blank headers ``Column_<n>`` and suffix duplicates ``_<n>``."""
        headers: List[str] = []
        seen: dict[str, int] = {}
        for index, cell in enumerate(cells):
            if isinstance(cell, datetime):
                name = cell.date().isoformat()
            elif isinstance(cell, date):
                name = cell.isoformat()
            elif is_blank(cell):
                name = f"Column_{index + 1}"
            else:
                name = str(cell).strip()
            if name in seen:
                seen[name] += 1
                candidate = f"{name}_{seen[name]}"
                while candidate in seen:
                    seen[name] += 1
                    candidate = f"{name}_{seen[name]}"
                name = candidate
            seen[name] = 1
            headers.append(name)
        return headers


def _clean_cell(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value
