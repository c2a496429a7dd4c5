"""
Unit tests for the TableReader.
"""

from __future__ import annotations

from datetime import datetime
from io import BytesIO

import openpyxl
import pandas as pd
import pytest

from sheet_mapper.config import ReaderConfig
from sheet_mapper.errors import ParseError
from sheet_mapper.table_reader import TableReader


@pytest.fixture
def reader() -> TableReader:
    return TableReader(ReaderConfig())


def workbook_bytes(rows) -> bytes:  # noqa: ANN001
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ======================================================================
# Delimited text
# ======================================================================

class TestDelimited:
    def test_semicolon_sniffed(self, reader: TableReader) -> None:
        content = 'Datum;Betrag;Text\n01.03.2024;"1.250,00";Miete\n'.encode()
        table = reader.read(content, "konto.csv")
        assert table.headers == ("Datum", "Betrag", "Text")
        assert table.rows[0] == {"Datum": "01.03.2024", "Betrag": "1.250,00", "Text": "Miete"}
        assert table.file_name == "konto.csv"

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("a,b,c", ","),
            ("a;b;c", ";"),
            ("a\tb\tc", "\t"),
            ("a|b|c", "|"),
            ("single", ","),
            ('"x;y",z', ","),
        ],
    )
    def test_sniff(self, reader: TableReader, text: str, expected: str) -> None:
        assert reader.sniff_delimiter(text + "\n1,2,3") == expected

    def test_bom_stripped(self, reader: TableReader) -> None:
        table = reader.read("\ufeffDate,Amount\n2024-01-01,5\n".encode("utf-8"), "a.csv")
        assert table.headers[0] == "Date"

    def test_latin1_fallback(self, reader: TableReader) -> None:
        content = "Empfänger;Betrag\nMüller;5\n".encode("latin-1")
        table = reader.read(content, "a.csv")
        assert table.headers == ("Empfänger", "Betrag")
        assert table.rows[0]["Empfänger"] == "Müller"

    def test_headers_repaired(self, reader: TableReader) -> None:
        content = b"Name,,Name,Name\nx,y,z,w\n"
        table = reader.read(content, "a.csv")
        assert table.headers == ("Name", "Column_2", "Name_2", "Name_3")

    def test_cells_cleaned_and_padded(self, reader: TableReader) -> None:
        content = b"A,B,C\n  x  ,,\n,,\ny\n"
        table = reader.read(content, "a.csv")
        assert table.rows == ({"A": "x", "B": None, "C": None}, {"A": "y", "B": None, "C": None})

    def test_trailing_empty_header_columns_trimmed(self, reader: TableReader) -> None:
        table = reader.read(b"A,B,,\n1,2,,\n", "a.csv")
        assert table.headers == ("A", "B")


# ======================================================================
# Errors
# ======================================================================

class TestErrors:
    def test_empty(self, reader: TableReader) -> None:
        with pytest.raises(ParseError, match="empty"):
            reader.read(b"", "a.csv")

    def test_oversize(self) -> None:
        reader = TableReader(ReaderConfig(max_bytes=10))
        with pytest.raises(ParseError, match="limit"):
            reader.read(b"A,B\n" + b"1,2\n" * 10, "a.csv")

    def test_unsupported_extension(self, reader: TableReader) -> None:
        with pytest.raises(ParseError, match="Unsupported") as info:
            reader.read(b"%PDF", "report.pdf")
        assert info.value.file_name == "report.pdf"

    def test_header_only(self, reader: TableReader) -> None:
        with pytest.raises(ParseError, match="No data rows"):
            reader.read(b"A,B\n", "a.csv")

    def test_blank_only(self, reader: TableReader) -> None:
        with pytest.raises(ParseError, match="No header row"):
            reader.read(b",,\n,,\n", "a.csv")

    def test_corrupt_workbook(self, reader: TableReader) -> None:
        with pytest.raises(ParseError, match="Unreadable workbook"):
            reader.read(b"definitely not a zip", "a.xlsx")

    def test_oversized_field(self, reader: TableReader) -> None:
        content = b"A,B\n" + b"x" * 200_000 + b",1\n"
        with pytest.raises(ParseError, match="Malformed") as info:
            reader.read(content, "big.csv")
        assert info.value.file_name == "big.csv"

    def test_missing_path(self, reader: TableReader, tmp_path) -> None:  # noqa: ANN001
        with pytest.raises(ParseError):
            reader.read_path(tmp_path / "missing.csv")


# ======================================================================
# Workbooks & DataFrames
# ======================================================================

class TestWorkbook:
    def test_first_sheet_read(self, reader: TableReader) -> None:
        content = workbook_bytes([
            ["Kategorie", datetime(2024, 1, 1), datetime(2024, 2, 1)],
            ["Miete", 1000, 1000],
            [None, None, None],
            ["Software", 250.5, None],
        ])
        table = reader.read(content, "budget.xlsx")
        assert table.headers == ("Kategorie", "2024-01-01", "2024-02-01")
        assert len(table.rows) == 2
        assert table.rows[1] == {"Kategorie": "Software", "2024-01-01": 250.5, "2024-02-01": None}

    def test_read_path(self, reader: TableReader, tmp_path) -> None:  # noqa: ANN001
        path = tmp_path / "deals.xlsx"
        path.write_bytes(workbook_bytes([["Deal", "Wert"], ["A", 5]]))
        table = reader.read_path(path)
        assert table.file_name == "deals.xlsx"
        assert table.rows[0] == {"Deal": "A", "Wert": 5}


class TestDataFrame:
    def test_nan_becomes_none(self, reader: TableReader) -> None:
        df = pd.DataFrame({"A": [1.5, float("nan")], "B": ["x", None]})
        table = reader.read_dataframe(df, "frame")
        assert table.headers == ("A", "B")
        assert table.rows[0] == {"A": 1.5, "B": "x"}
        assert len(table.rows) == 1

    def test_rejects_non_frame(self, reader: TableReader) -> None:
        with pytest.raises(TypeError):
            reader.read_dataframe([[1, 2]])


class TestRecords:
    def test_union_of_keys(self, reader: TableReader) -> None:
        table = reader.read_records(
            [{"Date": "2024-01-01", "Amount": 5}, {"Date": "2024-01-02", "Note": " x "}],
            "api",
        )
        assert table.headers == ("Date", "Amount", "Note")
        assert table.rows[1] == {"Date": "2024-01-02", "Amount": None, "Note": "x"}

    def test_extra_cells_get_headers(self, reader: TableReader) -> None:
        table = reader.read(b"A,B\n1,2,3\n", "a.csv")
        assert table.headers == ("A", "B", "Column_3")
        assert table.rows[0]["Column_3"] == "3"
