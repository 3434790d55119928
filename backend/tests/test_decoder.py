"""Tests for decoding CSV and spreadsheet uploads into rows."""
from datetime import datetime

import pytest

from statement_import.decoder import decode, decode_headers, detect_file_kind, sniff_delimiter
from statement_import.exceptions import (
    EmptyFile,
    MalformedFile,
    SheetNotFound,
    UnsupportedFormat,
)
from statement_import.models import FileKind


class TestDetectFileKind:
    """File kind resolution from names and MIME types."""

    def test_extensions(self):
        assert detect_file_kind("statement.CSV", None) == FileKind.CSV
        assert detect_file_kind("statement.xlsx", None) == FileKind.XLSX
        assert detect_file_kind("statement.xls", None) == FileKind.XLS

    def test_mime_types_without_extension(self):
        assert detect_file_kind("export", "text/csv") == FileKind.CSV
        assert (
            detect_file_kind(
                "export",
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
            == FileKind.XLSX
        )
        assert detect_file_kind("export", "application/vnd.ms-excel") == FileKind.CSV

    def test_unsupported(self):
        with pytest.raises(UnsupportedFormat):
            detect_file_kind("statement.pdf", "application/pdf")


class TestCSVDecoding:
    """CSV decoding, delimiter sniffing and row iteration."""

    def test_sniff_delimiter(self):
        assert sniff_delimiter("Date,Description,Amount") == ","
        assert sniff_delimiter("Date;Description;Amount") == ";"
        assert sniff_delimiter("Date\tDescription\tAmount") == "\t"
        assert sniff_delimiter("Date") == ","

    def test_comma_file(self, sample_csv_content):
        table = decode(sample_csv_content.encode(), FileKind.CSV)

        assert table.headers == ["Date", "Description", "Amount"]
        rows = list(table.rows())
        assert len(rows) == 3
        assert rows[0].values == {
            "Date": "2024-01-01",
            "Description": "Grocery Store",
            "Amount": "50.00",
        }
        assert rows[0].line == 2
        assert rows[2].line == 4

    def test_semicolon_file_with_quoted_separator(self):
        content = 'Date;Description;Amount\n2024-01-15;"Coffee; large";"4,50"\n'
        table = decode(content.encode(), FileKind.CSV)

        row = next(table.rows())
        assert row.get("Description") == "Coffee; large"
        assert row.get("Amount") == "4,50"

    def test_quoted_comma_in_field(self):
        content = 'Date,Description,Amount\n2024-01-15,"Coffee, Large","1,250.75"\n'
        row = next(decode(content.encode(), FileKind.CSV).rows())

        assert row.get("Description") == "Coffee, Large"
        assert row.get("Amount") == "1,250.75"

    def test_tab_file(self):
        content = "Date\tDescription\tAmount\n2024-01-15\tCoffee\t4.50\n"
        table = decode(content.encode(), FileKind.CSV)
        assert table.headers == ["Date", "Description", "Amount"]

    def test_bom_and_quoted_headers_are_cleaned(self):
        content = '\ufeff"Date", "Description" ,Amount\n2024-01-15,Coffee,4.50\n'
        table = decode(content.encode("utf-8"), FileKind.CSV)
        assert table.headers == ["Date", "Description", "Amount"]

    def test_blank_lines_are_skipped(self):
        content = "\nDate,Description,Amount\n\n2024-01-15,Coffee,4.50\n\n,,\n"
        table = decode(content.encode(), FileKind.CSV)

        rows = list(table.rows())
        assert len(rows) == 1
        assert rows[0].line == 4

    def test_ragged_rows(self):
        content = "Date,Description,Amount\n2024-01-15,Coffee\n2024-01-16,Tea,3.00,extra\n"
        rows = list(decode(content.encode(), FileKind.CSV).rows())

        assert rows[0].get("Amount") is None
        assert rows[1].values == {"Date": "2024-01-16", "Description": "Tea", "Amount": "3.00"}

    def test_cp1252_fallback(self):
        content = "Date,Description,Amount\n2024-01-15,Caf\xe9,4.50\n".encode("cp1252")
        row = next(decode(content, FileKind.CSV).rows())
        assert row.get("Description") == "Café"

    def test_row_cap_and_restart(self):
        lines = ["Date,Description,Amount"] + [f"2024-01-{d:02d},Item {d},1.00" for d in range(1, 6)]
        table = decode("\n".join(lines).encode(), FileKind.CSV)

        assert len(list(table.rows(limit=2))) == 2
        assert table.count_rows() == 5
        assert [r.line for r in table.rows()] == [r.line for r in table.rows()]

    def test_header_only_file_is_empty(self):
        with pytest.raises(EmptyFile):
            decode(b"Date,Description,Amount\n", FileKind.CSV)

    def test_empty_bytes(self):
        with pytest.raises(EmptyFile):
            decode(b"", FileKind.CSV)

    def test_headers_only_decode_allows_no_rows(self):
        table = decode_headers(b"Date,Description,Amount\n", FileKind.CSV)
        assert table.headers == ["Date", "Description", "Amount"]

    def test_to_dict_is_json_safe(self, make_xlsx):
        content = make_xlsx({"Sheet1": [["Date", "Amount"], [datetime(2024, 1, 15), 4.5]]})
        row = next(decode(content, FileKind.XLSX).rows())
        assert row.to_dict() == {"Date": "2024-01-15T00:00:00", "Amount": 4.5}


class TestSpreadsheetDecoding:
    """Workbook decoding with sheet selection and native cell types."""

    def test_first_sheet_by_default(self, make_xlsx):
        content = make_xlsx(
            {
                "Checking": [
                    ["Date", "Description", "Amount", "Type"],
                    [datetime(2024, 1, 15), "Coffee Shop", -4.5, "expense"],
                    [datetime(2024, 1, 16), "Salary", 2500, "income"],
                ],
                "Savings": [["Date", "Description", "Amount"], ["2024-02-01", "Interest", 1.25]],
            }
        )
        table = decode(content, FileKind.XLSX)

        assert table.sheets == ["Checking", "Savings"]
        assert table.headers == ["Date", "Description", "Amount", "Type"]
        rows = list(table.rows())
        assert len(rows) == 2
        assert rows[0].get("Date") == datetime(2024, 1, 15)
        assert rows[0].get("Amount") == -4.5
        assert rows[0].line == 2

    def test_named_sheet(self, make_xlsx):
        content = make_xlsx(
            {
                "Checking": [["Date", "Description", "Amount"], ["2024-01-15", "Coffee", 4.5]],
                "Savings": [["Posted", "Memo", "Value"], ["2024-02-01", "Interest", 1.25]],
            }
        )
        table = decode(content, FileKind.XLSX, sheet_name="Savings")

        assert table.headers == ["Posted", "Memo", "Value"]
        assert next(table.rows()).get("Memo") == "Interest"

    def test_missing_sheet(self, make_xlsx):
        content = make_xlsx({"Checking": [["Date"], ["2024-01-15"]]})
        with pytest.raises(SheetNotFound):
            decode(content, FileKind.XLSX, sheet_name="Missing")

    def test_header_only_sheet_is_empty(self, make_xlsx):
        content = make_xlsx({"Checking": [["Date", "Description", "Amount"]]})
        with pytest.raises(EmptyFile):
            decode(content, FileKind.XLSX)

    def test_corrupt_xlsx(self):
        with pytest.raises(MalformedFile):
            decode(b"definitely not a zip archive", FileKind.XLSX)

    def test_corrupt_xls(self):
        with pytest.raises(MalformedFile):
            decode(b"definitely not a workbook", FileKind.XLS)
