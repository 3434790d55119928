"""
Tabular decoding of uploaded statement files.

Turns the raw bytes of a CSV or spreadsheet export into header-keyed rows.
Nothing in this module knows about transactions; it only guarantees that
every row handed downstream is a ``RawRow`` with scalar cell values.
"""

import csv
import io
import logging
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import xlrd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .exceptions import EmptyFile, MalformedFile, SheetNotFound, UnsupportedFormat
from .models import FileKind

logger = logging.getLogger(__name__)

CellValue = Union[str, int, float, datetime, date, None]

CSV_DELIMITERS = [",", ";", "\t"]
TEXT_ENCODINGS = ["utf-8-sig", "cp1252"]


@dataclass(frozen=True)
class RawRow:
    """One source line: its 1-based line number and header-keyed cells."""

    line: int
    values: Dict[str, CellValue]

    def get(self, header: Optional[str]) -> CellValue:
        if not header:
            return None
        return self.values.get(header)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe copy of the cells, used when reporting row errors."""
        return {
            key: value.isoformat() if isinstance(value, (date, datetime)) else value
            for key, value in self.values.items()
        }


class DecodedTable:
    """
    Headers plus a lazy, restartable source of data rows.

    Every call to ``rows()`` starts again from the first data row, so the
    caller decides whether to stream or materialize.
    """

    def __init__(
        self,
        kind: FileKind,
        headers: List[str],
        row_source: Callable[[], Iterator[RawRow]],
        sheets: Optional[List[str]] = None,
    ):
        self.kind = kind
        self.headers = headers
        self.sheets = sheets or []
        self._row_source = row_source

    def rows(self, limit: Optional[int] = None) -> Iterator[RawRow]:
        """Yield data rows, stopping after ``limit`` rows when given."""
        if limit is not None and limit <= 0:
            return
        for count, row in enumerate(self._row_source(), start=1):
            yield row
            if limit is not None and count >= limit:
                return

    def count_rows(self) -> int:
        return sum(1 for _ in self.rows())


def detect_file_kind(filename: Optional[str], content_type: Optional[str]) -> FileKind:
    """Resolve the file kind from the upload's name and MIME type."""
    name = (filename or "").lower()
    mime = (content_type or "").lower()

    if name.endswith(".csv"):
        return FileKind.CSV
    if name.endswith(".xlsx"):
        return FileKind.XLSX
    if name.endswith(".xls"):
        return FileKind.XLS
    if "csv" in mime or mime == "text/plain":
        return FileKind.CSV
    if "spreadsheet" in mime:
        return FileKind.XLSX
    if mime == "application/vnd.ms-excel":
        # Browsers send this type for plain CSV uploads too
        return FileKind.CSV
    raise UnsupportedFormat(
        f"Unsupported file type: {filename or 'unnamed'} ({content_type or 'unknown'}). "
        "Only CSV, XLSX and XLS files are accepted"
    )


def clean_header(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\ufeff", "").replace('"', "").strip()


def sniff_delimiter(first_line: str) -> str:
    """Pick the most frequent candidate separator; ties favour the comma."""
    counts = [(first_line.count(d), d) for d in CSV_DELIMITERS]
    best_count, best = counts[0]
    for count, delimiter in counts[1:]:
        if count > best_count:
            best_count, best = count, delimiter
    return best


def _decode_text(content: bytes) -> str:
    for encoding in TEXT_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise MalformedFile("File encoding error. Please ensure the file is UTF-8 encoded")


def _is_blank(cells: List[Any]) -> bool:
    return all(c is None or (isinstance(c, str) and not c.strip()) for c in cells)


def _row_from_cells(headers: List[str], cells: List[CellValue], line: int) -> RawRow:
    values: Dict[str, CellValue] = {}
    for i, header in enumerate(headers):
        cell = cells[i] if i < len(cells) else None
        if isinstance(cell, str):
            cell = cell.strip()
        values[header] = cell
    return RawRow(line=line, values=values)


def _decode_csv(content: bytes) -> DecodedTable:
    text = _decode_text(content)
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    if not first_line:
        raise EmptyFile("File is empty")
    delimiter = sniff_delimiter(first_line)

    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    headers: List[str] = []
    try:
        for record in reader:
            if not _is_blank(record):
                headers = [clean_header(h) for h in record]
                break
    except csv.Error as e:
        raise MalformedFile(f"CSV parsing failed: {e}")

    def row_source() -> Iterator[RawRow]:
        rows_reader = csv.reader(io.StringIO(text), delimiter=delimiter)
        seen_header = False
        try:
            for record in rows_reader:
                if _is_blank(record):
                    continue
                if not seen_header:
                    seen_header = True
                    continue
                yield _row_from_cells(headers, record, rows_reader.line_num)
        except csv.Error as e:
            raise MalformedFile(f"CSV parsing failed: {e}")

    logger.debug("Decoded CSV header with delimiter %r: %s", delimiter, headers)
    return DecodedTable(FileKind.CSV, headers, row_source)


def _open_xlsx(content: bytes):
    try:
        return load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise MalformedFile(f"Excel parsing failed: {e}")


def _decode_xlsx(content: bytes, sheet_name: Optional[str]) -> DecodedTable:
    workbook = _open_xlsx(content)
    try:
        sheets = list(workbook.sheetnames)
    finally:
        workbook.close()
    if not sheets:
        raise EmptyFile("Workbook contains no sheets")
    target = sheet_name or sheets[0]
    if target not in sheets:
        raise SheetNotFound(f'Sheet "{target}" not found')

    def sheet_rows() -> Iterator[tuple]:
        wb = _open_xlsx(content)
        try:
            for line, cells in enumerate(wb[target].iter_rows(values_only=True), start=1):
                yield line, list(cells)
        finally:
            wb.close()

    return _spreadsheet_table(FileKind.XLSX, sheets, sheet_rows)


def _xls_cell(cell, datemode: int) -> CellValue:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return int(cell.value)
    return cell.value


def _decode_xls(content: bytes, sheet_name: Optional[str]) -> DecodedTable:
    try:
        book = xlrd.open_workbook(file_contents=content, on_demand=True)
    except xlrd.XLRDError as e:
        raise MalformedFile(f"Excel parsing failed: {e}")
    sheets = book.sheet_names()
    if not sheets:
        raise EmptyFile("Workbook contains no sheets")
    target = sheet_name or sheets[0]
    if target not in sheets:
        raise SheetNotFound(f'Sheet "{target}" not found')

    def sheet_rows() -> Iterator[tuple]:
        sheet = book.sheet_by_name(target)
        for index in range(sheet.nrows):
            yield index + 1, [_xls_cell(c, book.datemode) for c in sheet.row(index)]

    return _spreadsheet_table(FileKind.XLS, sheets, sheet_rows)


def _spreadsheet_table(
    kind: FileKind, sheets: List[str], sheet_rows: Callable[[], Iterator[tuple]]
) -> DecodedTable:
    headers: List[str] = []
    for _, cells in sheet_rows():
        if not _is_blank(cells):
            headers = [clean_header(h) for h in cells]
            break

    def row_source() -> Iterator[RawRow]:
        seen_header = False
        for line, cells in sheet_rows():
            if _is_blank(cells):
                continue
            if not seen_header:
                seen_header = True
                continue
            yield _row_from_cells(headers, cells, line)

    logger.debug("Decoded %s sheet with headers: %s", kind.value, headers)
    return DecodedTable(kind, headers, row_source, sheets=sheets)


def decode_headers(
    content: bytes, kind: FileKind, sheet_name: Optional[str] = None
) -> DecodedTable:
    """Decode only far enough to know the headers and sheet names."""
    if kind == FileKind.CSV:
        table = _decode_csv(content)
    elif kind == FileKind.XLSX:
        table = _decode_xlsx(content, sheet_name)
    elif kind == FileKind.XLS:
        table = _decode_xls(content, sheet_name)
    else:
        raise UnsupportedFormat(f"Unsupported file kind: {kind}")
    if not any(table.headers):
        raise EmptyFile("File must include a header row and at least one data row")
    return table


def decode(
    content: bytes, kind: FileKind, sheet_name: Optional[str] = None
) -> DecodedTable:
    """
    Decode a file and check it holds a header row plus at least one data row.

    Args:
        content: Raw file bytes
        kind: Resolved file kind
        sheet_name: Optional sheet for spreadsheets; defaults to the first

    Returns:
        DecodedTable whose rows can be iterated lazily

    Raises:
        UnsupportedFormat, SheetNotFound, EmptyFile, MalformedFile
    """
    table = decode_headers(content, kind, sheet_name)
    if next(table.rows(limit=1), None) is None:
        raise EmptyFile("File must include a header row and at least one data row")
    return table
