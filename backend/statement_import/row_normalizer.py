"""
Row normalization for statement imports.

This module provides a RowNormalizer class that turns one decoded row into a
canonical ImportCandidate: it resolves the date, parses the signed amount,
infers income vs. expense and assigns a category.
"""

import math
import re
from datetime import date, datetime
from typing import Optional

from openpyxl.utils.datetime import from_excel

from .categorizer import categorize
from .decoder import CellValue, RawRow
from .exceptions import RowError
from .models import ColumnMapping, ImportCandidate, SignConvention, TransactionKind

DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",  # also accepts 1/5/2024
    "%m-%d-%Y",
]

# Date part of values like "2025-08-26 00:00:00"
DATETIME_PREFIX = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})\b")

INCOME_TERMS = re.compile(r"income|deposit|credit|refund|payment")
EXPENSE_TERMS = re.compile(r"expense|debit|withdrawal|purchase|charge")

# Leading ASCII hyphen or unicode minus
MINUS_SIGNS = ("-", "\u2212")
# Dollar, euro, pound, yen
CURRENCY_SYMBOLS = re.compile("[$\u20ac\u00a3\u00a5]")
UNSIGNED_AMOUNT = re.compile(r"\d+\.?\d*|\.\d+")


def _is_empty(value: CellValue) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(value: CellValue) -> Optional[date]:
    """
    Resolve a cell to a calendar date.

    Accepts native date/datetime cells, spreadsheet date serials and the
    string formats in DATE_FORMATS. No timezone handling is involved.

    Returns:
        The date, or None when the value is not recognised
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 1:
            return None
        try:
            return from_excel(value).date()
        except (ValueError, OverflowError):
            return None

    candidate = str(value).strip()
    if not candidate:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue

    match = DATETIME_PREFIX.match(candidate)
    if match:
        year, month, day = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None
    return None


def parse_amount(value: CellValue) -> Optional[float]:
    """
    Parse a signed amount.

    Strips whitespace, currency symbols, thousands separators, wrapping
    parentheses and one leading ASCII or unicode minus sign. Any other
    character makes the value unreadable.

    Returns:
        Signed amount, or None if no number can be read
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = re.sub(r"\s+", "", value)
    negative = False
    if len(text) > 1 and text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    text = CURRENCY_SYMBOLS.sub("", text).replace(",", "")
    if text[:1] in MINUS_SIGNS:
        negative = True
        text = text[1:]

    if not UNSIGNED_AMOUNT.fullmatch(text):
        return None
    amount = float(text)
    return -amount if negative else amount


def infer_kind(
    type_value: CellValue,
    raw_amount: float,
    sign_convention: SignConvention = SignConvention.NEGATIVE_IS_INCOME,
) -> TransactionKind:
    """
    Decide income vs. expense.

    An explicit type cell wins when it names a known term; otherwise the sign
    of the raw amount is read through ``sign_convention``.
    """
    if not _is_empty(type_value):
        lowered = str(type_value).lower()
        if INCOME_TERMS.search(lowered):
            return TransactionKind.INCOME
        if EXPENSE_TERMS.search(lowered):
            return TransactionKind.EXPENSE

    if sign_convention == SignConvention.NEGATIVE_IS_EXPENSE:
        return TransactionKind.INCOME if raw_amount > 0 else TransactionKind.EXPENSE
    return TransactionKind.INCOME if raw_amount < 0 else TransactionKind.EXPENSE


def is_discover_mapping(mapping: ColumnMapping) -> bool:
    """Classic Discover card export: positive amounts are charges."""
    return (
        "trans. date" in mapping.date.lower()
        and mapping.description.lower() == "description"
        and mapping.amount.lower() == "amount"
    )


class RowNormalizer:
    """
    Normalizes rows against a confirmed column mapping.

    The normalizer is built once per import so the mapping and sign policy
    are resolved a single time rather than per row.
    """

    def __init__(
        self,
        mapping: ColumnMapping,
        sign_convention: SignConvention = SignConvention.NEGATIVE_IS_INCOME,
    ):
        self.mapping = mapping
        self.discover = is_discover_mapping(mapping)
        self.sign_convention = sign_convention

    def normalize(self, row: RawRow) -> ImportCandidate:
        """
        Build a candidate from one row.

        Raises:
            RowError: naming the first field that failed
        """
        date_value = row.get(self.mapping.date)
        if _is_empty(date_value):
            raise RowError("date", f"Date is required (row {row.line})")
        parsed_date = parse_date(date_value)
        if parsed_date is None:
            raise RowError("date", f'Invalid date format: "{date_value}" (row {row.line})')

        description_value = row.get(self.mapping.description)
        description = "" if description_value is None else str(description_value).strip()
        if not description:
            raise RowError("description", f"Description is required (row {row.line})")

        amount_value = row.get(self.mapping.amount)
        if _is_empty(amount_value):
            raise RowError("amount", f"Amount is required (row {row.line})")
        raw_amount = parse_amount(amount_value)
        if raw_amount is None:
            raise RowError("amount", f'Invalid amount: "{amount_value}" (row {row.line})')

        if self.discover:
            # Only positive amounts are card charges; zero and negative are credits
            kind = TransactionKind.EXPENSE if raw_amount > 0 else TransactionKind.INCOME
        else:
            kind = infer_kind(row.get(self.mapping.type), raw_amount, self.sign_convention)

        category_value = row.get(self.mapping.category)
        if _is_empty(category_value):
            category = categorize(description)
        else:
            category = categorize(str(category_value).strip())

        note_value = row.get(self.mapping.note)
        note = None if _is_empty(note_value) else str(note_value).strip()

        return ImportCandidate(
            date=parsed_date,
            description=description,
            amount=round(abs(raw_amount), 2),
            kind=kind,
            category=category,
            note=note,
        )


def normalize_row(
    row: RawRow,
    mapping: ColumnMapping,
    sign_convention: SignConvention = SignConvention.NEGATIVE_IS_INCOME,
) -> ImportCandidate:
    """One-off helper - creates a temporary normalizer."""
    return RowNormalizer(mapping, sign_convention).normalize(row)
