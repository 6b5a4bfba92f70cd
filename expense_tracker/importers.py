"""Importers turning JSON, CSV and plain-text files into expenses."""
from __future__ import annotations

import csv
import io
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import PurePath
from typing import Callable, Iterable, Optional
from uuid import uuid4

from .models import (
    DATE_FORMAT,
    TIME_FORMAT,
    Expense,
    decode_expense,
    parse_date_string,
    parse_decimal,
    parse_time_string,
    parse_uuid,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME = "00:00"


class ImportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    TEXT = "txt"


def detect_format(filename: str) -> Optional[ImportFormat]:
    """Map a file name to an :class:`ImportFormat` by its extension."""

    extension = PurePath(filename).suffix.lower().lstrip(".")
    for candidate in ImportFormat:
        if candidate.value == extension:
            return candidate
    return None


@dataclass(slots=True)
class ParseResult:
    """Expenses read from a file, or the reason the file was rejected.

    ``skipped`` counts entries that were present but could not be read; they
    never make the whole file fail.
    """

    expenses: list[Expense] = field(default_factory=list)
    skipped: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, reason: str) -> "ParseResult":
        return cls(error=reason)


COLUMN_NAMES = ("id", "name", "price", "description", "date", "time", "currency")
REQUIRED_COLUMNS = ("name", "price", "date")


class CsvVariant(str, Enum):
    """Column layouts assumed for CSV files without a header row."""

    FULL = "full"
    RELAXED_FIVE = "relaxed_five"
    RELAXED_FOUR = "relaxed_four"

    @property
    def layout(self) -> tuple[str, ...]:
        return {
            "full": COLUMN_NAMES,
            "relaxed_five": ("name", "price", "description", "date", "time"),
            "relaxed_four": ("name", "price", "description", "date"),
        }[self.value]

    @property
    def columns(self) -> int:
        return len(self.layout)


@dataclass(frozen=True, slots=True)
class CsvLayout:
    """Position of each known column in one CSV file.

    Columns absent from ``positions`` read as empty cells and fall back to
    their defaults.  ``width`` is the number of cells a row needs.
    """

    positions: dict[str, int]
    width: int
    label: str

    @classmethod
    def from_variant(cls, variant: CsvVariant) -> "CsvLayout":
        positions = {name: index for index, name in enumerate(variant.layout)}
        return cls(positions=positions, width=variant.columns, label=variant.value)

    def cell(self, row: list[str], name: str) -> str:
        index = self.positions.get(name)
        if index is None or index >= len(row):
            return ""
        return row[index]


class ExpenseImporter:
    """Parse import payloads into :class:`Expense` records.

    The importer never touches storage; merging the result into the stored
    collection is the caller's job.
    """

    def __init__(
        self,
        default_currency: str = "USD",
        app_name: str = "HSU Expense",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.default_currency = default_currency
        self.app_name = app_name
        self._clock = clock

    def parse(self, data: bytes, filename: str) -> ParseResult:
        """Detect the format from ``filename`` and parse ``data``."""

        import_format = detect_format(filename)
        if import_format is None:
            extension = PurePath(filename).suffix.lower().lstrip(".") or filename
            return ParseResult.failure(f"Unsupported file format: {extension}")
        if not data or not data.strip():
            return ParseResult.failure("File is empty")
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            return ParseResult.failure("Failed to read file")

        if import_format is ImportFormat.JSON:
            return self.parse_json(text)
        if import_format is ImportFormat.CSV:
            return self.parse_csv(text)
        return self.parse_text(text)

    # ------------------------------------------------------------------
    # JSON
    # ------------------------------------------------------------------
    def parse_json(self, text: str) -> ParseResult:
        """Accept the export envelope ``{"expenses": [...]}`` or a bare array."""

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            return ParseResult.failure(f"Failed to parse JSON: {exc.msg}")

        if isinstance(payload, dict):
            entries = payload.get("expenses")
            if not isinstance(entries, list):
                return ParseResult.failure("Invalid JSON format: missing 'expenses' array")
        elif isinstance(payload, list):
            entries = payload
        else:
            return ParseResult.failure("Invalid JSON format")

        result = ParseResult()
        for entry in entries:
            decoded = decode_expense(entry, self.default_currency)
            if decoded.expense is None:
                result.skipped += 1
                continue
            result.expenses.append(_with_canonical_date_time(decoded.expense))
        return result

    # ------------------------------------------------------------------
    # CSV
    # ------------------------------------------------------------------
    def parse_csv(self, text: str, delimiter: str = ",") -> ParseResult:
        """Parse CSV rows, mapping columns by header name when a header exists.

        Header-less files are read positionally in the layout their first
        row's width suggests (see :class:`CsvVariant`).
        """

        rows = [row for row in csv.reader(io.StringIO(text), delimiter=delimiter) if _has_content(row)]
        if not rows:
            return ParseResult.failure("CSV file appears to be empty")

        layout = layout_from_header(rows[0])
        if layout is not None:
            missing = [name for name in REQUIRED_COLUMNS if name not in layout.positions]
            if missing:
                return ParseResult.failure(f"CSV header is missing required columns: {', '.join(missing)}")
            rows = rows[1:]
        else:
            layout = CsvLayout.from_variant(variant_from_width(len(rows[0])))
        if not rows:
            return ParseResult.failure("CSV file appears to be empty")

        result = ParseResult()
        for row in rows:
            expense = self._parse_row(row, layout) if len(row) >= layout.width else None
            if expense is None:
                result.skipped += 1
                continue
            result.expenses.append(expense)
        if result.skipped:
            logger.info("Skipped %d unreadable CSV rows (%s layout)", result.skipped, layout.label)
        return result

    def _parse_row(self, row: list[str], layout: CsvLayout) -> Optional[Expense]:
        parsed_price = parse_decimal(layout.cell(row, "price"))
        if parsed_price is None:
            return None
        parsed_date = parse_date_string(layout.cell(row, "date").strip())
        if parsed_date is None:
            return None
        time_value = layout.cell(row, "time").strip()
        parsed_time = parse_time_string(time_value) if time_value else DEFAULT_TIME
        if parsed_time is None:
            return None
        return Expense(
            id=parse_uuid(layout.cell(row, "id")) or uuid4(),
            name=layout.cell(row, "name").strip(),
            price=parsed_price,
            description=layout.cell(row, "description").strip(),
            date=parsed_date.strftime(DATE_FORMAT),
            time=parsed_time,
            currency=layout.cell(row, "currency").strip().upper() or self.default_currency,
        )

    # ------------------------------------------------------------------
    # Plain text
    # ------------------------------------------------------------------
    def parse_text(self, text: str) -> ParseResult:
        """Read delimited text as CSV when possible, else one name per line."""

        delimiter = _guess_delimiter(text)
        if delimiter is not None:
            attempt = self.parse_csv(text, delimiter=delimiter)
            if attempt.ok and attempt.expenses:
                return attempt

        now = self._clock()
        result = ParseResult()
        for line in text.splitlines():
            name = self._list_entry_name(line)
            if name is None:
                continue
            result.expenses.append(
                Expense(
                    name=name,
                    price=Decimal("0"),
                    description="",
                    date=now.strftime(DATE_FORMAT),
                    time=now.strftime(TIME_FORMAT),
                    currency=self.default_currency,
                )
            )
        return result

    def _list_entry_name(self, line: str) -> Optional[str]:
        stripped = line.strip()
        if not stripped or "====" in stripped:
            return None
        if stripped == f"{self.app_name} Export":
            return None
        if stripped.startswith(TEXT_EXPORT_PREFIXES):
            return None
        name = _NUMBERING.sub("", stripped).strip()
        return name or None


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------

# Lines the text exporter writes around each numbered entry.
TEXT_EXPORT_PREFIXES = ("Export Date:", "Total Expenses:", "Price:", "Date:", "Description:")

_NUMBERING = re.compile(r"^\d+\.\s*")


def layout_from_header(row: Iterable[str]) -> Optional[CsvLayout]:
    """Map a header row's known column names to their positions.

    A row naming both ``name`` and ``price`` is a header; anything else is a
    data row and yields ``None``.  Unknown column names are ignored.
    """

    cells = [cell.strip().lower() for cell in row]
    if "name" not in cells or "price" not in cells:
        return None
    positions: dict[str, int] = {}
    for index, cell in enumerate(cells):
        if cell in COLUMN_NAMES and cell not in positions:
            positions[cell] = index
    return CsvLayout(positions=positions, width=len(cells), label="header")


def variant_from_width(width: int) -> CsvVariant:
    if width >= CsvVariant.FULL.columns:
        return CsvVariant.FULL
    if width >= CsvVariant.RELAXED_FIVE.columns:
        return CsvVariant.RELAXED_FIVE
    return CsvVariant.RELAXED_FOUR


def _has_content(row: list[str]) -> bool:
    return any(cell.strip() for cell in row)


def _guess_delimiter(text: str) -> Optional[str]:
    if "," in text:
        return ","
    if "\t" in text:
        return "\t"
    return None


def _with_canonical_date_time(expense: Expense) -> Expense:
    # Unparseable values are kept as-is and stay out of every date window.
    parsed_date = parse_date_string(expense.date)
    if parsed_date is not None:
        expense.date = parsed_date.strftime(DATE_FORMAT)
    parsed_time = parse_time_string(expense.time)
    if parsed_time is not None:
        expense.time = parsed_time
    return expense


def parse_import(
    data: bytes,
    filename: str,
    default_currency: str = "USD",
    app_name: str = "HSU Expense",
    now: Optional[datetime] = None,
) -> ParseResult:
    """Convenience wrapper around :meth:`ExpenseImporter.parse`."""

    clock = (lambda: now) if now is not None else datetime.now
    return ExpenseImporter(default_currency, app_name, clock).parse(data, filename)
