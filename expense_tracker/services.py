"""High-level application services orchestrating the expense_tracker backend."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID, uuid4

from .aggregation import Window, WindowSummary, filter_range, filter_window, sort_newest_first, summarize
from .config import AppConfig
from .currency import CurrencyManager, find_currency
from .database import ExpenseRepository
from .events import EventBus, EventType
from .exceptions import (
    ExpenseNotFoundError,
    ExpenseValidationError,
    ImportFailedError,
    NothingToExportError,
    UnknownCurrencyError,
)
from .exporters import ExportFormat, export_expenses, export_filename
from .importers import ExpenseImporter
from .models import DATE_FORMAT, TIME_FORMAT, Expense, parse_date_string, parse_time_string
from .validators import ValidationIssue, parse_price_text, validate_expense_input

logger = logging.getLogger(__name__)


class ImportMode(str, Enum):
    REPLACE = "replace"
    MERGE = "merge"


class DuplicatePolicy(str, Enum):
    SKIP = "skip"
    REPLACE = "replace"
    ALLOW = "allow"


class ExportRange(str, Enum):
    ALL = "all"
    TODAY = "today"
    THIS_WEEK = "week"
    THIS_MONTH = "month"
    CUSTOM = "custom"


@dataclass(slots=True)
class MergeResult:
    expenses: list[Expense]
    imported: int = 0
    skipped: int = 0


@dataclass(slots=True)
class ImportReport:
    imported: int
    skipped_duplicates: int
    unreadable: int
    total: int


@dataclass(slots=True)
class ExportBundle:
    filename: str
    content: bytes
    media_type: str
    count: int


@dataclass(slots=True)
class SummaryReport:
    """Figures shown on the summary screen, in the display currency."""

    currency: str
    today: WindowSummary
    week: WindowSummary
    month: WindowSummary
    all: WindowSummary
    average: Decimal
    week_average_per_day: Decimal
    highest: Optional[Expense] = None
    highest_amount: Optional[Decimal] = None
    lowest: Optional[Expense] = None
    lowest_amount: Optional[Decimal] = None
    formatted: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------

def is_duplicate(existing: Expense, candidate: Expense) -> bool:
    """Same name, same price and same calendar day."""

    if existing.name != candidate.name or existing.price != candidate.price:
        return False
    existing_day = existing.parsed_date()
    candidate_day = candidate.parsed_date()
    if existing_day is None or candidate_day is None:
        return existing.date == candidate.date
    return existing_day == candidate_day


def merge_expenses(
    existing: Iterable[Expense],
    imported: Iterable[Expense],
    mode: ImportMode = ImportMode.MERGE,
    policy: DuplicatePolicy = DuplicatePolicy.SKIP,
) -> MergeResult:
    """Combine stored and imported expenses according to ``mode``/``policy``.

    Duplicates are looked up in the collection as it grows, so identical rows
    inside one file are also caught.  An imported record whose id is already
    taken by another record gets a fresh id.
    """

    imported = list(imported)
    if mode is ImportMode.REPLACE:
        taken: set[UUID] = set()
        adopted = [_with_unique_id(candidate, taken) for candidate in imported]
        return MergeResult(expenses=adopted, imported=len(adopted))

    result = MergeResult(expenses=list(existing))
    for candidate in imported:
        match_index = next(
            (index for index, current in enumerate(result.expenses) if is_duplicate(current, candidate)),
            None,
        )
        if match_index is None or policy is DuplicatePolicy.ALLOW:
            taken = {expense.id for expense in result.expenses}
            result.expenses.append(_with_unique_id(candidate, taken))
            result.imported += 1
        elif policy is DuplicatePolicy.REPLACE:
            taken = {expense.id for index, expense in enumerate(result.expenses) if index != match_index}
            result.expenses[match_index] = _with_unique_id(candidate, taken)
            result.imported += 1
        else:
            result.skipped += 1
    return result


def _with_unique_id(candidate: Expense, taken: set[UUID]) -> Expense:
    if candidate.id in taken:
        candidate = replace(candidate, id=uuid4())
    taken.add(candidate.id)
    return candidate


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class ExpenseService:
    """Coordinates persistence, currency conversion, imports and exports."""

    def __init__(
        self,
        config: AppConfig,
        repository: ExpenseRepository,
        currency_manager: CurrencyManager,
        events: EventBus,
    ) -> None:
        self._config = config
        self._repository = repository
        self._currency = currency_manager
        self._events = events

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def list_expenses(self) -> list[Expense]:
        return sort_newest_first(self._repository.load_all())

    def get_expense(self, expense_id: UUID) -> Expense:
        for expense in self._repository.load_all():
            if expense.id == expense_id:
                return expense
        raise ExpenseNotFoundError(f"No expense with id {expense_id}")

    def add_expense(
        self,
        name: str,
        price_text: str,
        description: str = "",
        date_value: Optional[str] = None,
        time_value: Optional[str] = None,
        currency: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Expense:
        """Validate the entry form and store a new expense."""

        price, date_value, time_value = self._validated_entry(name, price_text, description, date_value, time_value)
        now = now or datetime.now()
        expense = Expense(
            name=name.strip(),
            price=price,
            description=(description or "").strip(),
            date=date_value or now.strftime(DATE_FORMAT),
            time=time_value or now.strftime(TIME_FORMAT),
            currency=self._checked_currency(currency),
        )
        expenses = self._repository.load_all()
        expenses.append(expense)
        self._save(expenses)
        return expense

    def update_expense(
        self,
        expense_id: UUID,
        name: str,
        price_text: str,
        description: str = "",
        date_value: Optional[str] = None,
        time_value: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> Expense:
        """Replace the fields of the stored expense with ``expense_id``."""

        price, date_value, time_value = self._validated_entry(name, price_text, description, date_value, time_value)
        expenses = self._repository.load_all()
        for index, current in enumerate(expenses):
            if current.id != expense_id:
                continue
            updated = Expense(
                id=current.id,
                name=name.strip(),
                price=price,
                description=(description or "").strip(),
                date=date_value or current.date,
                time=time_value or current.time,
                currency=self._checked_currency(currency) if currency else current.currency,
            )
            expenses[index] = updated
            self._save(expenses)
            return updated
        raise ExpenseNotFoundError(f"No expense with id {expense_id}")

    def delete_expense(self, expense_id: UUID) -> None:
        expenses = self._repository.load_all()
        remaining = [expense for expense in expenses if expense.id != expense_id]
        if len(remaining) == len(expenses):
            raise ExpenseNotFoundError(f"No expense with id {expense_id}")
        self._save(remaining)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------
    def summary(self, window: Window, today: Optional[date] = None) -> WindowSummary:
        return summarize(self._repository.load_all(), window, today, amount_of=self._currency.to_display)

    def summary_report(self, today: Optional[date] = None) -> SummaryReport:
        expenses = self._repository.load_all()
        code = self._currency.current_currency.code
        windows = {
            window: summarize(expenses, window, today, amount_of=self._currency.to_display)
            for window in Window
        }

        converted = [(expense, Decimal(str(self._currency.to_display(expense)))) for expense in expenses]
        total = sum((amount for _, amount in converted), Decimal("0"))
        average = total / len(converted) if converted else Decimal("0")
        week_average = windows[Window.THIS_WEEK].total / 7

        report = SummaryReport(
            currency=code,
            today=windows[Window.TODAY],
            week=windows[Window.THIS_WEEK],
            month=windows[Window.THIS_MONTH],
            all=windows[Window.ALL],
            average=average,
            week_average_per_day=week_average,
        )
        if converted:
            ranked = sorted(converted, key=lambda pair: pair[1], reverse=True)
            report.highest, report.highest_amount = ranked[0]
            report.lowest, report.lowest_amount = ranked[-1]

        fmt = self._currency.format_amount
        report.formatted = {
            "total": fmt(total),
            "average": fmt(average),
            "today": fmt(report.today.total),
            "week": fmt(report.week.total),
            "week_average_per_day": fmt(week_average),
            "month": fmt(report.month.total),
        }
        if report.highest is not None:
            report.formatted["highest"] = f"{report.highest.name} - {fmt(report.highest_amount)}"
            report.formatted["lowest"] = f"{report.lowest.name} - {fmt(report.lowest_amount)}"
        return report

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------
    def import_file(
        self,
        data: bytes,
        filename: str,
        mode: ImportMode = ImportMode.MERGE,
        policy: DuplicatePolicy = DuplicatePolicy.SKIP,
    ) -> ImportReport:
        """Parse ``data`` and merge it into the stored collection.

        Raises:
            ImportFailedError: when the file cannot be parsed. Storage is left
                untouched in that case.
        """

        importer = ExpenseImporter(self._config.default_currency, self._config.app_name)
        parsed = importer.parse(data, filename)
        if not parsed.ok:
            logger.info("Import of %s rejected: %s", filename, parsed.error)
            raise ImportFailedError(parsed.error)

        merged = merge_expenses(self._repository.load_all(), parsed.expenses, mode, policy)
        self._save(merged.expenses)
        logger.info(
            "Imported %d expenses from %s (%s, %d duplicates skipped, %d unreadable)",
            merged.imported,
            filename,
            mode.value,
            merged.skipped,
            parsed.skipped,
        )
        return ImportReport(
            imported=merged.imported,
            skipped_duplicates=merged.skipped,
            unreadable=parsed.skipped,
            total=len(merged.expenses),
        )

    def select_for_export(
        self,
        export_range: ExportRange = ExportRange.ALL,
        start: Optional[date] = None,
        end: Optional[date] = None,
        today: Optional[date] = None,
    ) -> list[Expense]:
        expenses = self._repository.load_all()
        if export_range is ExportRange.ALL:
            return sort_newest_first(expenses)
        if export_range is ExportRange.CUSTOM:
            if start is None or end is None:
                raise ValueError("A custom export range needs both start and end dates")
            return filter_range(expenses, start, end)
        window = {
            ExportRange.TODAY: Window.TODAY,
            ExportRange.THIS_WEEK: Window.THIS_WEEK,
            ExportRange.THIS_MONTH: Window.THIS_MONTH,
        }[export_range]
        return filter_window(expenses, window, today)

    def export(
        self,
        export_format: ExportFormat,
        export_range: ExportRange = ExportRange.ALL,
        start: Optional[date] = None,
        end: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> ExportBundle:
        selected = self.select_for_export(export_range, start, end, now.date() if now else None)
        if not selected:
            raise NothingToExportError("No expenses in the selected range")
        content = export_expenses(
            selected,
            export_format,
            app_name=self._config.app_name,
            format_price=lambda expense: self._currency.format_amount(self._currency.to_display(expense)),
            now=now,
        )
        return ExportBundle(
            filename=export_filename(export_format, now),
            content=content,
            media_type=export_format.media_type,
            count=len(selected),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _save(self, expenses: list[Expense]) -> None:
        self._repository.save_all(expenses)
        self._events.publish(EventType.EXPENSES_CHANGED, {"count": len(expenses)})

    def _validated_entry(
        self,
        name: str,
        price_text: str,
        description: str,
        date_value: Optional[str],
        time_value: Optional[str],
    ) -> tuple[Decimal, Optional[str], Optional[str]]:
        """Return the price and the canonical ``yyyy-MM-dd``/``HH:mm`` strings.

        Date and time stay ``None`` when they were not supplied.
        """

        issues = validate_expense_input(name, price_text, description)
        parsed_date = parse_date_string(date_value) if date_value is not None else None
        if date_value is not None and parsed_date is None:
            issues.append(ValidationIssue("date", "Date must use the yyyy-MM-dd format"))
        parsed_time = parse_time_string(time_value) if time_value is not None else None
        if time_value is not None and parsed_time is None:
            issues.append(ValidationIssue("time", "Time must use the HH:mm format"))
        if issues:
            raise ExpenseValidationError(issues)
        canonical_date = parsed_date.strftime(DATE_FORMAT) if parsed_date is not None else None
        return parse_price_text(price_text), canonical_date, parsed_time

    def _checked_currency(self, code: Optional[str]) -> str:
        if not code:
            return self._config.default_currency
        currency = find_currency(code)
        if currency is None:
            raise UnknownCurrencyError(f"Unsupported currency: {code}")
        return currency.code
