"""Date-window queries over the in-memory expense collection.

Every function here is pure: it receives the full snapshot and recomputes the
answer on demand.  Records whose date does not parse as ``yyyy-MM-dd`` never
match a window, although they stay in storage untouched.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from dateutil.relativedelta import relativedelta

from .models import DATE_FORMAT, Expense

# "All" views only look this far back.
ALL_WINDOW_YEARS = 3


class Window(str, Enum):
    TODAY = "today"
    THIS_WEEK = "week"
    THIS_MONTH = "month"
    ALL = "all"


@dataclass(slots=True)
class WindowSummary:
    window: Window
    expenses: list[Expense]
    count: int
    total: Decimal


def window_bounds(window: Window, today: date) -> tuple[date, Optional[date]]:
    """Return the half-open ``[start, end)`` range of ``window``.

    ``end`` is ``None`` for :attr:`Window.ALL`, which has no upper bound.
    """

    if window is Window.TODAY:
        return today, today + timedelta(days=1)
    if window is Window.THIS_WEEK:
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=7)
    if window is Window.THIS_MONTH:
        start = today.replace(day=1)
        return start, start + relativedelta(months=1)
    return today - relativedelta(years=ALL_WINDOW_YEARS), None


def filter_window(
    expenses: Iterable[Expense],
    window: Window,
    today: Optional[date] = None,
) -> list[Expense]:
    """Return the expenses inside ``window``, newest first."""

    today = today or date.today()
    if window is Window.TODAY:
        today_string = today.strftime(DATE_FORMAT)
        matches = [expense for expense in expenses if expense.date == today_string]
        return sort_newest_first(matches)

    start, end = window_bounds(window, today)
    matches = []
    for expense in expenses:
        expense_date = expense.parsed_date()
        if expense_date is None or expense_date < start:
            continue
        if end is not None and expense_date >= end:
            continue
        matches.append(expense)
    return sort_newest_first(matches)


def filter_range(expenses: Iterable[Expense], start: date, end: date) -> list[Expense]:
    """Return expenses dated between ``start`` and ``end`` inclusive."""

    matches = []
    for expense in expenses:
        expense_date = expense.parsed_date()
        if expense_date is not None and start <= expense_date <= end:
            matches.append(expense)
    return sort_newest_first(matches)


def summarize(
    expenses: Iterable[Expense],
    window: Window,
    today: Optional[date] = None,
    amount_of: Optional[Callable[[Expense], object]] = None,
) -> WindowSummary:
    """Filter ``expenses`` by ``window`` and total them.

    ``amount_of`` decides what gets summed; the raw price is used when it is
    omitted.  Callers pass a converter to total in a display currency.
    """

    matches = filter_window(expenses, window, today)
    amount_of = amount_of or (lambda expense: expense.price)
    total = sum((Decimal(str(amount_of(expense))) for expense in matches), Decimal("0"))
    return WindowSummary(window=window, expenses=matches, count=len(matches), total=total)


def sort_newest_first(expenses: Iterable[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda expense: (expense.date, expense.time), reverse=True)
