"""Tests for the date-window queries."""

from datetime import date
from decimal import Decimal

import pytest

from expense_tracker.aggregation import Window, filter_range, filter_window, summarize, window_bounds

# A Wednesday.
TODAY = date(2025, 7, 16)


@pytest.fixture
def expenses(expense_factory):
    return [
        expense_factory(name="Today early", price="3.00", date="2025-07-16", time="08:00"),
        expense_factory(name="Today late", price="4.50", date="2025-07-16", time="19:15"),
        expense_factory(name="Monday", price="10", date="2025-07-14"),
        expense_factory(name="Last Sunday", price="7", date="2025-07-13"),
        expense_factory(name="Month start", price="20", date="2025-07-01"),
        expense_factory(name="Last month", price="100", date="2025-06-30"),
        expense_factory(name="Two years ago", price="50", date="2023-08-01"),
        expense_factory(name="Ancient", price="999", date="2021-01-01"),
        expense_factory(name="Broken", price="1", date="not-a-date"),
    ]


def names(items):
    return [item.name for item in items]


def test_window_bounds():
    assert window_bounds(Window.THIS_WEEK, TODAY) == (date(2025, 7, 14), date(2025, 7, 21))
    assert window_bounds(Window.THIS_MONTH, TODAY) == (date(2025, 7, 1), date(2025, 8, 1))
    assert window_bounds(Window.ALL, TODAY) == (date(2022, 7, 16), None)


def test_today_matches_exact_date_newest_first(expenses):
    assert names(filter_window(expenses, Window.TODAY, TODAY)) == ["Today late", "Today early"]


def test_week_uses_monday_start(expenses):
    assert names(filter_window(expenses, Window.THIS_WEEK, TODAY)) == ["Today late", "Today early", "Monday"]


def test_month(expenses):
    assert names(filter_window(expenses, Window.THIS_MONTH, TODAY)) == [
        "Today late",
        "Today early",
        "Monday",
        "Last Sunday",
        "Month start",
    ]


def test_all_is_bounded_to_three_years(expenses):
    result = names(filter_window(expenses, Window.ALL, TODAY))
    assert "Two years ago" in result
    assert "Ancient" not in result
    assert result[0] == "Today late"


@pytest.mark.parametrize("window", list(Window))
def test_malformed_dates_are_invisible(expenses, window):
    assert "Broken" not in names(filter_window(expenses, window, TODAY))


def test_summarize_counts_and_sums(expenses):
    summary = summarize(expenses, Window.THIS_WEEK, TODAY)
    assert summary.count == 3
    assert summary.total == Decimal("17.50")


def test_summarize_with_converter(expenses):
    summary = summarize(expenses, Window.TODAY, TODAY, amount_of=lambda expense: expense.price * 2)
    assert summary.total == Decimal("15.00")


def test_empty_window(expense_factory):
    summary = summarize([expense_factory(date="2020-01-01")], Window.TODAY, TODAY)
    assert summary.count == 0
    assert summary.total == Decimal("0")


def test_filter_range_is_inclusive(expenses):
    result = names(filter_range(expenses, date(2025, 7, 13), date(2025, 7, 14)))
    assert result == ["Monday", "Last Sunday"]
