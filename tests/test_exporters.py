"""Tests for the JSON, CSV and text exporters."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from expense_tracker.exporters import (
    CSV_HEADER,
    ExportFormat,
    export_expenses,
    export_filename,
    to_csv,
    to_json,
    to_text,
)
from expense_tracker.importers import ExpenseImporter

NOW = datetime(2025, 7, 16, 14, 5, 9, 123456, tzinfo=timezone.utc)


@pytest.fixture
def expenses(expense_factory):
    return [
        expense_factory(name="Coffee", price="5.00", description="", currency="USD"),
        expense_factory(
            name="Lunch, large",
            price="12.5",
            description='He said "yum"',
            date="2025-07-14",
            time="12:30",
            currency="EUR",
        ),
    ]


def test_json_envelope(expenses):
    payload = json.loads(to_json(expenses, "HSU Expense", NOW))

    assert payload["app_name"] == "HSU Expense"
    assert payload["export_version"] == "1.0"
    assert payload["export_date"] == "2025-07-16T14:05:09.123Z"
    assert payload["count"] == 2
    assert payload["expenses"][1]["price"] == "12.5"
    assert payload["expenses"][1]["id"] == str(expenses[1].id)


def test_csv_header_and_quoting(expenses):
    lines = to_csv(expenses).splitlines()

    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[1] == f"{expenses[0].id},Coffee,5.00,,2025-07-13,09:30,USD"
    assert lines[2] == f'{expenses[1].id},"Lunch, large",12.50,"He said ""yum""",2025-07-14,12:30,EUR'


def test_empty_csv_has_only_header():
    assert to_csv([]).strip() == ",".join(CSV_HEADER)


def test_text_summary(expenses):
    text = to_text(expenses, "HSU Expense", lambda expense: f"<{expense.price}>", NOW)
    lines = text.splitlines()

    assert lines[0] == "HSU Expense Export"
    assert lines[1].startswith("Export Date: ")
    assert lines[2] == "Total Expenses: 2"
    assert lines[3] == "=" * 50
    assert "1. Coffee" in lines
    assert "   Price: <12.5>" in lines
    assert "   Date: 2025-07-14 at 12:30" in lines
    assert '   Description: He said "yum"' in lines
    # Coffee has no description line.
    assert lines[lines.index("1. Coffee") + 3] == ""


def test_text_default_price_format(expenses):
    text = to_text(expenses[:1], "HSU Expense", None, NOW)
    assert "   Price: 5.00 USD" in text.splitlines()


def test_export_filename():
    assert export_filename(ExportFormat.CSV, datetime(2025, 7, 16, 9, 3, 7)) == "expenses_20250716_090307.csv"


def test_media_types():
    assert ExportFormat.JSON.media_type == "application/json"
    assert ExportFormat.TEXT.media_type == "text/plain"


@pytest.mark.parametrize("export_format", [ExportFormat.JSON, ExportFormat.CSV])
def test_export_then_import_preserves_expenses(expenses, export_format):
    content = export_expenses(expenses, export_format, now=NOW)
    result = ExpenseImporter().parse(content, f"backup.{export_format.value}")

    assert result.ok
    assert result.skipped == 0
    assert [item.id for item in result.expenses] == [item.id for item in expenses]
    assert [item.name for item in result.expenses] == ["Coffee", "Lunch, large"]
    assert [item.description for item in result.expenses] == ["", 'He said "yum"']
    assert [item.price for item in result.expenses] == [Decimal("5.00"), Decimal("12.5")]
    assert [item.currency for item in result.expenses] == ["USD", "EUR"]


def test_text_export_imports_as_names(expenses):
    content = export_expenses(expenses, ExportFormat.TEXT, now=NOW)
    result = ExpenseImporter().parse(content, "export.txt")
    assert [item.name for item in result.expenses] == ["Coffee", "Lunch, large"]
