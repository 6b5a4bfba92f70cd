"""Exporters writing expenses as JSON, CSV or a plain-text summary."""
from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

import pandas as pd

from .models import Expense

EXPORT_VERSION = "1.0"
CSV_HEADER = ["ID", "Name", "Price", "Description", "Date", "Time", "Currency"]


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    TEXT = "txt"

    @property
    def media_type(self) -> str:
        return {
            "json": "application/json",
            "csv": "text/csv",
            "txt": "text/plain",
        }[self.value]


def export_expenses(
    expenses: Sequence[Expense],
    export_format: ExportFormat,
    app_name: str = "HSU Expense",
    format_price: Optional[Callable[[Expense], str]] = None,
    now: Optional[datetime] = None,
) -> bytes:
    """Serialise ``expenses`` in ``export_format`` and return UTF-8 bytes."""

    now = now or datetime.now(timezone.utc)
    if export_format is ExportFormat.JSON:
        return to_json(expenses, app_name, now).encode("utf-8")
    if export_format is ExportFormat.CSV:
        return to_csv(expenses).encode("utf-8")
    return to_text(expenses, app_name, format_price, now).encode("utf-8")


def to_json(expenses: Sequence[Expense], app_name: str, now: datetime) -> str:
    """Wrap the expenses in the versioned export envelope.

    Prices are written as decimal strings so the exact value survives a round
    trip; the importer accepts both strings and numbers.
    """

    envelope = {
        "app_name": app_name,
        "export_version": EXPORT_VERSION,
        "export_date": _iso_timestamp(now),
        "count": len(expenses),
        "expenses": [
            {
                "id": str(expense.id),
                "name": expense.name,
                "price": str(expense.price),
                "description": expense.description,
                "date": expense.date,
                "time": expense.time,
                "currency": expense.currency,
            }
            for expense in expenses
        ],
    }
    return json.dumps(envelope, indent=2, ensure_ascii=False)


def to_csv(expenses: Sequence[Expense]) -> str:
    rows = [
        [
            str(expense.id),
            expense.name,
            format(expense.price, ".2f"),
            expense.description,
            expense.date,
            expense.time,
            expense.currency,
        ]
        for expense in expenses
    ]
    dataframe = pd.DataFrame(rows, columns=CSV_HEADER, dtype=str)
    return dataframe.to_csv(index=False, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")


def to_text(
    expenses: Sequence[Expense],
    app_name: str,
    format_price: Optional[Callable[[Expense], str]],
    now: datetime,
) -> str:
    format_price = format_price or (lambda expense: f"{expense.price:.2f} {expense.currency}")
    lines = [
        f"{app_name} Export",
        f"Export Date: {now.astimezone().strftime('%b %d, %Y %H:%M')}",
        f"Total Expenses: {len(expenses)}",
        "=" * 50,
        "",
    ]
    for index, expense in enumerate(expenses, start=1):
        lines.append(f"{index}. {expense.name}")
        lines.append(f"   Price: {format_price(expense)}")
        lines.append(f"   Date: {expense.date} at {expense.time}")
        if expense.description:
            lines.append(f"   Description: {expense.description}")
        lines.append("")
    return "\n".join(lines) + "\n"


def export_filename(export_format: ExportFormat, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"expenses_{now.strftime('%Y%m%d_%H%M%S')}.{export_format.value}"


def _iso_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
