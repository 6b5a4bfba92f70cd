"""SQLite persistence layer for the expense_tracker backend.

Everything the application keeps between runs lives in one flat key-value
table.  The expense collection is stored as a single JSON blob under one key and
is rewritten wholesale on every mutation; last write wins.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

from .models import Expense, decode_expense

logger = logging.getLogger(__name__)


class StorageKeys:
    EXPENSES = "expenses"
    SELECTED_CURRENCY = "selected_currency"
    EXCHANGE_RATES = "exchange_rates"
    RATES_LAST_UPDATE = "rates_last_update"


class SQLiteKeyValueStore:
    """Encapsulates all SQLite access for the application."""

    def __init__(self, database_path: Path | str) -> None:
        self._database_path = database_path
        # The rate refresh runs on a worker thread and writes through the
        # same connection.
        self._connection = sqlite3.connect(database_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    # ------------------------------------------------------------------
    # Schema management
    # ------------------------------------------------------------------
    def initialise_schema(self) -> None:
        """Create the key-value table if it does not exist."""

        self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )
        self._connection.commit()

    # ------------------------------------------------------------------
    # Raw values
    # ------------------------------------------------------------------
    def set(self, key: str, value: str) -> None:
        self._connection.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
            (key, value),
        )
        self._connection.commit()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self._connection.execute(
            "SELECT value FROM settings WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return default
        return str(row["value"])

    def delete(self, key: str) -> None:
        self._connection.execute("DELETE FROM settings WHERE key = ?", (key,))
        self._connection.commit()

    # ------------------------------------------------------------------
    # JSON values
    # ------------------------------------------------------------------
    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, ensure_ascii=False))

    def get_json(self, key: str, default: Any = None) -> Any:
        """Return the decoded JSON stored under ``key``.

        A missing key and an undecodable value both yield ``default``; the
        latter is logged because it means the stored state was damaged.
        """

        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored value for %r is not valid JSON; ignoring it", key)
            return default


class ExpenseRepository:
    """Load and save the full expense collection as one stored blob."""

    def __init__(self, store: SQLiteKeyValueStore, default_currency: str = "USD") -> None:
        self._store = store
        self._default_currency = default_currency

    def load_all(self) -> list[Expense]:
        """Return every stored expense that decodes cleanly.

        No blob means no expenses.  Entries that fail to decode are dropped so
        that one damaged record does not hide the rest of the collection.
        """

        payload = self._store.get_json(StorageKeys.EXPENSES)
        if payload is None:
            return []
        if not isinstance(payload, list):
            logger.warning("Stored expense blob is not a list; treating it as empty")
            return []

        expenses: list[Expense] = []
        for index, entry in enumerate(payload):
            result = decode_expense(entry, self._default_currency)
            if result.expense is None:
                logger.debug(
                    "Dropping stored expense #%d: %s (%s)",
                    index,
                    result.error.value if result.error else "unknown",
                    result.field,
                )
                continue
            expenses.append(result.expense)
        return expenses

    def save_all(self, expenses: Iterable[Expense]) -> None:
        """Overwrite the stored blob with ``expenses``."""

        self._store.set_json(StorageKeys.EXPENSES, [expense.to_dict() for expense in expenses])
