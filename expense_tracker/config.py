"""Application configuration utilities for the expense_tracker backend.

This module centralises environment-driven configuration so the rest of the
code base does not need to read environment variables directly.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_RATES_URL = "https://open.er-api.com/v6/latest/USD"


@dataclass(frozen=True)
class AppConfig:
    """Strongly-typed container for runtime configuration.

    Attributes:
        project_root: Root directory of the project. Used to derive default
            paths so the app works out of the box after cloning the repo.
        database_file: Absolute path to the SQLite file backing the local
            key-value store.
        default_currency: Currency code assigned to new expenses and used as
            the display currency until the user picks another one.
        rates_urls: Exchange-rate sources, tried in order on every refresh.
        rates_timeout: Seconds to wait for a single rate source.
        rates_max_age: Age in seconds after which cached rates are considered
            stale and refreshed automatically at startup.
        auto_refresh_rates: Whether stale rates are refreshed at startup.
        app_name: Name written into export envelopes and text exports.
        log_level: Name of the root logging level.
    """

    project_root: Path
    database_file: Path
    default_currency: str
    rates_urls: tuple[str, ...]
    rates_timeout: float
    rates_max_age: int
    auto_refresh_rates: bool
    app_name: str
    log_level: str


def load_config() -> AppConfig:
    """Create a new :class:`AppConfig` instance based on environment settings."""

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(
        getenv_with_default(
            "EXPENSE_TRACKER_DB_FILE",
            project_root / "expense_tracker.db",
        )
    )
    rates_urls = tuple(
        url.strip()
        for url in getenv_with_default("EXPENSE_TRACKER_RATES_URLS", DEFAULT_RATES_URL).split(",")
        if url.strip()
    )

    # Ensure the directories exist so later code can safely create files.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        default_currency=getenv_with_default("EXPENSE_TRACKER_DEFAULT_CURRENCY", "USD").upper(),
        rates_urls=rates_urls,
        rates_timeout=float(getenv_with_default("EXPENSE_TRACKER_RATES_TIMEOUT", "10")),
        rates_max_age=int(getenv_with_default("EXPENSE_TRACKER_RATES_MAX_AGE", "3600")),
        auto_refresh_rates=_parse_bool(getenv_with_default("EXPENSE_TRACKER_AUTO_REFRESH", "true")),
        app_name=getenv_with_default("EXPENSE_TRACKER_APP_NAME", "HSU Expense"),
        log_level=getenv_with_default("EXPENSE_TRACKER_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Install a basic root handler. Repeated calls are no-ops."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def getenv_with_default(name: str, default: Path | str) -> str:
    """Read an ``EXPENSE_TRACKER_*`` variable, treating blank values as unset.

    ``default`` may be a :class:`Path`; it is returned as a string so that
    :func:`load_config` parses every setting from the same type.
    """

    value = os.environ.get(name, "").strip()
    return value or str(default)


def _parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}
