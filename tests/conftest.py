"""Shared fixtures for the expense_tracker test-suite.

No test talks to the network: the exchange-rate client is replaced by a fake
and ``requests.get`` is monkeypatched where the real client is exercised.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from expense_tracker.config import AppConfig
from expense_tracker.currency import CurrencyManager
from expense_tracker.database import ExpenseRepository, SQLiteKeyValueStore
from expense_tracker.events import EventBus
from expense_tracker.exceptions import RateFetchError
from expense_tracker.models import Expense
from expense_tracker.services import ExpenseService


class FakeRateClient:
    """Stand-in for :class:`ExchangeRateClient` returning canned rates."""

    def __init__(self, rates=None, error=None):
        self.rates = rates or {}
        self.error = error
        self.calls = 0

    def fetch_rates(self):
        self.calls += 1
        if self.error is not None:
            raise RateFetchError(self.error)
        return dict(self.rates)


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "expenses.db",
        default_currency="USD",
        rates_urls=("https://rates.example.test/latest/USD",),
        rates_timeout=5.0,
        rates_max_age=3600,
        auto_refresh_rates=False,
        app_name="HSU Expense",
        log_level="DEBUG",
    )


@pytest.fixture
def store(config: AppConfig):
    kv = SQLiteKeyValueStore(config.database_file)
    kv.initialise_schema()
    yield kv
    kv.close()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def rate_client() -> FakeRateClient:
    return FakeRateClient(rates={"USD": 1.0, "EUR": 0.9, "JPY": 140.0})


@pytest.fixture
def currency_manager(store, rate_client, events) -> CurrencyManager:
    return CurrencyManager(store, rate_client, events, default_currency="USD")


@pytest.fixture
def repository(store) -> ExpenseRepository:
    return ExpenseRepository(store)


@pytest.fixture
def service(config, repository, currency_manager, events) -> ExpenseService:
    return ExpenseService(config, repository, currency_manager, events)


def make_expense(name="Coffee", price="5.00", date="2025-07-13", time="09:30", currency="USD", description=""):
    return Expense(
        name=name,
        price=Decimal(price),
        description=description,
        date=date,
        time=time,
        currency=currency,
    )


@pytest.fixture
def expense_factory():
    return make_expense
