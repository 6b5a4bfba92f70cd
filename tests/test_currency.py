"""Tests for the currency catalog, conversion, formatting and rate refresh."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import requests

from expense_tracker.currency import (
    FALLBACK_RATES,
    CurrencyManager,
    RefreshOutcome,
    all_currencies,
    convert,
    convert_checked,
    find_currency,
    format_amount,
)
from expense_tracker.database import StorageKeys
from expense_tracker.events import EventType
from expense_tracker.exceptions import RateFetchError, UnknownCurrencyError
from expense_tracker.price_service import ExchangeRateClient

from conftest import FakeRateClient


class TestCatalog:
    def test_catalog_has_ten_currencies_in_order(self):
        codes = [currency.code for currency in all_currencies()]
        assert codes == ["USD", "MMK", "EUR", "JPY", "GBP", "CNY", "KRW", "THB", "SGD", "INR"]

    def test_fallback_table_covers_catalog(self):
        assert set(FALLBACK_RATES) == {currency.code for currency in all_currencies()}

    def test_find_currency_is_case_insensitive(self):
        assert find_currency("sgd").symbol == "S$"
        assert find_currency("XYZ") is None


class TestConversion:
    rates = {"USD": 1.0, "EUR": 0.85, "JPY": 150.0}

    @pytest.mark.parametrize("code", ["USD", "EUR", "XYZ"])
    def test_identity(self, code):
        assert convert(Decimal("42.10"), code, code, self.rates) == Decimal("42.10")

    def test_to_and_from_usd(self):
        assert convert(100.0, "USD", "EUR", self.rates) == pytest.approx(85.0)
        assert convert(85.0, "EUR", "USD", self.rates) == pytest.approx(100.0)

    def test_cross_rate_pivots_through_usd(self):
        assert convert(0.85, "EUR", "JPY", self.rates) == pytest.approx(150.0)

    def test_round_trip_is_approximately_stable(self):
        there = convert(Decimal("123.45"), "EUR", "JPY", self.rates)
        back = convert(there, "JPY", "EUR", self.rates)
        assert float(back) == pytest.approx(123.45)

    def test_decimal_amounts_stay_decimal(self):
        assert isinstance(convert(Decimal("10"), "USD", "EUR", self.rates), Decimal)

    def test_missing_rate_returns_amount_unchanged(self, caplog):
        with caplog.at_level("WARNING"):
            result = convert_checked(100, "USD", "XYZ", self.rates)
        assert result.amount == 100
        assert result.converted is False
        assert result.missing_code == "XYZ"
        assert "XYZ" in caplog.text

    def test_missing_source_rate_returns_amount_unchanged(self):
        assert convert(100, "XYZ", "EUR", self.rates) == 100


class TestFormatting:
    def test_symbol_grouping_and_two_decimals(self):
        assert format_amount(Decimal("1234.5"), "USD") == "$1,234.50"
        assert format_amount(1234567.891, "EUR") == "€1,234,567.89"

    def test_negative_amounts_put_sign_first(self):
        assert format_amount(Decimal("-5"), "GBP") == "-£5.00"

    def test_unknown_code_uses_code_as_symbol(self):
        assert format_amount(Decimal("3"), "xyz") == "XYZ 3.00"


class TestCurrencyManager:
    def test_defaults_without_stored_state(self, currency_manager):
        assert currency_manager.current_currency.code == "USD"
        assert currency_manager.exchange_rates == FALLBACK_RATES
        assert currency_manager.last_update is None
        assert currency_manager.last_update_display() == "Never"
        assert currency_manager.should_auto_refresh()

    def test_set_currency_persists_and_notifies(self, store, currency_manager, events, rate_client):
        seen = []
        events.subscribe(EventType.CURRENCY_CHANGED, lambda event: seen.append(event.payload["code"]))

        currency_manager.set_currency("eur")

        assert currency_manager.current_currency.code == "EUR"
        assert store.get(StorageKeys.SELECTED_CURRENCY) == "EUR"
        assert seen == ["EUR"]
        reloaded = CurrencyManager(store, rate_client, events)
        assert reloaded.current_currency.code == "EUR"

    def test_set_unknown_currency(self, currency_manager):
        with pytest.raises(UnknownCurrencyError):
            currency_manager.set_currency("XYZ")

    def test_successful_refresh_merges_over_fallback(self, store, currency_manager, events):
        failures = []
        updates = []
        events.subscribe(EventType.RATES_FAILED, failures.append)
        events.subscribe(EventType.RATES_UPDATED, updates.append)

        outcome = currency_manager.refresh_rates()

        assert outcome is RefreshOutcome.UPDATED
        assert currency_manager.exchange_rates["EUR"] == 0.9
        assert currency_manager.exchange_rates["MMK"] == FALLBACK_RATES["MMK"]
        assert set(currency_manager.exchange_rates) >= set(FALLBACK_RATES)
        assert store.get_json(StorageKeys.EXCHANGE_RATES)["JPY"] == 140.0
        assert currency_manager.last_update is not None
        assert currency_manager.is_updating is False
        assert len(updates) == 1
        assert failures == []

    def test_failed_refresh_applies_fallback_and_signals(self, store, events):
        manager = CurrencyManager(store, FakeRateClient(error="offline"), events)
        store.set_json(StorageKeys.EXCHANGE_RATES, {"USD": 1.0, "EUR": 0.5})
        failures = []
        updates = []
        events.subscribe(EventType.RATES_FAILED, lambda event: failures.append(event.payload["error"]))
        events.subscribe(EventType.RATES_UPDATED, updates.append)

        outcome = manager.refresh_rates()

        assert outcome is RefreshOutcome.FALLBACK
        assert manager.exchange_rates == FALLBACK_RATES
        assert failures == ["offline"]
        assert len(updates) == 1
        assert manager.last_update is not None

    def test_cached_rates_and_timestamp_are_loaded(self, store, rate_client, events):
        stamp = datetime(2025, 7, 13, 8, 0, tzinfo=timezone.utc)
        store.set_json(StorageKeys.EXCHANGE_RATES, {"USD": 1.0, "EUR": 0.5})
        store.set(StorageKeys.RATES_LAST_UPDATE, stamp.isoformat())

        manager = CurrencyManager(store, rate_client, events, max_rate_age=3600)

        assert manager.exchange_rates == {"USD": 1.0, "EUR": 0.5}
        assert manager.last_update == stamp
        assert not manager.should_auto_refresh(now=stamp + timedelta(minutes=30))
        assert manager.should_auto_refresh(now=stamp + timedelta(hours=2))

    def test_background_refresh(self, currency_manager, rate_client):
        thread = currency_manager.refresh_rates_in_background()
        thread.join(timeout=5)
        assert rate_client.calls == 1
        assert currency_manager.exchange_rates["EUR"] == 0.9

    def test_total_in_display_currency(self, currency_manager, expense_factory):
        expenses = [expense_factory(price="10", currency="USD"), expense_factory(price="150", currency="JPY")]
        assert currency_manager.total_in(expenses, "USD") == Decimal("11")


class _FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class TestExchangeRateClient:
    codes = [currency.code for currency in all_currencies()]

    def test_reads_rates_map_and_ignores_other_codes(self, config, monkeypatch):
        calls = []

        def fake_get(url, timeout):
            calls.append((url, timeout))
            return _FakeResponse({"rates": {"EUR": 0.92, "JPY": 151, "CHF": 0.88, "GBP": "bad"}})

        monkeypatch.setattr(requests, "get", fake_get)
        rates = ExchangeRateClient(config, self.codes).fetch_rates()

        assert rates == {"USD": 1.0, "EUR": 0.92, "JPY": 151.0}
        assert calls == [(config.rates_urls[0], config.rates_timeout)]

    def test_conversion_rates_key_is_accepted(self, config, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse({"conversion_rates": {"THB": 35.5}}))
        assert ExchangeRateClient(config, self.codes).fetch_rates()["THB"] == 35.5

    def test_network_error_raises(self, config, monkeypatch):
        def boom(url, timeout):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(requests, "get", boom)
        with pytest.raises(RateFetchError):
            ExchangeRateClient(config, self.codes).fetch_rates()

    def test_malformed_payload_raises(self, config, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse({"result": "error"}))
        with pytest.raises(RateFetchError):
            ExchangeRateClient(config, self.codes).fetch_rates()

    def test_invalid_json_raises(self, config, monkeypatch):
        monkeypatch.setattr(requests, "get", lambda url, timeout: _FakeResponse(ValueError("no json")))
        with pytest.raises(RateFetchError):
            ExchangeRateClient(config, self.codes).fetch_rates()

    def test_later_sources_are_tried(self, config, monkeypatch):
        from dataclasses import replace

        config = replace(config, rates_urls=("https://a.test", "https://b.test"))
        responses = {
            "https://a.test": _FakeResponse({}, status=500),
            "https://b.test": _FakeResponse({"rates": {"INR": 83.5}}),
        }
        monkeypatch.setattr(requests, "get", lambda url, timeout: responses[url])
        assert ExchangeRateClient(config, self.codes).fetch_rates()["INR"] == 83.5
