"""Currency catalog, exchange-rate table and amount conversion/formatting.

Rates are expressed relative to USD (``USD == 1.0``): a rate of ``150`` for
JPY means one dollar buys 150 yen.  Every conversion pivots through USD.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, Mapping, Optional, Union

from dateutil import parser as date_parser

from .database import SQLiteKeyValueStore, StorageKeys
from .events import EventBus, EventType
from .exceptions import RateFetchError, UnknownCurrencyError
from .models import Currency, Expense
from .price_service import ExchangeRateClient

logger = logging.getLogger(__name__)

Amount = Union[Decimal, float, int]

CURRENCIES: tuple[Currency, ...] = (
    Currency("USD", "$", "US Dollar", "🇺🇸"),
    Currency("MMK", "K", "Myanmar Kyat", "🇲🇲"),
    Currency("EUR", "€", "Euro", "🇪🇺"),
    Currency("JPY", "¥", "Japanese Yen", "🇯🇵"),
    Currency("GBP", "£", "British Pound", "🇬🇧"),
    Currency("CNY", "¥", "Chinese Yuan", "🇨🇳"),
    Currency("KRW", "₩", "Korean Won", "🇰🇷"),
    Currency("THB", "฿", "Thai Baht", "🇹🇭"),
    Currency("SGD", "S$", "Singapore Dollar", "🇸🇬"),
    Currency("INR", "₹", "Indian Rupee", "🇮🇳"),
)

FALLBACK_RATES: dict[str, float] = {
    "USD": 1.0,
    "MMK": 2100.0,
    "EUR": 0.85,
    "JPY": 150.0,
    "GBP": 0.79,
    "CNY": 7.25,
    "KRW": 1340.0,
    "THB": 36.0,
    "SGD": 1.35,
    "INR": 83.0,
}


def all_currencies() -> tuple[Currency, ...]:
    return CURRENCIES


def find_currency(code: str) -> Optional[Currency]:
    code = code.upper()
    for currency in CURRENCIES:
        if currency.code == code:
            return currency
    return None


# ---------------------------------------------------------------------------
# Conversion and formatting
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ConversionResult:
    """Converted amount plus whether a conversion actually happened.

    ``converted`` is ``False`` both for same-currency requests and for the
    missing-rate fallback; ``missing_code`` tells the two apart.
    """

    amount: Amount
    converted: bool
    missing_code: Optional[str] = None


def convert_checked(
    amount: Amount,
    from_code: str,
    to_code: str,
    rates: Mapping[str, float],
) -> ConversionResult:
    """Convert ``amount`` between two currencies through USD.

    When a required rate is missing the original amount is returned unchanged
    and the gap is logged and reported through ``missing_code``.
    """

    from_code = from_code.upper()
    to_code = to_code.upper()
    if from_code == to_code:
        return ConversionResult(amount, converted=False)

    if from_code == "USD":
        usd_amount = amount
    else:
        from_rate = _rate_for(rates, from_code, amount)
        if from_rate is None:
            return _missing(amount, from_code)
        usd_amount = amount / from_rate

    if to_code == "USD":
        return ConversionResult(usd_amount, converted=True)

    to_rate = _rate_for(rates, to_code, amount)
    if to_rate is None:
        return _missing(amount, to_code)
    return ConversionResult(usd_amount * to_rate, converted=True)


def convert(amount: Amount, from_code: str, to_code: str, rates: Mapping[str, float]) -> Amount:
    return convert_checked(amount, from_code, to_code, rates).amount


def format_amount(amount: Amount, currency: Currency | str) -> str:
    """Render ``amount`` with the currency symbol, grouping and two decimals.

    The currency alone decides the symbol; no locale is consulted.
    """

    if isinstance(currency, str):
        currency = find_currency(currency) or Currency(currency.upper(), f"{currency.upper()} ", currency.upper())
    value = amount if isinstance(amount, Decimal) else Decimal(repr(float(amount)))
    sign = "-" if value < 0 else ""
    return f"{sign}{currency.symbol}{abs(value):,.2f}"


def _rate_for(rates: Mapping[str, float], code: str, amount: Amount) -> Optional[Amount]:
    rate = rates.get(code)
    if rate is None or rate == 0:
        return None
    if isinstance(amount, Decimal):
        return Decimal(str(rate))
    return float(rate)


def _missing(amount: Amount, code: str) -> ConversionResult:
    logger.warning("No exchange rate for %s; leaving amount unconverted", code)
    return ConversionResult(amount, converted=False, missing_code=code)


# ---------------------------------------------------------------------------
# Stateful manager
# ---------------------------------------------------------------------------

class RefreshOutcome(str, Enum):
    UPDATED = "updated"
    FALLBACK = "fallback"


class CurrencyManager:
    """Track the display currency and the exchange-rate table.

    State is loaded from the key-value store at construction and every change
    is written back immediately.  Changes are announced on the session
    :class:`EventBus`.
    """

    def __init__(
        self,
        store: SQLiteKeyValueStore,
        rate_client: ExchangeRateClient,
        events: EventBus,
        default_currency: str = "USD",
        max_rate_age: int = 3600,
    ) -> None:
        self._store = store
        self._rate_client = rate_client
        self._events = events
        self._max_rate_age = max_rate_age
        self.default_currency = (find_currency(default_currency) or CURRENCIES[0]).code
        self.is_updating = False

        self.current_currency = self._load_selected_currency()
        self.exchange_rates = self._load_exchange_rates()
        self.last_update = self._load_last_update()

    # ------------------------------------------------------------------
    # Currency selection
    # ------------------------------------------------------------------
    def set_currency(self, code: str) -> Currency:
        currency = find_currency(code)
        if currency is None:
            raise UnknownCurrencyError(f"Unsupported currency: {code}")
        self.current_currency = currency
        self._store.set(StorageKeys.SELECTED_CURRENCY, currency.code)
        self._events.publish(EventType.CURRENCY_CHANGED, {"code": currency.code})
        return currency

    # ------------------------------------------------------------------
    # Exchange rates
    # ------------------------------------------------------------------
    def refresh_rates(self) -> RefreshOutcome:
        """Fetch fresh rates, falling back to the static table on any failure."""

        self.is_updating = True
        error: Optional[str] = None
        try:
            try:
                fetched = self._rate_client.fetch_rates()
            except RateFetchError as exc:
                error = str(exc)
                logger.warning("Exchange-rate refresh failed, using fallback rates: %s", exc)
                rates = dict(FALLBACK_RATES)
            else:
                rates = {**FALLBACK_RATES, **fetched}
            self._apply_rates(rates)
        finally:
            self.is_updating = False

        self._events.publish(EventType.RATES_UPDATED, {"rates": dict(rates)})
        if error is not None:
            self._events.publish(EventType.RATES_FAILED, {"error": error})
            return RefreshOutcome.FALLBACK
        return RefreshOutcome.UPDATED

    def refresh_rates_in_background(self) -> threading.Thread:
        """Start :meth:`refresh_rates` on a daemon thread and return at once."""

        self.is_updating = True
        thread = threading.Thread(target=self.refresh_rates, name="rate-refresh", daemon=True)
        thread.start()
        return thread

    def should_auto_refresh(self, now: Optional[datetime] = None) -> bool:
        if self.last_update is None:
            return True
        now = now or datetime.now(timezone.utc)
        return self.last_update < now - timedelta(seconds=self._max_rate_age)

    def last_update_display(self) -> str:
        if self.last_update is None:
            return "Never"
        return self.last_update.astimezone().strftime("%b %d, %Y %H:%M")

    # ------------------------------------------------------------------
    # Conversion helpers bound to the current table
    # ------------------------------------------------------------------
    def convert(self, amount: Amount, from_code: str, to_code: str) -> Amount:
        return convert(amount, from_code, to_code, self.exchange_rates)

    def convert_checked(self, amount: Amount, from_code: str, to_code: str) -> ConversionResult:
        return convert_checked(amount, from_code, to_code, self.exchange_rates)

    def to_display(self, expense: Expense) -> Amount:
        """Return the expense price in the current display currency."""

        return self.convert(expense.price, expense.currency, self.current_currency.code)

    def total_in(self, expenses: Iterable[Expense], code: Optional[str] = None) -> Decimal:
        code = code or self.current_currency.code
        return sum((Decimal(self.convert(expense.price, expense.currency, code)) for expense in expenses), Decimal("0"))

    def format_amount(self, amount: Amount, currency: Currency | str | None = None) -> str:
        return format_amount(amount, currency or self.current_currency)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _apply_rates(self, rates: dict[str, float]) -> None:
        self.exchange_rates = rates
        self.last_update = datetime.now(timezone.utc)
        self._store.set_json(StorageKeys.EXCHANGE_RATES, rates)
        self._store.set(StorageKeys.RATES_LAST_UPDATE, self.last_update.isoformat())

    def _load_selected_currency(self) -> Currency:
        saved = self._store.get(StorageKeys.SELECTED_CURRENCY) or self.default_currency
        return find_currency(saved) or find_currency(self.default_currency) or CURRENCIES[0]

    def _load_exchange_rates(self) -> dict[str, float]:
        cached = self._store.get_json(StorageKeys.EXCHANGE_RATES)
        if not isinstance(cached, dict):
            return dict(FALLBACK_RATES)
        rates = {
            str(code).upper(): float(value)
            for code, value in cached.items()
            if isinstance(value, (int, float)) and not isinstance(value, bool)
        }
        return rates or dict(FALLBACK_RATES)

    def _load_last_update(self) -> Optional[datetime]:
        raw = self._store.get(StorageKeys.RATES_LAST_UPDATE)
        if not raw:
            return None
        try:
            parsed = date_parser.isoparse(raw)
        except (ValueError, OverflowError):
            logger.warning("Ignoring malformed rate timestamp %r", raw)
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
