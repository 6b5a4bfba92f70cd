"""Exchange-rate fetching for the expense_tracker backend."""
from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

import requests

from .config import AppConfig
from .exceptions import RateFetchError

logger = logging.getLogger(__name__)

# Providers disagree on the name of the map holding the quotes.
RATE_MAP_KEYS = ("rates", "conversion_rates")


class ExchangeRateClient:
    """Fetch USD-based exchange rates from the configured public sources."""

    def __init__(self, config: AppConfig, supported_codes: Iterable[str]) -> None:
        self._config = config
        self._supported_codes = tuple(code.upper() for code in supported_codes)

    def fetch_rates(self) -> dict[str, float]:
        """Return ``code -> rate`` for every supported code a source quoted.

        Sources are tried in configuration order and the first usable document
        wins.  ``USD`` is always present with a rate of ``1.0``.

        Raises:
            RateFetchError: when every source failed.
        """

        failures: list[str] = []
        for url in self._config.rates_urls:
            try:
                rates = self._fetch_from(url)
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Exchange-rate source %s failed: %s", url, exc)
                failures.append(f"{url}: {exc}")
                continue
            if rates is None:
                logger.warning("Exchange-rate source %s returned an unexpected payload", url)
                failures.append(f"{url}: invalid format")
                continue
            logger.info("Fetched %d exchange rates from %s", len(rates), url)
            return rates

        if not failures:
            raise RateFetchError("No exchange-rate source is configured")
        raise RateFetchError("All exchange rate APIs are unavailable")

    def _fetch_from(self, url: str) -> Optional[dict[str, float]]:
        response = requests.get(url, timeout=self._config.rates_timeout)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            return None

        quoted = None
        for key in RATE_MAP_KEYS:
            if isinstance(payload.get(key), dict):
                quoted = payload[key]
                break
        if quoted is None:
            return None

        rates: dict[str, float] = {"USD": 1.0}
        for code in self._supported_codes:
            if code == "USD":
                continue
            value = quoted.get(code)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if not math.isfinite(value) or value <= 0:
                continue
            rates[code] = float(value)
        return rates
