"""
Currency conversion with cached live rates.

Live rates come from an exchange-rate API (`GET {url}/{base}` answering
`{"rates": {"EUR": 0.92, ...}}`). Rates are cached per base currency for a TTL.
When the API cannot be reached the converter uses a fixed fallback table, so a
conversion only ever fails for an unsupported currency code.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

import requests

from domain.money import Currency, quantize_amount
from services.errors import UnsupportedCurrency

logger = logging.getLogger(__name__)

# Units of each currency per 1 USD.
FALLBACK_USD_RATES: Dict[Currency, Decimal] = {
    Currency.USD: Decimal("1"),
    Currency.EUR: Decimal("0.92"),
    Currency.GBP: Decimal("0.79"),
    Currency.XOF: Decimal("605"),
    Currency.GMD: Decimal("70"),
}

_RATE_PRECISION = Decimal("0.00000001")


@dataclass(frozen=True, slots=True)
class Conversion:
    """
    amount: converted amount, rounded half-up to the target currency's minor unit
    rate: units of the target currency per unit of the source currency
    """

    amount: Decimal
    rate: Decimal
    from_currency: Currency
    to_currency: Currency


def _parse_currency(code: "Currency | str") -> Currency:
    if isinstance(code, Currency):
        return code
    try:
        return Currency.parse(code)
    except ValueError:
        raise UnsupportedCurrency(str(code)) from None


class CurrencyConverter:
    def __init__(
        self,
        rates_url: str = "https://open.er-api.com/v6/latest",
        ttl_seconds: int = 3600,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rates_url = rates_url.rstrip("/")
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._cache: Dict[Currency, Tuple[float, Dict[str, Decimal]]] = {}

    def _fallback_rates(self, base: Currency) -> Dict[str, Decimal]:
        per_usd = FALLBACK_USD_RATES[base]
        return {c.value: FALLBACK_USD_RATES[c] / per_usd for c in Currency}

    def _fetch_rates(self, base: Currency) -> Dict[str, Decimal]:
        response = self._session.get(f"{self._rates_url}/{base.value}", timeout=self._timeout)
        response.raise_for_status()
        rates = response.json().get("rates")
        if not isinstance(rates, dict) or not rates:
            raise ValueError("Exchange rate response has no rates")
        return {str(code).upper(): Decimal(str(value)) for code, value in rates.items()}

    def get_rates(self, base: Currency) -> Dict[str, Decimal]:
        """Rates keyed by currency code for one unit of `base`, cached for the TTL."""

        now = self._clock()
        cached = self._cache.get(base)
        if cached is not None and now - cached[0] < self._ttl_seconds:
            return cached[1]

        try:
            rates = self._fetch_rates(base)
        except (requests.RequestException, ValueError, ArithmeticError) as e:
            logger.warning(
                "Exchange rate fetch failed, using fallback rates",
                extra={"base": base.value, "error": str(e)},
            )
            # Fallback rates are not cached so the next call retries the API.
            return self._fallback_rates(base)

        self._cache[base] = (now, rates)
        return rates

    def get_rate(self, from_currency: "Currency | str", to_currency: "Currency | str") -> Decimal:
        source = _parse_currency(from_currency)
        target = _parse_currency(to_currency)
        if source is target:
            return Decimal("1")

        rate = self.get_rates(source).get(target.value)
        if rate is None:
            logger.warning(
                "Rate missing from live table, using fallback",
                extra={"from": source.value, "to": target.value},
            )
            rate = self._fallback_rates(source)[target.value]
        return rate.quantize(_RATE_PRECISION)

    def convert(self, amount: Decimal, from_currency: "Currency | str", to_currency: "Currency | str") -> Conversion:
        """
        Convert `amount` between supported currencies.

        Raises:
            UnsupportedCurrency: if either code is not supported
        """

        source = _parse_currency(from_currency)
        target = _parse_currency(to_currency)
        rate = self.get_rate(source, target)
        return Conversion(
            amount=quantize_amount(Decimal(amount) * rate, target),
            rate=rate,
            from_currency=source,
            to_currency=target,
        )


__all__ = ["Conversion", "CurrencyConverter", "FALLBACK_USD_RATES"]
