"""
Domain: Currencies and monetary rounding.

Amounts are always `Decimal`. Each currency has a fixed number of minor-unit
digits; XOF has none (it is a zero-decimal currency for card processors).
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    XOF = "XOF"
    GMD = "GMD"

    @staticmethod
    def parse(code: str) -> "Currency":
        """
        Parse a currency code case-insensitively.

        Raises:
            ValueError: if the code is not a supported currency
        """

        try:
            return Currency(str(code).strip().upper())
        except ValueError:
            raise ValueError(f"Unsupported currency: {code!r}") from None

    @property
    def minor_digits(self) -> int:
        return 0 if self is Currency.XOF else 2


def quantize_amount(amount: Decimal, currency: Currency) -> Decimal:
    """Round half-up to the currency's minor unit."""

    exponent = Decimal(1).scaleb(-currency.minor_digits)
    return Decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: Currency) -> int:
    """Convert a major-unit amount to the integer minor units processors expect."""

    scaled = quantize_amount(amount, currency).scaleb(currency.minor_digits)
    return int(scaled)


def from_minor_units(value: int, currency: Currency) -> Decimal:
    return quantize_amount(Decimal(value).scaleb(-currency.minor_digits), currency)
