"""
Tests for `services/currency_service.py`.

Covers contract rules:
- Live rates are fetched per base currency and cached for the TTL.
- When the rate API fails, the fallback table is used (and not cached).
- Converted amounts round half-up to the target currency's minor unit.
- Unsupported currency codes are rejected.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
import requests

from domain.money import Currency
from services.currency_service import CurrencyConverter
from services.errors import UnsupportedCurrency
from fakes import FakeResponse, FakeSession


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _converter(session: FakeSession, clock: _Clock) -> CurrencyConverter:
    return CurrencyConverter(
        rates_url="https://rates.example/latest/",
        ttl_seconds=3600,
        timeout=2.5,
        session=session,  # type: ignore[arg-type]
        clock=clock,
    )


def test_convert_uses_live_rates() -> None:
    session = FakeSession([FakeResponse(payload={"rates": {"XOF": 655.957, "usd": 1.08}})])
    converter = _converter(session, _Clock())

    conversion = converter.convert(Decimal("10.00"), "EUR", "XOF")

    assert conversion.rate == Decimal("655.95700000")
    assert conversion.amount == Decimal("6560")
    assert conversion.to_currency is Currency.XOF
    assert session.calls[0]["url"] == "https://rates.example/latest/EUR"
    assert session.calls[0]["timeout"] == 2.5
    assert converter.get_rate("EUR", "USD") == Decimal("1.08")


def test_rates_are_cached_for_ttl() -> None:
    """Verify one fetch per base currency within the TTL."""

    clock = _Clock()
    session = FakeSession(
        [
            FakeResponse(payload={"rates": {"GMD": 70}}),
            FakeResponse(payload={"rates": {"GMD": 72}}),
        ]
    )
    converter = _converter(session, clock)

    assert converter.get_rate(Currency.USD, Currency.GMD) == Decimal("70")
    clock.now = 3599
    assert converter.get_rate(Currency.USD, Currency.GMD) == Decimal("70")
    assert len(session.calls) == 1

    clock.now = 3600
    assert converter.get_rate(Currency.USD, Currency.GMD) == Decimal("72")
    assert len(session.calls) == 2


def test_falls_back_when_api_unavailable() -> None:
    """Verify network and payload errors use the fallback table and retry next time."""

    session = FakeSession(
        [
            requests.ConnectionError("down"),
            FakeResponse(status_code=503),
            FakeResponse(payload={"result": "error"}),
        ]
    )
    converter = _converter(session, _Clock())

    assert converter.get_rate("USD", "GMD") == Decimal("70")
    assert converter.get_rate("USD", "EUR") == Decimal("0.92")
    assert converter.convert(Decimal("100"), "USD", "XOF").amount == Decimal("60500")
    assert len(session.calls) == 3


def test_missing_live_rate_uses_fallback() -> None:
    session = FakeSession([FakeResponse(payload={"rates": {"EUR": 0.9}})])
    converter = _converter(session, _Clock())

    assert converter.get_rate("USD", "GBP") == Decimal("0.79")


def test_same_currency_needs_no_rate() -> None:
    converter = _converter(FakeSession([]), _Clock())

    conversion = converter.convert(Decimal("12.345"), "GMD", "gmd")

    assert conversion.rate == Decimal("1")
    assert conversion.amount == Decimal("12.35")


def test_unsupported_currency_rejected() -> None:
    converter = _converter(FakeSession([]), _Clock())

    with pytest.raises(UnsupportedCurrency):
        converter.convert(Decimal("1"), "USD", "JPY")
