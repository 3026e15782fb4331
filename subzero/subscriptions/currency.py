"""Currency normalization to the base currency (INR).

Rates are a fixed table; CurrencyConverter is the seam for swapping in a
live-rate provider without touching the projection engine.
"""

from __future__ import annotations

from typing import Protocol

from subzero.config import BASE_CURRENCY

# Units of base currency per one unit of the listed currency
EXCHANGE_RATES: dict[str, float] = {
    "INR": 1,
    "USD": 83,
    "EUR": 90,
    "GBP": 105,
    "AUD": 54,
    "CAD": 61,
    "SGD": 62,
    "JPY": 0.56,
    "AED": 22.6,
}


CURRENCY_SYMBOLS: dict[str, str] = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


class CurrencyConverter(Protocol):
    base_currency: str

    def to_base(self, amount: float, currency: str) -> float: ...


class StaticRateConverter:
    """Converts with a fixed rate table. Unknown codes are treated as base currency."""

    def __init__(self, rates: dict[str, float] | None = None, base_currency: str = BASE_CURRENCY):
        self.rates = {k.upper(): v for k, v in (rates or EXCHANGE_RATES).items()}
        self.base_currency = base_currency.upper()

    def rate_for(self, currency: str) -> float:
        return self.rates.get((currency or self.base_currency).upper(), 1)

    def to_base(self, amount: float, currency: str) -> float:
        return round(amount * self.rate_for(currency), 2)


_default_converter = StaticRateConverter()


def get_converter() -> CurrencyConverter:
    return _default_converter


def to_base(amount: float, currency: str) -> float:
    """Convert ``amount`` in ``currency`` to the base currency, rounded to 2dp."""
    return _default_converter.to_base(amount, currency)


def format_amount(amount: float, currency: str = BASE_CURRENCY, decimals: int = 2) -> str:
    """Display form of an amount, e.g. ``₹1660.00``; unknown codes are prefixed."""
    code = currency.upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    return f"{symbol}{amount:.{decimals}f}"
