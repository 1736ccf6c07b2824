"""
Exchange rate sources.

A rate source is whatever the hosting application uses to fetch fresh rates
(a bank feed, a paid API...). StaticRateSource serves a fixed table and
derives inverse and cross rates through EUR.
"""

from decimal import Decimal
from typing import Optional, Protocol

DEFAULT_RATES: dict[str, dict[str, Decimal]] = {
    "EUR": {
        "USD": Decimal("1.08"),
        "GBP": Decimal("0.86"),
        "CHF": Decimal("0.95"),
        "NOK": Decimal("11.2"),
        "SEK": Decimal("11.1"),
        "DKK": Decimal("7.45"),
        "PLN": Decimal("4.32"),
        "CZK": Decimal("24.8"),
        "HUF": Decimal("395.0"),
    },
    "USD": {
        "EUR": Decimal("0.93"),
        "GBP": Decimal("0.80"),
        "CHF": Decimal("0.88"),
    },
    "GBP": {
        "EUR": Decimal("1.16"),
        "USD": Decimal("1.25"),
        "CHF": Decimal("1.10"),
    },
}


class RateSource(Protocol):
    async def fetch_rate(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        ...


class StaticRateSource:
    def __init__(self, rates: Optional[dict[str, dict[str, Decimal]]] = None, base_currency: str = "EUR"):
        self.rates = rates if rates is not None else DEFAULT_RATES
        self.base_currency = base_currency

    def _direct_or_inverse(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        direct = self.rates.get(from_currency, {}).get(to_currency)
        if direct:
            return Decimal(direct)
        inverse = self.rates.get(to_currency, {}).get(from_currency)
        if inverse:
            return Decimal(1) / Decimal(inverse)
        return None

    async def fetch_rate(self, from_currency: str, to_currency: str) -> Optional[Decimal]:
        if from_currency == to_currency:
            return Decimal(1)

        rate = self._direct_or_inverse(from_currency, to_currency)
        if rate is not None:
            return rate

        base = self.base_currency
        if base in (from_currency, to_currency):
            return None
        to_base = self._direct_or_inverse(from_currency, base)
        from_base = self._direct_or_inverse(base, to_currency)
        if to_base is None or from_base is None:
            return None
        return to_base * from_base
