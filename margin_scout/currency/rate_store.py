"""
Exchange rate persistence.

RateStore is the storage contract the CurrencyConverter reads from and writes
to. Rates are stored per day: a rate's date is normalized to midnight UTC and
saving a second rate for the same pair and day replaces the first.
"""

import datetime
from abc import ABC, abstractmethod
from typing import Optional

from margin_scout.models.models import CurrencyRate


def to_midnight(value: datetime.datetime | datetime.date) -> datetime.datetime:
    """Midnight UTC of the given day."""
    if isinstance(value, datetime.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(datetime.timezone.utc)
        value = value.date()
    return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)


class RateStore(ABC):
    @abstractmethod
    def get_latest_rate(self, from_currency: str, to_currency: str) -> Optional[CurrencyRate]:
        """Most recent active rate for the pair."""

    @abstractmethod
    def get_rate_on(self, from_currency: str, to_currency: str,
                    day: datetime.datetime) -> Optional[CurrencyRate]:
        """Active rate for the pair recorded on ``day`` (midnight UTC)."""

    @abstractmethod
    def upsert_rate(self, rate: CurrencyRate) -> None:
        """Insert the rate, or update the existing record for the same pair and day."""


class InMemoryRateStore(RateStore):
    def __init__(self, rates: Optional[list[CurrencyRate]] = None):
        self._rates: dict[tuple[str, str, datetime.datetime], CurrencyRate] = {}
        for rate in rates or []:
            self.upsert_rate(rate)

    def get_latest_rate(self, from_currency: str, to_currency: str) -> Optional[CurrencyRate]:
        candidates = [
            rate for (src, dst, _), rate in self._rates.items()
            if src == from_currency and dst == to_currency and rate.is_active
        ]
        return max(candidates, key=lambda r: r.date, default=None)

    def get_rate_on(self, from_currency: str, to_currency: str,
                    day: datetime.datetime) -> Optional[CurrencyRate]:
        rate = self._rates.get((from_currency, to_currency, to_midnight(day)))
        if rate is not None and rate.is_active:
            return rate
        return None

    def upsert_rate(self, rate: CurrencyRate) -> None:
        day = to_midnight(rate.date)
        self._rates[(rate.from_currency, rate.to_currency, day)] = rate.model_copy(update={"date": day})

    def __len__(self) -> int:
        return len(self._rates)
