"""
Currency Converter.

Converts scraped prices between currencies using rates from a RateStore,
with an owned TTL cache in front of the store. Rates missing from the store
are derived from the inverse pair or crossed through the base currency.

Classes:
    CurrencyConverter: Rate lookup, conversion and rate refresh.
"""

import asyncio
import datetime
import logging
from decimal import Decimal
from typing import Optional

from margin_scout.config import get_settings
from margin_scout.currency.rate_cache import RateCache
from margin_scout.currency.rate_source import RateSource
from margin_scout.currency.rate_store import RateStore, to_midnight
from margin_scout.exceptions import CurrencyConversionError, ExchangeRateNotFound
from margin_scout.models.models import CurrencyRate

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("EUR", "USD", "GBP", "CHF", "NOK", "SEK", "DKK", "PLN", "CZK", "HUF")


class CurrencyConverter:
    """
    Currency conversion backed by a rate store.

    Example:
        >>> converter = CurrencyConverter(InMemoryRateStore(), StaticRateSource())
        >>> await converter.update_exchange_rates()
        90
        >>> converter.convert(Decimal("100"), "EUR", "USD")
        Decimal('108.00')
    """

    def __init__(self, store: RateStore, rate_source: Optional[RateSource] = None,
                 cache: Optional[RateCache] = None, base_currency: Optional[str] = None,
                 supported_currencies=SUPPORTED_CURRENCIES, update_delay: Optional[float] = None,
                 sleep=asyncio.sleep):
        settings = get_settings()
        self.store = store
        self.rate_source = rate_source
        self.cache = cache or RateCache(ttl=settings.rate_cache_ttl, max_size=settings.rate_cache_max_size)
        self.base_currency = base_currency or settings.base_currency
        self.supported_currencies = tuple(supported_currencies)
        self.update_delay = settings.rate_update_delay if update_delay is None else update_delay
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------
    def convert(self, amount, from_currency: str, to_currency: str,
                date: Optional[datetime.datetime] = None) -> Decimal:
        amount = Decimal(str(amount))
        if from_currency == to_currency:
            return amount

        try:
            rate = self.get_exchange_rate(from_currency, to_currency, date)
        except ExchangeRateNotFound as e:
            logger.error("Error converting %s %s to %s: %s", amount, from_currency, to_currency, e)
            raise CurrencyConversionError(from_currency, to_currency, e) from e
        return amount * rate

    def get_exchange_rate(self, from_currency: str, to_currency: str,
                          date: Optional[datetime.datetime] = None) -> Decimal:
        """
        Rate to multiply a ``from_currency`` amount by to get ``to_currency``.

        With a ``date``, the rate recorded on that day is used; when the store
        has no rate for that day the latest rate is used instead.

        Raises:
            ExchangeRateNotFound: No direct, inverse or cross rate exists.
        """
        if from_currency == to_currency:
            return Decimal(1)

        day = to_midnight(date) if date is not None else None
        key = (from_currency, to_currency, day.date().isoformat() if day else "latest")
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        rate = None
        if day is not None:
            rate = self._resolve(from_currency, to_currency, day)
            if rate is None:
                logger.warning(
                    "Historical rate not found for %s to %s on %s, using latest",
                    from_currency, to_currency, day.date(),
                )
        if rate is None:
            rate = self._resolve(from_currency, to_currency, None)
        if rate is None:
            raise ExchangeRateNotFound(from_currency, to_currency)

        self.cache.set(key, rate)
        return rate

    def _stored(self, from_currency: str, to_currency: str,
                day: Optional[datetime.datetime]) -> Optional[Decimal]:
        if day is None:
            record = self.store.get_latest_rate(from_currency, to_currency)
        else:
            record = self.store.get_rate_on(from_currency, to_currency, day)
        return record.rate if record is not None and record.rate > 0 else None

    def _direct_or_inverse(self, from_currency: str, to_currency: str,
                           day: Optional[datetime.datetime]) -> Optional[Decimal]:
        rate = self._stored(from_currency, to_currency, day)
        if rate is not None:
            return rate
        inverse = self._stored(to_currency, from_currency, day)
        if inverse is not None:
            return Decimal(1) / inverse
        return None

    def _resolve(self, from_currency: str, to_currency: str,
                 day: Optional[datetime.datetime]) -> Optional[Decimal]:
        rate = self._direct_or_inverse(from_currency, to_currency, day)
        if rate is not None:
            return rate

        base = self.base_currency
        if base in (from_currency, to_currency):
            return None
        to_base = self._direct_or_inverse(from_currency, base, day)
        from_base = self._direct_or_inverse(base, to_currency, day)
        if to_base is None or from_base is None:
            return None
        return to_base * from_base

    # -------------------------------------------------------------------------
    # Rate refresh
    # -------------------------------------------------------------------------
    async def update_exchange_rates(self) -> int:
        """
        Fetch and store the rate of every ordered pair of supported currencies.

        A failing pair is logged and skipped. Returns the number of pairs
        updated.
        """
        if self.rate_source is None:
            raise ValueError("No rate source configured")

        logger.info("Updating exchange rates...")
        today = to_midnight(datetime.datetime.now(datetime.timezone.utc))
        updated = 0

        for from_currency in self.supported_currencies:
            for to_currency in self.supported_currencies:
                if from_currency == to_currency:
                    continue
                try:
                    rate = await self.rate_source.fetch_rate(from_currency, to_currency)
                    if rate:
                        self.store.upsert_rate(CurrencyRate(
                            from_currency=from_currency,
                            to_currency=to_currency,
                            rate=Decimal(rate),
                            date=today,
                            source="API",
                        ))
                        updated += 1
                        logger.debug("Updated rate: %s to %s = %s", from_currency, to_currency, rate)
                except Exception as e:
                    logger.warning("Failed to update rate for %s to %s: %s", from_currency, to_currency, e)

                await self._sleep(self.update_delay)

        self.cache.clear()
        logger.info("Exchange rate update completed (%d pairs)", updated)
        return updated

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------
    def get_supported_currencies(self) -> list[str]:
        return list(self.supported_currencies)

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_cache_stats(self) -> dict:
        return self.cache.stats()
