import asyncio
import datetime
import logging
from decimal import Decimal

import pytest

from fakes import no_sleep
from margin_scout.currency import CurrencyConverter, InMemoryRateStore, RateCache, StaticRateSource
from margin_scout.currency.rate_store import to_midnight
from margin_scout.exceptions import CurrencyConversionError, ExchangeRateNotFound
from margin_scout.models.models import CurrencyRate

TODAY = datetime.datetime(2024, 5, 17, 14, 30, tzinfo=datetime.timezone.utc)
DAY_SECONDS = 24 * 60 * 60


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingStore(InMemoryRateStore):
    """Counts store reads so cache hits can be told apart from lookups."""

    def __init__(self, rates=None):
        super().__init__(rates)
        self.reads = 0

    def get_latest_rate(self, from_currency, to_currency):
        self.reads += 1
        return super().get_latest_rate(from_currency, to_currency)

    def get_rate_on(self, from_currency, to_currency, day):
        self.reads += 1
        return super().get_rate_on(from_currency, to_currency, day)


class FlakySource(StaticRateSource):
    async def fetch_rate(self, from_currency, to_currency):
        if (from_currency, to_currency) == ("USD", "GBP"):
            raise ConnectionError("feed unavailable")
        return await super().fetch_rate(from_currency, to_currency)


def rate(from_currency, to_currency, value, date=TODAY):
    return CurrencyRate(from_currency=from_currency, to_currency=to_currency, rate=Decimal(value), date=date)


def converter_for(*rates, clock=None, **kwargs):
    store = CountingStore(list(rates))
    cache = RateCache(ttl=DAY_SECONDS, max_size=16, clock=clock or FakeClock())
    return CurrencyConverter(store, cache=cache, base_currency="EUR", update_delay=0, sleep=no_sleep, **kwargs)


# -----------------------------------------------------------------------------
# Lookups
# -----------------------------------------------------------------------------
def test_direct_rate_and_conversion():
    converter = converter_for(rate("EUR", "USD", "1.08"))
    assert converter.get_exchange_rate("EUR", "USD") == Decimal("1.08")
    assert converter.convert(Decimal("100"), "EUR", "USD") == Decimal("108.00")


def test_same_currency_needs_no_rate():
    converter = converter_for()
    assert converter.convert(Decimal("12.50"), "EUR", "EUR") == Decimal("12.50")
    assert converter.get_exchange_rate("USD", "USD") == Decimal(1)


def test_inverse_rate():
    converter = converter_for(rate("EUR", "GBP", "0.8"))
    assert converter.get_exchange_rate("GBP", "EUR") == Decimal("1.25")


def test_cross_rate_through_base_currency():
    converter = converter_for(rate("EUR", "USD", "1.10"), rate("EUR", "GBP", "0.80"))
    # USD -> EUR -> GBP
    assert converter.get_exchange_rate("USD", "GBP") == pytest.approx(Decimal("0.80") / Decimal("1.10"))


def test_missing_rate():
    converter = converter_for(rate("EUR", "USD", "1.08"))
    with pytest.raises(ExchangeRateNotFound):
        converter.get_exchange_rate("CHF", "SEK")
    with pytest.raises(CurrencyConversionError):
        converter.convert(Decimal("10"), "CHF", "SEK")


def test_historical_rate_on_its_day():
    yesterday = TODAY - datetime.timedelta(days=1)
    converter = converter_for(rate("EUR", "USD", "1.05", yesterday), rate("EUR", "USD", "1.08"))

    assert converter.get_exchange_rate("EUR", "USD", yesterday) == Decimal("1.05")
    assert converter.get_exchange_rate("EUR", "USD") == Decimal("1.08")


def test_historical_rate_falls_back_to_latest(caplog):
    converter = converter_for(rate("EUR", "USD", "1.08"))
    last_year = TODAY - datetime.timedelta(days=365)

    with caplog.at_level(logging.WARNING):
        assert converter.get_exchange_rate("EUR", "USD", last_year) == Decimal("1.08")
    assert "Historical rate not found" in caplog.text


def test_rates_are_cached_until_ttl():
    clock = FakeClock()
    converter = converter_for(rate("EUR", "USD", "1.08"), clock=clock)
    store = converter.store

    converter.get_exchange_rate("EUR", "USD")
    reads = store.reads
    converter.get_exchange_rate("EUR", "USD")
    assert store.reads == reads
    assert converter.get_cache_stats()["hits"] == 1

    clock.now = DAY_SECONDS - 1
    converter.get_exchange_rate("EUR", "USD")
    assert store.reads == reads

    clock.now = DAY_SECONDS + 1
    converter.get_exchange_rate("EUR", "USD")
    assert store.reads > reads


def test_clear_cache_forces_store_lookup():
    converter = converter_for(rate("EUR", "USD", "1.08"))
    converter.get_exchange_rate("EUR", "USD")
    converter.clear_cache()
    assert converter.get_cache_stats()["size"] == 0

    reads = converter.store.reads
    converter.get_exchange_rate("EUR", "USD")
    assert converter.store.reads > reads


def test_supported_currencies():
    converter = converter_for()
    currencies = converter.get_supported_currencies()
    assert len(currencies) == 10
    assert currencies[0] == "EUR"


# -----------------------------------------------------------------------------
# Refresh
# -----------------------------------------------------------------------------
def test_update_exchange_rates_stores_every_pair():
    converter = converter_for(rate_source=StaticRateSource())

    assert asyncio.run(converter.update_exchange_rates()) == 90
    assert len(converter.store) == 90
    stored = converter.store.get_latest_rate("EUR", "USD")
    assert stored.rate == Decimal("1.08")
    assert stored.date == to_midnight(datetime.datetime.now(datetime.timezone.utc))
    assert converter.convert(Decimal("100"), "EUR", "USD") == Decimal("108.00")


def test_update_is_idempotent_per_day():
    converter = converter_for(rate_source=StaticRateSource())
    asyncio.run(converter.update_exchange_rates())
    asyncio.run(converter.update_exchange_rates())
    assert len(converter.store) == 90


def test_failing_pair_is_skipped():
    converter = converter_for(rate_source=FlakySource())
    assert asyncio.run(converter.update_exchange_rates()) == 89
    assert converter.store.get_latest_rate("USD", "GBP") is None


def test_update_clears_cache():
    converter = converter_for(rate("EUR", "USD", "1.00"), rate_source=StaticRateSource())
    assert converter.get_exchange_rate("EUR", "USD") == Decimal("1.00")

    asyncio.run(converter.update_exchange_rates())
    assert converter.get_exchange_rate("EUR", "USD") == Decimal("1.08")


def test_update_without_source():
    with pytest.raises(ValueError):
        asyncio.run(converter_for().update_exchange_rates())


def test_static_source_cross_rate():
    source = StaticRateSource()
    # CHF -> EUR -> SEK
    expected = Decimal(1) / Decimal("0.95") * Decimal("11.1")
    assert asyncio.run(source.fetch_rate("CHF", "SEK")) == expected


# -----------------------------------------------------------------------------
# Cache and store
# -----------------------------------------------------------------------------
def test_cache_evicts_least_recently_used():
    cache = RateCache(ttl=60, max_size=2, clock=FakeClock())
    cache.set("a", Decimal(1))
    cache.set("b", Decimal(2))
    cache.get("a")
    cache.set("c", Decimal(3))

    assert cache.get("b") is None
    assert cache.get("a") == Decimal(1)
    assert len(cache) == 2
    stats = cache.stats()
    assert stats["max_size"] == 2
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(2 / 3)


def test_cache_rejects_empty_size():
    with pytest.raises(ValueError):
        RateCache(max_size=0)


def test_store_keeps_one_rate_per_pair_and_day():
    store = InMemoryRateStore()
    store.upsert_rate(rate("EUR", "USD", "1.07", TODAY.replace(hour=8)))
    store.upsert_rate(rate("EUR", "USD", "1.08", TODAY.replace(hour=20)))

    assert len(store) == 1
    assert store.get_rate_on("EUR", "USD", TODAY).rate == Decimal("1.08")
    assert store.get_latest_rate("EUR", "USD").date == to_midnight(TODAY)


def test_inactive_rates_are_ignored():
    store = InMemoryRateStore([rate("EUR", "USD", "1.08").model_copy(update={"is_active": False})])
    assert store.get_latest_rate("EUR", "USD") is None
