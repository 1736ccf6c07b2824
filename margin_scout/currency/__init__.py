from margin_scout.currency.currency_converter import SUPPORTED_CURRENCIES, CurrencyConverter
from margin_scout.currency.rate_cache import RateCache
from margin_scout.currency.rate_source import RateSource, StaticRateSource
from margin_scout.currency.rate_store import InMemoryRateStore, RateStore

__all__ = [
    "SUPPORTED_CURRENCIES",
    "CurrencyConverter",
    "InMemoryRateStore",
    "RateCache",
    "RateSource",
    "RateStore",
    "StaticRateSource",
]
