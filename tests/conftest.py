"""Shared test fixtures for the margin_scout test suite."""

from decimal import Decimal

import pytest

from margin_scout.config import Settings
from margin_scout.models.models import NormalizedProductData, ScrapingSource, ScrapingSourceConfig


@pytest.fixture
def settings():
    """Settings with every delay switched off."""
    return Settings(
        init_delay=0,
        scraper_delay=0,
        retry_base_delay=0,
        delay_between_batches=0,
        rate_update_delay=0,
    )


@pytest.fixture
def make_source():
    """Factory for sources without rate-limit delays."""
    def _make(source_id="bol", name="Bol.com", base_url="https://www.bol.com", priority=1, **config):
        config.setdefault("delay", 0)
        return ScrapingSource(
            id=source_id,
            name=name,
            base_url=base_url,
            priority=priority,
            config=ScrapingSourceConfig(**config),
        )
    return _make


@pytest.fixture
def make_product():
    """Factory for catalog products."""
    def _make(product_id="p1", brand="Chanel", product_name="N°5 Eau de Parfum", variant_size="100ml",
              wholesale_price="60.00", **kwargs):
        return NormalizedProductData(
            id=product_id,
            supplier_id="s1",
            brand=brand,
            product_name=product_name,
            variant_size=variant_size,
            wholesale_price=Decimal(wholesale_price),
            **kwargs,
        )
    return _make


@pytest.fixture
def chanel(make_product):
    """Chanel N°5 100ml with an EAN."""
    return make_product(ean="3145891253317")
