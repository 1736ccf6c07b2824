import asyncio
from decimal import Decimal

import pytest
from bs4 import BeautifulSoup

from fakes import FakeDriver, make_listing
from margin_scout.scrapers.amazon_scraper import AmazonFRScraper, AmazonNLScraper
from margin_scout.scrapers import base_scraper
from margin_scout.scrapers.base_scraper import parse_availability
from margin_scout.scrapers.bol_com_scraper import BolComScraper
from margin_scout.scrapers.douglas_scraper import DouglasScraper
from margin_scout.scrapers.factory import create_scraper, get_scraper_class, normalize_source_name
from margin_scout.scrapers.house_of_niche_scraper import HouseOfNicheScraper
from margin_scout.utils import parse_price

BOL_SEARCH = """
<html><body>
  <div data-testid="product-item">
    <a data-testid="product-title" href="/nl/nl/p/chanel-n5/9200000012345/">Chanel N°5 Eau de Parfum 100ml</a>
    <span data-testid="price">€ 129,99</span>
    <span data-testid="availability">Op voorraad</span>
    <span data-testid="seller">Verkoop door Parfumshop</span>
    <span data-testid="shipping">Gratis verzending</span>
  </div>
  <div data-testid="product-item">
    <a data-testid="product-title" href="/nl/nl/p/chanel-n5-edt/9200000067890/">Chanel N°5 Eau de Toilette 50ml</a>
    <span data-testid="price">€ 89,00</span>
    <span data-testid="availability">Niet op voorraad</span>
  </div>
  <div data-testid="product-item">
    <a data-testid="product-title" href="/nl/nl/p/no-price/1/">Listing without a price</a>
  </div>
</body></html>
"""

BOL_DETAIL = """
<html><body>
  <h1 data-testid="product-title">Chanel N°5 Eau de Parfum Spray 100 ml</h1>
  <span data-testid="price">€ 124,50</span>
  <div data-testid="availability">Op voorraad, morgen in huis</div>
  <div data-testid="shipping">Gratis verzending</div>
  <a data-testid="seller">Verkocht door Beauty BV</a>
  <dd data-testid="ean">3145891253317</dd>
</body></html>
"""

AMAZON_SEARCH = """
<html><body>
  <div data-component-type="s-search-result" data-asin="B000C1ZGNK">
    <h2><a href="/Chanel-N5/dp/B000C1ZGNK/ref=sr_1_1?keywords=chanel"><span>Chanel N°5 Eau de Parfum 100 ml</span></a></h2>
    <span class="a-price"><span class="a-offscreen">129,99 €</span></span>
  </div>
</body></html>
"""

DOUGLAS_SEARCH = """
<html><body>
  <div data-testid="product-tile">
    <a href="/nl/p/5010123">
      <div data-testid="product-tile-brand">Chanel</div>
      <div data-testid="product-tile-name">N°5 Eau de Parfum</div>
      <div data-testid="product-price">€ 139,00</div>
    </a>
  </div>
  <div data-testid="product-tile">
    <a href="/nl/p/5010456">
      <div data-testid="product-tile-brand">Dior</div>
      <div data-testid="product-tile-name">Dior Sauvage Eau de Toilette</div>
      <div data-testid="product-price">€ 92,50</div>
    </a>
  </div>
</body></html>
"""


def bol_scraper(source, pages=None, fail_navigation=0):
    driver = FakeDriver(source, pages or {}, fail_navigation=fail_navigation)
    return BolComScraper(source=source, driver=driver, default_jitter=0)


def search(scraper, query):
    async def scenario():
        await scraper.initialize()
        return await scraper.search_products(query)

    return asyncio.run(scenario())


# -----------------------------------------------------------------------------
# Field parsing
# -----------------------------------------------------------------------------
@pytest.mark.parametrize("text, expected", [
    ("€ 1.234,56", Decimal("1234.56")),
    ("1,299.00 USD", Decimal("1299.00")),
    ("€ 24,95", Decimal("24.95")),
    ("1 234,50 €", Decimal("1234.50")),
    ("Prijs: 12", Decimal("12")),
    ("1,299", Decimal("1299")),
    ("", None),
    ("Gratis", None),
])
def test_parse_price(text, expected):
    assert parse_price(text) == expected


def test_parse_price_with_decimal_comma_locale():
    assert parse_price("1,299", decimal_separator=",") == Decimal("1.299")
    assert parse_price("1.299", decimal_separator=",") == Decimal("1299")


def test_parse_availability():
    assert parse_availability("") is None
    assert parse_availability("Op voorraad") is True
    assert parse_availability("Tijdelijk uitverkocht") is False
    assert parse_availability("Actuellement indisponible") is False


def test_parse_shipping_cost(make_source):
    scraper = bol_scraper(make_source())
    assert scraper.parse_shipping_cost("Gratis verzending") == Decimal("0")
    assert scraper.parse_shipping_cost("+ € 4,95 verzendkosten") == Decimal("4.95")
    assert scraper.parse_shipping_cost("") is None


# -----------------------------------------------------------------------------
# Search pages
# -----------------------------------------------------------------------------
def test_bol_search_results(make_source):
    scraper = bol_scraper(make_source(), {"searchtext=": BOL_SEARCH})
    listings = search(scraper, "Chanel N°5")

    assert len(listings) == 2
    first, second = listings
    assert first.title == "Chanel N°5 Eau de Parfum 100ml"
    assert first.price == Decimal("129.99")
    assert first.url == "https://www.bol.com/nl/nl/p/chanel-n5/9200000012345/"
    assert first.merchant == "Parfumshop"
    assert first.availability is True
    assert first.shipping_cost == Decimal("0")
    assert first.source == "bol"

    assert second.availability is False
    assert second.merchant == "Bol.com"
    assert second.shipping_cost is None
    assert scraper.driver.visited == ["https://www.bol.com/nl/nl/s/?searchtext=Chanel+N%C2%B05"]


def test_source_selectors_are_tried_first(make_source):
    source = make_source(selectors={"product_title": ".custom-title"})
    scraper = bol_scraper(source)
    card = BeautifulSoup(
        '<div><span class="custom-title">Configured title</span>'
        '<a data-testid="product-title">Built-in title</a><span data-testid="price">€ 10,00</span></div>',
        "lxml",
    ).div

    assert scraper.selectors_for("product_title", scraper.title_selectors)[0] == ".custom-title"
    assert scraper.parse_card(card).title == "Configured title"


def test_anti_bot_page_yields_nothing(make_source):
    page = "<html><body>Please complete the CAPTCHA to continue</body></html>"
    scraper = bol_scraper(make_source(), {"searchtext=": page})
    assert search(scraper, "Chanel N°5") == []


def test_navigation_failure_yields_nothing(make_source):
    scraper = bol_scraper(make_source(), {"searchtext=": BOL_SEARCH}, fail_navigation=10)
    assert search(scraper, "Chanel N°5") == []
    assert len(scraper.driver.visited) == scraper.max_retries


def test_scrape_product_enriches_from_detail_page(make_source):
    scraper = bol_scraper(make_source(), {"searchtext=": BOL_SEARCH, "/p/chanel-n5/": BOL_DETAIL})

    async def scenario():
        await scraper.initialize()
        return await scraper.scrape_product("Chanel N°5")

    listing = asyncio.run(scenario())
    assert listing.title == "Chanel N°5 Eau de Parfum Spray 100 ml"
    assert listing.price == Decimal("124.50")
    assert listing.merchant == "Beauty BV"
    assert listing.ean == "3145891253317"
    assert listing.shipping_cost == Decimal("0")
    assert listing.availability is True
    assert listing.url == "https://www.bol.com/nl/nl/p/chanel-n5/9200000012345/"


def test_scrape_product_without_results(make_source):
    scraper = bol_scraper(make_source())

    async def scenario():
        await scraper.initialize()
        return await scraper.scrape_product("Chanel N°5")

    assert asyncio.run(scenario()) is None


def test_amazon_search_results(make_source):
    source = make_source(source_id="amazon-nl", name="Amazon NL", base_url="https://www.amazon.nl")
    scraper = AmazonNLScraper(source=source, driver=FakeDriver(source, {"/s?k=": AMAZON_SEARCH}), default_jitter=0)
    listings = search(scraper, "Chanel N°5")

    assert len(listings) == 1
    assert listings[0].title == "Chanel N°5 Eau de Parfum 100 ml"
    assert listings[0].price == Decimal("129.99")
    assert listings[0].url == "https://www.amazon.nl/dp/B000C1ZGNK"
    assert listings[0].merchant == "Amazon NL"
    assert scraper.calculate_confidence_score(listings[0]) == pytest.approx(1.0)


def test_amazon_url_and_merchant_cleanup(make_source):
    source = make_source(source_id="amazon-fr", name="Amazon FR", base_url="https://www.amazon.fr")
    scraper = AmazonFRScraper(source=source)

    assert scraper.build_search_url("Chanel N°5") == "https://www.amazon.fr/s?k=Chanel+N%C2%B05"
    assert scraper.absolute_url("/gp/product/B000C1ZGNK?tag=x") == "https://www.amazon.fr/dp/B000C1ZGNK"
    assert scraper.absolute_url("/s/other?ref=nav") == "https://www.amazon.fr/s/other"
    assert scraper.absolute_url("") == ""

    assert scraper.clean_merchant("par Parfumerie Paris") == "Parfumerie Paris"
    assert scraper.clean_merchant("4,5") == "Amazon FR"
    assert scraper.clean_merchant("Livraison GRATUITE") == "Amazon FR"
    assert scraper.clean_merchant("€ 12") == "Amazon FR"


def test_douglas_title_includes_brand(make_source):
    source = make_source(source_id="douglas", name="Douglas", base_url="https://www.douglas.nl")
    scraper = DouglasScraper(source=source, driver=FakeDriver(source, {"search?q=": DOUGLAS_SEARCH}),
                             default_jitter=0)
    listings = search(scraper, "Chanel N°5")

    assert [listing.title for listing in listings] == ["Chanel N°5 Eau de Parfum", "Dior Sauvage Eau de Toilette"]
    assert listings[0].url == "https://www.douglas.nl/nl/p/5010123"
    assert listings[1].price == Decimal("92.50")


def test_house_of_niche_search_url(make_source):
    scraper = HouseOfNicheScraper(source=make_source(name="House of Niche"))
    assert scraper.build_search_url("Baccarat Rouge") == "https://www.houseofniche.com/search?q=Baccarat+Rouge"


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------
def test_confidence_score(make_source):
    scraper = bol_scraper(make_source())
    complete = make_listing(url="https://www.bol.com/nl/p/1", availability=True, ean="3145891253317")
    sparse = make_listing(title="N5", url="")

    assert scraper.calculate_confidence_score(complete) == 1.0
    assert scraper.calculate_confidence_score(sparse) == pytest.approx(0.7)


def test_to_price_result(make_source):
    scraper = bol_scraper(make_source())
    listing = make_listing(url="https://www.bol.com/nl/p/1", merchant="")

    result = scraper.to_price_result(listing, "p1", "job_1")
    assert result.normalized_product_id == "p1"
    assert result.source_id == "bol"
    assert result.job_id == "job_1"
    assert result.merchant == "Bol.com"
    assert result.price == Decimal("89.95")
    # Unknown availability counts as available
    assert result.availability is True
    assert result.price_incl_vat is True
    assert not result.is_lowest_price

    unavailable = scraper.to_price_result(listing.model_copy(update={"availability": False}), "p1")
    assert unavailable.availability is False


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------
def test_normalize_source_name():
    assert normalize_source_name("  Amazon   France  test") == "amazon france"
    assert normalize_source_name("Bol.com Demo") == "bol.com"


def test_get_scraper_class():
    assert get_scraper_class("Bol.com") is BolComScraper
    assert get_scraper_class("Amazon NL") is AmazonNLScraper
    assert get_scraper_class("amazon.fr") is AmazonFRScraper
    assert get_scraper_class("Douglas NL") is DouglasScraper
    assert get_scraper_class("House of Niche") is HouseOfNicheScraper
    assert get_scraper_class("Unknown Shop") is None


def test_create_scraper(make_source):
    source = make_source()
    driver = FakeDriver(source)

    scraper = create_scraper(source, driver)
    assert isinstance(scraper, BolComScraper)
    assert scraper.driver is driver
    assert create_scraper(make_source(name="Unknown Shop")) is None


def test_rate_limit_sets_the_minimum_delay(monkeypatch, make_source):
    delays = []

    async def record_sleep(delay, jitter=0.0):
        delays.append(delay)

    monkeypatch.setattr(base_scraper, "jittered_sleep", record_sleep)
    slow = make_source(delay=None).model_copy(update={"rate_limit": 20})
    fast = make_source(delay=None).model_copy(update={"rate_limit": 600})
    explicit = make_source(delay=0.25).model_copy(update={"rate_limit": 20})

    for source in (slow, fast, explicit):
        asyncio.run(BolComScraper(source=source, default_jitter=0).wait_for_rate_limit())
    # 60 / 20 per minute; a fast site never goes below the default delay
    assert delays == [3.0, 1.0, 0.25]
