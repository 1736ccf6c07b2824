"""
Bol.com Scraper.

Searches www.bol.com (NL storefront) and enriches the top hit from its
product page, which carries the seller, shipping costs and the EAN.

Classes:
    BolComScraper: Scraper implementation for www.bol.com
"""

from typing import ClassVar
from urllib.parse import quote_plus

from margin_scout.scrapers.base_scraper import BaseScraper


class BolComScraper(BaseScraper):
    """
    Web scraper for Bol.com (www.bol.com).

    Bol.com prices include VAT and use a decimal comma. Sellers other than
    Bol.com itself are listed as "Verkoop door <partner>".

    Example:
        >>> scraper = BolComScraper(source=source)
        >>> listing = await scraper.scrape_product("Chanel N°5")
        >>> print(listing.price, listing.merchant, listing.ean)
    """

    site_name: str = "Bol.com"
    currency: str = "EUR"
    default_delay: float = 1.0
    default_jitter: float = 0.5

    product_url_pattern: ClassVar[str] = r"/p/"
    result_selectors: ClassVar[list[str]] = [
        '[data-testid="product-item"]',
        ".product-item",
        ".js_item_root",
        '[data-test="product-item"]',
        ".search-result-item",
        ".product-small",
    ]
    title_selectors: ClassVar[list[str]] = [
        '[data-testid="product-title"]',
        ".product-title",
        "h3 a",
        ".product-name",
        'a[data-test="title"]',
    ]
    price_selectors: ClassVar[list[str]] = [
        '[data-testid="price"]',
        ".promo-price",
        ".price",
        ".product-price",
        '[data-test="price"]',
        ".price-current",
    ]
    link_selectors: ClassVar[list[str]] = [
        'a[href*="/p/"]',
        'a[href*="/product/"]',
        "h3 a",
        ".product-title a",
        'a[data-test="title"]',
    ]
    availability_selectors: ClassVar[list[str]] = [
        '[data-testid="availability"]',
        ".availability",
        ".stock-status",
        '[data-test="delivery-info"]',
    ]
    merchant_selectors: ClassVar[list[str]] = [
        '[data-testid="seller"]',
        ".seller",
        ".merchant",
    ]
    shipping_selectors: ClassVar[list[str]] = [
        '[data-testid="shipping"]',
        ".shipping-costs",
    ]
    detail_selectors: ClassVar[dict[str, list[str]]] = {
        "product_title": ['[data-testid="product-title"]', "h1.page-heading", "h1"],
        "price": ['[data-testid="price"]', ".promo-price", ".price-block__price"],
        "availability": ['[data-testid="availability"]', ".buy-block__highlight", ".product-delivery-highlight"],
        "shipping": ['[data-testid="shipping"]', ".buy-block__usps"],
        "merchant": ['[data-testid="seller"]', ".seller-link", ".buy-block__seller-name"],
        "ean": ['[data-testid="ean"]', '[data-test="specs-ean"]', 'dd[itemprop="gtin13"]'],
    }

    def build_search_url(self, query: str) -> str:
        return f"https://www.bol.com/nl/nl/s/?searchtext={quote_plus(query)}"

    def clean_merchant(self, merchant: str) -> str:
        merchant = merchant.strip()
        for prefix in ("Verkoop door", "Verkocht door", "Sold by"):
            if merchant.lower().startswith(prefix.lower()):
                merchant = merchant[len(prefix):].strip(" :")
        return merchant or self.site_name
