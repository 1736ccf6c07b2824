"""
House of Niche Scraper.

Classes:
    HouseOfNicheScraper: Scraper implementation for www.houseofniche.com
"""

from typing import ClassVar
from urllib.parse import quote_plus

from margin_scout.scrapers.base_scraper import BaseScraper


class HouseOfNicheScraper(BaseScraper):
    # Smaller shop, moderate rate limiting
    site_name: str = "House of Niche"
    default_delay: float = 1.5
    default_jitter: float = 0.5

    product_url_pattern: ClassVar[str] = r"/products/"
    result_selectors: ClassVar[list[str]] = [
        ".product-item",
        ".product-card",
        ".search-result-item",
        ".grid-product",
    ]
    title_selectors: ClassVar[list[str]] = [
        ".product-title",
        ".product-name",
        ".product-card__title",
        "h3",
        "h4",
    ]
    price_selectors: ClassVar[list[str]] = [
        ".price--sale",
        ".current-price",
        ".product-price",
        ".price",
    ]
    link_selectors: ClassVar[list[str]] = ['a[href*="/products/"]', "a[href]"]
    availability_selectors: ClassVar[list[str]] = [".availability", ".stock-status", ".in-stock", ".sold-out"]
    shipping_selectors: ClassVar[list[str]] = [".shipping-info", ".delivery-info"]

    def build_search_url(self, query: str) -> str:
        return f"https://www.houseofniche.com/search?q={quote_plus(query)}"
