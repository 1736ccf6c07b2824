"""
Douglas Scraper.

Classes:
    DouglasScraper: Scraper implementation for www.douglas.nl
"""

from typing import ClassVar
from urllib.parse import quote_plus

from margin_scout.scrapers.base_scraper import BaseScraper


class DouglasScraper(BaseScraper):
    """
    Web scraper for Douglas Netherlands (www.douglas.nl).

    Douglas product tiles split the brand and the product line into separate
    elements, so the title is rebuilt from both.
    """

    site_name: str = "Douglas"
    default_delay: float = 1.5
    default_jitter: float = 0.5

    product_url_pattern: ClassVar[str] = r"/p/"
    result_selectors: ClassVar[list[str]] = [
        '[data-testid="product-tile"]',
        ".product-tile",
        ".product-grid-column",
    ]
    title_selectors: ClassVar[list[str]] = [
        '[data-testid="product-tile-name"]',
        ".product-tile__name",
        ".text.name",
        ".product-info__name",
    ]
    brand_selectors: ClassVar[list[str]] = [
        '[data-testid="product-tile-brand"]',
        ".product-tile__brand",
        ".text.top-brand",
    ]
    price_selectors: ClassVar[list[str]] = [
        '[data-testid="product-price"]',
        ".product-price__discount",
        ".product-price__price",
        ".product-price",
    ]
    link_selectors: ClassVar[list[str]] = ['a[href*="/p/"]', "a.product-tile__link", "a[href]"]
    availability_selectors: ClassVar[list[str]] = [".product-tile__availability", ".availability"]

    def build_search_url(self, query: str) -> str:
        return f"https://www.douglas.nl/nl/search?q={quote_plus(query)}"

    def parse_card(self, card):
        listing = super().parse_card(card)
        if listing is None:
            return None

        brand = self.first_text(card, self.brand_selectors)
        if brand and brand.lower() not in listing.title.lower():
            listing = listing.model_copy(update={"title": f"{brand} {listing.title}"})
        return listing
