"""
Amazon Scrapers.

Amazon storefronts share one search result layout, so the NL and FR scrapers
differ only in domain, default merchant name and language markers.

Classes:
    AmazonScraper: Shared logic for Amazon search result pages.
    AmazonNLScraper: Scraper for www.amazon.nl
    AmazonFRScraper: Scraper for www.amazon.fr
"""

import re
from typing import ClassVar
from urllib.parse import quote_plus, urlparse

from margin_scout.scrapers.base_scraper import BaseScraper

ASIN_PATTERN = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})")


class AmazonScraper(BaseScraper):
    """
    Base scraper for Amazon search pages.

    Amazon is sensitive to request bursts, so the default delay is longer and
    jittered. Product URLs are reduced to their canonical /dp/<ASIN> form.
    """

    domain: str = "www.amazon.nl"
    site_name: str = "Amazon"
    default_delay: float = 2.0
    default_jitter: float = 1.0
    max_results: int = 10

    product_url_pattern: ClassVar[str] = r"/dp/|/gp/product/"
    result_selectors: ClassVar[list[str]] = [
        '[data-component-type="s-search-result"]',
        ".s-result-item[data-asin]",
        "[data-asin]",
    ]
    title_selectors: ClassVar[list[str]] = [
        "h2 a span",
        "h2 span",
        ".a-size-medium span",
        ".a-size-base-plus",
        ".s-title-instructions-style span",
    ]
    price_selectors: ClassVar[list[str]] = [
        ".a-price .a-offscreen",
        'span[data-a-color="price"] .a-offscreen',
        ".a-price-current .a-offscreen",
        ".a-price .a-price-whole",
    ]
    link_selectors: ClassVar[list[str]] = [
        "h2 a",
        'a[href*="/dp/"]',
        'a[href*="/gp/product/"]',
        ".s-title-instructions-style a",
        "a.a-link-normal",
    ]
    availability_selectors: ClassVar[list[str]] = [
        ".a-color-price",
        ".a-size-base.a-color-secondary",
    ]
    merchant_selectors: ClassVar[list[str]] = [
        ".a-row .a-size-base.a-color-secondary:not(.a-price)",
        ".s-size-mini .a-color-base",
    ]
    shipping_selectors: ClassVar[list[str]] = [
        '[data-cy="delivery-recipe"]',
        ".s-align-children-center .a-color-base",
    ]

    merchant_prefixes: ClassVar[tuple[str, ...]] = ("by", "door", "par", "verkocht door", "vendu par")

    def build_search_url(self, query: str) -> str:
        return f"https://{self.domain}/s?k={quote_plus(query)}"

    def absolute_url(self, href: str) -> str:
        url = super().absolute_url(href)
        if not url:
            return url

        match = ASIN_PATTERN.search(url)
        parsed = urlparse(url)
        if match:
            return f"{parsed.scheme}://{parsed.netloc}/dp/{match.group(1)}"
        # Drop tracking parameters
        return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"

    def clean_merchant(self, merchant: str) -> str:
        text = merchant.strip()
        for prefix in self.merchant_prefixes:
            if text.lower().startswith(prefix + " "):
                text = text[len(prefix):].strip()
                break

        # Ratings, prices and delivery notes end up in the same spans
        if (
            len(text) < 3
            or len(text) > 100
            or re.fullmatch(r"[\d.,\s]+", text)
            or "€" in text
            or any(word in text.lower() for word in ("livraison", "bezorging", "shipping", "gratis", "gratuit"))
        ):
            return self.site_name
        return text


class AmazonNLScraper(AmazonScraper):
    domain: str = "www.amazon.nl"
    site_name: str = "Amazon NL"


class AmazonFRScraper(AmazonScraper):
    domain: str = "www.amazon.fr"
    site_name: str = "Amazon FR"
