"""
Base Scraper Abstract Class.

This module defines the abstract base class for all marketplace scrapers.
A scraper owns one ScrapingSource and one BrowserDriver. It navigates to the
site's search page through the driver and parses the rendered HTML with
BeautifulSoup, trying an ordered list of candidate selectors for every field
because site markup changes frequently.

Classes:
    BaseScraper: Abstract base class with the shared search, parsing,
        confidence scoring and rate limiting logic.
"""

import logging
import re
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import ClassVar, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from pydantic import BaseModel

from margin_scout.drivers.base_driver import BrowserDriver
from margin_scout.drivers.factory import create_driver
from margin_scout.exceptions import NavigationError
from margin_scout.models.models import PriceScrapingResult, ScrapedListing, ScrapingSource
from margin_scout.utils import jittered_sleep, parse_price

logger = logging.getLogger(__name__)

OUT_OF_STOCK_MARKERS = (
    "niet op voorraad",
    "niet leverbaar",
    "uitverkocht",
    "out of stock",
    "sold out",
    "unavailable",
    "currently unavailable",
    "rupture de stock",
    "indisponible",
    "actuellement indisponible",
    "nicht verfügbar",
    "ausverkauft",
)

FREE_SHIPPING_MARKERS = ("free", "gratis", "gratuit", "kostenlos", "offerte")


def parse_availability(text: str) -> Optional[bool]:
    """None when there is no availability signal at all."""
    if not text:
        return None
    lowered = text.lower()
    return not any(marker in lowered for marker in OUT_OF_STOCK_MARKERS)


class BaseScraper(BaseModel, ABC):
    """
    Abstract base class for marketplace scrapers.

    Subclasses set the site constants below and implement build_search_url().
    Source-configured selectors are always tried before the built-in ones.

    Attributes:
        source: The configured source this scraper serves.
        driver: Browser driver; created from the environment on initialize()
            when not injected.
        site_name: Default merchant name for listings without a seller.
        currency: Currency of the storefront.
        price_incl_vat: Whether listed prices include VAT.
        default_delay: Delay in seconds between requests when the source sets
            none. Never shorter than the source rate_limit allows.
        default_jitter: Upper bound of the random extra delay.
        max_results: Number of listing cards parsed per search page.
        max_retries: Navigation attempts per page; set per job by the manager.
        navigation_timeout: Per-attempt navigation timeout in seconds; set per
            job by the manager, None keeps the driver default.

    Example:
        >>> scraper = BolComScraper(source=source)
        >>> await scraper.initialize()
        >>> listing = await scraper.scrape_product("Chanel N°5")
        >>> await scraper.cleanup()
    """

    source: ScrapingSource
    driver: Optional[BrowserDriver] = None
    site_name: str = ""
    currency: str = "EUR"
    price_incl_vat: bool = True
    default_delay: float = 1.0
    default_jitter: float = 0.0
    max_results: int = 10
    max_retries: int = 3
    navigation_timeout: Optional[float] = None

    decimal_separator: ClassVar[Optional[str]] = ","
    product_url_pattern: ClassVar[str] = r"/p/"
    result_selectors: ClassVar[list[str]] = []
    title_selectors: ClassVar[list[str]] = []
    price_selectors: ClassVar[list[str]] = []
    link_selectors: ClassVar[list[str]] = ["a[href]"]
    availability_selectors: ClassVar[list[str]] = []
    merchant_selectors: ClassVar[list[str]] = []
    shipping_selectors: ClassVar[list[str]] = []
    # Detail page field -> candidate selectors; empty when the site has no detail view
    detail_selectors: ClassVar[dict[str, list[str]]] = {}

    class Config:
        arbitrary_types_allowed = True

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def initialize(self) -> None:
        if self.driver is None:
            self.driver = create_driver(self.source)
        await self.driver.initialize()

    async def cleanup(self) -> None:
        if self.driver is not None:
            await self.driver.cleanup()

    async def health_check(self) -> bool:
        if self.driver is None:
            return False
        return await self.driver.health_check()

    def get_source_config(self):
        return self.source.config

    def get_source_name(self) -> str:
        return self.source.name

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------
    @abstractmethod
    def build_search_url(self, query: str) -> str:
        """Return the site's search URL for ``query``."""

    async def search_products(self, query: str) -> list[ScrapedListing]:
        """
        Search the site and return the parsed listings, best ranked first.

        Navigation exhaustion and anti-bot interstitials both yield an empty
        list so the caller can move on to its next search term or source.
        """
        url = self.build_search_url(query)
        logger.info("%s: searching for %r", self.site_name, query)

        try:
            await self.driver.navigate_to_url(url, self.max_retries, self.navigation_timeout)
        except NavigationError as e:
            logger.warning("%s: search page failed to load: %s", self.site_name, e)
            return []

        if await self.driver.has_anti_bot_protection():
            logger.warning("%s: anti-bot protection detected", self.site_name)
            return []

        if not await self._wait_for_any(self.result_selectors):
            logger.debug("%s: no result grid selector matched for %r", self.site_name, query)

        html = await self.driver.get_page_content()
        listings = self.parse_search_results(html)
        logger.info("%s: extracted %d listings for %r", self.site_name, len(listings), query)

        await self.wait_for_rate_limit()
        return listings

    async def scrape_product(self, search_term: str) -> Optional[ScrapedListing]:
        """Return the top listing for ``search_term``, enriched from its detail page if any."""
        try:
            results = await self.search_products(search_term)
            if not results:
                return None

            top = results[0]
            if self.detail_selectors and top.url:
                top = await self.enrich_from_detail_page(top)
            return top
        except Exception as e:
            logger.error("%s: error scraping product %r: %s", self.site_name, search_term, e)
            return None

    async def enrich_from_detail_page(self, listing: ScrapedListing) -> ScrapedListing:
        try:
            await self.driver.navigate_to_url(listing.url, self.max_retries, self.navigation_timeout)
        except NavigationError as e:
            logger.warning("%s: detail page failed to load: %s", self.site_name, e)
            return listing

        title_selectors = self.detail_selectors.get("product_title", [])
        if title_selectors:
            await self._wait_for_any(title_selectors)

        soup = BeautifulSoup(await self.driver.get_page_content(), "lxml")
        updates = {}

        title = self.first_text(soup, self.detail_selectors.get("product_title", []))
        if title:
            updates["title"] = title

        price = parse_price(self.first_text(soup, self.detail_selectors.get("price", [])), self.decimal_separator)
        if price is not None and price > 0:
            updates["price"] = price

        availability = parse_availability(self.first_text(soup, self.detail_selectors.get("availability", [])))
        if availability is not None:
            updates["availability"] = availability

        shipping = self.parse_shipping_cost(self.first_text(soup, self.detail_selectors.get("shipping", [])))
        if shipping is not None:
            updates["shipping_cost"] = shipping

        merchant = self.first_text(soup, self.detail_selectors.get("merchant", []))
        if merchant:
            updates["merchant"] = self.clean_merchant(merchant)

        ean = re.sub(r"\D", "", self.first_text(soup, self.detail_selectors.get("ean", [])))
        if ean:
            updates["ean"] = ean

        await self.wait_for_rate_limit()
        return listing.model_copy(update=updates)

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------
    def selectors_for(self, field: str, defaults: list[str]) -> list[str]:
        """Source-configured selectors first, then the built-in ones, without duplicates."""
        configured = getattr(self.source.config.selectors, field, [])
        ordered = []
        for selector in [*configured, *defaults]:
            if selector not in ordered:
                ordered.append(selector)
        return ordered

    def parse_search_results(self, html: str) -> list[ScrapedListing]:
        soup = BeautifulSoup(html, "lxml")

        cards = []
        for selector in self.result_selectors:
            cards = self._select(soup, selector)
            if cards:
                logger.debug("%s: result selector %r matched %d cards", self.site_name, selector, len(cards))
                break

        listings = []
        for card in cards[: self.max_results]:
            listing = self.parse_card(card)
            if listing is not None:
                listings.append(listing)
        return listings

    def parse_card(self, card) -> Optional[ScrapedListing]:
        title = self.first_text(card, self.selectors_for("product_title", self.title_selectors))
        if not title:
            return None

        price_text = self.first_text(card, self.selectors_for("price", self.price_selectors))
        price = parse_price(price_text, self.decimal_separator)
        if price is None or price <= 0:
            logger.debug("%s: discarding %r with unusable price %r", self.site_name, title, price_text)
            return None

        href = self.first_attribute(card, self.selectors_for("link", self.link_selectors), "href")
        availability_text = self.first_text(card, self.selectors_for("availability", self.availability_selectors))
        merchant = self.first_text(card, self.selectors_for("merchant", self.merchant_selectors))
        shipping_text = self.first_text(card, self.selectors_for("shipping", self.shipping_selectors))

        return ScrapedListing(
            title=title,
            price=price,
            currency=self.currency,
            url=self.absolute_url(href),
            merchant=self.clean_merchant(merchant) if merchant else self.site_name,
            availability=parse_availability(availability_text),
            shipping_cost=self.parse_shipping_cost(shipping_text),
            source=self.source.id,
        )

    def first_text(self, node, selectors: list[str]) -> str:
        """Text of the first candidate selector that yields non-empty text."""
        for selector in selectors:
            for element in self._select(node, selector)[:1]:
                text = element.get_text(" ", strip=True)
                if text:
                    return text
        return ""

    def first_attribute(self, node, selectors: list[str], attribute: str) -> str:
        for selector in selectors:
            for element in self._select(node, selector)[:1]:
                value = element.get(attribute) or element.get(f"data-{attribute}")
                if value and len(value) > 1:
                    return value
        return ""

    def _select(self, node, selector: str) -> list:
        try:
            return node.select(selector)
        except Exception as e:
            logger.debug("%s: invalid selector %r: %s", self.site_name, selector, e)
            return []

    def absolute_url(self, href: str) -> str:
        if not href:
            return ""
        return urljoin(self.source.base_url.rstrip("/") + "/", href)

    def clean_merchant(self, merchant: str) -> str:
        return merchant.strip()

    def parse_shipping_cost(self, text: str) -> Optional[Decimal]:
        if not text:
            return None
        lowered = text.lower()
        if any(marker in lowered for marker in FREE_SHIPPING_MARKERS):
            return Decimal("0")
        return parse_price(text, self.decimal_separator)

    # -------------------------------------------------------------------------
    # Scoring / conversion
    # -------------------------------------------------------------------------
    def calculate_confidence_score(self, listing: ScrapedListing) -> float:
        score = 0.5

        if listing.title and len(listing.title) > 10:
            score += 0.2
        if listing.price and listing.price > 0:
            score += 0.2
        if listing.availability is not None:
            score += 0.1
        if listing.url and re.search(self.product_url_pattern, listing.url):
            score += 0.1
        if listing.ean and len(listing.ean) >= 8:
            score += 0.1

        return max(0.0, min(1.0, score))

    def to_price_result(self, listing: ScrapedListing, product_id: str,
                        job_id: Optional[str] = None) -> PriceScrapingResult:
        return PriceScrapingResult(
            normalized_product_id=product_id,
            source_id=self.source.id,
            product_title=listing.title,
            merchant=listing.merchant or self.site_name,
            url=listing.url,
            price=listing.price,
            currency=listing.currency or self.currency,
            price_incl_vat=self.price_incl_vat,
            shipping_cost=listing.shipping_cost,
            availability=listing.availability is not False,
            confidence_score=Decimal(str(round(self.calculate_confidence_score(listing), 4))),
            scraped_at=listing.scraped_at,
            job_id=job_id,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    async def _wait_for_any(self, selectors: list[str]) -> bool:
        for selector in selectors:
            if await self.driver.wait_for_selector(selector, timeout=2):
                return True
        return False

    async def wait_for_rate_limit(self) -> None:
        config = self.source.config
        if config.delay is not None:
            delay = config.delay
        else:
            delay = self.default_delay
            if self.source.rate_limit > 0:
                delay = max(delay, 60 / self.source.rate_limit)
        jitter = config.delay_jitter or self.default_jitter
        await jittered_sleep(delay, jitter)
