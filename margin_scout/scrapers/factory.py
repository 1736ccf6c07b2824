"""
Scraper registry.

The single place that maps a source name to its scraper implementation.
"""

import logging
import re
from typing import Optional

from margin_scout.drivers.base_driver import BrowserDriver
from margin_scout.models.models import ScrapingSource
from margin_scout.scrapers.amazon_scraper import AmazonFRScraper, AmazonNLScraper
from margin_scout.scrapers.base_scraper import BaseScraper
from margin_scout.scrapers.bol_com_scraper import BolComScraper
from margin_scout.scrapers.douglas_scraper import DouglasScraper
from margin_scout.scrapers.house_of_niche_scraper import HouseOfNicheScraper

logger = logging.getLogger(__name__)

SCRAPER_REGISTRY: dict[str, type[BaseScraper]] = {
    "bol.com": BolComScraper,
    "bol": BolComScraper,
    "amazon netherlands": AmazonNLScraper,
    "amazon nl": AmazonNLScraper,
    "amazon.nl": AmazonNLScraper,
    "amazon france": AmazonFRScraper,
    "amazon fr": AmazonFRScraper,
    "amazon.fr": AmazonFRScraper,
    "house of niche": HouseOfNicheScraper,
    "houseofniche": HouseOfNicheScraper,
    "douglas": DouglasScraper,
    "douglas nl": DouglasScraper,
    "douglas.nl": DouglasScraper,
}


def normalize_source_name(name: str) -> str:
    """Lowercase, collapse whitespace and drop a trailing "demo"/"test" marker."""
    key = re.sub(r"\s+", " ", name.strip().lower())
    return re.sub(r"\s+(demo|test)$", "", key)


def get_scraper_class(name: str) -> Optional[type[BaseScraper]]:
    return SCRAPER_REGISTRY.get(normalize_source_name(name))


def create_scraper(source: ScrapingSource, driver: Optional[BrowserDriver] = None) -> Optional[BaseScraper]:
    """Build the scraper for ``source``, or None when no implementation exists."""
    scraper_class = get_scraper_class(source.name)
    if scraper_class is None:
        logger.warning("No scraper implementation found for source: %s", source.name)
        return None
    return scraper_class(source=source, driver=driver)
