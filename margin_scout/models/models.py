"""
Data Models for Margin Scout.

This module defines the Pydantic models shared by the drivers, scrapers,
matcher, manager and currency converter. Money is always a Decimal.

Classes:
    SourceSelectors: Ordered candidate CSS selectors per listing field.
    ScrapingSourceConfig: Per-site scraping configuration.
    ScrapingSource: A configured target marketplace.
    NormalizedProductData: A catalog item ready for price-shopping.
    ScrapedListing: One listing as extracted from a site, before matching.
    PriceScrapingResult: A scraped candidate tied to a product and a source.
    ScoredResult: A PriceScrapingResult together with its match score.
    ProductMatch: The matcher's output for one catalog product.
    JobStatus, ScrapingJobConfig, ScrapingJob: Job orchestration.
    CurrencyRate: Exchange rate record.
    PenaltyRule, MatchingConfig: Matcher tuning.
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


# -----------------------------------------------------------------------------
# Sources
# -----------------------------------------------------------------------------
class SourceSelectors(BaseModel):
    """
    Candidate selectors for each listing field, tried in order.

    Site markup changes frequently, so every field holds a list of candidate
    selectors. A single string is accepted and treated as a one-item list.
    """

    product_title: list[str] = Field(default_factory=list)
    price: list[str] = Field(default_factory=list)
    availability: list[str] = Field(default_factory=list)
    link: list[str] = Field(default_factory=list)
    merchant: list[str] = Field(default_factory=list)
    shipping: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _wrap_single_selector(cls, value):
        return _as_list(value)


class ScrapingSourceConfig(BaseModel):
    selectors: SourceSelectors = Field(default_factory=SourceSelectors)
    headers: dict[str, str] = Field(default_factory=dict)
    delay: Optional[float] = None  # seconds between scraping operations
    delay_jitter: float = 0.0
    use_headless: bool = True
    allow_domains: list[str] = Field(default_factory=list)
    deny_domains: list[str] = Field(default_factory=list)
    driver: Optional[str] = None  # per-source backend override
    proxy_url: Optional[str] = None


class ScrapingSource(BaseModel):
    """
    A configured target site.

    Attributes:
        id: Source identifier, used as the scraper registry key.
        name: Display name, also used to pick the scraper implementation.
        base_url: Site root, e.g. "https://www.bol.com".
        country: ISO country code of the storefront.
        is_active: Inactive sources are never initialized.
        priority: Higher priority sources are scraped first.
        rate_limit: Requests per minute the site tolerates.
        config: Selectors, headers, delays and domain filters.
    """

    id: str
    name: str
    base_url: str
    country: str = "NL"
    is_active: bool = True
    priority: int = 1
    rate_limit: int = 60
    config: ScrapingSourceConfig = Field(default_factory=ScrapingSourceConfig)


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------
class NormalizedProductData(BaseModel):
    """
    A catalog entry reduced to the canonical shape used for price-shopping.

    Example:
        >>> product = NormalizedProductData(
        ...     id="p1",
        ...     supplier_id="s1",
        ...     brand="Chanel",
        ...     product_name="N°5 Eau de Parfum",
        ...     variant_size="100ml",
        ...     wholesale_price=Decimal("79.50"),
        ... )
    """

    id: Optional[str] = None
    supplier_id: str = ""
    brand: str
    product_name: str
    variant_size: Optional[str] = None
    ean: Optional[str] = None
    wholesale_price: Decimal
    currency: str = "EUR"
    pack_size: int = 1
    supplier_name: str = ""
    last_purchase_price: Optional[Decimal] = None
    availability: bool = True
    notes: Optional[str] = None

    @field_validator("wholesale_price")
    @classmethod
    def _non_negative_price(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("wholesale_price must be non-negative")
        return value

    @field_validator("ean")
    @classmethod
    def _digit_only_ean(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not value.isdigit():
            raise ValueError("ean must contain digits only")
        return value


# -----------------------------------------------------------------------------
# Scraping output
# -----------------------------------------------------------------------------
class ScrapedListing(BaseModel):
    """A single listing as a scraper extracted it from a search or detail page."""

    title: str
    price: Decimal
    currency: str = "EUR"
    url: str = ""
    merchant: str = ""
    availability: Optional[bool] = None
    shipping_cost: Optional[Decimal] = None
    ean: Optional[str] = None
    source: str = ""
    scraped_at: datetime.datetime = Field(default_factory=_utcnow)


class PriceScrapingResult(BaseModel):
    """
    One scraped candidate listing tied to one catalog product and one source.

    Created by a scraper, scored by the matcher, persisted through the
    manager's save callback.
    """

    id: str = Field(default_factory=lambda: f"result_{uuid.uuid4().hex}")
    normalized_product_id: str
    source_id: str
    product_title: str
    merchant: str = ""
    url: str = ""
    price: Decimal
    currency: str = "EUR"
    price_incl_vat: bool = True
    shipping_cost: Optional[Decimal] = None
    availability: bool = False
    confidence_score: Decimal = Decimal("0")
    is_lowest_price: bool = False
    scraped_at: datetime.datetime = Field(default_factory=_utcnow)
    job_id: Optional[str] = None


class ScoredResult(PriceScrapingResult):
    score: float


class ProductMatch(BaseModel):
    normalized_product: NormalizedProductData
    scraped_results: list[ScoredResult] = Field(default_factory=list)
    best_match: Optional[ScoredResult] = None
    confidence_score: float = 0.0
    margin_opportunity: Optional[float] = None


# -----------------------------------------------------------------------------
# Jobs
# -----------------------------------------------------------------------------
class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"


class ScrapingJobConfig(BaseModel):
    sources: list[str] = Field(default_factory=list)
    batch_size: int = Field(default=10, gt=0)
    delay_between_batches: float = 5.0  # seconds
    max_retries: int = 3
    timeout: float = 30.0  # seconds


class ScrapingJob(BaseModel):
    """
    The unit of orchestration.

    Only the ScrapingManager mutates a job, and it reports every mutation
    through its job-update callback.
    """

    id: str = Field(default_factory=lambda: f"job_{uuid.uuid4().hex[:12]}")
    name: str
    description: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    supplier_id: Optional[str] = None
    total_products: int = 0
    processed_products: int = 0
    successful_products: int = 0
    failed_products: int = 0
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    error_message: Optional[str] = None
    config: ScrapingJobConfig = Field(default_factory=ScrapingJobConfig)


# -----------------------------------------------------------------------------
# Currency
# -----------------------------------------------------------------------------
class CurrencyRate(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    date: datetime.datetime
    source: str = "API"
    is_active: bool = True


# -----------------------------------------------------------------------------
# Matching configuration
# -----------------------------------------------------------------------------
class PenaltyRule(BaseModel):
    pattern: str
    penalty: float
    description: str = ""


def default_penalty_rules() -> list[PenaltyRule]:
    return [
        PenaltyRule(pattern="tester", penalty=0.3, description="Tester product penalty"),
        PenaltyRule(pattern="gift set", penalty=0.4, description="Gift set penalty"),
        PenaltyRule(pattern="bundle", penalty=0.3, description="Bundle product penalty"),
        PenaltyRule(pattern="refill", penalty=0.2, description="Refill product penalty"),
        PenaltyRule(pattern="sample", penalty=0.5, description="Sample product penalty"),
        PenaltyRule(pattern="mini", penalty=0.1, description="Mini size penalty"),
        PenaltyRule(pattern="travel", penalty=0.1, description="Travel size penalty"),
    ]


class MatchingConfig(BaseModel):
    ean_weight: float = 1.0
    brand_size_weight: float = 0.9
    fuzzy_title_weight: float = 0.7
    min_score: float = 0.3
    penalty_rules: list[PenaltyRule] = Field(default_factory=default_penalty_rules)
