"""
Scraping Manager.

Runs one price-scraping job at a time: products are processed in fixed-size
batches, sequentially, against every registered scraper of the job's sources.
Each product's candidates go through the ProductMatcher and the cheapest
surviving listings are handed to the result callback.

Job state and results leave the manager only through the two injected
callbacks, so the manager has no knowledge of how they are stored.

Cancellation is cooperative: stop_job() marks the job STOPPED right away, but
the running job only notices between products and between batches. A scrape
in flight finishes first and its results are discarded. Until that stopped run
has released its scrapers, no new job can start on the manager.

Classes:
    ScrapingManager: Job orchestrator.

Functions:
    build_search_terms: Ordered search query variants for a catalog product.
    create_batches: Split a list into fixed-size chunks.
"""

import asyncio
import datetime
import logging
import re
from typing import Awaitable, Callable, Optional, Union

from margin_scout.config import Settings, get_settings
from margin_scout.exceptions import JobAlreadyRunningError, NoJobRunningError
from margin_scout.matching.product_matcher import ProductMatcher
from margin_scout.models.models import (
    JobStatus,
    NormalizedProductData,
    PriceScrapingResult,
    ScrapingJob,
    ScrapingSource,
)
from margin_scout.scrapers.base_scraper import BaseScraper
from margin_scout.scrapers.factory import create_scraper
from margin_scout.utils import host_matches, maybe_await, safe_get_host

logger = logging.getLogger(__name__)

UpdateJobCallback = Callable[[str, JobStatus, dict], Union[None, Awaitable[None]]]
SaveResultsCallback = Callable[[str, list[PriceScrapingResult]], Union[None, Awaitable[None]]]

CATEGORY_SUFFIXES = (
    "extrait de parfum",
    "eau de parfum",
    "eau de toilette",
    "eau de cologne",
    "eau fraiche",
    "eau fraîche",
    "parfum",
    "cologne",
    "spray",
    "edp",
    "edt",
)
_SUFFIX_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(s) for s in CATEGORY_SUFFIXES) + r")\b",
    re.IGNORECASE,
)

PLACEHOLDER_SIZES = {"1", "1ml"}
MAX_TERM_LENGTH = 50
MAX_CORE_LENGTH = 30
MAX_BRAND_LENGTH = 20
TOP_RESULTS = 3


def _join(*parts: Optional[str]) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())


def build_search_terms(product: NormalizedProductData) -> list[str]:
    """
    Search query variants for ``product``, most specific first.

    Site search engines do poorly with long, over-specific queries, so the
    fragrance category ("Eau de Parfum", "Spray"...) is stripped from the
    product name and shorter variants follow the full one.

    Example:
        >>> build_search_terms(NormalizedProductData(
        ...     brand="Chanel", product_name="N°5 Eau de Parfum",
        ...     variant_size="100ml", wholesale_price=Decimal("80")))
        ['Chanel N°5', 'Chanel N°5 100ml', 'N°5 Chanel', 'N°5', 'Chanel']
    """
    brand = (product.brand or "").strip()
    name = (product.product_name or "").strip()
    size = (product.variant_size or "").strip()

    core = re.sub(r"\s+", " ", _SUFFIX_PATTERN.sub(" ", name)).strip(" -,")
    if not core:
        core = name

    if re.sub(r"\s+", "", size.lower()) in PLACEHOLDER_SIZES:
        size = ""

    candidates = [_join(brand, core)]
    if size:
        candidates.append(_join(brand, core, size))
    candidates.append(_join(core, brand))
    if core and len(core) <= MAX_CORE_LENGTH:
        candidates.append(core)
    if brand and len(brand) <= MAX_BRAND_LENGTH:
        candidates.append(brand)

    terms = []
    for term in candidates:
        if term and len(term) < MAX_TERM_LENGTH and term not in terms:
            terms.append(term)

    if not terms:
        fallback = _join(brand, name, size)
        if fallback:
            terms.append(fallback)
    return terms


def create_batches(items: list, size: int) -> list[list]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ScrapingManager:
    """
    Orchestrates scraping jobs over a registry of initialized scrapers.

    The registry (source id -> scraper) belongs to the manager and lives for
    one job: every registered scraper is cleaned up when the job ends, however
    it ends.

    Example:
        >>> manager = ScrapingManager(on_update_job=db.update_job, on_save_results=db.save_results)
        >>> await manager.initialize_scrapers(sources)
        >>> await manager.start_scraping_job(job, products)
    """

    def __init__(self, on_update_job: Optional[UpdateJobCallback] = None,
                 on_save_results: Optional[SaveResultsCallback] = None,
                 matcher: Optional[ProductMatcher] = None,
                 settings: Optional[Settings] = None,
                 scraper_factory: Callable[[ScrapingSource], Optional[BaseScraper]] = create_scraper,
                 sleep=asyncio.sleep):
        self.on_update_job = on_update_job
        self.on_save_results = on_save_results
        self.matcher = matcher or ProductMatcher()
        self.settings = settings or get_settings()
        self.scraper_factory = scraper_factory
        self._sleep = sleep

        self.scrapers: dict[str, BaseScraper] = {}
        self.current_job: Optional[ScrapingJob] = None
        self._running = False
        # Job whose loop has not returned yet; outlives stop_job()
        self._active_job: Optional[ScrapingJob] = None
        self._cancelled: Optional[asyncio.Event] = None

    # -------------------------------------------------------------------------
    # Scraper registry
    # -------------------------------------------------------------------------
    async def initialize_scrapers(self, sources: list[ScrapingSource]) -> list[str]:
        """Initialize a scraper per active source; returns the registered source ids."""
        for source in sources:
            if not source.is_active:
                continue

            scraper = self.scraper_factory(source)
            if scraper is None:
                continue

            try:
                await scraper.initialize()
            except Exception as e:
                logger.warning("Failed to initialize scraper for %s, skipping: %s", source.name, e)
                await self._cleanup_scraper(source.id, scraper)
                continue

            self.scrapers[source.id] = scraper
            logger.info("Initialized scraper for %s", source.name)

            # Browser launches are heavy on constrained hosts
            await self._sleep(self.settings.init_delay)

        return self.get_available_scrapers()

    def get_available_scrapers(self) -> list[str]:
        return list(self.scrapers.keys())

    async def get_scraper_health(self) -> dict[str, bool]:
        health = {}
        for source_id, scraper in self.scrapers.items():
            try:
                health[source_id] = bool(await scraper.health_check())
            except Exception as e:
                logger.warning("Health check failed for %s: %s", source_id, e)
                health[source_id] = False
        return health

    async def cleanup(self) -> None:
        """Release every registered scraper."""
        scrapers, self.scrapers = self.scrapers, {}
        for source_id, scraper in scrapers.items():
            await self._cleanup_scraper(source_id, scraper)

    async def _cleanup_scraper(self, source_id: str, scraper: BaseScraper) -> None:
        try:
            await scraper.cleanup()
        except Exception as e:
            logger.warning("Error cleaning up scraper %s: %s", source_id, e)

    # -------------------------------------------------------------------------
    # Job lifecycle
    # -------------------------------------------------------------------------
    def is_job_running(self) -> bool:
        return self._running

    def get_current_job(self) -> Optional[ScrapingJob]:
        return self.current_job

    async def start_scraping_job(self, job: ScrapingJob, products: list[NormalizedProductData]) -> ScrapingJob:
        """
        Run ``job`` over ``products`` to completion.

        Raises:
            JobAlreadyRunningError: Another job is running on this manager.
                The running job is left untouched.

        Any other exception marks the job FAILED and is re-raised. Scraper
        resources are released on every path.
        """
        if self._running or self._active_job is not None:
            active = self.current_job or self._active_job
            raise JobAlreadyRunningError(active.id if active else None)

        self._running = True
        self.current_job = job
        self._active_job = job
        cancelled = self._cancelled = asyncio.Event()
        registry = dict(self.scrapers)
        scrapers = self._job_scrapers(job)

        try:
            logger.info("Starting scraping job: %s (%d products)", job.name, len(products))
            logger.info("Job sources: %s, using scrapers: %s", job.config.sources, [s.source.id for s in scrapers])

            await self._update_job(job, JobStatus.RUNNING, {
                "total_products": len(products),
                "processed_products": 0,
                "successful_products": 0,
                "failed_products": 0,
                "started_at": _utcnow(),
            })

            batches = create_batches(products, job.config.batch_size)
            for index, batch in enumerate(batches):
                if cancelled.is_set():
                    break

                logger.info("Processing batch %d/%d (%d products)", index + 1, len(batches), len(batch))
                await self._update_job(job, JobStatus.RUNNING, {
                    "current_batch": index + 1,
                    "total_batches": len(batches),
                })

                await self._process_batch(job, batch, scrapers, cancelled)

                await self._update_job(job, JobStatus.RUNNING, {
                    "processed_products": job.processed_products,
                    "successful_products": job.successful_products,
                    "failed_products": job.failed_products,
                })

                if index < len(batches) - 1 and not cancelled.is_set():
                    await self._sleep(job.config.delay_between_batches)

            if cancelled.is_set():
                logger.info("Scraping job stopped: %s", job.name)
            else:
                await self._update_job(job, JobStatus.COMPLETED, {"completed_at": _utcnow()})
                logger.info(
                    "Scraping job completed: %s (%d successful, %d failed)",
                    job.name, job.successful_products, job.failed_products,
                )
            return job

        except Exception as e:
            logger.error("Error in scraping job %s: %s", job.name, e)
            if job.status != JobStatus.STOPPED:
                await self._update_job(job, JobStatus.FAILED, {
                    "error_message": str(e) or type(e).__name__,
                    "completed_at": _utcnow(),
                })
            raise

        finally:
            # Tear down the registry as it stood when the job started
            for source_id, scraper in registry.items():
                await self._cleanup_scraper(source_id, scraper)
                if self.scrapers.get(source_id) is scraper:
                    del self.scrapers[source_id]
            if self.current_job is job:
                self._running = False
                self.current_job = None
            self._active_job = None

    async def stop_job(self) -> ScrapingJob:
        """
        Mark the running job STOPPED.

        The job loop checks for the stop between products and batches; an
        in-flight scrape is not interrupted.
        """
        job = self.current_job
        if not self._running or job is None:
            raise NoJobRunningError()

        logger.info("Stopping job: %s", job.name)
        self._cancelled.set()
        self._running = False
        self.current_job = None
        await self._update_job(job, JobStatus.STOPPED, {"completed_at": _utcnow()})
        return job

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------
    def _job_scrapers(self, job: ScrapingJob) -> list[BaseScraper]:
        """Registered scrapers of the job's sources, highest priority first."""
        selected = [
            scraper for source_id, scraper in self.scrapers.items()
            if not job.config.sources or source_id in job.config.sources
        ]
        for scraper in selected:
            scraper.max_retries = job.config.max_retries
            scraper.navigation_timeout = job.config.timeout
        return sorted(selected, key=lambda s: s.source.priority, reverse=True)

    async def _process_batch(self, job: ScrapingJob, products: list[NormalizedProductData],
                             scrapers: list[BaseScraper], cancelled: asyncio.Event) -> None:
        for product in products:
            if cancelled.is_set():
                return

            product_id = product.id or ""
            try:
                candidates = await self._collect_candidates(job, product, scrapers)
                if cancelled.is_set():
                    # Stopped while this product was in flight
                    logger.info("Discarding results for product %s of stopped job %s", product_id, job.id)
                    job.processed_products += 1
                    return
                saved = await self._match_and_save(product, product_id, candidates)
            except Exception as e:
                logger.error("Error processing product %s: %s", product_id, e)
                saved = False

            if saved:
                job.successful_products += 1
            else:
                job.failed_products += 1
            job.processed_products += 1

    async def _collect_candidates(self, job: ScrapingJob, product: NormalizedProductData,
                                  scrapers: list[BaseScraper]) -> list[PriceScrapingResult]:
        candidates = []
        terms = build_search_terms(product)

        for scraper in scrapers:
            source = scraper.source
            try:
                listing = None
                for term in terms:
                    listing = await scraper.scrape_product(term)
                    if listing is not None:
                        break

                if listing is not None:
                    result = scraper.to_price_result(listing, product.id or "", job.id)
                    if self._passes_domain_filters(source, result.url):
                        candidates.append(result)
                    else:
                        logger.debug("%s: dropping %s by domain filter", source.name, result.url)

                await self._sleep(self.settings.scraper_delay)
            except Exception as e:
                logger.warning("Failed to scrape product %s from source %s: %s", product.id, source.id, e)

        return candidates

    async def _match_and_save(self, product: NormalizedProductData, product_id: str,
                              candidates: list[PriceScrapingResult]) -> bool:
        if not candidates:
            logger.info("No candidates found for product %s", product_id)
            return False

        match = self.matcher.find_matches(product, candidates)
        if not match.scraped_results:
            logger.info("No matches above threshold for product %s", product_id)
            return False

        ranked = sorted(match.scraped_results, key=lambda r: r.price)[:TOP_RESULTS]
        top = [
            result.model_copy(update={"is_lowest_price": index == 0})
            for index, result in enumerate(ranked)
        ]

        if self.on_save_results is not None:
            await maybe_await(self.on_save_results(product_id, top))
        return True

    @staticmethod
    def _passes_domain_filters(source: ScrapingSource, url: str) -> bool:
        host = safe_get_host(url)
        allow = source.config.allow_domains
        deny = source.config.deny_domains
        if allow and not any(host_matches(host, domain) for domain in allow):
            return False
        if deny and any(host_matches(host, domain) for domain in deny):
            return False
        return True

    async def _update_job(self, job: ScrapingJob, status: JobStatus, updates: dict) -> None:
        if job.status == JobStatus.STOPPED and status != JobStatus.STOPPED:
            # STOPPED is final
            return

        job.status = status
        for field, value in updates.items():
            if field in ScrapingJob.model_fields:
                setattr(job, field, value)

        if self.on_update_job is not None:
            await maybe_await(self.on_update_job(job.id, status, updates))
        else:
            logger.debug("Job %s status: %s %s", job.id, status.value, updates)
