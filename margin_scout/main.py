import argparse
import asyncio
import csv
import json
import logging
import time
from decimal import Decimal
from typing import Optional

from margin_scout.config import get_settings
from margin_scout.currency.currency_converter import CurrencyConverter
from margin_scout.currency.rate_source import StaticRateSource
from margin_scout.db.db_manager import init_database
from margin_scout.exceptions import CurrencyError
from margin_scout.manager import ScrapingManager
from margin_scout.models.models import NormalizedProductData, ScrapingJob, ScrapingJobConfig, ScrapingSource
from margin_scout.normalization.data_normalizer import ColumnMapping, DataNormalizer
from margin_scout.utils import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_SOURCES = [
    {"id": "bol", "name": "Bol.com", "base_url": "https://www.bol.com", "country": "NL", "priority": 3},
    {"id": "amazon-nl", "name": "Amazon NL", "base_url": "https://www.amazon.nl", "country": "NL", "priority": 2},
    {"id": "amazon-fr", "name": "Amazon FR", "base_url": "https://www.amazon.fr", "country": "FR", "priority": 1},
    {"id": "house-of-niche", "name": "House of Niche", "base_url": "https://www.houseofniche.com",
     "country": "NL", "priority": 1},
    {"id": "douglas", "name": "Douglas", "base_url": "https://www.douglas.nl", "country": "NL", "priority": 2},
]

PRODUCT_COLUMNS = ColumnMapping(
    brand="brand",
    product_name="product_name",
    variant_size="variant_size",
    ean="ean",
    wholesale_price="wholesale_price",
    currency="currency",
)


# -----------------------------------------------------------------------------
# Input / output helpers
# -----------------------------------------------------------------------------
def read_products_from_csv(csv_path: str) -> list[NormalizedProductData]:
    """Read catalog products from CSV. Requires brand, product_name and wholesale_price columns."""
    normalizer = DataNormalizer(normalize_case=None)
    with open(csv_path, "r", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        normalizer.check_columns(reader.fieldnames or [], PRODUCT_COLUMNS)
        rows = list(reader)

    result = normalizer.normalize_rows(rows, PRODUCT_COLUMNS, supplier_id="cli")
    for issue in result.errors:
        logger.error("Row %d: %s: %s", issue.row, issue.field, issue.message)
    for issue in result.warnings:
        logger.warning("Row %d: %s: %s", issue.row, issue.field, issue.message)

    products = []
    for index, product in enumerate(result.products, 1):
        products.append(product.model_copy(update={"id": product.id or f"product_{index}"}))
    return products


def read_sources(json_path: Optional[str]) -> list[ScrapingSource]:
    if not json_path:
        return [ScrapingSource.model_validate(s) for s in DEFAULT_SOURCES]
    with open(json_path, "r", encoding="utf-8") as f:
        return [ScrapingSource.model_validate(s) for s in json.load(f)]


def margin_percentage(lowest: Decimal, lowest_currency: str, product: NormalizedProductData,
                      converter: CurrencyConverter) -> Optional[float]:
    if product.wholesale_price <= 0:
        return None
    try:
        retail = converter.convert(lowest, lowest_currency, product.currency)
    except CurrencyError as e:
        logger.warning("No margin for %s: %s", product.id, e)
        return None
    return float((retail - product.wholesale_price) / product.wholesale_price * 100)


def write_results_to_csv(products: list[NormalizedProductData], results_by_product: dict[str, list[dict]],
                         converter: CurrencyConverter, output_path: str):
    """Write one row per product with its cheapest matched listing."""
    fieldnames = ["product_id", "brand", "product_name", "variant_size", "wholesale_price", "currency",
                  "lowest_price", "lowest_price_currency", "lowest_price_merchant", "lowest_price_url",
                  "margin_pct", "matches"]

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()

        for product in products:
            results = results_by_product.get(product.id, [])
            row = {
                "product_id": product.id,
                "brand": product.brand,
                "product_name": product.product_name,
                "variant_size": product.variant_size,
                "wholesale_price": str(product.wholesale_price),
                "currency": product.currency,
                "matches": len(results),
            }
            if results:
                lowest = results[0]
                margin = margin_percentage(lowest["price"], lowest["currency"], product, converter)
                row.update({
                    "lowest_price": str(lowest["price"]),
                    "lowest_price_currency": lowest["currency"],
                    "lowest_price_merchant": lowest["merchant"],
                    "lowest_price_url": lowest["url"],
                    "margin_pct": f"{margin:.1f}" if margin is not None else None,
                })
            writer.writerow(row)

    logger.info("Results written to %s", output_path)


# -----------------------------------------------------------------------------
# Main entry point
# -----------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="margin-scout",
        description="Competitive price scraping and margin finder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
        Examples:
        margin-scout --products catalog.csv --output margins.csv
        margin-scout --products catalog.csv --sources sources.json --batch-size 5
        margin-scout --update-rates
        """
    )
    parser.add_argument("--products", help="CSV with brand, product_name, variant_size, ean, "
                                           "wholesale_price and currency columns")
    parser.add_argument("--sources", help="JSON file with a list of scraping sources (defaults to the built-in sites)")
    parser.add_argument("--output", default="results.csv", help="Output CSV file path")
    parser.add_argument("--db", help="SQLite database path")
    parser.add_argument("--batch-size", type=int, help="Products per batch")
    parser.add_argument("--update-rates", action="store_true", help="Refresh stored exchange rates")
    return parser


async def main(argv: Optional[list[str]] = None):
    """Main entry point with argument parsing and routing."""
    settings = get_settings()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.products and not args.update_rates:
        parser.error("one of --products or --update-rates is required")

    start = time.perf_counter()
    db = init_database(args.db or settings.db_path)
    converter = CurrencyConverter(db, StaticRateSource(base_currency=settings.base_currency))

    if args.update_rates:
        updated = await converter.update_exchange_rates()
        logger.info("Updated %d exchange rates", updated)
        if not args.products:
            return None

    products = read_products_from_csv(args.products)
    sources = read_sources(args.sources)
    logger.info("Found %d products and %d sources", len(products), len(sources))

    job = ScrapingJob(
        name=f"CLI run {args.products}",
        config=ScrapingJobConfig(
            sources=[s.id for s in sources if s.is_active],
            batch_size=args.batch_size or settings.batch_size,
            delay_between_batches=settings.delay_between_batches,
        ),
    )
    db.create_job(job)

    manager = ScrapingManager(on_update_job=db.update_job, on_save_results=db.save_results, settings=settings)
    try:
        await manager.initialize_scrapers(sources)
        if not manager.get_available_scrapers():
            logger.error("No scrapers could be initialized")
            return job
        await manager.start_scraping_job(job, products)
    finally:
        await manager.cleanup()

    results_by_product = {p.id: db.get_results_for_product(p.id, job.id) for p in products}
    write_results_to_csv(products, results_by_product, converter, args.output)

    elapsed = time.perf_counter() - start
    logger.info("Job %s finished in %.2f seconds", job.id, elapsed)
    return job


def run():
    setup_logging(get_settings().log_level)
    job = asyncio.run(main())

    if job is not None:
        print("\n" + "=" * 70)
        print("MARGIN SCOUT SUMMARY")
        print("=" * 70)
        print(f"Job:                 {job.id} ({job.status.value})")
        print(f"Products processed:  {job.processed_products}/{job.total_products}")
        print(f"Matched:             {job.successful_products}")
        print(f"Not matched:         {job.failed_products}")
        if job.processed_products:
            print(f"Match rate:          {job.successful_products / job.processed_products * 100:.1f}%")
        print("=" * 70 + "\n")


# -----------------------------------------------------------------------------
# Entrypoint
# -----------------------------------------------------------------------------
if __name__ == "__main__":
    run()
