"""
Database Manager for Margin Scout.

SQLite storage for scraping jobs, matched price results and exchange rates.
The manager's job and result callbacks map directly onto update_job() and
save_results(), and the class doubles as the CurrencyConverter's RateStore.

Classes:
    DatabaseManager: All database operations.

Functions:
    init_database: Factory function to create a DatabaseManager instance.

Tables:
    scraping_jobs: One row per job with its status and progress counters.
    price_results: Matched listings per catalog product.
    currency_rates: One exchange rate per currency pair and day.

Example:
    >>> from margin_scout.db.db_manager import DatabaseManager
    >>> db = DatabaseManager("margin_scout.db")
    >>> manager = ScrapingManager(on_update_job=db.update_job, on_save_results=db.save_results)
"""

import datetime
import json
import logging
import sqlite3
from decimal import Decimal
from typing import Optional

from margin_scout.currency.rate_store import RateStore, to_midnight
from margin_scout.models.models import CurrencyRate, JobStatus, PriceScrapingResult, ScrapingJob

logger = logging.getLogger(__name__)

JOB_COLUMNS = (
    "name",
    "description",
    "status",
    "supplier_id",
    "total_products",
    "processed_products",
    "successful_products",
    "failed_products",
    "current_batch",
    "total_batches",
    "started_at",
    "completed_at",
    "error_message",
)


def _to_db(value):
    """Convert a Python value to something sqlite3 stores losslessly."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, JobStatus):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


class DatabaseManager(RateStore):
    """
    SQLite database manager for jobs, results and exchange rates.

    Money is stored as TEXT so Decimals round-trip exactly.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str = "margin_scout.db"):
        self.db_path = db_path
        self._create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_tables(self):
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS scraping_jobs (
                    id TEXT PRIMARY KEY,
                    name TEXT,
                    description TEXT,
                    status TEXT NOT NULL,
                    supplier_id TEXT,
                    total_products INTEGER DEFAULT 0,
                    processed_products INTEGER DEFAULT 0,
                    successful_products INTEGER DEFAULT 0,
                    failed_products INTEGER DEFAULT 0,
                    current_batch INTEGER,
                    total_batches INTEGER,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    error_message TEXT,
                    config TEXT,
                    updated_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_results (
                    id TEXT PRIMARY KEY,
                    normalized_product_id TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    job_id TEXT,
                    product_title TEXT NOT NULL,
                    merchant TEXT,
                    url TEXT,
                    price TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    price_incl_vat INTEGER NOT NULL,
                    shipping_cost TEXT,
                    availability INTEGER NOT NULL,
                    confidence_score TEXT NOT NULL,
                    score REAL,
                    is_lowest_price INTEGER NOT NULL,
                    scraped_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_price_results_product
                ON price_results (normalized_product_id)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS currency_rates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    from_currency TEXT NOT NULL,
                    to_currency TEXT NOT NULL,
                    rate TEXT NOT NULL,
                    date TIMESTAMP NOT NULL,
                    source TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (from_currency, to_currency, date)
                )
            """)

            conn.commit()
            logger.debug("Database tables ready at %s", self.db_path)

    # -------------------------------------------------------------------------
    # Jobs
    # -------------------------------------------------------------------------
    def create_job(self, job: ScrapingJob) -> str:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO scraping_jobs
                    (id, name, description, status, supplier_id, total_products,
                     processed_products, successful_products, failed_products,
                     config, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                job.id, job.name, job.description, job.status.value, job.supplier_id,
                job.total_products, job.processed_products, job.successful_products,
                job.failed_products, job.config.model_dump_json(),
                datetime.datetime.now(datetime.timezone.utc).isoformat(),
            ))
            conn.commit()
        logger.info("Created job %s (%s)", job.id, job.name)
        return job.id

    def update_job(self, job_id: str, status: JobStatus, updates: dict) -> None:
        """Job update callback: persist the status and any known job fields."""
        fields = {"status": _to_db(status)}
        for key, value in updates.items():
            if key in JOB_COLUMNS:
                fields[key] = _to_db(value)
        fields["updated_at"] = datetime.datetime.now(datetime.timezone.utc).isoformat()

        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO scraping_jobs (id, status, updated_at) VALUES (?, ?, ?)",
                (job_id, fields["status"], fields["updated_at"]),
            )
            conn.execute(
                f"UPDATE scraping_jobs SET {assignments} WHERE id = ?",
                (*fields.values(), job_id),
            )
            conn.commit()

    def get_job(self, job_id: str) -> Optional[dict]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM scraping_jobs WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            return None
        job = dict(row)
        if job.get("config"):
            job["config"] = json.loads(job["config"])
        return job

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------
    def save_results(self, product_id: str, results: list[PriceScrapingResult]) -> int:
        """Result callback: store the ranked results of one product."""
        rows = [
            (
                r.id, product_id, r.source_id, r.job_id, r.product_title, r.merchant, r.url,
                _to_db(r.price), r.currency, _to_db(r.price_incl_vat), _to_db(r.shipping_cost),
                _to_db(r.availability), _to_db(r.confidence_score), getattr(r, "score", None),
                _to_db(r.is_lowest_price), _to_db(r.scraped_at),
            )
            for r in results
        ]
        try:
            with self._get_connection() as conn:
                conn.executemany("""
                    INSERT OR REPLACE INTO price_results
                        (id, normalized_product_id, source_id, job_id, product_title, merchant, url,
                         price, currency, price_incl_vat, shipping_cost, availability,
                         confidence_score, score, is_lowest_price, scraped_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, rows)
                conn.commit()
        except sqlite3.Error as e:
            logger.error("Error saving results for product %s: %s", product_id, e)
            raise

        logger.info("Saved %d results for product %s", len(rows), product_id)
        return len(rows)

    def get_results_for_product(self, product_id: str, job_id: Optional[str] = None) -> list[dict]:
        """Results of a product, cheapest first."""
        query = "SELECT * FROM price_results WHERE normalized_product_id = ?"
        params: tuple = (product_id,)
        if job_id is not None:
            query += " AND job_id = ?"
            params += (job_id,)
        query += " ORDER BY CAST(price AS REAL) ASC"

        with self._get_connection() as conn:
            return [self._result_row(row) for row in conn.execute(query, params).fetchall()]

    def get_results_for_job(self, job_id: str) -> list[dict]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM price_results
                WHERE job_id = ?
                ORDER BY normalized_product_id, CAST(price AS REAL) ASC
            """, (job_id,)).fetchall()
        return [self._result_row(row) for row in rows]

    @staticmethod
    def _result_row(row: sqlite3.Row) -> dict:
        result = dict(row)
        result["price"] = Decimal(result["price"])
        result["confidence_score"] = Decimal(result["confidence_score"])
        if result["shipping_cost"] is not None:
            result["shipping_cost"] = Decimal(result["shipping_cost"])
        for flag in ("price_incl_vat", "availability", "is_lowest_price"):
            result[flag] = bool(result[flag])
        return result

    # -------------------------------------------------------------------------
    # Exchange rates (RateStore)
    # -------------------------------------------------------------------------
    def get_latest_rate(self, from_currency: str, to_currency: str) -> Optional[CurrencyRate]:
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM currency_rates
                WHERE from_currency = ? AND to_currency = ? AND is_active = 1
                ORDER BY date DESC
                LIMIT 1
            """, (from_currency, to_currency)).fetchone()
        return self._rate_row(row)

    def get_rate_on(self, from_currency: str, to_currency: str,
                    day: datetime.datetime) -> Optional[CurrencyRate]:
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT * FROM currency_rates
                WHERE from_currency = ? AND to_currency = ? AND date = ? AND is_active = 1
            """, (from_currency, to_currency, to_midnight(day).isoformat())).fetchone()
        return self._rate_row(row)

    def upsert_rate(self, rate: CurrencyRate) -> None:
        now = datetime.datetime.now(datetime.timezone.utc).isoformat()
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO currency_rates
                    (from_currency, to_currency, rate, date, source, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (from_currency, to_currency, date)
                DO UPDATE SET rate = excluded.rate, source = excluded.source,
                              is_active = excluded.is_active, updated_at = excluded.updated_at
            """, (
                rate.from_currency, rate.to_currency, str(rate.rate),
                to_midnight(rate.date).isoformat(), rate.source, int(rate.is_active), now,
            ))
            conn.commit()

    @staticmethod
    def _rate_row(row: Optional[sqlite3.Row]) -> Optional[CurrencyRate]:
        if row is None:
            return None
        return CurrencyRate(
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            rate=Decimal(row["rate"]),
            date=datetime.datetime.fromisoformat(row["date"]),
            source=row["source"],
            is_active=bool(row["is_active"]),
        )


def init_database(db_path: str = "margin_scout.db") -> DatabaseManager:
    """Initialize and return a DatabaseManager instance"""
    return DatabaseManager(db_path)
