"""
Runtime configuration.

Values come from environment variables prefixed with ``SCOUT_`` or from a
``.env`` file in the working directory, e.g. ``SCOUT_DRIVER_BACKEND=http``.
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Environment markers set by serverless platforms (Vercel, AWS Lambda, Cloud Run)
SERVERLESS_MARKERS = (
    "VERCEL",
    "VERCEL_ENV",
    "LAMBDA_TASK_ROOT",
    "AWS_LAMBDA_FUNCTION_NAME",
    "K_SERVICE",
)


class Settings(BaseSettings):
    # Browser automation
    driver_backend: str = "auto"  # auto | playwright | http
    chromium_executable_path: Optional[str] = None
    navigation_timeout: float = 30.0
    serverless_navigation_timeout: float = 15.0
    launch_timeout: float = 30.0
    serverless_launch_timeout: float = 10.0
    selector_timeout: float = 10.0
    retry_base_delay: float = 1.0
    http_impersonate: str = "chrome124"

    # Scraping cadence (seconds)
    init_delay: float = 0.5
    scraper_delay: float = 1.0
    batch_size: int = 10
    delay_between_batches: float = 5.0

    # Currency
    base_currency: str = "EUR"
    rate_cache_ttl: float = 24 * 60 * 60
    rate_cache_max_size: int = 512
    rate_update_delay: float = 0.1

    # Storage / logging
    db_path: str = "margin_scout.db"
    log_level: str = "INFO"

    class Config:
        env_prefix = "SCOUT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def is_serverless() -> bool:
    """True when running on a constrained serverless platform."""
    return any(os.environ.get(marker) for marker in SERVERLESS_MARKERS)
