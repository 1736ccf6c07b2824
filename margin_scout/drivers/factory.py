import logging
from typing import Optional

from margin_scout.config import Settings, get_settings, is_serverless
from margin_scout.drivers.base_driver import BrowserDriver
from margin_scout.drivers.http_driver import HttpDriver
from margin_scout.drivers.playwright_driver import PlaywrightDriver
from margin_scout.models.models import ScrapingSource

logger = logging.getLogger(__name__)

DRIVER_BACKENDS = {
    "playwright": PlaywrightDriver,
    "http": HttpDriver,
}


def resolve_backend(source: ScrapingSource, settings: Settings, serverless: bool) -> str:
    """
    Pick the driver backend for a source.

    A per-source override wins, then the configured backend. "auto" uses the
    HTTP backend on serverless platforms without a lightweight Chromium binary,
    and Playwright everywhere else.
    """
    backend = (source.config.driver or settings.driver_backend or "auto").lower()
    if backend == "auto":
        if serverless and not settings.chromium_executable_path:
            return "http"
        return "playwright"
    if backend not in DRIVER_BACKENDS:
        raise ValueError(f"Unknown driver backend: {backend}")
    return backend


def create_driver(source: ScrapingSource, settings: Optional[Settings] = None,
                  serverless: Optional[bool] = None) -> BrowserDriver:
    settings = settings or get_settings()
    if serverless is None:
        serverless = is_serverless()
    backend = resolve_backend(source, settings, serverless)
    logger.debug("Using %s driver for %s (serverless=%s)", backend, source.name, serverless)
    return DRIVER_BACKENDS[backend](source, settings=settings, serverless=serverless)
