"""
Browser Driver Abstract Class.

Every scraper talks to its target site through a BrowserDriver. Two
interchangeable backends implement the contract: PlaywrightDriver (headless
Chromium) and HttpDriver (curl_cffi with browser impersonation plus
BeautifulSoup).

Accessors such as extract_text() are best effort: they return an empty value
instead of raising, also before initialize(), so scrapers can try several
candidate selectors in turn. Navigation on an uninitialized driver raises
DriverNotInitializedError.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Optional

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_incrementing

from margin_scout.config import Settings, get_settings, is_serverless
from margin_scout.exceptions import DriverNotInitializedError, NavigationError
from margin_scout.models.models import ScrapingSource

logger = logging.getLogger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,nl;q=0.8,fr;q=0.7",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

ANTI_BOT_INDICATORS = (
    "captcha",
    "robot",
    "verification",
    "security check",
    "cloudflare",
    "access denied",
    "unusual traffic",
    "are you a human",
    "automated access",
)


def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def text_has_anti_bot_markers(text: str) -> bool:
    lowered = text.lower()
    return any(indicator in lowered for indicator in ANTI_BOT_INDICATORS)


class BrowserDriver(ABC):
    """
    Abstract browser automation contract.

    Attributes:
        source: The source this driver browses; supplies headers, proxy and
            the headless flag.
        settings: Timeouts and retry delays.
        serverless: Whether the constrained launch profile applies. Detected
            from environment markers unless given explicitly.
        user_agent: Chosen at random per driver instance.
    """

    backend: str = "abstract"

    def __init__(self, source: ScrapingSource, settings: Optional[Settings] = None,
                 serverless: Optional[bool] = None):
        self.source = source
        self.settings = settings or get_settings()
        self.serverless = is_serverless() if serverless is None else serverless
        self.user_agent = get_random_user_agent()
        self.is_initialized = False
        self._sleep = asyncio.sleep

    # -- lifecycle -------------------------------------------------------------
    @abstractmethod
    async def initialize(self) -> None:
        """Launch an isolated browsing context, walking fallback profiles on failure."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release every resource. Must be idempotent and never raise."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Perform a trivial navigation to confirm the session still responds."""

    # -- navigation ------------------------------------------------------------
    @abstractmethod
    async def _goto(self, url: str, timeout: float) -> None:
        """Single navigation attempt. Raises on failure."""

    @property
    def navigation_timeout(self) -> float:
        if self.serverless:
            return self.settings.serverless_navigation_timeout
        return self.settings.navigation_timeout

    async def navigate_to_url(self, url: str, max_retries: int = 3, timeout: Optional[float] = None) -> bool:
        """
        Navigate with linear backoff between attempts (attempt x base delay).

        Args:
            url: Page to load.
            max_retries: Total number of attempts.
            timeout: Per-attempt timeout in seconds; never looser than the
                driver's own navigation timeout.

        Raises:
            NavigationError: When every attempt failed.
        """
        self._require_initialized()
        max_retries = max(1, max_retries)
        timeout = min(timeout, self.navigation_timeout) if timeout else self.navigation_timeout
        base_delay = self.settings.retry_base_delay

        def log_failure(retry_state: RetryCallState):
            logger.warning(
                "%s: navigation attempt %d/%d failed for %s: %s",
                self.source.name, retry_state.attempt_number, max_retries, url,
                retry_state.outcome.exception(),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_retries),
            wait=wait_incrementing(start=base_delay, increment=base_delay),
            after=log_failure,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._goto(url, timeout)
        except Exception as e:
            raise NavigationError(url, max_retries, e) from e
        return True

    # -- best effort accessors --------------------------------------------------
    @abstractmethod
    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> bool:
        ...

    @abstractmethod
    async def extract_text(self, selector: str) -> str:
        ...

    @abstractmethod
    async def extract_text_multiple(self, selector: str) -> list[str]:
        ...

    @abstractmethod
    async def extract_attribute(self, selector: str, attribute: str) -> str:
        ...

    @abstractmethod
    async def click_element(self, selector: str) -> bool:
        ...

    @abstractmethod
    async def type_text(self, selector: str, text: str) -> bool:
        ...

    @abstractmethod
    async def get_page_content(self) -> str:
        ...

    @abstractmethod
    async def get_body_text(self) -> str:
        ...

    @abstractmethod
    def get_current_url(self) -> str:
        ...

    @abstractmethod
    async def take_screenshot(self, path: Optional[str] = None) -> Optional[bytes]:
        ...

    async def extract_href(self, selector: str) -> str:
        return await self.extract_attribute(selector, "href")

    async def element_exists(self, selector: str) -> bool:
        return await self.wait_for_selector(selector, timeout=0)

    async def has_anti_bot_protection(self) -> bool:
        """Scan the rendered page text for bot-detection vocabulary."""
        if not self._ready():
            return False
        try:
            text = await self.get_body_text()
        except Exception as e:
            logger.debug("%s: anti-bot check failed: %s", self.source.name, e)
            return False
        return text_has_anti_bot_markers(text)

    # -- helpers ---------------------------------------------------------------
    def build_headers(self) -> dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        headers.update(self.source.config.headers)
        return headers

    def _ready(self) -> bool:
        if not self.is_initialized:
            logger.debug("%s driver for %s used before initialize()", self.backend, self.source.name)
        return self.is_initialized

    def _require_initialized(self):
        if not self.is_initialized:
            raise DriverNotInitializedError(f"{self.backend} driver for {self.source.name} is not initialized")
