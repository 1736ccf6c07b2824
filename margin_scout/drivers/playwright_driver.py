"""
Playwright Browser Driver.

Drives headless Chromium through playwright.async_api. The launch profile
depends on the environment: serverless platforms get tight timeouts, a
minimal argument set and, when configured, a dedicated lightweight Chromium
binary; a desktop machine gets the full local browser. If a launch fails the
driver walks the remaining, progressively more minimal profiles before giving
up.

Classes:
    LaunchProfile: One browser launch configuration.
    PlaywrightDriver: BrowserDriver backed by Playwright Chromium.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import async_playwright

from margin_scout.drivers.base_driver import DEFAULT_VIEWPORT, BrowserDriver
from margin_scout.exceptions import DriverInitializationError

logger = logging.getLogger(__name__)

SERVERLESS_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--single-process",
    "--no-zygote",
    "--disable-background-timer-throttling",
    "--disable-renderer-backgrounding",
    "--disable-backgrounding-occluded-windows",
    "--disable-extensions",
]

DESKTOP_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-features=TranslateUI",
]

MINIMAL_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--single-process"]


@dataclass
class LaunchProfile:
    name: str
    args: list[str] = field(default_factory=list)
    timeout: float = 30.0  # seconds
    executable_path: Optional[str] = None
    headless: bool = True


class PlaywrightDriver(BrowserDriver):
    """
    BrowserDriver backed by Playwright Chromium.

    Example:
        >>> driver = PlaywrightDriver(source)
        >>> await driver.initialize()
        >>> await driver.navigate_to_url("https://www.bol.com/nl/nl/s?searchtext=chanel")
        >>> title = await driver.extract_text("h1")
        >>> await driver.cleanup()
    """

    backend = "playwright"

    def __init__(self, source, settings=None, serverless=None):
        super().__init__(source, settings, serverless)
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    # -- launch profiles -------------------------------------------------------
    def launch_profiles(self) -> list[LaunchProfile]:
        """Ordered launch profiles: preferred first, most minimal last."""
        settings = self.settings
        proxy_args = []
        if self.source.config.proxy_url:
            proxy_args = [f"--proxy-server={self.source.config.proxy_url}"]

        if self.serverless:
            profiles = []
            if settings.chromium_executable_path:
                profiles.append(LaunchProfile(
                    name="serverless-lightweight-binary",
                    args=SERVERLESS_ARGS + proxy_args,
                    timeout=settings.serverless_launch_timeout,
                    executable_path=settings.chromium_executable_path,
                ))
            profiles.append(LaunchProfile(
                name="serverless-bundled",
                args=SERVERLESS_ARGS + proxy_args,
                timeout=settings.serverless_launch_timeout,
            ))
            profiles.append(LaunchProfile(
                name="serverless-minimal",
                args=list(MINIMAL_ARGS),
                timeout=settings.launch_timeout * 2,
            ))
            return profiles

        return [
            LaunchProfile(
                name="desktop",
                args=DESKTOP_ARGS + proxy_args,
                timeout=settings.launch_timeout,
                executable_path=settings.chromium_executable_path,
                headless=self.source.config.use_headless,
            ),
            LaunchProfile(
                name="desktop-minimal",
                args=list(MINIMAL_ARGS),
                timeout=settings.launch_timeout,
            ),
        ]

    # -- lifecycle -------------------------------------------------------------
    async def initialize(self) -> None:
        if self.is_initialized:
            return

        logger.info("Starting Playwright initialization for %s", self.source.name)
        start = time.perf_counter()
        errors = []

        try:
            self._playwright = await async_playwright().start()
        except Exception as e:
            await self.cleanup()
            raise DriverInitializationError(
                f"Playwright could not start for {self.source.name}: {e}"
            ) from e

        for profile in self.launch_profiles():
            try:
                await self._launch(profile)
            except Exception as e:
                logger.warning(
                    "Launch profile %s failed for %s: %s", profile.name, self.source.name, e
                )
                errors.append(f"{profile.name}: {e}")
                await self._close_browser()
                continue

            self.is_initialized = True
            logger.info(
                "Playwright initialized for %s with profile %s in %.2fs",
                self.source.name, profile.name, time.perf_counter() - start,
            )
            return

        await self.cleanup()
        raise DriverInitializationError(
            f"Scraper initialization failed for {self.source.name}: " + "; ".join(errors)
        )

    async def _launch(self, profile: LaunchProfile):
        timeout_ms = profile.timeout * 1000
        launch = self._playwright.chromium.launch(
            headless=profile.headless,
            args=profile.args,
            executable_path=profile.executable_path,
            timeout=timeout_ms,
        )
        if self.serverless:
            # Launch can hang on constrained platforms, so bound it from outside too
            self._browser = await asyncio.wait_for(launch, timeout=profile.timeout)
        else:
            self._browser = await launch

        self._context = await self._browser.new_context(
            viewport=DEFAULT_VIEWPORT,
            user_agent=self.user_agent,
            extra_http_headers=self.build_headers(),
        )
        self._context.set_default_timeout(self.settings.selector_timeout * 1000)
        self._page = await self._context.new_page()

    async def _close_browser(self):
        for attr in ("_page", "_context", "_browser"):
            resource = getattr(self, attr)
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.debug("Error closing %s for %s: %s", attr, self.source.name, e)
            setattr(self, attr, None)

    async def cleanup(self) -> None:
        await self._close_browser()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.error("Error stopping Playwright for %s: %s", self.source.name, e)
            self._playwright = None
        self.is_initialized = False

    async def health_check(self) -> bool:
        if not self.is_initialized or self._page is None:
            return False
        try:
            await self._page.goto("data:text/html,<html><body>ok</body></html>", timeout=5000)
            return True
        except Exception as e:
            logger.warning("Health check failed for %s: %s", self.source.name, e)
            return False

    # -- navigation ------------------------------------------------------------
    async def _goto(self, url: str, timeout: float) -> None:
        await self._page.goto(url, wait_until="networkidle", timeout=timeout * 1000)

    # -- best effort accessors --------------------------------------------------
    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> bool:
        if not self._ready():
            return False
        if timeout is None:
            timeout = self.settings.selector_timeout
        try:
            if timeout <= 0:
                return await self._page.query_selector(selector) is not None
            await self._page.wait_for_selector(selector, timeout=timeout * 1000)
            return True
        except Exception:
            return False

    async def extract_text(self, selector: str) -> str:
        if not self._ready():
            return ""
        try:
            element = await self._page.query_selector(selector)
            if element is None:
                return ""
            text = await element.text_content()
            return (text or "").strip()
        except Exception as e:
            logger.debug("Failed to extract text from %s: %s", selector, e)
            return ""

    async def extract_text_multiple(self, selector: str) -> list[str]:
        if not self._ready():
            return []
        try:
            elements = await self._page.query_selector_all(selector)
            texts = []
            for element in elements:
                text = ((await element.text_content()) or "").strip()
                if text:
                    texts.append(text)
            return texts
        except Exception as e:
            logger.debug("Failed to extract multiple texts from %s: %s", selector, e)
            return []

    async def extract_attribute(self, selector: str, attribute: str) -> str:
        if not self._ready():
            return ""
        try:
            element = await self._page.query_selector(selector)
            if element is None:
                return ""
            return (await element.get_attribute(attribute)) or ""
        except Exception as e:
            logger.debug("Failed to extract attribute %s from %s: %s", attribute, selector, e)
            return ""

    async def click_element(self, selector: str) -> bool:
        if not self._ready():
            return False
        try:
            await self._page.click(selector)
            return True
        except Exception as e:
            logger.debug("Failed to click element %s: %s", selector, e)
            return False

    async def type_text(self, selector: str, text: str) -> bool:
        if not self._ready():
            return False
        try:
            await self._page.fill(selector, text)
            return True
        except Exception as e:
            logger.debug("Failed to type text into %s: %s", selector, e)
            return False

    async def get_page_content(self) -> str:
        if not self._ready():
            return ""
        try:
            return await self._page.content()
        except Exception as e:
            logger.warning("Failed to get page content for %s: %s", self.source.name, e)
            return ""

    async def get_body_text(self) -> str:
        if not self._ready():
            return ""
        try:
            return await self._page.inner_text("body")
        except Exception:
            return ""

    def get_current_url(self) -> str:
        return self._page.url if self._page is not None else ""

    async def take_screenshot(self, path: Optional[str] = None) -> Optional[bytes]:
        if not self._ready():
            return None
        try:
            return await self._page.screenshot(full_page=True, path=path)
        except Exception as e:
            logger.warning("Failed to take screenshot for %s: %s", self.source.name, e)
            return None
