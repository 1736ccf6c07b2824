"""
HTTP Browser Driver.

A lightweight BrowserDriver that needs no browser binary: pages are fetched
with curl_cffi (impersonating a real browser's TLS fingerprint) and parsed with
BeautifulSoup. Element accessors run CSS selectors against the parsed
document; click_element() follows links and submits forms, type_text() fills
form inputs.

Session profiles are tried in order: curl_cffi with the configured
impersonation, curl_cffi impersonating Safari, a plain curl_cffi session, and
finally a cloudscraper session for Cloudflare-fronted sites.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode, urljoin

import cloudscraper
from bs4 import BeautifulSoup
from curl_cffi.requests import AsyncSession

from margin_scout.drivers.base_driver import BrowserDriver
from margin_scout.exceptions import DriverInitializationError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class SessionProfile:
    name: str
    kind: str  # "curl" or "cloudscraper"
    impersonate: Optional[str] = None


class HttpDriver(BrowserDriver):
    backend = "http"

    def __init__(self, source, settings=None, serverless=None):
        super().__init__(source, settings, serverless)
        self._session = None
        self._profile: Optional[SessionProfile] = None
        self._soup: Optional[BeautifulSoup] = None
        self._html = ""
        self._url = ""
        self.last_status: Optional[int] = None

    def session_profiles(self) -> list[SessionProfile]:
        return [
            SessionProfile("curl-impersonate", "curl", self.settings.http_impersonate),
            SessionProfile("curl-safari", "curl", "safari17_0"),
            SessionProfile("curl-plain", "curl", None),
            SessionProfile("cloudscraper", "cloudscraper"),
        ]

    # -- lifecycle -------------------------------------------------------------
    async def initialize(self) -> None:
        if self.is_initialized:
            return

        errors = []
        for profile in self.session_profiles():
            try:
                self._session = self._open_session(profile)
            except Exception as e:
                logger.warning("Session profile %s failed for %s: %s", profile.name, self.source.name, e)
                errors.append(f"{profile.name}: {e}")
                continue

            self._profile = profile
            self.is_initialized = True
            logger.info("HTTP driver initialized for %s with profile %s", self.source.name, profile.name)
            return

        await self.cleanup()
        raise DriverInitializationError(
            f"Scraper initialization failed for {self.source.name}: " + "; ".join(errors)
        )

    def _open_session(self, profile: SessionProfile):
        headers = self.build_headers()
        headers["User-Agent"] = self.user_agent
        proxy = self.source.config.proxy_url
        proxies = {"http": proxy, "https": proxy} if proxy else None

        if profile.kind == "cloudscraper":
            session = cloudscraper.create_scraper()
            session.headers.update(headers)
            if proxies:
                session.proxies.update(proxies)
            return session

        kwargs = {"headers": headers, "proxies": proxies}
        if profile.impersonate:
            kwargs["impersonate"] = profile.impersonate
        return AsyncSession(**kwargs)

    async def cleanup(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            try:
                if self._profile is not None and self._profile.kind == "cloudscraper":
                    session.close()
                else:
                    await session.close()
            except Exception as e:
                logger.error("Error closing HTTP session for %s: %s", self.source.name, e)
        self._profile = None
        self._soup = None
        self._html = ""
        self._url = ""
        self.is_initialized = False

    async def health_check(self) -> bool:
        if not self.is_initialized or self._session is None:
            return False
        try:
            status, _, _ = await self._fetch("GET", self.source.base_url, timeout=10)
            return status < 500
        except Exception as e:
            logger.warning("Health check failed for %s: %s", self.source.name, e)
            return False

    # -- transport -------------------------------------------------------------
    async def _fetch(self, method: str, url: str, data: Optional[dict] = None,
                     timeout: Optional[float] = None) -> tuple[int, str, str]:
        """Perform one request and return (status, body, final url)."""
        timeout = timeout or self.navigation_timeout
        if self._profile.kind == "cloudscraper":
            loop = asyncio.get_running_loop()
            call = partial(self._session.request, method, url, data=data, timeout=timeout)
            response = await loop.run_in_executor(None, call)
        else:
            response = await self._session.request(method, url, data=data, timeout=timeout)
        return response.status_code, response.text, str(response.url)

    async def _goto(self, url: str, timeout: float) -> None:
        await self._load("GET", url, timeout=timeout)

    async def _load(self, method: str, url: str, data: Optional[dict] = None,
                    timeout: Optional[float] = None):
        status, body, final_url = await self._fetch(method, url, data=data, timeout=timeout)
        self.last_status = status
        if status in RETRYABLE_STATUS:
            raise RuntimeError(f"HTTP {status} from {url}")
        # Blocked pages (403) are kept so the anti-bot check can inspect them
        self.set_content(body, final_url or url)

    def set_content(self, html: str, url: str = ""):
        """Replace the current page with ``html`` as if it had been navigated to."""
        self._html = html or ""
        self._url = url
        self._soup = BeautifulSoup(self._html, "lxml")

    def _select_one(self, selector: str):
        if self._soup is None:
            return None
        try:
            return self._soup.select_one(selector)
        except Exception as e:
            logger.debug("Invalid selector %s: %s", selector, e)
            return None

    # -- best effort accessors --------------------------------------------------
    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> bool:
        if not self._ready():
            return False
        # Static documents never change, so there is nothing to wait for
        return self._select_one(selector) is not None

    async def extract_text(self, selector: str) -> str:
        if not self._ready():
            return ""
        element = self._select_one(selector)
        return element.get_text(" ", strip=True) if element is not None else ""

    async def extract_text_multiple(self, selector: str) -> list[str]:
        if not self._ready():
            return []
        if self._soup is None:
            return []
        try:
            elements = self._soup.select(selector)
        except Exception as e:
            logger.debug("Invalid selector %s: %s", selector, e)
            return []
        texts = [element.get_text(" ", strip=True) for element in elements]
        return [text for text in texts if text]

    async def extract_attribute(self, selector: str, attribute: str) -> str:
        if not self._ready():
            return ""
        element = self._select_one(selector)
        if element is None:
            return ""
        value = element.get(attribute)
        if isinstance(value, list):
            value = " ".join(value)
        return value or ""

    async def click_element(self, selector: str) -> bool:
        if not self._ready():
            return False
        element = self._select_one(selector)
        if element is None:
            return False

        try:
            href = element.get("href")
            if href:
                await self._load("GET", urljoin(self._url, href))
                return True

            form = element.find_parent("form") if element.name != "form" else element
            if form is not None:
                await self._submit_form(form)
                return True
        except Exception as e:
            logger.debug("Failed to click element %s: %s", selector, e)
        return False

    async def _submit_form(self, form):
        action = urljoin(self._url, form.get("action") or self._url)
        method = (form.get("method") or "GET").upper()
        fields = {}
        for field_element in form.select("input[name], select[name], textarea[name]"):
            fields[field_element["name"]] = field_element.get("value", "")

        if method == "GET":
            separator = "&" if "?" in action else "?"
            await self._load("GET", f"{action}{separator}{urlencode(fields)}")
        else:
            await self._load(method, action, data=fields)

    async def type_text(self, selector: str, text: str) -> bool:
        if not self._ready():
            return False
        element = self._select_one(selector)
        if element is None or element.name not in ("input", "textarea"):
            return False
        element["value"] = text
        return True

    async def get_page_content(self) -> str:
        if not self._ready():
            return ""
        return self._html

    async def get_body_text(self) -> str:
        if not self._ready():
            return ""
        if self._soup is None:
            return ""
        body = self._soup.body or self._soup
        return body.get_text(" ", strip=True)

    def get_current_url(self) -> str:
        return self._url

    async def take_screenshot(self, path: Optional[str] = None) -> Optional[bytes]:
        """HTML snapshot of the current page; there is no rendering to capture."""
        if not self._ready():
            return None
        snapshot = self._html.encode("utf-8")
        if path:
            try:
                Path(path).write_bytes(snapshot)
            except OSError as e:
                logger.warning("Failed to write page snapshot to %s: %s", path, e)
                return None
        return snapshot
