import asyncio
import inspect
import logging
import random
import re
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urlparse

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

NUMBER_PATTERN = re.compile(r"\d+(?:[.,\s']\d{3})*(?:[.,]\d{1,2})?(?!\d)")


def setup_logging(level: str = "INFO"):
    """Configure root logging for command line use. Library code only uses module loggers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


async def maybe_await(value):
    """Await ``value`` if a callback returned an awaitable, otherwise return it."""
    if inspect.isawaitable(value):
        return await value
    return value


async def jittered_sleep(base: float, jitter: float = 0.0, sleep=asyncio.sleep):
    delay = base + (random.uniform(0, jitter) if jitter > 0 else 0.0)
    if delay > 0:
        await sleep(delay)


def safe_get_host(url: str) -> str:
    """Host part of a URL, or an empty string if it cannot be parsed."""
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def host_matches(host: str, domain: str) -> bool:
    """True when ``host`` is ``domain`` or one of its subdomains."""
    domain = domain.lower().lstrip(".")
    return host == domain or host.endswith("." + domain)


def parse_price(text: str, decimal_separator: Optional[str] = None) -> Optional[Decimal]:
    """
    Parse a localized price string into a Decimal.

    Currency symbols, whitespace and thousands separators are stripped and the
    non-numeric remainder is ignored. The last separator followed by one or
    two digits is the decimal point; a lone three-digit group is a thousands
    group unless it uses the locale's ``decimal_separator``.

    Example:
        >>> parse_price("€ 1.234,56")
        Decimal('1234.56')
        >>> parse_price("1,299.00 USD")
        Decimal('1299.00')
    """
    if not text:
        return None

    match = NUMBER_PATTERN.search(text)
    if not match:
        return None

    number = re.sub(r"[\s']", "", match.group()).rstrip(".,")
    last_sep = max(number.rfind(","), number.rfind("."))
    is_decimal = False
    if last_sep != -1:
        sep = number[last_sep]
        digits_after = len(number) - last_sep - 1
        if digits_after <= 2:
            is_decimal = True
        elif sep == decimal_separator and number.count(",") + number.count(".") == 1:
            # "1,299" is a thousands group unless the locale says "," is the decimal point
            is_decimal = True

    if is_decimal:
        whole = re.sub(r"[.,]", "", number[:last_sep]) or "0"
        number = f"{whole}.{number[last_sep + 1:]}"
    else:
        number = re.sub(r"[.,]", "", number)

    try:
        return Decimal(number)
    except InvalidOperation:
        return None
