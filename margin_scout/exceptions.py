"""
Exception hierarchy for Margin Scout.

Errors local to a single product, source or search term are logged and
swallowed by the scrapers and the manager. The exceptions below are the ones
that cross component boundaries.
"""


class ScoutError(Exception):
    """Base class for all Margin Scout errors."""


# -----------------------------------------------------------------------------
# Browser automation
# -----------------------------------------------------------------------------
class DriverError(ScoutError):
    """Base class for browser driver errors."""


class DriverInitializationError(DriverError):
    """Raised when every launch profile of a driver failed."""


class DriverNotInitializedError(DriverError):
    """Raised when a driver accessor is used before initialize()."""


class NavigationError(DriverError):
    """Raised when navigation still fails after all retries."""

    def __init__(self, url: str, attempts: int, cause: Exception | None = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Navigation to {url} failed after {attempts} attempt(s): {cause}")


# -----------------------------------------------------------------------------
# Job orchestration
# -----------------------------------------------------------------------------
class JobError(ScoutError):
    """Base class for job lifecycle errors."""


class JobAlreadyRunningError(JobError):
    def __init__(self, job_id: str | None = None):
        self.job_id = job_id
        super().__init__(f"Scraping job already in progress (job {job_id})")


class NoJobRunningError(JobError):
    def __init__(self):
        super().__init__("No job currently running")


# -----------------------------------------------------------------------------
# Currency
# -----------------------------------------------------------------------------
class CurrencyError(ScoutError):
    """Base class for currency errors."""


class ExchangeRateNotFound(CurrencyError):
    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"No exchange rate found for {from_currency} to {to_currency}")


class CurrencyConversionError(CurrencyError):
    def __init__(self, from_currency: str, to_currency: str, cause: Exception | None = None):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"Currency conversion failed: {from_currency} to {to_currency} ({cause})")


# -----------------------------------------------------------------------------
# Normalization
# -----------------------------------------------------------------------------
class NormalizationError(ScoutError, ValueError):
    """Raised when a supplier sheet lacks a column the mapping requires."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required column(s): {', '.join(missing)}")
