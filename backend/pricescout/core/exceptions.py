"""Custom exception classes for the application."""

from typing import Optional


class PriceScoutException(Exception):
    """Base exception for all PriceScout errors."""

    def __init__(self, message: str = "An unexpected error occurred"):
        self.message = message
        super().__init__(self.message)


class ScraperError(PriceScoutException):
    """Raised when a platform driver encounters an error."""

    reason = "driver_error"

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"Scraper error for {platform}: {message}")


class NavigationTimeout(ScraperError):
    """Raised when a page could not be loaded within the navigation timeout."""

    reason = "navigation_timeout"

    def __init__(self, platform: str, url: str):
        self.url = url
        super().__init__(platform, f"navigation timed out for {url}")


class ChallengeUnresolved(ScraperError):
    """Raised when an anti-bot challenge page could not be cleared."""

    reason = "challenge_unresolved"

    def __init__(self, platform: str, url: str, marker: Optional[str] = None):
        self.url = url
        self.marker = marker
        super().__init__(platform, f"challenge not resolved at {url} (marker: {marker})")


class SessionStartError(ScraperError):
    """Raised when a crawl session could not be opened at all."""

    reason = "session_start_failed"


class PageBudgetExhausted(ScraperError):
    """Raised when a crawl session has used all of its page loads."""

    reason = "page_budget_exhausted"

    def __init__(self, platform: str, budget: int):
        self.budget = budget
        super().__init__(platform, f"page budget of {budget} exhausted")


class MalformedPrice(PriceScoutException):
    """Raised when price text does not contain a usable number."""

    def __init__(self, raw: object):
        self.raw = raw
        super().__init__(f"Malformed price: {raw!r}")


class CrawlBusy(PriceScoutException):
    """Raised when another multi-platform crawl holds the admission slot."""

    def __init__(self, retry_after: int = 5):
        self.retry_after = retry_after
        super().__init__("Another search is being crawled, try again shortly")


class CacheUnavailable(PriceScoutException):
    """Raised when the search cache backend cannot be reached."""

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"Cache backend '{backend}' unavailable: {message}")


class UnsupportedPlatformError(PriceScoutException):
    """Raised when a request names a platform with no driver."""

    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"Unsupported platform: {platform}")


class CrawlInfrastructureError(PriceScoutException):
    """Raised when no platform driver could even start a session."""
