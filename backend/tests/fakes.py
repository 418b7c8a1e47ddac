"""Test doubles for the browser, platform drivers and the clock.

Browser objects are replaced by small fakes that serve canned HTML, so the
driver, session and challenge code runs unchanged without Playwright.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from pricescout.scrapers.base import BasePlatformDriver, RawExtraction
from pricescout.scrapers.challenge import ChallengeHandler
from pricescout.scrapers.factory import DriverFactory
from pricescout.scrapers.platform import ExtractionConfidence, Platform
from pricescout.scrapers.session import CrawlSessionFactory
from pricescout.scrapers.utils.identity import IdentityManager
from pricescout.scrapers.utils.rate_limiter import NoRateLimiter


# ============================================================================
# FAKE BROWSER
# ============================================================================


class FakePage:
    """Stands in for a Playwright page.

    ``routes`` maps URL substrings to HTML. ``contents`` optionally scripts
    successive ``content()`` results (the last one repeats) and
    ``reload_html`` what the page shows after a reload, which is how tests
    model a challenge page clearing up.
    """

    def __init__(
        self,
        routes: Optional[Dict[str, str]] = None,
        contents: Optional[List[str]] = None,
        goto_error: Optional[Exception] = None,
        reload_html: Optional[str] = None,
        default_html: str = "<html><body></body></html>",
    ):
        self.routes = routes or {}
        self.contents = list(contents or [])
        self.goto_error = goto_error
        self.reload_html = reload_html
        self.default_html = default_html
        self.goto_calls: List[str] = []
        self.reload_calls = 0
        self.html = default_html

    async def goto(self, url, **kwargs):
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self.html = next((html for key, html in self.routes.items() if key in url), self.default_html)

    async def wait_for_selector(self, selector, **kwargs):
        return None

    async def content(self):
        if self.contents:
            self.html = self.contents.pop(0)
        return self.html

    async def reload(self, **kwargs):
        self.reload_calls += 1
        if self.reload_html is not None:
            self.html = self.reload_html

    async def query_selector(self, selector):
        return None


class FakeContext:
    def __init__(self, page: FakePage):
        self.page = page
        self.closed = False

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Hands out one scripted page per context.

    ``pages`` are used in order; once exhausted, ``page_factory`` builds the
    rest.
    """

    def __init__(self, pages: Optional[List[FakePage]] = None, page_factory: Optional[Callable[[], FakePage]] = None):
        self.pages = list(pages or [])
        self.page_factory = page_factory or FakePage
        self.contexts: List[FakeContext] = []
        self.identities = []

    async def new_context(self, identity):
        self.identities.append(identity)
        page = self.pages.pop(0) if self.pages else self.page_factory()
        context = FakeContext(page)
        self.contexts.append(context)
        return context


def fast_challenge_factory(max_retries: int = 1):
    """Challenge handlers with millisecond waits."""

    def factory(platform: Platform, markers):
        return ChallengeHandler(
            platform.value,
            extra_markers=markers,
            wait_ceiling=0.05,
            poll_interval=0.01,
            max_retries=max_retries,
            reload_timeout=1,
        )

    return factory


def make_session_factory(browser: FakeBrowser, **kwargs) -> CrawlSessionFactory:
    kwargs.setdefault("challenge_factory", fast_challenge_factory())
    return CrawlSessionFactory(
        browser=browser,
        identity_manager=kwargs.pop("identity_manager", IdentityManager()),
        rate_limiter=NoRateLimiter(),
        **kwargs,
    )


# ============================================================================
# STUB DRIVERS
# ============================================================================


def raw(
    platform: Platform,
    source_id: str,
    price,
    rating: Optional[float] = None,
    title: Optional[str] = None,
    brand: Optional[str] = None,
    confidence: ExtractionConfidence = ExtractionConfidence.DIRECT,
) -> RawExtraction:
    return RawExtraction(
        platform=platform,
        source_id=source_id,
        title=title or f"{platform.value} item {source_id}",
        price_text=price,
        product_url=f"https://example.test/{platform.value}/{source_id}",
        rating=rating,
        brand=brand,
        confidence=confidence,
    )


def stub_driver(target_platform: Platform, search=None, details=None, reviews=None, native=frozenset()):
    """Build a driver class whose operations are the given coroutines.

    The class records every search query in ``calls``.
    """
    calls: List[str] = []

    class StubDriver(BasePlatformDriver):
        platform = target_platform
        native_filters = native

        def build_search_url(self, query, filters, page):
            return ""

        def parse_search_page(self, html):
            return []

        def build_product_url(self, source_id):
            return ""

        def parse_product_page(self, html, source_id):
            return None

        def build_reviews_url(self, source_id, page):
            return ""

        def parse_reviews_page(self, html, source_id):
            return []

        async def search_products(self, query, filters=None, max_pages=1):
            calls.append(query)
            return await search(query, filters, max_pages) if search else []

        async def get_product_details(self, source_id):
            return await details(source_id) if details else None

        async def get_product_reviews(self, source_id, page=1):
            return await reviews(source_id, page) if reviews else []

    StubDriver.calls = calls
    return StubDriver


def returning(*items: RawExtraction):
    async def search(query, filters, max_pages):
        return list(items)

    return search


def raising(exc: Exception):
    async def search(query, filters, max_pages):
        raise exc

    return search


def driver_factory_with(*driver_classes) -> DriverFactory:
    factory = DriverFactory(session_factory=None, retry_wait=0)
    for driver_class in driver_classes:
        factory.register_driver(driver_class)
    return factory


# ============================================================================
# CACHE AND DATABASE
# ============================================================================


class ManualClock:
    """Controllable UTC clock for TTL tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

