"""Crawl sessions: one identity, one browser context, one page budget."""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Sequence

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricescout.core.exceptions import (
    NavigationTimeout,
    PageBudgetExhausted,
    ScraperError,
    SessionStartError,
)

from .challenge import ChallengeHandler
from .platform import Platform
from .utils.browser_manager import BrowserManager
from .utils.identity import Identity, IdentityManager
from .utils.rate_limiter import HostRateLimiter

logger = structlog.get_logger(__name__)

# Playwright network errors that mean the site was unreachable rather than broken
_UNREACHABLE_ERRORS = (
    "net::ERR_TIMED_OUT",
    "net::ERR_CONNECTION",
    "net::ERR_PROXY",
    "net::ERR_TUNNEL",
    "net::ERR_NAME_NOT_RESOLVED",
    "net::ERR_NETWORK_CHANGED",
    "net::ERR_EMPTY_RESPONSE",
)

ChallengeFactory = Callable[[Platform, Sequence[str]], ChallengeHandler]


class CrawlSession:
    """A single driver invocation's view of the browser.

    Drivers only ever see HTML through ``navigate``, so every page load is
    rate limited, counted against the page budget and inspected by the
    challenge handler.
    """

    def __init__(
        self,
        platform: Platform,
        identity: Identity,
        page,
        challenge_handler: ChallengeHandler,
        rate_limiter: HostRateLimiter,
        page_budget: int = 8,
        navigation_timeout: float = 30.0,
    ):
        self.session_id = uuid.uuid4().hex[:12]
        self.platform = platform
        self.identity = identity
        self.page = page
        self.challenge_handler = challenge_handler
        self.rate_limiter = rate_limiter
        self.page_budget = page_budget
        self.navigation_timeout = navigation_timeout
        self.pages_loaded = 0
        self.logger = logger.bind(platform=platform.value, session_id=self.session_id)

    @property
    def retry_count(self) -> int:
        """Challenge retries spent so far; never decreases."""
        return self.challenge_handler.retries_used

    def has_budget(self) -> bool:
        return self.pages_loaded < self.page_budget

    async def navigate(
        self,
        url: str,
        wait_selector: Optional[str] = None,
        ready_markers: Sequence[str] = (),
    ) -> str:
        """Load ``url`` and return its HTML once any challenge is cleared.

        Raises:
            PageBudgetExhausted: if the session has no page loads left
            NavigationTimeout: if the site did not answer in time
            ChallengeUnresolved: if a challenge page could not be cleared
        """
        if not self.has_budget():
            raise PageBudgetExhausted(self.platform.value, self.page_budget)

        await self.rate_limiter.acquire(url)
        self.pages_loaded += 1
        self.logger.debug("navigate", url=url, page_number=self.pages_loaded)

        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(self.platform.value, url) from e
        except PlaywrightError as e:
            if any(code in str(e) for code in _UNREACHABLE_ERRORS):
                raise NavigationTimeout(self.platform.value, url) from e
            raise ScraperError(self.platform.value, f"navigation failed for {url}: {e}") from e

        if wait_selector:
            try:
                await self.page.wait_for_selector(wait_selector, timeout=min(self.navigation_timeout, 10.0) * 1000)
            except PlaywrightTimeoutError:
                # Challenge pages and empty result pages never render the selector
                self.logger.debug("wait_selector_missing", selector=wait_selector)

        html = await self.page.content()
        return await self.challenge_handler.inspect(self.page, html, url, ready_markers)


class CrawlSessionFactory:
    """Opens fresh crawl sessions for platform drivers.

    A session is never reused: each ``open`` allocates a new identity and a
    new browser context, and the context is closed on every exit path.
    """

    def __init__(
        self,
        browser: BrowserManager,
        identity_manager: IdentityManager,
        rate_limiter: Optional[HostRateLimiter] = None,
        challenge_factory: Optional[ChallengeFactory] = None,
        page_budget: int = 8,
        navigation_timeout: float = 30.0,
        allow_direct_route: bool = True,
    ):
        self.browser = browser
        self.identity_manager = identity_manager
        self.rate_limiter = rate_limiter or HostRateLimiter()
        self.challenge_factory = challenge_factory or (
            lambda platform, markers: ChallengeHandler(platform.value, extra_markers=markers)
        )
        self.page_budget = page_budget
        self.navigation_timeout = navigation_timeout
        self.allow_direct_route = allow_direct_route
        self.sessions_opened = 0

    @asynccontextmanager
    async def open(self, platform: Platform, challenge_markers: Sequence[str] = ()) -> AsyncIterator[CrawlSession]:
        """Yield a new CrawlSession for ``platform``.

        Raises:
            SessionStartError: if no usable route or browser context exists
        """
        identity = self.identity_manager.allocate(platform.value)
        if not identity.routed and not self.allow_direct_route:
            raise SessionStartError(platform.value, "no egress route available and direct route disabled")

        context = None
        try:
            context = await self.browser.new_context(identity)
            page = await context.new_page()
        except PlaywrightError as e:
            if context is not None:
                await self._close_context(context, platform)
            raise SessionStartError(platform.value, f"could not open browser context: {e}") from e
        except BaseException:
            # Deadline cancellation while the context was being prepared
            if context is not None:
                await self._close_context(context, platform)
            raise

        self.sessions_opened += 1
        session = CrawlSession(
            platform=platform,
            identity=identity,
            page=page,
            challenge_handler=self.challenge_factory(platform, challenge_markers),
            rate_limiter=self.rate_limiter,
            page_budget=self.page_budget,
            navigation_timeout=self.navigation_timeout,
        )
        session.logger.info("crawl_session_opened", identity_id=identity.identity_id, routed=identity.routed)

        try:
            yield session
        except NavigationTimeout:
            self.identity_manager.report_failure(identity)
            raise
        else:
            self.identity_manager.report_success(identity)
        finally:
            await self._close_context(context, platform)
            session.logger.info(
                "crawl_session_closed",
                pages_loaded=session.pages_loaded,
                challenge_state=session.challenge_handler.state.value,
            )

    async def _close_context(self, context, platform: Platform) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.warning("browser_context_close_failed", platform=platform.value, error=str(e))
