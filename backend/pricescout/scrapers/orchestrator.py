"""Crawl orchestration: cache lookup, admission control, fan-out and merge.

``CrawlOrchestrator.search`` is the single entry point for multi-platform
searches. A fresh cache hit returns immediately. Otherwise identical
concurrent searches share one producer (single-flight), the producer takes
the process-wide admission slot, and every requested platform runs in its
own task under a deadline. A failing platform contributes an error entry
and no results; it never takes its siblings down with it.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import AsyncIterator, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog
from playwright.async_api import Error as PlaywrightError

from pricescout.config import Settings
from pricescout.core.exceptions import (
    CacheUnavailable,
    CrawlBusy,
    CrawlInfrastructureError,
    ScraperError,
    SessionStartError,
    UnsupportedPlatformError,
)
from pricescout.services.cache_service import CacheEntry, SearchCache

from .base import ProductDetails, RawExtraction, RawReview
from .factory import DriverFactory
from .merger import ProductRecord, ResultMerger
from .platform import Platform
from .query import SearchFilters, SearchQueryKey
from .utils.browser_manager import BrowserManager

logger = structlog.get_logger(__name__)


@dataclass
class PlatformError:
    """Why one platform contributed no results."""

    platform: Platform
    reason: str
    message: str

    def __str__(self) -> str:
        return f"{self.platform.value}: {self.reason}: {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return {"platform": self.platform.value, "reason": self.reason, "message": self.message}

    @classmethod
    def from_dict(cls, data: Mapping[str, str]) -> "PlatformError":
        return cls(Platform.parse(data["platform"]), data["reason"], data["message"])


@dataclass
class MergedResult:
    """Outcome of a search.

    An empty ``results`` list with no errors means the query matched
    nothing; with errors it means the platforms could not be searched.
    """

    key: SearchQueryKey
    results: List[ProductRecord]
    errors: List[PlatformError] = field(default_factory=list)
    from_cache: bool = False
    stale: bool = False

    @property
    def success(self) -> bool:
        return True

    @classmethod
    def from_entry(cls, entry: CacheEntry, **kwargs) -> "MergedResult":
        kwargs.setdefault("errors", [PlatformError.from_dict(e) for e in entry.errors])
        return cls(key=entry.key, results=list(entry.results), from_cache=True, **kwargs)


class AdmissionSlot:
    """At most one multi-platform crawl at a time, across all keys.

    Acquisition never waits: a held slot raises CrawlBusy immediately. The
    slot is released when the ``async with`` block exits for any reason,
    including cancellation.
    """

    def __init__(self, retry_after: int = 5):
        self._lock = asyncio.Lock()
        self.retry_after = retry_after
        self.holder: Optional[str] = None

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def acquire(self, owner: str) -> AsyncIterator[None]:
        if self._lock.locked():
            logger.info("admission_rejected", requested_by=owner, held_by=self.holder)
            raise CrawlBusy(retry_after=self.retry_after)
        await self._lock.acquire()
        self.holder = owner
        try:
            yield
        finally:
            self.holder = None
            self._lock.release()


PlatformOutcome = Tuple[Platform, Optional[List[RawExtraction]], Optional[PlatformError]]


class CrawlOrchestrator:
    """Dependency-injected search façade. The caller owns start/stop."""

    def __init__(
        self,
        driver_factory: DriverFactory,
        cache: SearchCache,
        merger: Optional[ResultMerger] = None,
        browser: Optional[BrowserManager] = None,
        enabled_platforms: Optional[Iterable[Union[str, Platform]]] = None,
        driver_timeout: float = 200.0,
        max_pages: int = 2,
        partial_ttl: timedelta = timedelta(minutes=15),
    ):
        self.driver_factory = driver_factory
        self.cache = cache
        self.merger = merger or ResultMerger()
        self.browser = browser
        self.enabled_platforms = (
            [Platform.parse(p) for p in enabled_platforms]
            if enabled_platforms is not None
            else driver_factory.list_platforms()
        )
        self.driver_timeout = driver_timeout
        self.max_pages = max_pages
        self.partial_ttl = partial_ttl
        self.admission = AdmissionSlot()
        self.logger = logger.bind(service="orchestrator")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.browser is not None:
            try:
                await self.browser.start()
            except PlaywrightError as e:
                # Sessions retry the launch; failures then show up per platform
                self.logger.warning("browser_start_deferred", error=str(e))
        self.logger.info("orchestrator_started", platforms=[p.value for p in self.enabled_platforms])

    async def stop(self) -> None:
        if self.browser is not None:
            await self.browser.stop()
        await self.cache.close()
        self.logger.info("orchestrator_stopped")

    async def __aenter__(self) -> "CrawlOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        platforms: Optional[Iterable[Union[str, Platform]]] = None,
        bypass_cache: bool = False,
        max_pages: Optional[int] = None,
    ) -> MergedResult:
        """Search the requested platforms and return one merged, sorted list.

        Raises:
            ValueError: on an empty query
            UnsupportedPlatformError: on an unknown platform name
            CrawlBusy: when another crawl holds the admission slot
            CrawlInfrastructureError: when no platform could open a session
                and no earlier result exists to fall back on
        """
        key = SearchQueryKey.build(
            query,
            platforms if platforms else self.enabled_platforms,
            filters or SearchFilters(),
        )
        pages = max_pages or self.max_pages

        if not bypass_cache:
            cached = await self._cache_get(key)
            if cached is not None:
                return MergedResult.from_entry(cached)

        return await self.cache.single_flight(key, lambda: self._crawl(key, pages, bypass_cache))

    async def _crawl(self, key: SearchQueryKey, max_pages: int, bypass_cache: bool = False) -> MergedResult:
        if not bypass_cache:
            # A producer may have stored the entry between our lookup and registering this flight
            cached = await self._cache_get(key)
            if cached is not None:
                return MergedResult.from_entry(cached)

        async with self.admission.acquire(key.cache_key):
            log = self.logger.bind(query=key.query, platforms=key.platform_set)
            log.info("crawl_started", max_pages=max_pages)

            outcomes = await asyncio.gather(
                *(self._run_platform(platform, key, max_pages) for platform in key.platforms)
            )

            batches: Dict[Platform, List[RawExtraction]] = {}
            errors: List[PlatformError] = []
            for platform, extractions, error in outcomes:
                if error is not None:
                    errors.append(error)
                else:
                    batches[platform] = extractions

            if not batches:
                return await self._total_failure(key, errors)

            report = self.merger.merge(
                batches,
                key.filters,
                {p: self.driver_factory.native_filters(p) for p in batches},
            )
            await self._cache_put(key, report.records, errors)
            log.info("crawl_finished", results=len(report.records), failed_platforms=len(errors))
            return MergedResult(key=key, results=report.records, errors=errors)

    async def _run_platform(self, platform: Platform, key: SearchQueryKey, max_pages: int) -> PlatformOutcome:
        log = self.logger.bind(platform=platform.value)
        if platform not in self.enabled_platforms:
            return platform, None, PlatformError(platform, "platform_disabled", "platform is disabled by configuration")
        try:
            driver = self.driver_factory.create_driver(platform)
        except UnsupportedPlatformError as e:
            return platform, None, PlatformError(platform, "unsupported_platform", e.message)

        try:
            extractions = await asyncio.wait_for(
                driver.search_products(key.query, key.filters, max_pages),
                timeout=self.driver_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("platform_timed_out", timeout=self.driver_timeout)
            return platform, None, PlatformError(platform, "timeout", f"no result within {self.driver_timeout:g}s")
        except ScraperError as e:
            log.warning("platform_failed", reason=e.reason, error=e.message)
            return platform, None, PlatformError(platform, e.reason, e.message)
        except Exception as e:
            log.error("platform_crashed", error=str(e), exc_info=True)
            return platform, None, PlatformError(platform, "driver_error", str(e))

        log.info("platform_finished", extractions=len(extractions))
        return platform, extractions, None

    async def _total_failure(self, key: SearchQueryKey, errors: List[PlatformError]) -> MergedResult:
        self.logger.warning("crawl_total_failure", query=key.query, errors=[str(e) for e in errors])
        stale = await self._cache_get_stale(key)
        if stale is not None:
            self.logger.info("serving_stale_results", query=key.query, created_at=stale.created_at.isoformat())
            return MergedResult.from_entry(stale, errors=errors, stale=True)

        attempted = [e for e in errors if e.reason != "platform_disabled"]
        if attempted and all(e.reason == SessionStartError.reason for e in attempted):
            raise CrawlInfrastructureError("No platform driver could start a crawl session")
        return MergedResult(key=key, results=[], errors=errors)

    # ------------------------------------------------------------------
    # Cache access that tolerates an unavailable backend
    # ------------------------------------------------------------------

    async def _cache_get(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        try:
            return await self.cache.get(key)
        except CacheUnavailable as e:
            self.logger.warning("cache_unavailable", operation="get", error=e.message)
            return None

    async def _cache_get_stale(self, key: SearchQueryKey) -> Optional[CacheEntry]:
        try:
            return await self.cache.get_stale(key)
        except CacheUnavailable as e:
            self.logger.warning("cache_unavailable", operation="get_stale", error=e.message)
            return None

    async def _cache_put(self, key: SearchQueryKey, records: List[ProductRecord], errors: List[PlatformError]) -> None:
        # Partial results expire sooner and keep their error list
        ttl = self.partial_ttl if errors else None
        try:
            await self.cache.put(key, records, ttl, errors=[e.to_dict() for e in errors])
        except CacheUnavailable as e:
            self.logger.warning("cache_unavailable", operation="put", error=e.message)

    # ------------------------------------------------------------------
    # Single-platform lookups
    # ------------------------------------------------------------------

    def _driver_for(self, platform: Union[str, Platform]):
        parsed = Platform.parse(platform)
        if parsed not in self.enabled_platforms:
            raise UnsupportedPlatformError(parsed.value)
        return self.driver_factory.create_driver(parsed)

    async def get_product_details(self, platform: Union[str, Platform], source_id: str) -> Optional[ProductDetails]:
        """Fetch one product page. Does not take the admission slot."""
        driver = self._driver_for(platform)
        return await asyncio.wait_for(driver.get_product_details(source_id), timeout=self.driver_timeout)

    async def get_product_reviews(
        self, platform: Union[str, Platform], source_id: str, page: int = 1
    ) -> List[RawReview]:
        """Fetch one page of reviews. Does not take the admission slot."""
        driver = self._driver_for(platform)
        return await asyncio.wait_for(driver.get_product_reviews(source_id, page), timeout=self.driver_timeout)


def build_orchestrator(config: Settings) -> CrawlOrchestrator:
    """Wire an orchestrator from settings. The caller must start and stop it."""
    from pricescout.db.session import async_session_factory
    from pricescout.services.cache_service import build_search_cache

    from .challenge import ChallengeHandler, ClickThroughSolver
    from .register_drivers import register_all_drivers
    from .session import CrawlSessionFactory
    from .utils.identity import IdentityManager
    from .utils.proxy_manager import NoProxyManager, ProxyManager
    from .utils.rate_limiter import HostRateLimiter

    proxy_urls = config.get_proxy_list()
    if proxy_urls:
        proxy_manager = ProxyManager(proxy_urls, strategy=config.PROXY_STRATEGY)
        logger.info("proxy_manager_initialized", proxy_count=len(proxy_urls))
    else:
        proxy_manager = NoProxyManager()
        logger.info("proxy_manager_disabled", reason="no_proxies_configured")

    def challenge_factory(platform: Platform, markers) -> ChallengeHandler:
        return ChallengeHandler(
            platform.value,
            extra_markers=markers,
            solver=ClickThroughSolver(),
            wait_ceiling=config.CHALLENGE_WAIT_SECONDS,
            poll_interval=config.CHALLENGE_POLL_SECONDS,
            max_retries=config.CHALLENGE_MAX_RETRIES,
            reload_timeout=config.NAVIGATION_TIMEOUT_SECONDS,
        )

    browser = BrowserManager(headless=config.BROWSER_HEADLESS, block_resources=config.BROWSER_BLOCK_RESOURCES)
    session_factory = CrawlSessionFactory(
        browser=browser,
        identity_manager=IdentityManager(proxy_manager, recency_window=config.IDENTITY_RECENCY_WINDOW),
        rate_limiter=HostRateLimiter(),
        challenge_factory=challenge_factory,
        page_budget=config.SESSION_PAGE_BUDGET,
        navigation_timeout=config.NAVIGATION_TIMEOUT_SECONDS,
        allow_direct_route=config.ALLOW_DIRECT_ROUTE,
    )
    driver_factory = register_all_drivers(
        DriverFactory(session_factory, retry_wait=config.NAVIGATION_RETRY_WAIT_SECONDS)
    )
    cache = build_search_cache(
        config.CACHE_BACKEND,
        redis_url=config.REDIS_URL,
        session_factory=async_session_factory,
        ttl_seconds=config.SEARCH_CACHE_TTL_SECONDS,
        stale_retention_seconds=config.STALE_RETENTION_SECONDS,
    )
    enabled = [p for p in config.get_enabled_platforms() if p in {x.value for x in Platform}]
    return CrawlOrchestrator(
        driver_factory=driver_factory,
        cache=cache,
        browser=browser,
        enabled_platforms=enabled,
        driver_timeout=config.DRIVER_TIMEOUT_SECONDS,
        max_pages=config.MAX_PAGES_DEFAULT,
        partial_ttl=timedelta(seconds=config.PARTIAL_RESULT_TTL_SECONDS),
    )
