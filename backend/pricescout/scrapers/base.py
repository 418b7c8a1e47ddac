"""Platform driver contract and raw extraction types.

Every storefront driver inherits from BasePlatformDriver and supplies the
site-specific URL builders and page parsers. The three contract operations
(search, product details, reviews) are implemented once here so that each
runs in a fresh crawl session with the same retry rules.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Pattern, TypeVar, Union

import structlog
from bs4 import BeautifulSoup, Tag

from .platform import ExtractionConfidence, Platform
from .query import SearchFilters
from .session import CrawlSession, CrawlSessionFactory
from .utils.normalizer import absolute_url, clean_text, parse_rating
from .utils.retry import navigation_retry

T = TypeVar("T")

# Peso amounts inside free text, e.g. "₱1,299.00" or "PHP 450"
PRICE_IN_TEXT = re.compile(r"(?:₱|PHP|Php)\s?\d[\d,]*(?:\.\d{1,2})?")


@dataclass
class RawExtraction:
    """A listing as it was read off one platform, before normalization."""

    platform: Platform
    source_id: str  # Platform-native ID, unique only within the platform
    title: str
    price_text: Union[str, int, float, None]
    product_url: str
    image_url: Optional[str] = None
    original_price_text: Union[str, int, float, None] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    brand: Optional[str] = None
    confidence: ExtractionConfidence = ExtractionConfidence.DIRECT
    extra: Dict[str, Any] = field(default_factory=dict)  # Site-specific leftovers (sold count, location)


@dataclass
class ProductDetails(RawExtraction):
    """A product page: the listing fields plus detail-only data."""

    description: Optional[str] = None
    specifications: Dict[str, str] = field(default_factory=dict)
    images: List[str] = field(default_factory=list)
    in_stock: Optional[bool] = None


@dataclass
class RawReview:
    """One customer review as shown on the platform."""

    platform: Platform
    source_id: str
    review_id: Optional[str]
    author: Optional[str]
    rating: Optional[float]
    body: str
    posted_at: Optional[str] = None
    images: List[str] = field(default_factory=list)
    helpful_count: Optional[int] = None


class BasePlatformDriver(ABC):
    """Abstract base class for storefront drivers.

    Subclasses set ``platform`` and ``base_url`` and implement the URL
    builders and parsers. Parsers receive HTML only; they never touch the
    browser, which keeps them testable against saved pages.
    """

    platform: Platform
    base_url: str = ""
    # Filters the site applies itself through its search URL
    native_filters: frozenset = frozenset()
    # Extra challenge markers specific to this site
    challenge_markers: tuple = ()
    # Selector that appears once search results have rendered
    search_wait_selector: Optional[str] = None
    # Substrings that prove a page shows real content after a challenge
    ready_markers: tuple = ()

    def __init__(
        self,
        session_factory: CrawlSessionFactory,
        navigation_attempts: int = 2,
        retry_wait: float = 2.0,
    ):
        self.session_factory = session_factory
        self.navigation_attempts = navigation_attempts
        self.retry_wait = retry_wait
        self.logger = structlog.get_logger(__name__).bind(platform=self.platform.value)

    # ------------------------------------------------------------------
    # Site-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_search_url(self, query: str, filters: SearchFilters, page: int) -> str:
        """URL of result page ``page`` (1-indexed) for ``query``."""

    @abstractmethod
    def parse_search_page(self, html: str) -> List[RawExtraction]:
        """Extract listings from a search result page."""

    @abstractmethod
    def build_product_url(self, source_id: str) -> str:
        """URL of the product page for ``source_id``."""

    @abstractmethod
    def parse_product_page(self, html: str, source_id: str) -> Optional[ProductDetails]:
        """Extract product details, or None when the page shows no product."""

    @abstractmethod
    def build_reviews_url(self, source_id: str, page: int) -> str:
        """URL of review page ``page`` (1-indexed)."""

    @abstractmethod
    def parse_reviews_page(self, html: str, source_id: str) -> List[RawReview]:
        """Extract reviews from a review page."""

    # ------------------------------------------------------------------
    # Contract operations
    # ------------------------------------------------------------------

    async def search_products(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        max_pages: int = 1,
    ) -> List[RawExtraction]:
        """Search the site page by page.

        Pagination stops at ``max_pages``, at the first page without
        extractable items, or when the session runs out of page budget.
        Zero results is a valid outcome, not an error.
        """
        filters = filters or SearchFilters()

        async def run(session: CrawlSession) -> List[RawExtraction]:
            results: List[RawExtraction] = []
            for page in range(1, max_pages + 1):
                if not session.has_budget():
                    self.logger.info("search_page_budget_reached", page=page)
                    break
                url = self.build_search_url(query, filters, page)
                html = await session.navigate(url, self.search_wait_selector, self.ready_markers)
                items = self.parse_search_page(html)
                self.logger.info("search_page_parsed", page=page, items=len(items))
                if not items:
                    break
                results.extend(items)
            return results

        return await self._run_in_session("search", run)

    async def get_product_details(self, source_id: str) -> Optional[ProductDetails]:
        """Fetch one product page. Returns None if the product does not exist."""

        async def run(session: CrawlSession) -> Optional[ProductDetails]:
            html = await session.navigate(self.build_product_url(source_id), ready_markers=self.ready_markers)
            return self.parse_product_page(html, source_id)

        return await self._run_in_session("product_details", run)

    async def get_product_reviews(self, source_id: str, page: int = 1) -> List[RawReview]:
        """Fetch one page of reviews for a product."""

        async def run(session: CrawlSession) -> List[RawReview]:
            html = await session.navigate(self.build_reviews_url(source_id, page))
            return self.parse_reviews_page(html, source_id)

        return await self._run_in_session("reviews", run)

    async def _run_in_session(self, operation: str, func: Callable[[CrawlSession], Awaitable[T]]) -> T:
        """Run ``func`` inside a new session, retrying navigation timeouts.

        Each retry opens a new session and therefore a new identity.
        """
        async for attempt in navigation_retry(self.navigation_attempts, self.retry_wait):
            with attempt:
                async with self.session_factory.open(self.platform, self.challenge_markers) as session:
                    result = await func(session)
        return result

    # ------------------------------------------------------------------
    # Shared parsing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def soup(html: str) -> BeautifulSoup:
        return BeautifulSoup(html or "", "html.parser")

    def absolute(self, href: Optional[str]) -> Optional[str]:
        return absolute_url(self.base_url, href)

    @staticmethod
    def script_json(html: str, variable: str) -> Optional[Any]:
        """Decode a JSON object assigned in an inline script, e.g.
        ``window.pageData = {...};``."""
        marker = re.search(re.escape(variable) + r"\s*=\s*", html or "")
        if not marker:
            return None
        try:
            value, _ = json.JSONDecoder().raw_decode(html, marker.end())
        except json.JSONDecodeError:
            return None
        return value

    @staticmethod
    def json_ld(soup: BeautifulSoup) -> List[dict]:
        """All JSON-LD objects on the page, with @graph lists flattened."""
        found: List[dict] = []
        for script in soup.find_all("script", type="application/ld+json"):
            try:
                data = json.loads(script.string or script.get_text() or "")
            except json.JSONDecodeError:
                continue
            stack = data if isinstance(data, list) else [data]
            for item in stack:
                if isinstance(item, dict) and "@graph" in item:
                    found.extend(i for i in item["@graph"] if isinstance(i, dict))
                elif isinstance(item, dict):
                    found.append(item)
        return found

    @staticmethod
    def json_body(html: str) -> Optional[Any]:
        """Decode a JSON endpoint the browser rendered as a document."""
        text = (html or "").strip()
        if text.startswith("<"):
            text = BeautifulSoup(text, "html.parser").get_text()
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def first_text(node: Tag, selectors: Iterable[str]) -> Optional[str]:
        """Text of the first selector that matches inside ``node``."""
        for selector in selectors:
            found = node.select_one(selector)
            if found is not None:
                text = clean_text(found.get_text(" "))
                if text:
                    return text
        return None

    @staticmethod
    def style_rating(node: Tag, selector: str) -> Optional[float]:
        """Rating drawn as a star bar whose CSS width is the percentage."""
        bar = node.select_one(selector)
        if bar is None:
            return None
        match = re.search(r"width:\s*([\d.]+)%", bar.get("style", ""))
        return parse_rating(f"{match.group(1)}%") if match else None

    def anchor_scan(
        self,
        soup: BeautifulSoup,
        href_pattern: Pattern[str],
        id_from_match: Callable[[re.Match], str],
    ) -> List[RawExtraction]:
        """Last-resort extraction: walk product links and look for a peso
        amount near each one. Results are marked as fallback data."""
        results: List[RawExtraction] = []
        seen = set()
        for anchor in soup.find_all("a", href=True):
            match = href_pattern.search(anchor["href"])
            if not match:
                continue
            source_id = id_from_match(match)
            if source_id in seen:
                continue

            title = clean_text(anchor.get("title") or anchor.get_text(" "))
            image = anchor.find("img")
            if not title and image is not None:
                title = clean_text(image.get("alt"))
            if not title:
                continue

            price_text = None
            container: Optional[Tag] = anchor
            for _ in range(3):
                if container is None:
                    break
                found = PRICE_IN_TEXT.search(container.get_text(" "))
                if found:
                    price_text = found.group(0)
                    break
                container = container.parent
            if price_text is None:
                continue

            seen.add(source_id)
            results.append(
                RawExtraction(
                    platform=self.platform,
                    source_id=source_id,
                    title=title,
                    price_text=price_text,
                    product_url=self.absolute(anchor["href"]),
                    image_url=self.absolute(image.get("src") or image.get("data-src")) if image is not None else None,
                    confidence=ExtractionConfidence.FALLBACK,
                )
            )
        return results

    def details_from_json_ld(self, soup: BeautifulSoup, source_id: str, url: str) -> Optional[ProductDetails]:
        """Build ProductDetails from a schema.org Product block, if present."""
        product = next((d for d in self.json_ld(soup) if is_schema_type(d, "Product")), None)
        if product is None:
            return None

        offers = product.get("offers") or {}
        if isinstance(offers, list):
            offers = offers[0] if offers else {}
        price = offers.get("price", offers.get("lowPrice"))
        if price is None or not product.get("name"):
            return None

        brand = product.get("brand")
        if isinstance(brand, dict):
            brand = brand.get("name")
        rating = product.get("aggregateRating") or {}
        images = product.get("image") or []
        if isinstance(images, str):
            images = [images]
        availability = str(offers.get("availability", ""))

        return ProductDetails(
            platform=self.platform,
            source_id=source_id,
            title=clean_text(product["name"]),
            price_text=price,
            product_url=self.absolute(product.get("url")) or url,
            image_url=self.absolute(images[0]) if images else None,
            rating=parse_rating(rating.get("ratingValue")),
            rating_count=_as_int(rating.get("reviewCount", rating.get("ratingCount"))),
            brand=clean_text(brand) or None,
            confidence=ExtractionConfidence.DIRECT,
            description=clean_text(product.get("description")) or None,
            images=[self.absolute(i) for i in images if i],
            in_stock=("InStock" in availability) if availability else None,
        )


def is_schema_type(data: dict, name: str) -> bool:
    kind = data.get("@type")
    return kind == name or (isinstance(kind, list) and name in kind)


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
