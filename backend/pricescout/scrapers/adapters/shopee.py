"""Shopee Philippines driver.

Search results are read from the rendered item grid. Product details and
reviews come from the JSON endpoints the product page itself calls, which
the session loads as documents so they still pass challenge inspection.
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from pricescout.scrapers.base import (
    PRICE_IN_TEXT,
    BasePlatformDriver,
    ProductDetails,
    RawExtraction,
    RawReview,
)
from pricescout.scrapers.platform import ExtractionConfidence, Platform
from pricescout.scrapers.query import SearchFilters
from pricescout.scrapers.utils.normalizer import clean_text, parse_count, parse_rating, strip_tracking

# Listing links look like /Some-Product-Name-i.<shopid>.<itemid>
ITEM_URL = re.compile(r"-i\.(\d+)\.(\d+)|/product/(\d+)/(\d+)")

IMAGE_CDN = "https://cf.shopee.ph/file/"
# API prices are integers in 1/100000 of a peso
PRICE_SCALE = Decimal(100000)
REVIEWS_PER_PAGE = 6


def _id_from_match(match: re.Match) -> str:
    shop_id = match.group(1) or match.group(3)
    item_id = match.group(2) or match.group(4)
    return f"{shop_id}_{item_id}"


def _api_price(value: Any) -> Optional[str]:
    if value in (None, "", -1):
        return None
    return str(Decimal(str(value)) / PRICE_SCALE)


def _image(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value if value.startswith("http") else f"{IMAGE_CDN}{value}"


class ShopeeDriver(BasePlatformDriver):
    """Driver for shopee.ph."""

    platform = Platform.SHOPEE
    base_url = "https://shopee.ph"
    challenge_markers = ("/verify/traffic", "/verify/captcha", "shopee-captcha")
    search_wait_selector = '[data-sqe="item"]'
    ready_markers = ('data-sqe="item"', '"itemid"', "shopee-search-item-result")

    def build_search_url(self, query: str, filters: SearchFilters, page: int) -> str:
        # Shopee pages are 0-indexed
        params = {"keyword": query, "page": page - 1}
        return f"{self.base_url}/search?{urlencode(params)}"

    def parse_search_page(self, html: str) -> List[RawExtraction]:
        soup = self.soup(html)
        items = self._from_cards(soup)
        if items:
            return items
        return self.anchor_scan(soup, ITEM_URL, _id_from_match)

    def _from_cards(self, soup: BeautifulSoup) -> List[RawExtraction]:
        results = []
        for card in soup.select('[data-sqe="item"], .shopee-search-item-result__item'):
            link = card.find("a", href=ITEM_URL)
            if link is None:
                continue
            image = card.find("img")
            title = self.first_text(card, ('[data-sqe="name"] > div', '[data-sqe="name"]'))
            if not title and image is not None:
                title = clean_text(image.get("alt"))
            if not title:
                continue

            price_text = self.first_text(card, ('[data-sqe="price"]', '[class*="price"]'))
            confidence = ExtractionConfidence.DIRECT
            if price_text is None or not re.search(r"\d", price_text):
                found = PRICE_IN_TEXT.search(card.get_text(" "))
                if not found:
                    continue
                price_text = found.group(0)
                confidence = ExtractionConfidence.ESTIMATED

            sold_text = next(
                (clean_text(s) for s in card.find_all(string=re.compile(r"\bsold\b", re.I))),
                None,
            )
            results.append(
                RawExtraction(
                    platform=self.platform,
                    source_id=_id_from_match(ITEM_URL.search(link["href"])),
                    title=title,
                    price_text=price_text,
                    product_url=strip_tracking(self.absolute(link["href"])),
                    image_url=self.absolute(image.get("src")) if image is not None else None,
                    rating=self.style_rating(card, ".shopee-rating-stars__lit"),
                    confidence=confidence,
                    extra={"sold": parse_count(sold_text)} if sold_text else {},
                )
            )
        return results

    @staticmethod
    def _split_id(source_id: str):
        shop_id, _, item_id = source_id.partition("_")
        return shop_id, item_id

    def build_product_url(self, source_id: str) -> str:
        shop_id, item_id = self._split_id(source_id)
        return f"{self.base_url}/api/v4/item/get?{urlencode({'itemid': item_id, 'shopid': shop_id})}"

    def parse_product_page(self, html: str, source_id: str) -> Optional[ProductDetails]:
        payload = self.json_body(html)
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("name"):
            return None

        shop_id, item_id = self._split_id(source_id)
        rating = data.get("item_rating") or {}
        counts = rating.get("rating_count") or []
        images = [_image(i) for i in data.get("images") or [] if i]
        stock = data.get("stock")
        return ProductDetails(
            platform=self.platform,
            source_id=source_id,
            title=clean_text(data["name"]),
            price_text=_api_price(data.get("price", data.get("price_min"))),
            product_url=f"{self.base_url}/product/{shop_id}/{item_id}",
            image_url=_image(data.get("image")),
            original_price_text=_api_price(data.get("price_before_discount")),
            rating=parse_rating(rating.get("rating_star")),
            rating_count=counts[0] if counts else None,
            brand=clean_text(data.get("brand")) or None,
            confidence=ExtractionConfidence.DIRECT,
            description=clean_text(data.get("description")) or None,
            specifications={
                clean_text(a.get("name")): clean_text(a.get("value"))
                for a in data.get("attributes") or []
                if a.get("name")
            },
            images=images,
            in_stock=(stock > 0) if isinstance(stock, int) else None,
        )

    def build_reviews_url(self, source_id: str, page: int) -> str:
        shop_id, item_id = self._split_id(source_id)
        params = {
            "itemid": item_id,
            "shopid": shop_id,
            "offset": (max(page, 1) - 1) * REVIEWS_PER_PAGE,
            "limit": REVIEWS_PER_PAGE,
            "type": 0,
            "filter": 0,
            "flag": 1,
        }
        return f"{self.base_url}/api/v2/item/get_ratings?{urlencode(params)}"

    def parse_reviews_page(self, html: str, source_id: str) -> List[RawReview]:
        payload = self.json_body(html)
        data = payload.get("data") if isinstance(payload, dict) else None
        ratings = (data or {}).get("ratings") or []
        reviews = []
        for item in ratings:
            posted = item.get("ctime")
            reviews.append(
                RawReview(
                    platform=self.platform,
                    source_id=source_id,
                    review_id=str(item["cmtid"]) if item.get("cmtid") else None,
                    author=item.get("author_username"),
                    rating=parse_rating(item.get("rating_star")),
                    body=clean_text(item.get("comment")),
                    posted_at=(
                        datetime.fromtimestamp(posted, tz=timezone.utc).isoformat()
                        if isinstance(posted, int)
                        else None
                    ),
                    images=[_image(i) for i in item.get("images") or [] if i],
                    helpful_count=item.get("like_count"),
                )
            )
        return reviews
