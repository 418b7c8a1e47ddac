"""Lazada Philippines driver.

Search result pages embed the full listing payload as ``window.pageData``;
when that is missing (A/B layouts, partial renders) the product cards are
read from the DOM, and as a last resort product links are scanned.
"""

import re
from decimal import Decimal
from typing import List, Optional
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

# /products/some-name-i123456-s789012.html
ITEM_URL = re.compile(r"-i(\d+)(?:-s(\d+))?\.html")

CARD_SELECTORS = '[data-qa-locator="product-item"], [data-tracking="product-card"], .Bm3ON'
TITLE_SELECTORS = (".RfADt a", ".RfADt", ".c16H9d", '[class*="title"]')
PRICE_SELECTORS = (".ooOxS", ".aBrP0 span", ".c13VH6", ".c3gUW0")
ORIGINAL_PRICE_SELECTORS = (".WNoq3 del", ".WNoq3", "del")
COUNT_SELECTORS = ("._6uN7R", ".qzqFw", ".c3XbGJ")


def _id_from_match(match: re.Match) -> str:
    item_id, sku_id = match.group(1), match.group(2)
    return f"{item_id}_{sku_id}" if sku_id else item_id


def _price_param(value: Optional[Decimal]) -> str:
    if value is None:
        return ""
    return str(int(value)) if value == value.to_integral_value() else str(value)


class LazadaDriver(BasePlatformDriver):
    """Driver for www.lazada.com.ph."""

    platform = Platform.LAZADA
    base_url = "https://www.lazada.com.ph"
    review_api_url = "https://my.lazada.com.ph/pdp/review/getReviewList"
    native_filters = frozenset({"min_price", "max_price"})
    # Alibaba-group slider and punish pages
    challenge_markers = ("_____tmd_____", "x5secdata", "baxia-punish", "nc_1_n1z", "punish?")
    search_wait_selector = '[data-qa-locator="product-item"]'
    ready_markers = ("window.pageData", 'data-qa-locator="product-item"', "pdp-mod", '"@type": "Product"')

    def build_search_url(self, query: str, filters: SearchFilters, page: int) -> str:
        params = {"q": query, "page": page}
        if filters.min_price is not None or filters.max_price is not None:
            params["price"] = f"{_price_param(filters.min_price)}-{_price_param(filters.max_price)}"
        return f"{self.base_url}/catalog/?{urlencode(params)}"

    def parse_search_page(self, html: str) -> List[RawExtraction]:
        page_data = self.script_json(html, "window.pageData")
        items = self._from_page_data(page_data) if isinstance(page_data, dict) else []
        if items:
            return items

        soup = self.soup(html)
        items = self._from_cards(soup)
        if items:
            return items
        return self.anchor_scan(soup, ITEM_URL, _id_from_match)

    def _from_page_data(self, page_data: dict) -> List[RawExtraction]:
        list_items = (page_data.get("mods") or {}).get("listItems") or []
        results = []
        for item in list_items:
            url = self.absolute(item.get("itemUrl") or item.get("productUrl"))
            match = ITEM_URL.search(url or "")
            if match:
                source_id = _id_from_match(match)
            elif item.get("itemId") or item.get("nid"):
                item_id = item.get("itemId") or item.get("nid")
                source_id = f"{item_id}_{item['skuId']}" if item.get("skuId") else str(item_id)
            else:
                continue
            title = clean_text(item.get("name"))
            if not title or not url:
                continue
            results.append(
                RawExtraction(
                    platform=self.platform,
                    source_id=source_id,
                    title=title,
                    price_text=item.get("price") or item.get("priceShow"),
                    product_url=strip_tracking(url),
                    image_url=self.absolute(item.get("image")),
                    original_price_text=item.get("originalPrice") or item.get("originalPriceShow"),
                    rating=parse_rating(item.get("ratingScore")),
                    rating_count=parse_count(item.get("review")),
                    brand=clean_text(item.get("brandName")) or None,
                    confidence=ExtractionConfidence.DIRECT,
                    extra={
                        "location": item.get("location"),
                        "sold": item.get("itemSoldCntShow"),
                    },
                )
            )
        return results

    def _from_cards(self, soup: BeautifulSoup) -> List[RawExtraction]:
        results = []
        for card in soup.select(CARD_SELECTORS):
            link = next((a for a in card.find_all("a", href=True) if ITEM_URL.search(a["href"])), None)
            if link is None:
                continue
            image = card.find("img")
            title = (
                self.first_text(card, TITLE_SELECTORS)
                or clean_text(link.get("title"))
                or (clean_text(image.get("alt")) if image is not None else "")
            )
            if not title:
                continue

            price_text = self.first_text(card, PRICE_SELECTORS)
            confidence = ExtractionConfidence.DIRECT
            if price_text is None:
                found = PRICE_IN_TEXT.search(card.get_text(" "))
                if not found:
                    continue
                price_text = found.group(0)
                confidence = ExtractionConfidence.ESTIMATED

            results.append(
                RawExtraction(
                    platform=self.platform,
                    source_id=_id_from_match(ITEM_URL.search(link["href"])),
                    title=title,
                    price_text=price_text,
                    product_url=strip_tracking(self.absolute(link["href"])),
                    image_url=self.absolute(image.get("src") or image.get("data-src")) if image is not None else None,
                    original_price_text=self.first_text(card, ORIGINAL_PRICE_SELECTORS),
                    rating_count=parse_count(self.first_text(card, COUNT_SELECTORS)),
                    confidence=confidence,
                )
            )
        return results

    def build_product_url(self, source_id: str) -> str:
        item_id, _, sku_id = source_id.partition("_")
        suffix = f"-i{item_id}-s{sku_id}.html" if sku_id else f"-i{item_id}.html"
        return f"{self.base_url}/products/{suffix}"

    def parse_product_page(self, html: str, source_id: str) -> Optional[ProductDetails]:
        soup = self.soup(html)
        url = self.build_product_url(source_id)
        details = self.details_from_json_ld(soup, source_id, url)
        if details is not None:
            return details

        title = self.first_text(soup, (".pdp-mod-product-badge-title", "h1"))
        price_text = self.first_text(soup, (".pdp-product-price__current", ".pdp-price_type_normal", ".pdp-price"))
        if not title or not price_text:
            return None
        image = soup.select_one(".gallery-preview-panel__image, .pdp-mod-common-image")
        return ProductDetails(
            platform=self.platform,
            source_id=source_id,
            title=title,
            price_text=price_text,
            product_url=url,
            image_url=self.absolute(image.get("src")) if image is not None else None,
            original_price_text=self.first_text(soup, (".pdp-product-price__original", ".pdp-price_type_deleted")),
            rating=parse_rating(self.first_text(soup, (".score-average",))),
            rating_count=parse_count(self.first_text(soup, (".pdp-review-summary__link", ".count"))),
            brand=self.first_text(soup, (".pdp-product-brand__brand-link",)),
            confidence=ExtractionConfidence.DIRECT,
            description=self.first_text(soup, (".html-content.pdp-product-highlights", ".pdp-product-desc")),
        )

    def build_reviews_url(self, source_id: str, page: int) -> str:
        item_id = source_id.partition("_")[0]
        params = {"itemId": item_id, "pageSize": 5, "filter": 0, "sort": 0, "pageNo": page}
        return f"{self.review_api_url}?{urlencode(params)}"

    def parse_reviews_page(self, html: str, source_id: str) -> List[RawReview]:
        payload = self.json_body(html)
        if not isinstance(payload, dict):
            return []
        items = (payload.get("model") or {}).get("items") or []
        reviews = []
        for item in items:
            body = clean_text(item.get("reviewContent"))
            rating = parse_rating(item.get("rating"))
            if not body and rating is None:
                continue
            reviews.append(
                RawReview(
                    platform=self.platform,
                    source_id=source_id,
                    review_id=str(item["reviewRateId"]) if item.get("reviewRateId") else None,
                    author=item.get("buyerName"),
                    rating=rating,
                    body=body,
                    posted_at=item.get("reviewTime"),
                    images=[self.absolute(i.get("url")) for i in item.get("images") or [] if i.get("url")],
                    helpful_count=item.get("likeCount"),
                )
            )
        return reviews
