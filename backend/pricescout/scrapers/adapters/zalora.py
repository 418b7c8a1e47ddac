"""Zalora Philippines driver."""

import re
from typing import List, Optional
from urllib.parse import quote, urlencode

from bs4 import BeautifulSoup

from pricescout.scrapers.base import (
    PRICE_IN_TEXT,
    BasePlatformDriver,
    ProductDetails,
    RawExtraction,
    RawReview,
    is_schema_type,
)
from pricescout.scrapers.platform import ExtractionConfidence, Platform
from pricescout.scrapers.query import SearchFilters
from pricescout.scrapers.utils.normalizer import clean_text, parse_count, parse_rating, strip_tracking

# /p/<slug> where the slug ends in the numeric product id
PRODUCT_URL = re.compile(r"/p/([^/?#]+-\d+)")

CARD_SELECTORS = '[data-test-id="productLink"], [data-sku], .productCard, .product-card'
BRAND_SELECTORS = ('[data-test-id="productBrandName"]', '[class*="brand"]')
NAME_SELECTORS = ('[data-test-id="productTitle"]', '[class*="name"]', '[class*="title"]', "h3", "h4")
PRICE_SELECTORS = (
    '[data-test-id="specialPrice"]',
    '[data-test-id="productPrice"]',
    '[data-test-id="originalPrice"]',
    '[class*="price"]',
)
REVIEW_SELECTORS = '[data-test-id="review"], .review-item, .reviewItem'


class ZaloraDriver(BasePlatformDriver):
    """Driver for www.zalora.com.ph."""

    platform = Platform.ZALORA
    base_url = "https://www.zalora.com.ph"
    search_wait_selector = '[data-test-id="productLink"], [data-sku]'
    ready_markers = ('data-test-id="productlink"', "data-sku", "application/ld+json")

    def build_search_url(self, query: str, filters: SearchFilters, page: int) -> str:
        params = {"q": query}
        if page > 1:
            params["page"] = page
        return f"{self.base_url}/search?{urlencode(params)}"

    def parse_search_page(self, html: str) -> List[RawExtraction]:
        soup = self.soup(html)
        items = self._from_item_list(soup)
        if items:
            return items
        items = self._from_cards(soup)
        if items:
            return items
        return self.anchor_scan(soup, PRODUCT_URL, lambda m: m.group(1))

    def _from_item_list(self, soup: BeautifulSoup) -> List[RawExtraction]:
        results = []
        for block in self.json_ld(soup):
            if not is_schema_type(block, "ItemList"):
                continue
            for element in block.get("itemListElement") or []:
                product = element.get("item", element) if isinstance(element, dict) else None
                if not isinstance(product, dict):
                    continue
                url = self.absolute(product.get("url"))
                match = PRODUCT_URL.search(url or "")
                offers = product.get("offers") or {}
                if isinstance(offers, list):
                    offers = offers[0] if offers else {}
                price = offers.get("price", offers.get("lowPrice"))
                if not match or not product.get("name") or price is None:
                    continue
                brand = product.get("brand")
                if isinstance(brand, dict):
                    brand = brand.get("name")
                image = product.get("image")
                if isinstance(image, list):
                    image = image[0] if image else None
                rating = product.get("aggregateRating") or {}
                results.append(
                    RawExtraction(
                        platform=self.platform,
                        source_id=match.group(1),
                        title=self._title(brand, product["name"]),
                        price_text=price,
                        product_url=strip_tracking(url),
                        image_url=self.absolute(image),
                        rating=parse_rating(rating.get("ratingValue")),
                        rating_count=parse_count(rating.get("reviewCount")),
                        brand=clean_text(brand) or None,
                        confidence=ExtractionConfidence.DIRECT,
                    )
                )
        return results

    def _from_cards(self, soup: BeautifulSoup) -> List[RawExtraction]:
        results = []
        for card in soup.select(CARD_SELECTORS):
            link = card if card.name == "a" and card.get("href") else card.find("a", href=PRODUCT_URL)
            if link is None:
                continue
            match = PRODUCT_URL.search(link.get("href", ""))
            if not match:
                continue

            brand = self.first_text(card, BRAND_SELECTORS)
            name = self.first_text(card, NAME_SELECTORS)
            image = card.find("img")
            if not name and image is not None:
                name = clean_text(image.get("alt"))
            if not name:
                continue

            price_text = self.first_text(card, PRICE_SELECTORS)
            confidence = ExtractionConfidence.DIRECT
            if price_text is None:
                found = PRICE_IN_TEXT.search(card.get_text(" "))
                if not found:
                    continue
                price_text = found.group(0)
                confidence = ExtractionConfidence.ESTIMATED

            original = card.select_one('[data-test-id="originalPrice"]')
            results.append(
                RawExtraction(
                    platform=self.platform,
                    source_id=match.group(1),
                    title=self._title(brand, name),
                    price_text=price_text,
                    product_url=strip_tracking(self.absolute(link["href"])),
                    image_url=self.absolute(image.get("src") or image.get("data-src")) if image is not None else None,
                    original_price_text=clean_text(original.get_text()) if original is not None else None,
                    brand=brand,
                    confidence=confidence,
                    extra={"sku": card.get("data-sku")} if card.get("data-sku") else {},
                )
            )
        return results

    @staticmethod
    def _title(brand: Optional[str], name: str) -> str:
        name = clean_text(name)
        brand = clean_text(brand)
        if brand and brand.lower() not in name.lower():
            return f"{brand} {name}"
        return name

    def build_product_url(self, source_id: str) -> str:
        return f"{self.base_url}/p/{quote(source_id)}"

    def parse_product_page(self, html: str, source_id: str) -> Optional[ProductDetails]:
        soup = self.soup(html)
        url = self.build_product_url(source_id)
        details = self.details_from_json_ld(soup, source_id, url)
        if details is not None:
            return details

        name = self.first_text(soup, ('[data-test-id="productTitle"]', "h1"))
        price_text = self.first_text(soup, ('[data-test-id="specialPrice"]', '[data-test-id="productPrice"]'))
        if not name or not price_text:
            return None
        brand = self.first_text(soup, ('[data-test-id="productBrandName"]',))
        return ProductDetails(
            platform=self.platform,
            source_id=source_id,
            title=self._title(brand, name),
            price_text=price_text,
            product_url=url,
            brand=brand,
            confidence=ExtractionConfidence.DIRECT,
            description=self.first_text(soup, ('[data-test-id="productDescription"]',)),
        )

    def build_reviews_url(self, source_id: str, page: int) -> str:
        url = self.build_product_url(source_id)
        return url if page <= 1 else f"{url}?{urlencode({'reviewPage': page})}"

    def parse_reviews_page(self, html: str, source_id: str) -> List[RawReview]:
        soup = self.soup(html)
        reviews = []
        for block in self.json_ld(soup):
            if not is_schema_type(block, "Product"):
                continue
            entries = block.get("review") or []
            for entry in entries if isinstance(entries, list) else [entries]:
                author = entry.get("author")
                if isinstance(author, dict):
                    author = author.get("name")
                reviews.append(
                    RawReview(
                        platform=self.platform,
                        source_id=source_id,
                        review_id=None,
                        author=author,
                        rating=parse_rating((entry.get("reviewRating") or {}).get("ratingValue")),
                        body=clean_text(entry.get("reviewBody")),
                        posted_at=entry.get("datePublished"),
                    )
                )
        if reviews:
            return reviews

        for node in soup.select(REVIEW_SELECTORS):
            body = self.first_text(node, ('[data-test-id="reviewText"]', ".review-text", "p"))
            if not body:
                continue
            reviews.append(
                RawReview(
                    platform=self.platform,
                    source_id=source_id,
                    review_id=node.get("data-review-id"),
                    author=self.first_text(node, ('[data-test-id="reviewAuthor"]', ".review-author")),
                    rating=self.style_rating(node, '[class*="rating"] [style*="width"]'),
                    body=body,
                    posted_at=self.first_text(node, ("time", ".review-date")),
                )
            )
        return reviews
