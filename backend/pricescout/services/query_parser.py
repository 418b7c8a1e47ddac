"""Natural-language search parsing.

Turns "nike running shoes under 3000 on lazada with good reviews" into a
plain query plus filters, platforms and a sort order.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from pricescout.scrapers.platform import Platform
from pricescout.scrapers.query import SearchFilters

_AMOUNT = r"(?:₱|php\s*|p)?\s*(\d[\d,]*(?:\.\d+)?)\s*(k)?"

_BETWEEN = re.compile(rf"\bbetween\s+{_AMOUNT}\s+(?:and|to|-)\s+{_AMOUNT}", re.I)
_UNDER = re.compile(rf"\b(?:under|below|less than|cheaper than|max(?:imum)?|at most)\s+{_AMOUNT}", re.I)
_OVER = re.compile(rf"\b(?:over|above|more than|min(?:imum)?|at least)\s+{_AMOUNT}", re.I)
_STARS = re.compile(r"\b(\d(?:\.\d)?)\s*\+?\s*stars?\b(?:\s+(?:and\s+)?(?:up|above))?", re.I)
_GOOD_REVIEWS = re.compile(r"\b(?:good|great|high|top)[\s-]*(?:reviews?|rated|ratings?)\b", re.I)
_PLATFORMS = re.compile(r"\b(?:on|from|in|at)\s+(lazada|zalora|shopee)(?:\s*(?:,|and|or)\s*(lazada|zalora|shopee))*\b", re.I)
_PLATFORM_NAME = re.compile(r"\b(lazada|zalora|shopee)\b", re.I)
_CHEAPEST = re.compile(r"\b(?:cheapest|lowest price|budget)\b", re.I)
_PRICIEST = re.compile(r"\b(?:most expensive|highest price|premium)\b", re.I)
_BEST_RATED = re.compile(r"\bbest[\s-]rated\b", re.I)
_FILLER = re.compile(r"\b(?:with|for|please|show me|find me|find|i want|looking for)\b", re.I)

GOOD_REVIEWS_RATING = 4.0

# Brands that commonly appear in fashion and electronics searches
KNOWN_BRANDS = (
    "nike", "adidas", "puma", "new balance", "converse", "vans", "uniqlo", "h&m",
    "zara", "mango", "levi's", "samsung", "apple", "xiaomi", "realme", "oppo",
    "vivo", "huawei", "lenovo", "asus", "acer", "sony", "jbl", "anker",
)


@dataclass
class ParsedQuery:
    """Result of parsing a free-text search."""

    query: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    platforms: List[Platform] = field(default_factory=list)
    sort: str = "price_asc"


def _amount(number: str, thousands: Optional[str]) -> float:
    value = float(number.replace(",", ""))
    return value * 1000 if thousands else value


def parse_natural_query(text: str, default_brand: Optional[str] = None) -> ParsedQuery:
    """Extract price bounds, rating, brand, platforms and sort from ``text``.

    Whatever is left after removing those phrases becomes the search query.
    If nothing is left, the original text is used unchanged.
    """
    remaining = text or ""
    min_price = max_price = min_rating = None
    sort = "price_asc"

    between = _BETWEEN.search(remaining)
    if between:
        low = _amount(between.group(1), between.group(2))
        high = _amount(between.group(3), between.group(4))
        min_price, max_price = min(low, high), max(low, high)
        remaining = remaining.replace(between.group(0), " ")
    else:
        under = _UNDER.search(remaining)
        if under:
            max_price = _amount(under.group(1), under.group(2))
            remaining = remaining.replace(under.group(0), " ")
        over = _OVER.search(remaining)
        if over:
            min_price = _amount(over.group(1), over.group(2))
            remaining = remaining.replace(over.group(0), " ")

    stars = _STARS.search(remaining)
    if stars:
        min_rating = min(float(stars.group(1)), 5.0)
        remaining = remaining.replace(stars.group(0), " ")
    elif _GOOD_REVIEWS.search(remaining):
        min_rating = GOOD_REVIEWS_RATING
        remaining = _GOOD_REVIEWS.sub(" ", remaining)

    platforms: List[Platform] = []
    mention = _PLATFORMS.search(remaining)
    if mention:
        for name in _PLATFORM_NAME.findall(mention.group(0)):
            platform = Platform.parse(name)
            if platform not in platforms:
                platforms.append(platform)
        remaining = remaining.replace(mention.group(0), " ")

    if _BEST_RATED.search(remaining):
        sort = "rating_desc"
        remaining = _BEST_RATED.sub(" ", remaining)
    elif _PRICIEST.search(remaining):
        sort = "price_desc"
        remaining = _PRICIEST.sub(" ", remaining)
    elif _CHEAPEST.search(remaining):
        remaining = _CHEAPEST.sub(" ", remaining)

    lowered = f" {remaining.lower()} "
    brand = default_brand or next((b for b in KNOWN_BRANDS if f" {b} " in lowered), None)

    cleaned = re.sub(r"\s+", " ", _FILLER.sub(" ", remaining)).strip(" ,.-")
    return ParsedQuery(
        query=cleaned or (text or "").strip(),
        filters=SearchFilters.create(
            min_price=min_price,
            max_price=max_price,
            brand=brand,
            min_rating=min_rating,
        ),
        platforms=platforms,
        sort=sort,
    )
