"""Parsing helpers for prices, ratings and URLs scraped from listings."""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from pricescout.core.exceptions import MalformedPrice

# Currency symbols and codes that may surround a price
_CURRENCY = re.compile(r"(₱|PHP|Php|php|P(?=\s*\d)|\$|USD|US\$|€|£|¥)")
_RANGE_SPLIT = re.compile(r"\s*(?:-|–|~|\bto\b)\s*")
_PLAIN_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")
_GROUPED_NUMBER = re.compile(r"^\d{1,3}(?:,\d{3})+(?:\.\d+)?$")
_NUMBER_IN_TEXT = re.compile(r"\d+(?:[.,]\d+)*")
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")

_TRACKING_PARAMS = {
    "spm", "clickTrackInfo", "search", "mp", "c", "abtest", "abbucket",
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "sp_atk", "xptdk", "freeshipping", "pos",
}

PriceInput = Union[str, int, float, Decimal, None]


class PriceNormalizer:
    """Strict price parser.

    Strips currency symbols and thousands separators. Anything that does not
    leave a plain non-negative number raises MalformedPrice; nothing is ever
    defaulted to zero.
    """

    @staticmethod
    def parse(raw: PriceInput) -> Decimal:
        """Parse price text such as "₱1,299.00", "PHP 450" or "₱199 - ₱399".

        For a range the lower bound is returned.

        Raises:
            MalformedPrice: if no number can be read unambiguously
        """
        if raw is None or isinstance(raw, bool):
            raise MalformedPrice(raw)

        if isinstance(raw, (int, float, Decimal)):
            try:
                value = Decimal(str(raw))
            except InvalidOperation as e:
                raise MalformedPrice(raw) from e
            if not value.is_finite() or value < 0:
                raise MalformedPrice(raw)
            return value

        text = _CURRENCY.sub(" ", str(raw)).replace("\u00a0", " ").strip()
        if not text:
            raise MalformedPrice(raw)

        candidate = _RANGE_SPLIT.split(text, maxsplit=1)[0].strip()
        candidate = candidate.replace(" ", "")

        if _GROUPED_NUMBER.match(candidate):
            candidate = candidate.replace(",", "")
        elif not _PLAIN_NUMBER.match(candidate):
            raise MalformedPrice(raw)

        return Decimal(candidate)

    @staticmethod
    def parse_optional(raw: PriceInput) -> Optional[Decimal]:
        """Like parse, but returns None for missing or unreadable text.

        Used for secondary prices (e.g. the struck-through original price),
        where a bad value should not cost us the whole listing.
        """
        if raw is None or raw == "":
            return None
        try:
            return PriceNormalizer.parse(raw)
        except MalformedPrice:
            return None


def parse_rating(raw: Union[str, int, float, None], scale: float = 5.0) -> Optional[float]:
    """Read a star rating on a 0-5 scale.

    Accepts plain numbers ("4.7"), "4.7 out of 5" and CSS widths ("94%"),
    which several storefronts use to draw partial stars.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        pct = _PERCENT.search(text)
        if pct:
            value = float(pct.group(1)) / 100.0 * scale
        else:
            match = _NUMBER_IN_TEXT.search(text)
            if not match:
                return None
            try:
                value = float(match.group(0).replace(",", "."))
            except ValueError:
                return None
    if value < 0 or value > scale:
        return None
    return round(value, 2)


def parse_count(raw: Union[str, int, None]) -> Optional[int]:
    """Read counts like "(1,234)", "2.5k sold" or "1.2K ratings"."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    text = str(raw).strip().lower().replace(",", "")
    match = re.search(r"(\d+(?:\.\d+)?)\s*([km]?)", text)
    if not match:
        return None
    value = float(match.group(1))
    if match.group(2) == "k":
        value *= 1_000
    elif match.group(2) == "m":
        value *= 1_000_000
    return int(value)


def absolute_url(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve relative and protocol-relative links against ``base_url``."""
    if not href:
        return None
    href = href.strip()
    if href.startswith("//"):
        return "https:" + href
    return urljoin(base_url, href)


def strip_tracking(url: Optional[str]) -> Optional[str]:
    """Drop search-tracking query parameters so product URLs stay stable."""
    if not url:
        return url
    parts = urlparse(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in _TRACKING_PARAMS]
    return urlunparse(parts._replace(query=urlencode(query), fragment=""))


def clean_text(value: Optional[str]) -> str:
    """Collapse whitespace in scraped text."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", value).strip()
