"""Search filters and the normalized key that identifies a search."""

import hashlib
import json
import math
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from .platform import Platform

_CENT = Decimal("0.01")

Number = Union[int, float, str, Decimal, None]


def _round_price(value: Number) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid price bound: {value!r}")
    if not price.is_finite() or price < 0:
        raise ValueError(f"Invalid price bound: {value!r}")
    return price.quantize(_CENT, rounding=ROUND_HALF_UP)


def _round_rating(value: Number) -> Optional[float]:
    if value is None or value == "":
        return None
    rating = float(value)
    if not math.isfinite(rating) or rating < 0 or rating > 5:
        raise ValueError(f"Minimum rating must be between 0 and 5: {value!r}")
    return round(rating, 1)


def normalize_query_text(text: str) -> str:
    """Case-fold and collapse whitespace."""
    return re.sub(r"\s+", " ", (text or "")).strip().casefold()


@dataclass(frozen=True)
class SearchFilters:
    """Canonical filter set: rounded price bounds, folded brand, rounded rating.

    Construct through ``create`` or ``from_mapping`` so values are rounded
    before they take part in equality and hashing.
    """

    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    brand: Optional[str] = None
    min_rating: Optional[float] = None

    @classmethod
    def create(
        cls,
        min_price: Number = None,
        max_price: Number = None,
        brand: Optional[str] = None,
        min_rating: Number = None,
    ) -> "SearchFilters":
        lo = _round_price(min_price)
        hi = _round_price(max_price)
        if lo is not None and hi is not None and lo > hi:
            raise ValueError("min_price cannot be greater than max_price")
        folded_brand = normalize_query_text(brand) if brand else None
        return cls(
            min_price=lo,
            max_price=hi,
            brand=folded_brand or None,
            min_rating=_round_rating(min_rating),
        )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "SearchFilters":
        """Accept both snake_case and camelCase keys."""
        if not data:
            return cls()
        return cls.create(
            min_price=data.get("min_price", data.get("minPrice")),
            max_price=data.get("max_price", data.get("maxPrice")),
            brand=data.get("brand"),
            min_rating=data.get("min_rating", data.get("minRating")),
        )

    @property
    def is_empty(self) -> bool:
        return self == SearchFilters()

    def to_dict(self) -> dict:
        return {
            "min_price": str(self.min_price) if self.min_price is not None else None,
            "max_price": str(self.max_price) if self.max_price is not None else None,
            "brand": self.brand,
            "min_rating": self.min_rating,
        }

    @property
    def filters_hash(self) -> str:
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class SearchQueryKey:
    """Identity of a search for caching and single-flight purposes.

    Two keys are equal iff the folded query text, the sorted platform set
    and the canonical filters are all equal.
    """

    query: str
    platforms: Tuple[Platform, ...]
    filters: SearchFilters = field(default_factory=SearchFilters)

    @classmethod
    def build(
        cls,
        query: str,
        platforms: Iterable[Union[str, Platform]],
        filters: Optional[SearchFilters] = None,
    ) -> "SearchQueryKey":
        """Normalize raw request values into a key.

        Raises:
            ValueError: on an empty query or platform list
            UnsupportedPlatformError: on an unknown platform name
        """
        text = normalize_query_text(query)
        if not text:
            raise ValueError("Search query cannot be empty")
        parsed = sorted({Platform.parse(p) for p in platforms}, key=lambda p: p.value)
        if not parsed:
            raise ValueError("At least one platform is required")
        return cls(query=text, platforms=tuple(parsed), filters=filters or SearchFilters())

    @property
    def platform_set(self) -> str:
        return ",".join(p.value for p in self.platforms)

    @property
    def filters_hash(self) -> str:
        return self.filters.filters_hash

    @property
    def cache_key(self) -> str:
        """Flat string form used by key-value cache backends."""
        return f"search:{self.platform_set}:{self.filters_hash}:{self.query}"
