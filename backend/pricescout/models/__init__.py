"""ORM models."""

from pricescout.models.base import Base
from pricescout.models.price_history import PriceHistory, TrackedProduct
from pricescout.models.search_cache import SearchCacheRow

__all__ = ["Base", "PriceHistory", "SearchCacheRow", "TrackedProduct"]
