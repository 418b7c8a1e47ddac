"""Pydantic schemas for the HTTP API."""

from pricescout.schemas.health import HealthCheckResponse
from pricescout.schemas.search import (
    AppliedQuery,
    PlatformErrorResponse,
    PriceHistoryResponse,
    PricePointResponse,
    ProductDetailResponse,
    ProductRecordResponse,
    ReviewListResponse,
    ReviewResponse,
    SearchResponse,
    SuggestionResponse,
    TrackedProductResponse,
)

__all__ = [
    "AppliedQuery",
    "HealthCheckResponse",
    "PlatformErrorResponse",
    "PriceHistoryResponse",
    "PricePointResponse",
    "ProductDetailResponse",
    "ProductRecordResponse",
    "ReviewListResponse",
    "ReviewResponse",
    "SearchResponse",
    "SuggestionResponse",
    "TrackedProductResponse",
]
