"""Search Pydantic schemas for request/response validation."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pricescout.scrapers.merger import ProductRecord
from pricescout.scrapers.orchestrator import MergedResult, PlatformError


class ProductRecordResponse(BaseModel):
    """One merged listing."""

    source_platform: str
    source_id: str
    product_key: str
    title: str
    price: Decimal
    currency: str
    product_url: str
    image_url: Optional[str] = None
    original_price: Optional[Decimal] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    brand: Optional[str] = None
    extraction_confidence: str

    @classmethod
    def from_record(cls, record: ProductRecord) -> "ProductRecordResponse":
        return cls(
            source_platform=record.source_platform.value,
            source_id=record.source_id,
            product_key=record.product_key,
            title=record.title,
            price=record.price,
            currency=record.currency,
            product_url=record.product_url,
            image_url=record.image_url,
            original_price=record.original_price,
            rating=record.rating,
            rating_count=record.rating_count,
            brand=record.brand,
            extraction_confidence=record.extraction_confidence.value,
        )


class PlatformErrorResponse(BaseModel):
    """Why one platform contributed nothing."""

    platform: str
    reason: str
    message: str

    @classmethod
    def from_error(cls, error: PlatformError) -> "PlatformErrorResponse":
        return cls(platform=error.platform.value, reason=error.reason, message=error.message)


class AppliedQuery(BaseModel):
    """What the server actually searched for after parsing."""

    query: str
    platforms: List[str]
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    brand: Optional[str] = None
    min_rating: Optional[float] = None
    sort: str = "price_asc"


class SearchResponse(BaseModel):
    """Merged multi-platform search result.

    ``errors`` is omitted when every platform answered. An empty
    ``results`` list with ``errors`` means nothing could be searched, not
    that nothing matched.
    """

    success: bool = True
    results: List[ProductRecordResponse]
    errors: Optional[List[PlatformErrorResponse]] = None
    stale: bool = False
    cached: bool = False
    query: Optional[AppliedQuery] = None

    @classmethod
    def from_result(
        cls,
        merged: MergedResult,
        records: Optional[List[ProductRecord]] = None,
        query: Optional[AppliedQuery] = None,
    ) -> "SearchResponse":
        records = merged.results if records is None else records
        return cls(
            success=merged.success,
            results=[ProductRecordResponse.from_record(r) for r in records],
            errors=[PlatformErrorResponse.from_error(e) for e in merged.errors] or None,
            stale=merged.stale,
            cached=merged.from_cache,
            query=query,
        )


class ProductDetailResponse(BaseModel):
    """Product page details."""

    model_config = ConfigDict(from_attributes=True)

    platform: str
    source_id: str
    title: str
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = None
    currency: str = "PHP"
    product_url: str
    image_url: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    specifications: dict = Field(default_factory=dict)
    in_stock: Optional[bool] = None


class ReviewResponse(BaseModel):
    """One product review."""

    model_config = ConfigDict(from_attributes=True)

    review_id: Optional[str] = None
    author: Optional[str] = None
    rating: Optional[float] = None
    body: str
    posted_at: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    helpful_count: Optional[int] = None


class ReviewListResponse(BaseModel):
    platform: str
    source_id: str
    page: int
    reviews: List[ReviewResponse]


class PricePointResponse(BaseModel):
    """One price observation."""

    model_config = ConfigDict(from_attributes=True)

    price: Decimal
    observed_at: str


class PriceHistoryResponse(BaseModel):
    product_key: str
    tracked: bool
    history: List[PricePointResponse]


class TrackedProductResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_key: str
    platform: str
    source_id: str
    title: Optional[str] = None
    is_active: bool


class SuggestionResponse(BaseModel):
    """Related searches and suggested filters for a query."""

    query: str
    suggestions: List[str]
    filters: dict = Field(default_factory=dict)
