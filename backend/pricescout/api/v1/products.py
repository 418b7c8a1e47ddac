"""Single-product endpoints: details, reviews and price history."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricescout.core.exceptions import ScraperError, UnsupportedPlatformError
from pricescout.dependencies import get_db, get_orchestrator
from pricescout.models import TrackedProduct
from pricescout.schemas import (
    PriceHistoryResponse,
    PricePointResponse,
    ProductDetailResponse,
    ReviewListResponse,
    ReviewResponse,
    TrackedProductResponse,
)
from pricescout.scrapers.orchestrator import CrawlOrchestrator
from pricescout.scrapers.platform import Platform
from pricescout.scrapers.utils.normalizer import PriceNormalizer
from pricescout.services.price_tracker import PriceHistoryService

router = APIRouter()


def _platform_or_400(platform: str) -> Platform:
    try:
        return Platform.parse(platform)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.get("/{platform}/{source_id}", response_model=ProductDetailResponse)
async def get_product(
    platform: str,
    source_id: str,
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """Fetch the live product page for one listing."""
    parsed = _platform_or_400(platform)
    try:
        details = await orchestrator.get_product_details(parsed, source_id)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Product page did not load in time")
    except ScraperError as e:
        raise HTTPException(status_code=502, detail=f"{e.reason}: {e.message}")

    if details is None:
        raise HTTPException(status_code=404, detail="Product not found")

    return ProductDetailResponse(
        platform=parsed.value,
        source_id=details.source_id,
        title=details.title,
        price=PriceNormalizer.parse_optional(details.price_text),
        original_price=PriceNormalizer.parse_optional(details.original_price_text),
        product_url=details.product_url,
        image_url=details.image_url,
        images=details.images,
        rating=details.rating,
        rating_count=details.rating_count,
        brand=details.brand,
        description=details.description,
        specifications=details.specifications,
        in_stock=details.in_stock,
    )


@router.get("/{platform}/{source_id}/reviews", response_model=ReviewListResponse)
async def get_reviews(
    platform: str,
    source_id: str,
    page: int = Query(1, ge=1, description="Review page (1-indexed)"),
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """Fetch one page of reviews for a listing."""
    parsed = _platform_or_400(platform)
    try:
        reviews = await orchestrator.get_product_reviews(parsed, source_id, page)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Reviews did not load in time")
    except ScraperError as e:
        raise HTTPException(status_code=502, detail=f"{e.reason}: {e.message}")

    return ReviewListResponse(
        platform=parsed.value,
        source_id=source_id,
        page=page,
        reviews=[ReviewResponse.model_validate(r) for r in reviews],
    )


@router.get("/{platform}/{source_id}/history", response_model=PriceHistoryResponse)
async def get_price_history(
    platform: str,
    source_id: str,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Recorded prices for a listing, newest first."""
    parsed = _platform_or_400(platform)
    product_key = f"{parsed.value}:{source_id}"

    tracked = await db.execute(select(TrackedProduct.id).where(TrackedProduct.product_key == product_key))
    rows = await PriceHistoryService(db).get_history(product_key, limit=limit)
    return PriceHistoryResponse(
        product_key=product_key,
        tracked=tracked.scalar_one_or_none() is not None,
        history=[PricePointResponse(price=r.price, observed_at=r.observed_at.isoformat()) for r in rows],
    )


@router.post("/{platform}/{source_id}/track", response_model=TrackedProductResponse, status_code=201)
async def track_product(
    platform: str,
    source_id: str,
    title: str | None = Query(None, max_length=500),
    db: AsyncSession = Depends(get_db),
):
    """Start recording this listing's price on every tracking run."""
    parsed = _platform_or_400(platform)
    tracked = await PriceHistoryService(db).track_product(parsed, source_id, title)
    return TrackedProductResponse.model_validate(tracked)
