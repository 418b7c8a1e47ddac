"""Search API endpoints."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from pricescout.core.exceptions import CrawlBusy, CrawlInfrastructureError, UnsupportedPlatformError
from pricescout.dependencies import get_orchestrator, get_suggestion_client
from pricescout.schemas import AppliedQuery, SearchResponse, SuggestionResponse
from pricescout.scrapers.merger import SORT_OPTIONS, reorder
from pricescout.scrapers.orchestrator import CrawlOrchestrator
from pricescout.scrapers.query import SearchFilters
from pricescout.services.query_parser import parse_natural_query
from pricescout.services.suggestion_service import SuggestionClient

logger = structlog.get_logger(__name__)

router = APIRouter()


def _split_platforms(raw: Optional[str]) -> list:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


@router.get("", response_model=SearchResponse, response_model_exclude_none=True)
async def search(
    q: str = Query(..., min_length=1, description="Search query"),
    platforms: Optional[str] = Query(None, description="Comma-separated platforms (default: all enabled)"),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum price (PHP)"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum price (PHP)"),
    brand: Optional[str] = Query(None, description="Brand name"),
    min_rating: Optional[float] = Query(None, ge=0, le=5, description="Minimum star rating"),
    bypass_cache: bool = Query(False, description="Force a fresh crawl"),
    natural: bool = Query(False, description="Parse price, rating and platform phrases out of q"),
    sort: str = Query("price_asc", description="price_asc | price_desc | rating_desc"),
    orchestrator: CrawlOrchestrator = Depends(get_orchestrator),
):
    """Search every requested platform and return one merged list.

    Results are sorted by price ascending, then rating descending.
    A platform that fails adds an entry to ``errors``; the others still
    return their listings with HTTP 200.
    """
    if not q.strip():
        raise HTTPException(status_code=400, detail="Search query 'q' cannot be empty")
    if sort not in SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"sort must be one of: {', '.join(SORT_OPTIONS)}")

    requested = _split_platforms(platforms)
    query_text = q
    try:
        filters = SearchFilters.create(
            min_price=min_price,
            max_price=max_price,
            brand=brand,
            min_rating=min_rating,
        )
        if natural:
            parsed = parse_natural_query(q, default_brand=brand)
            query_text = parsed.query
            filters = SearchFilters.create(
                min_price=min_price if min_price is not None else parsed.filters.min_price,
                max_price=max_price if max_price is not None else parsed.filters.max_price,
                brand=parsed.filters.brand,
                min_rating=min_rating if min_rating is not None else parsed.filters.min_rating,
            )
            requested = requested or [p.value for p in parsed.platforms]
            if sort == "price_asc":
                sort = parsed.sort

        merged = await orchestrator.search(
            query_text,
            filters=filters,
            platforms=requested or None,
            bypass_cache=bypass_cache,
        )
    except CrawlBusy as e:
        raise HTTPException(
            status_code=429,
            detail="Another search is running, try again shortly",
            headers={"Retry-After": str(e.retry_after)},
        )
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except CrawlInfrastructureError as e:
        logger.error("search_infrastructure_failure", query=q, error=e.message)
        raise HTTPException(status_code=503, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    applied = AppliedQuery(
        query=merged.key.query,
        platforms=[p.value for p in merged.key.platforms],
        min_price=merged.key.filters.min_price,
        max_price=merged.key.filters.max_price,
        brand=merged.key.filters.brand,
        min_rating=merged.key.filters.min_rating,
        sort=sort,
    )
    return SearchResponse.from_result(merged, reorder(merged.results, sort), query=applied)


@router.get("/suggestions", response_model=SuggestionResponse)
async def suggestions(
    q: str = Query(..., min_length=1, description="Search query"),
    client: SuggestionClient = Depends(get_suggestion_client),
):
    """Related searches from the suggestion provider (empty when unavailable)."""
    result = await client.suggest(q)
    return SuggestionResponse(
        query=q,
        suggestions=result.suggestions,
        filters=result.filters.model_dump(exclude_none=True) if result.filters else {},
    )
