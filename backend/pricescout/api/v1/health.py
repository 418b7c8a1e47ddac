"""Health check endpoint."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from pricescout.dependencies import get_db
from pricescout.schemas import HealthCheckResponse

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Return service health status.

    Checks connectivity to:
    - Database
    - Search cache backend

    and lists the platforms the crawler will search.
    """
    services = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {str(e)}"
    services["database"] = db_status

    orchestrator = getattr(request.app.state, "orchestrator", None)
    platforms = []
    if orchestrator is None:
        cache_status = "error: crawler not running"
    else:
        platforms = [p.value for p in orchestrator.enabled_platforms]
        try:
            healthy = await orchestrator.cache.health_check()
            cache_status = "ok" if healthy else "error: ping failed"
        except Exception as e:
            cache_status = f"error: {str(e)}"
    services["cache"] = cache_status

    overall_status = "ok" if all(s == "ok" for s in services.values()) else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        cache=cache_status,
        platforms=platforms,
        services=services,
    )
