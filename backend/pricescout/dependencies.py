"""FastAPI dependency injection providers."""

from typing import AsyncGenerator

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from pricescout.config import settings
from pricescout.db.session import async_session_factory
from pricescout.scrapers.orchestrator import CrawlOrchestrator
from pricescout.services.suggestion_service import SuggestionClient


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for request-scoped usage.

    The session is automatically committed on success or rolled back on error.
    Always closed after the request completes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_orchestrator(request: Request) -> CrawlOrchestrator:
    """Return the orchestrator started by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Crawler is not running",
        )
    return orchestrator


def get_suggestion_client() -> SuggestionClient:
    return SuggestionClient(
        settings.SUGGESTION_API_URL,
        api_key=settings.SUGGESTION_API_KEY,
        timeout=settings.SUGGESTION_TIMEOUT_SECONDS,
    )
