"""PriceScout Backend -- FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pricescout.api.v1.router import api_v1_router
from pricescout.config import settings
from pricescout.db.session import async_session_factory, engine
from pricescout.models import Base
from pricescout.scrapers.orchestrator import build_orchestrator
from pricescout.scrapers.scheduler import PriceTrackingScheduler
from pricescout.services.price_tracker import PriceTracker

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown events."""
    logger.info("Starting PriceScout API server...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Enabled platforms: {settings.get_enabled_platforms()}")

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables verified/created")
    except Exception as e:
        logger.error(f"Database init failed: {e}", exc_info=True)

    orchestrator = build_orchestrator(settings)
    await orchestrator.start()
    app.state.orchestrator = orchestrator

    cache_healthy = await orchestrator.cache.health_check()
    if cache_healthy:
        logger.info(f"Search cache ready ({settings.CACHE_BACKEND})")
    else:
        logger.warning("Search cache unreachable (searches will crawl directly)")

    scheduler = None
    if settings.PRICE_TRACKING_ENABLED and settings.ENVIRONMENT != "test":
        scheduler = PriceTrackingScheduler(
            PriceTracker(orchestrator, async_session_factory),
            cache=orchestrator.cache,
        )
        scheduler.start(settings.PRICE_TRACKING_INTERVAL_MINUTES)
        logger.info(f"Price tracking every {settings.PRICE_TRACKING_INTERVAL_MINUTES} minutes")
    else:
        logger.info("Price tracking scheduler disabled")

    yield

    logger.info("Shutting down PriceScout API server...")
    if scheduler:
        scheduler.stop()

    try:
        await orchestrator.stop()
        logger.info("Crawler stopped")
    except Exception as e:
        logger.warning(f"Error stopping crawler: {e}")
    app.state.orchestrator = None
    await engine.dispose()


app = FastAPI(
    title="PriceScout API",
    description="Multi-platform e-commerce price search",
    version="0.1.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.FRONTEND_URL,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "PriceScout API",
        "version": "0.1.0",
        "description": "Multi-platform e-commerce price search",
        "docs": "/docs" if settings.DEBUG else None,
        "health": "/api/v1/health",
    }
