"""Price history for tracked products.

A tracked product is sampled through the orchestrator's regular
product-detail lookup; each successful sample appends one
``(product_key, price, observed_at)`` row.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricescout.core.exceptions import MalformedPrice, ScraperError, UnsupportedPlatformError
from pricescout.models.price_history import PriceHistory, TrackedProduct
from pricescout.scrapers.merger import ResultMerger
from pricescout.scrapers.platform import Platform

if TYPE_CHECKING:
    from pricescout.scrapers.orchestrator import CrawlOrchestrator

logger = structlog.get_logger(__name__)


class PriceHistoryService:
    """Database access for tracked products and their price rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def track_product(self, platform: Platform, source_id: str, title: Optional[str] = None) -> TrackedProduct:
        """Start tracking a listing, or re-activate it if it was tracked before."""
        product_key = f"{platform.value}:{source_id}"
        result = await self.db.execute(select(TrackedProduct).where(TrackedProduct.product_key == product_key))
        tracked = result.scalar_one_or_none()
        if tracked is None:
            tracked = TrackedProduct(
                product_key=product_key,
                platform=platform.value,
                source_id=source_id,
                title=title,
                is_active=True,
            )
            self.db.add(tracked)
        else:
            tracked.is_active = True
            if title:
                tracked.title = title
        await self.db.flush()
        return tracked

    async def list_active(self) -> List[TrackedProduct]:
        result = await self.db.execute(
            select(TrackedProduct).where(TrackedProduct.is_active.is_(True)).order_by(TrackedProduct.product_key)
        )
        return list(result.scalars().all())

    async def record_price(self, product_key: str, price: Decimal, observed_at: Optional[datetime] = None) -> PriceHistory:
        row = PriceHistory(
            product_key=product_key,
            price=price,
            observed_at=observed_at or datetime.now(timezone.utc),
        )
        self.db.add(row)
        await self.db.flush()
        return row

    async def get_history(self, product_key: str, limit: int = 100) -> List[PriceHistory]:
        """Most recent observations first."""
        result = await self.db.execute(
            select(PriceHistory)
            .where(PriceHistory.product_key == product_key)
            .order_by(PriceHistory.observed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class PriceTracker:
    """Samples every active tracked product once per run."""

    def __init__(
        self,
        orchestrator: "CrawlOrchestrator",
        db_session_factory: async_sessionmaker[AsyncSession],
        merger: Optional[ResultMerger] = None,
    ):
        self.orchestrator = orchestrator
        self.db_session_factory = db_session_factory
        self.merger = merger or ResultMerger()
        self.logger = logger.bind(service="price_tracker")

    async def record_once(self) -> Dict[str, int]:
        """Look up each tracked product and append its current price.

        A product that cannot be fetched is skipped for this run; it stays
        tracked and is retried on the next one.
        """
        stats = {"checked": 0, "recorded": 0, "missing": 0, "failed": 0}

        async with self.db_session_factory() as db:
            service = PriceHistoryService(db)
            tracked_products = await service.list_active()

            for tracked in tracked_products:
                stats["checked"] += 1
                try:
                    details = await self.orchestrator.get_product_details(tracked.platform, tracked.source_id)
                except (ScraperError, UnsupportedPlatformError, asyncio.TimeoutError) as e:
                    stats["failed"] += 1
                    self.logger.warning("price_check_failed", product_key=tracked.product_key, error=str(e))
                    continue
                except Exception as e:
                    # One broken lookup must not discard the prices already sampled in this run
                    stats["failed"] += 1
                    self.logger.error(
                        "price_check_crashed", product_key=tracked.product_key, error=str(e), exc_info=True
                    )
                    continue

                tracked.last_checked_at = datetime.now(timezone.utc)
                if details is None:
                    stats["missing"] += 1
                    self.logger.info("tracked_product_missing", product_key=tracked.product_key)
                    continue

                try:
                    record = self.merger.to_record(details)
                except (MalformedPrice, ValueError) as e:
                    stats["failed"] += 1
                    self.logger.warning("tracked_price_malformed", product_key=tracked.product_key, error=str(e))
                    continue

                await service.record_price(tracked.product_key, record.price, tracked.last_checked_at)
                stats["recorded"] += 1

            await db.commit()

        self.logger.info("price_tracking_run_finished", **stats)
        return stats
