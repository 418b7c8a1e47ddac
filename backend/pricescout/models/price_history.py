"""Tracked products and their observed prices."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pricescout.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class TrackedProduct(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A listing whose price is sampled periodically."""

    __tablename__ = "tracked_products"

    product_key: Mapped[str] = mapped_column(
        String(200), unique=True, nullable=False, comment="'<platform>:<source_id>'"
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str] = mapped_column(String(150), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<TrackedProduct(product_key='{self.product_key}', active={self.is_active})>"


class PriceHistory(UUIDPrimaryKeyMixin, Base):
    """One observed price for a tracked product. Append-only."""

    __tablename__ = "price_history"

    product_key: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Observed price in PHP")
    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        comment="When this price was observed",
    )

    __table_args__ = (
        Index("idx_price_history_product_observed", "product_key", "observed_at"),
    )

    def __repr__(self) -> str:
        return f"<PriceHistory(product_key='{self.product_key}', price={self.price}, observed_at={self.observed_at})>"
