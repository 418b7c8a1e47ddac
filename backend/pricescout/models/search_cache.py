"""Persisted search results keyed by normalized query."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pricescout.models.base import Base, UUIDPrimaryKeyMixin


class SearchCacheRow(UUIDPrimaryKeyMixin, Base):
    """One cached merged result.

    A re-crawl replaces the row for the same (query_key, platform_set,
    filters_hash); rows are never edited in place otherwise.
    """

    __tablename__ = "search_cache"

    query_key: Mapped[str] = mapped_column(String(500), nullable=False, comment="Case-folded query text")
    platform_set: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="Sorted comma-separated platform names"
    )
    filters_hash: Mapped[str] = mapped_column(String(32), nullable=False, comment="Hash of canonical filters")
    results_json: Mapped[str] = mapped_column(Text, nullable=False, comment="Merged product records as JSON")
    errors_json: Mapped[str] = mapped_column(
        Text, nullable=False, default="[]", comment="Platforms that failed for a partial result"
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("query_key", "platform_set", "filters_hash", name="uq_search_cache_key"),
        Index("idx_search_cache_expires", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<SearchCacheRow(query_key='{self.query_key}', platforms='{self.platform_set}', expires_at={self.expires_at})>"
