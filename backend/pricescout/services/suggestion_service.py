"""Client for the optional AI search-suggestion provider.

Suggestions are an enrichment. Any failure (missing configuration,
network trouble, bad payload) yields an empty Suggestions object.
"""

from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from pricescout.scrapers.utils.retry import http_retry

logger = structlog.get_logger(__name__)


class SuggestedFilters(BaseModel):
    """Filters the provider thinks fit the query."""

    category: Optional[str] = None
    min_price: Optional[float] = Field(None, alias="minPrice")
    max_price: Optional[float] = Field(None, alias="maxPrice")
    brand: Optional[str] = None

    model_config = {"populate_by_name": True}


class Suggestions(BaseModel):
    """Suggested search terms plus optional filters."""

    suggestions: List[str] = Field(default_factory=list)
    filters: Optional[SuggestedFilters] = None


class SuggestionClient:
    """Calls the provider with ``{"query": ...}``."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self.logger = logger.bind(service="suggestions")

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    @http_retry
    async def _post(self, query: str) -> dict:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.api_url, json={"query": query}, headers=headers)
            response.raise_for_status()
            return response.json()

    async def suggest(self, query: str) -> Suggestions:
        """Return suggestions for ``query``; empty on any provider failure."""
        if not self.enabled or not query.strip():
            return Suggestions()
        try:
            payload = await self._post(query.strip())
            return Suggestions.model_validate(payload)
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            self.logger.warning("suggestions_unavailable", error=str(e))
            return Suggestions()
