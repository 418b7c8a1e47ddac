"""Health check schemas."""

from typing import Dict, List, Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Health check response schema."""

    status: str
    database: str
    cache: Optional[str] = None
    platforms: List[str] = []
    services: Dict[str, str] = {}
