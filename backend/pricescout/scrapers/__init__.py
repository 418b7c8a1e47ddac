"""Crawling engine: platform drivers, sessions, challenge handling and merging.

This package provides:
- The platform driver contract and raw extraction types
- Crawl sessions with identity rotation and challenge handling
- The result merger and canonical product record
- The crawl orchestrator that ties them together
"""

from .base import BasePlatformDriver, ProductDetails, RawExtraction, RawReview
from .factory import DriverFactory
from .merger import ProductRecord, ResultMerger
from .platform import ExtractionConfidence, Platform
from .query import SearchFilters, SearchQueryKey

__all__ = [
    # Driver contract
    "BasePlatformDriver",
    "DriverFactory",
    # Data structures
    "ExtractionConfidence",
    "Platform",
    "ProductDetails",
    "ProductRecord",
    "RawExtraction",
    "RawReview",
    "SearchFilters",
    "SearchQueryKey",
    # Merging
    "ResultMerger",
]
