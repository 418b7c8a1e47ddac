"""Crawl utilities: identities, proxies, rate limiting, browser and parsing helpers."""

from .identity import Identity, IdentityManager
from .normalizer import PriceNormalizer, parse_count, parse_rating
from .proxy_manager import NoProxyManager, ProxyEntry, ProxyManager
from .rate_limiter import HostRateLimiter, NoRateLimiter, TokenBucket

__all__ = [
    "HostRateLimiter",
    "Identity",
    "IdentityManager",
    "NoProxyManager",
    "NoRateLimiter",
    "PriceNormalizer",
    "ProxyEntry",
    "ProxyManager",
    "TokenBucket",
    "parse_count",
    "parse_rating",
]
