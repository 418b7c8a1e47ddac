"""Tests for identity allocation, the proxy pool and per-host pacing."""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from pricescout.scrapers.utils.browser_manager import stealth_script
from pricescout.scrapers.utils.identity import IdentityManager
from pricescout.scrapers.utils.proxy_manager import NoProxyManager, ProxyManager
from pricescout.scrapers.utils.rate_limiter import HostRateLimiter, TokenBucket


class TestIdentityManager:
    """Test identity rotation."""

    def test_recent_fingerprints_not_reused(self):
        manager = IdentityManager(recency_window=3, rng=random.Random(7))
        ids = [manager.allocate("lazada").identity_id for _ in range(30)]
        for i in range(len(ids)):
            window = ids[max(0, i - 3):i]
            assert ids[i] not in window

    def test_recency_tracked_per_platform(self):
        manager = IdentityManager(recency_window=2, rng=random.Random(1))
        lazada = manager.allocate("lazada")
        manager.allocate("shopee")
        assert manager.recent_fingerprints("lazada") == [lazada.identity_id]
        assert len(manager.recent_fingerprints("shopee")) == 1
        assert manager.recent_fingerprints("zalora") == []

    def test_headers_consistent_with_signature(self):
        manager = IdentityManager(rng=random.Random(3))
        for _ in range(40):
            identity = manager.allocate("zalora")
            assert identity.headers["Accept-Language"].startswith(identity.locale)
            has_hints = "sec-ch-ua" in identity.headers
            assert has_hints == identity.signature.sends_client_hints
            assert identity.timezone_id == "Asia/Manila"

    def test_direct_route_without_proxies(self):
        identity = IdentityManager(NoProxyManager()).allocate("lazada")
        assert identity.proxy_url is None
        assert identity.routed is False
        assert "proxy" not in identity.context_options()

    def test_proxy_route_in_context_options(self):
        manager = IdentityManager(ProxyManager(["http://p1:8080", "http://p2:8080"]))
        identity = manager.allocate("shopee")
        assert identity.routed
        options = identity.context_options()
        assert options["proxy"] == {"server": identity.proxy_url}
        assert options["user_agent"] == identity.user_agent
        assert options["locale"] == identity.locale

    def test_recent_proxy_avoided(self):
        manager = IdentityManager(ProxyManager(["http://p1:8080", "http://p2:8080"]), recency_window=1)
        first = manager.allocate("lazada").proxy_url
        second = manager.allocate("lazada").proxy_url
        assert first != second

    def test_failure_reported_to_proxy_pool(self):
        pool = ProxyManager(["http://p1:8080"])
        manager = IdentityManager(pool)
        identity = manager.allocate("lazada")
        for _ in range(3):
            manager.report_failure(identity)
        assert pool.get_stats()["unhealthy_proxies"] == 1
        manager.report_success(identity)
        assert pool.get_stats()["healthy_proxies"] == 1

    def test_concurrent_allocation_is_safe(self):
        manager = IdentityManager(recency_window=3)
        with ThreadPoolExecutor(max_workers=8) as pool:
            identities = list(pool.map(lambda _: manager.allocate("lazada"), range(64)))
        assert len(identities) == 64
        assert len(manager.recent_fingerprints("lazada")) == 3

    def test_stealth_script_languages_follow_locale(self):
        manager = IdentityManager(rng=random.Random(11))
        identity = manager.allocate("lazada")
        script = stealth_script(identity)
        assert f'"{identity.locale}"' in script
        assert "webdriver" in script


class TestProxyManager:
    """Test proxy pool rotation and health."""

    def test_round_robin(self):
        pool = ProxyManager(["a", "b", "c"])
        assert [pool.acquire() for _ in range(4)] == ["a", "b", "c", "a"]

    def test_exclusion_is_best_effort(self):
        pool = ProxyManager(["a"])
        assert pool.acquire(exclude={"a"}) == "a"

    def test_unhealthy_proxy_skipped(self):
        pool = ProxyManager(["a", "b"])
        for _ in range(3):
            pool.mark_failed("a")
        assert {pool.acquire() for _ in range(4)} == {"b"}

    def test_empty_pool(self):
        assert ProxyManager([]).acquire() is None
        assert NoProxyManager().acquire() is None
        assert len(NoProxyManager()) == 0


class TestRateLimiter:
    """Test token bucket pacing."""

    async def test_bucket_allows_burst_then_waits(self):
        bucket = TokenBucket(rate=100.0, capacity=2)
        assert await bucket.acquire() == 0.0
        assert await bucket.acquire() == 0.0
        waited = await bucket.acquire()
        assert waited > 0

    def test_host_limits(self):
        limiter = HostRateLimiter({"example.test": 30})
        assert limiter.get_current_rate("shopee.ph") == pytest.approx(12)
        assert limiter.get_current_rate("example.test") == pytest.approx(30)
        assert limiter.get_current_rate("unknown.test") == pytest.approx(HostRateLimiter.DEFAULT_RPM)
