"""Randomized browsing identities for crawl sessions."""

import hashlib
import random
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional

import structlog

from .proxy_manager import NoProxyManager, ProxyManager
from .user_agents import LOCALE_PROFILES, SIGNATURES, VIEWPORTS, BrowserSignature

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Network route plus request signature used by one crawl session."""

    identity_id: str
    signature: BrowserSignature
    locale: str
    timezone_id: str
    viewport: Dict[str, int]
    headers: Dict[str, str] = field(default_factory=dict)
    proxy_url: Optional[str] = None

    @property
    def routed(self) -> bool:
        """False when the session goes out over the direct route."""
        return self.proxy_url is not None

    @property
    def user_agent(self) -> str:
        return self.signature.user_agent

    def context_options(self) -> dict:
        """Keyword arguments for Playwright's ``browser.new_context``."""
        options = {
            "user_agent": self.user_agent,
            "viewport": dict(self.viewport),
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "extra_http_headers": dict(self.headers),
            "bypass_csp": True,
        }
        if self.proxy_url:
            options["proxy"] = {"server": self.proxy_url}
        return options


class IdentityManager:
    """Allocates identities while avoiding recent reuse per platform.

    The last ``recency_window`` fingerprints handed out for a platform are
    excluded from selection. The egress route is drawn from the proxy pool
    with the same exclusion applied to recently used proxies.
    """

    MAX_DRAWS = 50

    def __init__(
        self,
        proxy_manager: Optional[ProxyManager] = None,
        recency_window: int = 3,
        signatures: Optional[List[BrowserSignature]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.proxy_manager = proxy_manager or NoProxyManager()
        self.recency_window = max(0, recency_window)
        self._signatures = signatures or SIGNATURES
        self._rng = rng or random.Random()
        self._recent: Dict[str, Deque[str]] = {}
        self._recent_proxies: Dict[str, Deque[str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _fingerprint(signature: BrowserSignature, viewport: Dict[str, int], locale: str) -> str:
        raw = f"{signature.user_agent}|{viewport['width']}x{viewport['height']}|{locale}"
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]

    def allocate(self, platform: str) -> Identity:
        """Build a fresh identity for one crawl session on ``platform``.

        Never fails for lack of proxies: without an egress route the identity
        uses the direct route and reports ``routed=False``.
        """
        with self._lock:
            recent = self._recent.setdefault(platform, deque(maxlen=self.recency_window or 1))
            recent_proxies = self._recent_proxies.setdefault(
                platform, deque(maxlen=self.recency_window or 1)
            )

            for _ in range(self.MAX_DRAWS):
                signature = self._rng.choice(self._signatures)
                viewport = self._rng.choice(VIEWPORTS)
                profile = self._rng.choice(LOCALE_PROFILES)
                fingerprint = self._fingerprint(signature, viewport, profile["locale"])
                if not self.recency_window or fingerprint not in recent:
                    break
            else:
                logger.warning("identity_pool_exhausted", platform=platform)

            proxy_url = self.proxy_manager.acquire(exclude=set(recent_proxies))

            if self.recency_window:
                recent.append(fingerprint)
                if proxy_url:
                    recent_proxies.append(proxy_url)

        headers = {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": profile["accept_language"],
            **signature.client_hint_headers(),
        }
        identity = Identity(
            identity_id=fingerprint,
            signature=signature,
            locale=profile["locale"],
            timezone_id=profile["timezone_id"],
            viewport=dict(viewport),
            headers=headers,
            proxy_url=proxy_url,
        )
        logger.debug(
            "identity_allocated",
            platform=platform,
            identity_id=identity.identity_id,
            browser=signature.family,
            routed=identity.routed,
        )
        return identity

    def report_failure(self, identity: Identity) -> None:
        """Count a navigation failure against the identity's egress route."""
        if identity.proxy_url:
            self.proxy_manager.mark_failed(identity.proxy_url)

    def report_success(self, identity: Identity) -> None:
        if identity.proxy_url:
            self.proxy_manager.mark_success(identity.proxy_url)

    def recent_fingerprints(self, platform: str) -> List[str]:
        """Fingerprints currently excluded for ``platform``, oldest first."""
        with self._lock:
            return list(self._recent.get(platform, ()))
