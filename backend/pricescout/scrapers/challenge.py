"""Anti-bot challenge detection and the bounded wait/solve/retry protocol.

Every page a crawl session loads passes through ``ChallengeHandler.inspect``.
The handler walks a small state machine::

    BROWSING -> CHALLENGE_DETECTED -> WAITING -> RESOLVED -> BROWSING
                                             \\-> BLOCKED

A wait round lasts at most ``wait_ceiling`` seconds. An optional solver
gets one attempt per round, then the page is polled until the challenge
markers disappear and the expected content markers show up. A failed round
reloads the page and tries again while the session has retries left;
otherwise the handler moves to BLOCKED, which is terminal for the session.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from pricescout.core.exceptions import ChallengeUnresolved

logger = structlog.get_logger(__name__)


# Lower-cased substrings that only appear on human-verification interstitials
CHALLENGE_MARKERS: Tuple[str, ...] = (
    # Generic phrasing
    "verify you are human",
    "verify you are a human",
    "are you a robot",
    "unusual traffic",
    "security verification",
    "slide to verify",
    "please slide to verify",
    "complete the security check",
    # Cloudflare interstitial structures; the challenge-platform script alone
    # is injected into ordinary pages too
    "cf-browser-verification",
    "cf_chl_opt",
    "cf-challenge",
    "challenge-form",
)

# Widgets that also sit on ordinary pages (login forms, reviews). They count
# only when the page shows none of the expected content markers.
WIDGET_MARKERS: Tuple[str, ...] = (
    "g-recaptcha",
    "h-captcha",
    "captcha-container",
)

INTERSTITIAL_TITLES: Tuple[str, ...] = (
    "access denied",
    "attention required",
    "security check",
    "just a moment",
)


def _has_any(lowered_html: str, markers: Sequence[str]) -> bool:
    return any(m.lower() in lowered_html for m in markers)


class ChallengeState(str, Enum):
    BROWSING = "browsing"
    CHALLENGE_DETECTED = "challenge_detected"
    WAITING = "waiting"
    RESOLVED = "resolved"
    BLOCKED = "blocked"


_TRANSITIONS = {
    ChallengeState.BROWSING: {ChallengeState.CHALLENGE_DETECTED},
    ChallengeState.CHALLENGE_DETECTED: {ChallengeState.WAITING},
    ChallengeState.WAITING: {ChallengeState.RESOLVED, ChallengeState.BLOCKED},
    ChallengeState.RESOLVED: {ChallengeState.BROWSING},
    ChallengeState.BLOCKED: set(),
}


class ChallengeSolver(ABC):
    """Pluggable capability that tries to clear a challenge on a live page."""

    @abstractmethod
    async def solve(self, page, marker: str) -> bool:
        """Act on the challenge page.

        Returns:
            True if the solver did something worth waiting for
        """


class ClickThroughSolver(ChallengeSolver):
    """Clicks the first visible verify control, which clears simple
    checkbox and "continue" interstitials. It does not read images."""

    SELECTORS = (
        "input[type='checkbox']",
        "#challenge-stage input[type='button']",
        "button[type='submit']",
        ".btn-verify",
    )

    async def solve(self, page, marker: str) -> bool:
        for selector in self.SELECTORS:
            element = await page.query_selector(selector)
            if element is None:
                continue
            try:
                await element.click(timeout=3000)
            except PlaywrightError as e:
                logger.debug("solver_click_failed", selector=selector, error=str(e))
                continue
            logger.info("solver_clicked", selector=selector, marker=marker)
            return True
        return False


class ChallengeHandler:
    """Per-session challenge state machine."""

    def __init__(
        self,
        platform: str,
        extra_markers: Sequence[str] = (),
        solver: Optional[ChallengeSolver] = None,
        wait_ceiling: float = 15.0,
        poll_interval: float = 2.0,
        max_retries: int = 2,
        reload_timeout: float = 30.0,
    ):
        self.platform = platform
        self.markers = tuple(m.lower() for m in (*CHALLENGE_MARKERS, *extra_markers))
        self.solver = solver
        self.wait_ceiling = wait_ceiling
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.reload_timeout = reload_timeout
        self.state = ChallengeState.BROWSING
        self.history: List[Tuple[ChallengeState, ChallengeState]] = []
        self.retries_used = 0
        self.challenges_seen = 0
        self._last_marker: Optional[str] = None
        self.logger = logger.bind(platform=platform)

    def detect(self, html: str, ready_markers: Sequence[str] = ()) -> Optional[str]:
        """Return the first challenge marker found in ``html``, or None.

        Widget markers are ignored when any of ``ready_markers`` is present.
        """
        if not html:
            return None
        lowered = html.lower()
        for marker in self.markers:
            if marker in lowered:
                return marker
        if not _has_any(lowered, ready_markers):
            for marker in WIDGET_MARKERS:
                if marker in lowered:
                    return marker
        title_start = lowered.find("<title")
        if title_start != -1:
            title_end = lowered.find("</title>", title_start)
            title = lowered[title_start:title_end] if title_end != -1 else ""
            for phrase in INTERSTITIAL_TITLES:
                if phrase in title:
                    return f"title:{phrase}"
        return None

    def _transition(self, new_state: ChallengeState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal challenge transition {self.state.value} -> {new_state.value}")
        self.history.append((self.state, new_state))
        self.state = new_state

    def _is_resolved(self, html: str, ready_markers: Sequence[str]) -> bool:
        if self.detect(html, ready_markers) is not None:
            return False
        return not ready_markers or _has_any(html.lower(), ready_markers)

    async def inspect(self, page, html: str, url: str, ready_markers: Sequence[str] = ()) -> str:
        """Check a freshly loaded page and clear any challenge on it.

        Returns:
            The page HTML once it shows real content

        Raises:
            ChallengeUnresolved: if the challenge outlasts the wait rounds,
                or the session was already blocked
        """
        if self.state is ChallengeState.BLOCKED:
            raise ChallengeUnresolved(self.platform, url, self._last_marker)

        marker = self.detect(html, ready_markers)
        if marker is None:
            return html

        self.challenges_seen += 1
        self._last_marker = marker
        self.logger.warning("challenge_detected", url=url, marker=marker)
        self._transition(ChallengeState.CHALLENGE_DETECTED)
        self._transition(ChallengeState.WAITING)

        while True:
            resolved_html = await self._wait_round(page, marker, ready_markers)
            if resolved_html is not None:
                self._transition(ChallengeState.RESOLVED)
                self._transition(ChallengeState.BROWSING)
                self.logger.info("challenge_resolved", url=url, retries_used=self.retries_used)
                return resolved_html

            if self.retries_used >= self.max_retries:
                self._transition(ChallengeState.BLOCKED)
                self.logger.error("challenge_blocked", url=url, marker=marker, retries_used=self.retries_used)
                raise ChallengeUnresolved(self.platform, url, marker)

            self.retries_used += 1
            self.logger.info("challenge_retry", url=url, attempt=self.retries_used)
            await self._reload(page, url)

    async def _wait_round(self, page, marker: str, ready_markers: Sequence[str]) -> Optional[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_ceiling

        if self.solver is not None:
            try:
                await self.solver.solve(page, marker)
            except PlaywrightError as e:
                self.logger.warning("challenge_solver_failed", error=str(e))

        while True:
            html = await page.content()
            if self._is_resolved(html, ready_markers):
                return html
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _reload(self, page, url: str) -> None:
        try:
            await page.reload(wait_until="domcontentloaded", timeout=self.reload_timeout * 1000)
        except PlaywrightTimeoutError:
            self.logger.warning("challenge_reload_timeout", url=url)
