"""Tests for challenge detection and the wait/solve/retry state machine."""

import pytest

from pricescout.core.exceptions import ChallengeUnresolved
from pricescout.scrapers.challenge import ChallengeHandler, ChallengeSolver, ChallengeState
from tests.fakes import FakePage

CHALLENGE_HTML = "<html><head><title>Verify</title></head><body><div id='captcha-container'></div></body></html>"
CONTENT_HTML = "<html><body><div data-qa-locator='product-item'>Dress</div></body></html>"
ZALORA_WITH_CF_SCRIPT = (
    "<html><head><title>Dresses | ZALORA Philippines</title></head><body>"
    "<div data-sku='MA123AA0ABCDEF'><span>Mango Dress</span><span>PHP 1,299.00</span></div>"
    "<script>(function(){window.__CF$cv$params={r:'8a1b',t:'MTcw'};"
    "var a=document.createElement('script');a.src='/cdn-cgi/challenge-platform/scripts/jsd/main.js';"
    "document.head.appendChild(a);})();</script></body></html>"
)
ZALORA_READY = ('data-test-id="productlink"', "data-sku", "application/ld+json")


def make_handler(**kwargs) -> ChallengeHandler:
    kwargs.setdefault("wait_ceiling", 0.05)
    kwargs.setdefault("poll_interval", 0.01)
    kwargs.setdefault("max_retries", 1)
    return ChallengeHandler("lazada", **kwargs)


class RecordingSolver(ChallengeSolver):
    def __init__(self, clears: bool = False):
        self.clears = clears
        self.calls = 0

    async def solve(self, page, marker):
        self.calls += 1
        if self.clears:
            page.contents = [CONTENT_HTML]
        return self.clears


class TestDetection:
    """Test marker and title detection."""

    def test_clean_page(self):
        assert make_handler().detect(CONTENT_HTML) is None
        assert make_handler().detect("") is None

    def test_generic_marker(self):
        assert make_handler().detect("<p>Please verify you are human</p>") == "verify you are human"

    def test_interstitial_title(self):
        html = "<html><head><title>Access Denied</title></head><body></body></html>"
        assert make_handler().detect(html) == "title:access denied"

    def test_site_specific_marker(self):
        handler = make_handler(extra_markers=("_____tmd_____",))
        assert handler.detect("<script src='/_____tmd_____/punish'></script>") == "_____tmd_____"
        assert make_handler().detect("<script src='/_____tmd_____/punish'></script>") is None

    def test_cloudflare_interstitial(self):
        html = (
            "<html><head><title>Just a moment...</title></head><body>"
            "<form id='challenge-form' action='/?__cf_chl_f_tk=abc'></form>"
            "<script>window._cf_chl_opt={cType: 'managed'};</script></body></html>"
        )
        assert make_handler().detect(html) == "cf_chl_opt"

    def test_cloudflare_script_on_normal_page(self):
        assert make_handler().detect(ZALORA_WITH_CF_SCRIPT, ZALORA_READY) is None
        assert make_handler().detect(ZALORA_WITH_CF_SCRIPT) is None

    def test_captcha_widget_beside_content(self):
        html = CONTENT_HTML.replace("</body>", "<div class='g-recaptcha' data-sitekey='k'></div></body>")
        assert make_handler().detect(html, ("product-item",)) is None
        # Without the expected content the widget is the page
        assert make_handler().detect("<html><div class='g-recaptcha'></div></html>", ("product-item",)) == "g-recaptcha"


class TestStateMachine:
    """Test the bounded wait protocol."""

    async def test_clean_page_passes_through(self):
        handler = make_handler()
        page = FakePage()
        assert await handler.inspect(page, CONTENT_HTML, "https://x.test") == CONTENT_HTML
        assert handler.state is ChallengeState.BROWSING
        assert handler.history == []

    async def test_challenge_clears_while_waiting(self):
        handler = make_handler(wait_ceiling=5.0)
        page = FakePage(contents=[CHALLENGE_HTML, CHALLENGE_HTML, CONTENT_HTML])
        html = await handler.inspect(page, CHALLENGE_HTML, "https://x.test")
        assert html == CONTENT_HTML
        assert handler.state is ChallengeState.BROWSING
        assert handler.retries_used == 0
        assert handler.history == [
            (ChallengeState.BROWSING, ChallengeState.CHALLENGE_DETECTED),
            (ChallengeState.CHALLENGE_DETECTED, ChallengeState.WAITING),
            (ChallengeState.WAITING, ChallengeState.RESOLVED),
            (ChallengeState.RESOLVED, ChallengeState.BROWSING),
        ]

    async def test_solver_gets_first_attempt(self):
        page = FakePage(contents=[])
        page.html = CHALLENGE_HTML
        solver = RecordingSolver(clears=True)
        handler = make_handler(solver=solver)
        assert await handler.inspect(page, CHALLENGE_HTML, "https://x.test") == CONTENT_HTML
        assert solver.calls == 1

    async def test_unresolved_after_retries_blocks(self):
        page = FakePage()
        page.html = CHALLENGE_HTML
        handler = make_handler(max_retries=2)
        with pytest.raises(ChallengeUnresolved) as exc_info:
            await handler.inspect(page, CHALLENGE_HTML, "https://x.test/search")
        assert exc_info.value.reason == "challenge_unresolved"
        assert handler.state is ChallengeState.BLOCKED
        assert handler.retries_used == 2
        assert page.reload_calls == 2

    async def test_blocked_is_terminal(self):
        page = FakePage()
        page.html = CHALLENGE_HTML
        handler = make_handler(max_retries=0)
        with pytest.raises(ChallengeUnresolved):
            await handler.inspect(page, CHALLENGE_HTML, "https://x.test")
        # Even a clean page is refused once blocked
        with pytest.raises(ChallengeUnresolved):
            await handler.inspect(page, CONTENT_HTML, "https://x.test/next")

    async def test_retries_counted_per_session(self):
        handler = make_handler(max_retries=1)
        first = FakePage(reload_html=CONTENT_HTML)
        first.html = CHALLENGE_HTML
        await handler.inspect(first, CHALLENGE_HTML, "https://x.test/1")
        assert handler.retries_used == 1
        assert first.reload_calls == 1

        second = FakePage()
        second.html = CHALLENGE_HTML
        with pytest.raises(ChallengeUnresolved):
            await handler.inspect(second, CHALLENGE_HTML, "https://x.test/2")
        # No retry budget was left for the second challenge
        assert second.reload_calls == 0
        assert handler.retries_used == 1

    async def test_ready_markers_required(self):
        handler = make_handler(max_retries=0)
        page = FakePage()
        page.html = "<html><body>still loading</body></html>"
        with pytest.raises(ChallengeUnresolved):
            await handler.inspect(page, CHALLENGE_HTML, "https://x.test", ready_markers=("product-item",))

    async def test_normal_page_with_cloudflare_script_passes(self):
        handler = make_handler(max_retries=0)
        page = FakePage()
        page.html = ZALORA_WITH_CF_SCRIPT
        html = await handler.inspect(page, ZALORA_WITH_CF_SCRIPT, "https://www.zalora.com.ph/search", ZALORA_READY)
        assert html == ZALORA_WITH_CF_SCRIPT
        assert handler.state is ChallengeState.BROWSING

    def test_illegal_transition_rejected(self):
        handler = make_handler()
        with pytest.raises(RuntimeError):
            handler._transition(ChallengeState.RESOLVED)
