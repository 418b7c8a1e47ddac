"""Browser signature catalogue for identity rotation.

Each signature pairs a user-agent string with the request headers a real
copy of that browser sends, so an identity never advertises Chrome client
hints alongside a Firefox user agent.
"""

import random
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class BrowserSignature:
    """A user agent and the browser facts that must agree with it."""

    user_agent: str
    family: str  # 'chrome', 'edge', 'firefox' or 'safari'
    os_name: str  # 'Windows', 'macOS' or 'Linux'
    major_version: int

    @property
    def sends_client_hints(self) -> bool:
        return self.family in ("chrome", "edge")

    def client_hint_headers(self) -> Dict[str, str]:
        """Sec-CH-UA headers for Chromium browsers, empty for the rest."""
        if not self.sends_client_hints:
            return {}
        brand = "Microsoft Edge" if self.family == "edge" else "Google Chrome"
        v = self.major_version
        return {
            "sec-ch-ua": f'"{brand}";v="{v}", "Chromium";v="{v}", "Not_A Brand";v="24"',
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": f'"{self.os_name}"',
        }


SIGNATURES: List[BrowserSignature] = [
    # Chrome on Windows
    BrowserSignature(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
        "chrome", "Windows", 131,
    ),
    BrowserSignature(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
        "chrome", "Windows", 130,
    ),
    BrowserSignature(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
        "chrome", "Windows", 129,
    ),
    # Chrome on macOS
    BrowserSignature(
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
        "chrome", "macOS", 131,
    ),
    BrowserSignature(
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
        "chrome", "macOS", 130,
    ),
    # Chrome on Linux
    BrowserSignature(
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
        "chrome", "Linux", 131,
    ),
    # Edge on Windows
    BrowserSignature(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
        "edge", "Windows", 131,
    ),
    # Firefox
    BrowserSignature(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
        "firefox", "Windows", 133,
    ),
    BrowserSignature(
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:133.0) Gecko/20100101 Firefox/133.0",
        "firefox", "macOS", 133,
    ),
    # Safari on macOS
    BrowserSignature(
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.1 Safari/605.1.15",
        "safari", "macOS", 18,
    ),
]

# Common desktop resolutions
VIEWPORTS: List[Dict[str, int]] = [
    {"width": 1920, "height": 1080},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
    {"width": 1366, "height": 768},
    {"width": 1680, "height": 1050},
]

# Locale, Accept-Language and timezone that belong together
LOCALE_PROFILES: List[Dict[str, str]] = [
    {"locale": "en-PH", "accept_language": "en-PH,en;q=0.9", "timezone_id": "Asia/Manila"},
    {"locale": "en-US", "accept_language": "en-US,en;q=0.9", "timezone_id": "Asia/Manila"},
    {"locale": "fil-PH", "accept_language": "fil-PH,fil;q=0.9,en;q=0.8", "timezone_id": "Asia/Manila"},
]


def get_random_signature(rng: Optional[random.Random] = None) -> BrowserSignature:
    """Pick a random browser signature from the catalogue."""
    return (rng or random).choice(SIGNATURES)
