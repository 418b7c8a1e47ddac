"""Supported storefronts and extraction provenance."""

from enum import Enum

from pricescout.core.exceptions import UnsupportedPlatformError


class Platform(str, Enum):
    """E-commerce sites with a platform driver."""

    LAZADA = "lazada"
    ZALORA = "zalora"
    SHOPEE = "shopee"

    @classmethod
    def parse(cls, value: "str | Platform") -> "Platform":
        """Look up a platform by name, case-insensitively.

        Raises:
            UnsupportedPlatformError: if no driver exists for ``value``
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedPlatformError(str(value)) from None


class ExtractionConfidence(str, Enum):
    """How a listing's fields were obtained.

    direct: structured page data or a dedicated price element
    estimated: price picked out of card text by pattern matching
    fallback: generic link scan when the site layout was not recognized
    """

    DIRECT = "direct"
    ESTIMATED = "estimated"
    FALLBACK = "fallback"
