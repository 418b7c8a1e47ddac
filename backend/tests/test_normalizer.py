"""Tests for price, rating and URL normalization."""

from decimal import Decimal

import pytest

from pricescout.core.exceptions import MalformedPrice
from pricescout.scrapers.utils.normalizer import (
    PriceNormalizer,
    absolute_url,
    clean_text,
    parse_count,
    parse_rating,
    strip_tracking,
)


class TestPriceNormalizer:
    """Test strict price parsing."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("₱1,299.00", Decimal("1299.00")),
            ("PHP 450", Decimal("450")),
            ("Php 2,500", Decimal("2500")),
            ("P 99.50", Decimal("99.50")),
            ("₱199 - ₱399", Decimal("199")),
            ("₱1,000 to ₱2,000", Decimal("1000")),
            (750, Decimal("750")),
            (12.5, Decimal("12.5")),
        ],
    )
    def test_parses_common_formats(self, raw, expected):
        assert PriceNormalizer.parse(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["Contact for price", "", None, "₱", "1,29,9", "free", -5, float("nan"), True],
    )
    def test_rejects_unreadable_prices(self, raw):
        with pytest.raises(MalformedPrice):
            PriceNormalizer.parse(raw)

    def test_never_defaults_to_zero(self):
        with pytest.raises(MalformedPrice) as exc_info:
            PriceNormalizer.parse("Contact for price")
        assert exc_info.value.raw == "Contact for price"

    def test_parse_optional(self):
        assert PriceNormalizer.parse_optional(None) is None
        assert PriceNormalizer.parse_optional("n/a") is None
        assert PriceNormalizer.parse_optional("₱80") == Decimal("80")


class TestParsingHelpers:
    """Test rating, count and URL helpers."""

    def test_parse_rating(self):
        assert parse_rating("4.7") == 4.7
        assert parse_rating("4.5 out of 5") == 4.5
        assert parse_rating("90%") == 4.5
        assert parse_rating(3) == 3.0
        assert parse_rating("7") is None
        assert parse_rating("") is None

    def test_parse_count(self):
        assert parse_count("(1,234)") == 1234
        assert parse_count("2.5k sold") == 2500
        assert parse_count("1.2M") == 1200000
        assert parse_count(42) == 42
        assert parse_count("no reviews") is None

    def test_absolute_url(self):
        assert absolute_url("https://shopee.ph", "/x-i.1.2") == "https://shopee.ph/x-i.1.2"
        assert absolute_url("https://shopee.ph", "//cf.shopee.ph/file/a") == "https://cf.shopee.ph/file/a"
        assert absolute_url("https://shopee.ph", None) is None

    def test_strip_tracking(self):
        url = "https://www.lazada.com.ph/products/a-i1-s2.html?spm=a2o4l&search=1&color=red#top"
        assert strip_tracking(url) == "https://www.lazada.com.ph/products/a-i1-s2.html?color=red"

    def test_clean_text(self):
        assert clean_text("  Floral \n  Dress ") == "Floral Dress"
        assert clean_text(None) == ""
