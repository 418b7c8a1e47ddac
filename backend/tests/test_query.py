"""Tests for search filters and the normalized search key."""

from decimal import Decimal

import pytest

from pricescout.core.exceptions import UnsupportedPlatformError
from pricescout.scrapers.platform import Platform
from pricescout.scrapers.query import SearchFilters, SearchQueryKey


class TestSearchFilters:
    """Test canonical filter construction."""

    def test_prices_rounded_half_up(self):
        filters = SearchFilters.create(min_price="99.995", max_price=500)
        assert filters.min_price == Decimal("100.00")
        assert filters.max_price == Decimal("500.00")

    def test_brand_case_folded_and_trimmed(self):
        assert SearchFilters.create(brand="  Nike  ").brand == "nike"
        assert SearchFilters.create(brand="   ").brand is None

    def test_rating_rounded(self):
        assert SearchFilters.create(min_rating=4.26).min_rating == 4.3

    def test_min_above_max_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters.create(min_price=500, max_price=100)

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters.create(min_price=-1)

    def test_rating_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters.create(min_rating=6)

    @pytest.mark.parametrize("rating", [float("nan"), "nan", float("inf")])
    def test_non_finite_rating_rejected(self, rating):
        with pytest.raises(ValueError):
            SearchFilters.create(min_rating=rating)

    def test_from_mapping_accepts_camel_case(self):
        filters = SearchFilters.from_mapping({"minPrice": 100, "maxPrice": "250.5", "minRating": 4})
        assert filters == SearchFilters.create(min_price=100, max_price=250.5, min_rating=4)

    def test_equal_filters_hash_equal(self):
        a = SearchFilters.create(min_price=100, brand="NIKE")
        b = SearchFilters.create(min_price="100.00", brand="nike")
        assert a == b
        assert a.filters_hash == b.filters_hash
        assert a.filters_hash != SearchFilters().filters_hash

    def test_is_empty(self):
        assert SearchFilters().is_empty
        assert not SearchFilters.create(brand="uniqlo").is_empty


class TestSearchQueryKey:
    """Test key normalization."""

    def test_query_and_platforms_normalized(self):
        a = SearchQueryKey.build("  Summer   DRESS ", ["zalora", "Lazada"])
        b = SearchQueryKey.build("summer dress", [Platform.LAZADA, Platform.ZALORA, "lazada"])
        assert a == b
        assert hash(a) == hash(b)
        assert a.query == "summer dress"
        assert a.platform_set == "lazada,zalora"

    def test_filters_distinguish_keys(self):
        plain = SearchQueryKey.build("dress", ["lazada"])
        filtered = SearchQueryKey.build("dress", ["lazada"], SearchFilters.create(max_price=500))
        assert plain != filtered
        assert plain.cache_key != filtered.cache_key

    def test_cache_key_format(self):
        key = SearchQueryKey.build("Dress", ["zalora", "lazada"])
        assert key.cache_key == f"search:lazada,zalora:{key.filters_hash}:dress"

    def test_empty_query_rejected(self):
        with pytest.raises(ValueError):
            SearchQueryKey.build("   ", ["lazada"])

    def test_empty_platforms_rejected(self):
        with pytest.raises(ValueError):
            SearchQueryKey.build("dress", [])

    def test_unknown_platform_rejected(self):
        with pytest.raises(UnsupportedPlatformError):
            SearchQueryKey.build("dress", ["amazon"])
