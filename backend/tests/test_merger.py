"""Tests for normalization, filtering, de-duplication and ordering."""

from decimal import Decimal

import pytest

from pricescout.core.exceptions import MalformedPrice
from pricescout.scrapers.merger import ProductRecord, ResultMerger, reorder, sort_key
from pricescout.scrapers.platform import ExtractionConfidence, Platform
from pricescout.scrapers.query import SearchFilters
from tests.fakes import raw

LAZADA, ZALORA, SHOPEE = Platform.LAZADA, Platform.ZALORA, Platform.SHOPEE


@pytest.fixture
def merger() -> ResultMerger:
    return ResultMerger()


class TestToRecord:
    """Test RawExtraction -> ProductRecord."""

    def test_normalizes_price_and_title(self, merger):
        extraction = raw(LAZADA, "1_2", "₱1,299.00", title="  Floral   Dress ")
        extraction.original_price_text = "₱1,999.00"
        record = merger.to_record(extraction)
        assert record.price == Decimal("1299.00")
        assert record.original_price == Decimal("1999.00")
        assert record.title == "Floral Dress"
        assert record.currency == "PHP"
        assert record.product_key == "lazada:1_2"

    def test_original_price_not_above_price_dropped(self, merger):
        extraction = raw(LAZADA, "1", "₱500")
        extraction.original_price_text = "₱500"
        assert merger.to_record(extraction).original_price is None

    def test_malformed_price_raises(self, merger):
        with pytest.raises(MalformedPrice):
            merger.to_record(raw(SHOPEE, "1", "Contact for price"))

    def test_confidence_preserved(self, merger):
        record = merger.to_record(raw(ZALORA, "a-1", "₱99", confidence=ExtractionConfidence.FALLBACK))
        assert record.extraction_confidence is ExtractionConfidence.FALLBACK

    def test_dict_round_trip(self, merger):
        record = merger.to_record(raw(SHOPEE, "9_8", "₱250.50", rating=4.2))
        assert ProductRecord.from_dict(record.to_dict()) == record


class TestMerge:
    """Test the merge pipeline."""

    def test_price_ascending_with_rating_tiebreak(self, merger):
        report = merger.merge(
            {
                LAZADA: [raw(LAZADA, "a", 150, rating=4.0), raw(LAZADA, "b", 99, rating=4.5)],
                ZALORA: [raw(ZALORA, "c", 99, rating=4.8), raw(ZALORA, "d", 300)],
            }
        )
        assert [r.price for r in report.records] == [99, 99, 150, 300]
        assert [r.source_id for r in report.records] == ["c", "b", "a", "d"]

    def test_unrated_sorts_after_rated_at_same_price(self, merger):
        report = merger.merge(
            {
                SHOPEE: [raw(SHOPEE, "unrated", 99), raw(SHOPEE, "rated", 99, rating=1.0)],
            }
        )
        assert [r.source_id for r in report.records] == ["rated", "unrated"]

    def test_dedup_within_platform_keeps_first(self, merger):
        report = merger.merge(
            {
                LAZADA: [
                    raw(LAZADA, "X", 100, title="first"),
                    raw(LAZADA, "X", 90, title="second"),
                ],
            }
        )
        assert len(report.records) == 1
        assert report.records[0].title == "first"
        assert report.duplicates == 1

    def test_same_id_on_different_platforms_not_merged(self, merger):
        report = merger.merge(
            {
                LAZADA: [raw(LAZADA, "X", 100, title="Same Dress")],
                ZALORA: [raw(ZALORA, "X", 100, title="Same Dress")],
            }
        )
        assert {r.source_platform for r in report.records} == {LAZADA, ZALORA}

    def test_malformed_dropped_not_zeroed(self, merger):
        report = merger.merge(
            {
                SHOPEE: [raw(SHOPEE, "1", "Contact for price"), raw(SHOPEE, "2", "₱120")],
            }
        )
        assert [r.source_id for r in report.records] == ["2"]
        assert all(r.price > 0 for r in report.records)
        assert report.malformed == 1

    def test_valid_duplicate_kept_after_malformed_first_copy(self, merger):
        report = merger.merge(
            {
                SHOPEE: [raw(SHOPEE, "1", "Contact for price"), raw(SHOPEE, "1", "₱120")],
            }
        )
        assert [r.price for r in report.records] == [Decimal("120")]

    def test_filters_applied(self, merger):
        filters = SearchFilters.create(min_price=100, max_price=200, brand="Nike", min_rating=4)
        report = merger.merge(
            {
                LAZADA: [
                    raw(LAZADA, "cheap", 50, rating=5, brand="Nike"),
                    raw(LAZADA, "ok", 150, rating=4.5, brand="Nike"),
                    raw(LAZADA, "title-brand", 160, rating=4.1, title="NIKE Air runner"),
                    raw(LAZADA, "other-brand", 150, rating=4.5, brand="Adidas"),
                    raw(LAZADA, "unrated", 150, brand="Nike"),
                    raw(LAZADA, "pricey", 250, rating=5, brand="Nike"),
                ],
            },
            filters,
        )
        assert [r.source_id for r in report.records] == ["ok", "title-brand"]
        assert report.filtered == 4

    def test_native_brand_filter_not_rechecked(self, merger):
        filters = SearchFilters.create(brand="nike", max_price=200)
        report = merger.merge(
            {LAZADA: [raw(LAZADA, "1", 150, title="Running shoe"), raw(LAZADA, "2", 900, title="Running shoe")]},
            filters,
            {LAZADA: {"brand", "max_price"}},
        )
        # Price bounds are always re-checked
        assert [r.source_id for r in report.records] == ["1"]

    def test_merge_is_order_independent(self, merger):
        batches = {
            LAZADA: [raw(LAZADA, "a", 120, rating=4.1)],
            ZALORA: [raw(ZALORA, "b", 120, rating=4.1)],
            SHOPEE: [raw(SHOPEE, "c", 80)],
        }
        forward = merger.merge(batches).records
        backward = merger.merge(dict(reversed(list(batches.items())))).records
        assert forward == backward
        assert forward == sorted(forward, key=sort_key)

    def test_empty_batches(self, merger):
        assert merger.merge({LAZADA: []}).records == []


class TestReorder:
    """Test presentation sort options."""

    def test_price_desc_and_rating_desc(self, merger):
        records = merger.merge(
            {LAZADA: [raw(LAZADA, "a", 100, rating=3.0), raw(LAZADA, "b", 300, rating=4.9), raw(LAZADA, "c", 200)]}
        ).records
        assert [r.source_id for r in reorder(records, "price_desc")] == ["b", "c", "a"]
        assert [r.source_id for r in reorder(records, "rating_desc")] == ["b", "a", "c"]
        assert [r.source_id for r in reorder(records)] == ["a", "c", "b"]
