"""Normalization of raw extractions and merging into one ranked list."""

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from pricescout.core.exceptions import MalformedPrice

from .base import RawExtraction
from .platform import ExtractionConfidence, Platform
from .query import SearchFilters
from .utils.normalizer import PriceNormalizer, clean_text

logger = structlog.get_logger(__name__)

REFERENCE_CURRENCY = "PHP"


@dataclass(frozen=True)
class ProductRecord:
    """Canonical, platform-agnostic listing.

    ``source_id`` is unique only within ``source_platform``.
    """

    source_platform: Platform
    source_id: str
    title: str
    price: Decimal
    product_url: str
    image_url: Optional[str] = None
    original_price: Optional[Decimal] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    brand: Optional[str] = None
    extraction_confidence: ExtractionConfidence = ExtractionConfidence.DIRECT
    currency: str = REFERENCE_CURRENCY

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.source_id:
            raise ValueError("source_id is required")
        if not self.title:
            raise ValueError("title is required")
        if self.price is None or self.price < 0:
            raise ValueError("price must be a non-negative Decimal")

    @property
    def product_key(self) -> str:
        """Identifier that is unique across platforms."""
        return f"{self.source_platform.value}:{self.source_id}"

    def to_dict(self) -> dict:
        """JSON-safe representation (decimals as strings)."""
        data = asdict(self)
        data["source_platform"] = self.source_platform.value
        data["extraction_confidence"] = self.extraction_confidence.value
        data["price"] = str(self.price)
        data["original_price"] = str(self.original_price) if self.original_price is not None else None
        return data

    @classmethod
    def from_dict(cls, data: Mapping) -> "ProductRecord":
        original = data.get("original_price")
        return cls(
            source_platform=Platform(data["source_platform"]),
            source_id=data["source_id"],
            title=data["title"],
            price=Decimal(data["price"]),
            product_url=data["product_url"],
            image_url=data.get("image_url"),
            original_price=Decimal(original) if original is not None else None,
            rating=data.get("rating"),
            rating_count=data.get("rating_count"),
            brand=data.get("brand"),
            extraction_confidence=ExtractionConfidence(data.get("extraction_confidence", "direct")),
            currency=data.get("currency", REFERENCE_CURRENCY),
        )


def sort_key(record: ProductRecord) -> Tuple:
    """Price ascending, then rating descending with unrated items last.

    Platform and source ID close out the key so the order never depends on
    which driver finished first.
    """
    return (
        record.price,
        record.rating is None,
        -(record.rating or 0.0),
        record.source_platform.value,
        record.source_id,
    )


@dataclass
class MergeReport:
    """Merged records plus counts of what was left out."""

    records: List[ProductRecord]
    malformed: int = 0
    duplicates: int = 0
    filtered: int = 0


class ResultMerger:
    """Turns per-platform raw extractions into one ordered list.

    Duplicates are only collapsed inside a single platform (same source ID,
    first occurrence wins). Listings from different platforms are never
    merged, even when their titles match.
    """

    def to_record(self, raw: RawExtraction) -> ProductRecord:
        """Normalize one extraction.

        Raises:
            MalformedPrice: if the price text is not a number
        """
        price = PriceNormalizer.parse(raw.price_text)
        original = PriceNormalizer.parse_optional(raw.original_price_text)
        if original is not None and original <= price:
            original = None
        return ProductRecord(
            source_platform=raw.platform,
            source_id=str(raw.source_id),
            title=clean_text(raw.title),
            price=price,
            product_url=raw.product_url,
            image_url=raw.image_url,
            original_price=original,
            rating=raw.rating,
            rating_count=raw.rating_count,
            brand=raw.brand,
            extraction_confidence=raw.confidence,
        )

    @staticmethod
    def matches(
        record: ProductRecord,
        filters: SearchFilters,
        native: Iterable[str] = (),
    ) -> bool:
        """Check a record against the filters the platform did not apply itself.

        Price bounds are always re-checked because sponsored listings ignore
        them; brand matching is skipped when the site filtered by brand.
        """
        if filters.min_price is not None and record.price < filters.min_price:
            return False
        if filters.max_price is not None and record.price > filters.max_price:
            return False
        if filters.brand and "brand" not in native:
            haystack = f"{record.brand or ''} {record.title}".casefold()
            if filters.brand not in haystack:
                return False
        if filters.min_rating is not None:
            if record.rating is None or record.rating < filters.min_rating:
                return False
        return True

    def merge(
        self,
        batches: Mapping[Platform, Sequence[RawExtraction]],
        filters: Optional[SearchFilters] = None,
        native_filters: Optional[Mapping[Platform, Iterable[str]]] = None,
    ) -> MergeReport:
        """Normalize, filter, de-duplicate and sort every platform's batch."""
        filters = filters or SearchFilters()
        native_filters = native_filters or {}
        report = MergeReport(records=[])

        for platform, batch in batches.items():
            seen: Set[str] = set()
            native = frozenset(native_filters.get(platform, ()))
            for raw in batch:
                if raw.source_id in seen:
                    report.duplicates += 1
                    continue
                try:
                    record = self.to_record(raw)
                except MalformedPrice as e:
                    report.malformed += 1
                    logger.info(
                        "listing_dropped_malformed_price",
                        platform=platform.value,
                        source_id=raw.source_id,
                        price_text=str(e.raw)[:80],
                    )
                    continue
                except ValueError as e:
                    report.malformed += 1
                    logger.info("listing_dropped_invalid", platform=platform.value, source_id=raw.source_id, error=str(e))
                    continue
                seen.add(raw.source_id)
                if not self.matches(record, filters, native):
                    report.filtered += 1
                    continue
                report.records.append(record)

        report.records.sort(key=sort_key)
        logger.info(
            "results_merged",
            total=len(report.records),
            malformed=report.malformed,
            duplicates=report.duplicates,
            filtered=report.filtered,
        )
        return report


SORT_OPTIONS = ("price_asc", "price_desc", "rating_desc")


def reorder(records: List[ProductRecord], sort: str = "price_asc") -> List[ProductRecord]:
    """Presentation re-ordering of an already merged list."""
    if sort == "price_desc":
        return sorted(records, key=lambda r: (-r.price, r.rating is None, -(r.rating or 0.0)))
    if sort == "rating_desc":
        return sorted(records, key=lambda r: (r.rating is None, -(r.rating or 0.0), r.price))
    return list(records)
