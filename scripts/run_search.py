"""Manual search runner for testing and debugging platform drivers.

Runs one search through a locally built orchestrator and prints the
merged list.

Usage:
    python scripts/run_search.py "summer dress"
    python scripts/run_search.py "running shoes" --platforms lazada,shopee --max-price 3000
    python scripts/run_search.py "nike shoes under 4000 with good reviews" --natural
    python scripts/run_search.py "wireless earbuds" --cache memory --bypass-cache --json
"""

import argparse
import asyncio
import json
import sys

from pricescout.config import settings
from pricescout.core.exceptions import CrawlBusy, CrawlInfrastructureError, PriceScoutException
from pricescout.scrapers.merger import SORT_OPTIONS, reorder
from pricescout.scrapers.orchestrator import build_orchestrator
from pricescout.scrapers.query import SearchFilters
from pricescout.services.query_parser import parse_natural_query


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Search Philippine storefronts and print one merged price list",
    )
    parser.add_argument("query", help="Search text")
    parser.add_argument("--platforms", help="Comma-separated platforms (default: all enabled)")
    parser.add_argument("--min-price", type=float, help="Minimum price in PHP")
    parser.add_argument("--max-price", type=float, help="Maximum price in PHP")
    parser.add_argument("--brand", help="Brand filter")
    parser.add_argument("--min-rating", type=float, help="Minimum star rating (0-5)")
    parser.add_argument("--max-pages", type=int, help="Result pages per platform")
    parser.add_argument("--sort", choices=SORT_OPTIONS, default="price_asc")
    parser.add_argument("--natural", action="store_true", help="Parse filters out of the query text")
    parser.add_argument("--bypass-cache", action="store_true", help="Ignore cached results")
    parser.add_argument(
        "--cache",
        choices=["redis", "sql", "memory"],
        help=f"Cache backend (default: {settings.CACHE_BACKEND})",
    )
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument("--limit", type=int, default=20, help="Rows to print (default: 20)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    return parser


async def run_search(args: argparse.Namespace) -> int:
    overrides = {}
    if args.cache:
        overrides["CACHE_BACKEND"] = args.cache
    if args.headful:
        overrides["BROWSER_HEADLESS"] = False
    config = settings.model_copy(update=overrides)

    query = args.query
    platforms = [p.strip() for p in args.platforms.split(",")] if args.platforms else None
    sort = args.sort
    filters = SearchFilters.create(
        min_price=args.min_price,
        max_price=args.max_price,
        brand=args.brand,
        min_rating=args.min_rating,
    )
    if args.natural:
        parsed = parse_natural_query(args.query, default_brand=args.brand)
        query = parsed.query
        filters = SearchFilters.create(
            min_price=args.min_price if args.min_price is not None else parsed.filters.min_price,
            max_price=args.max_price if args.max_price is not None else parsed.filters.max_price,
            brand=parsed.filters.brand,
            min_rating=args.min_rating if args.min_rating is not None else parsed.filters.min_rating,
        )
        platforms = platforms or [p.value for p in parsed.platforms] or None
        if sort == "price_asc":
            sort = parsed.sort

    async with build_orchestrator(config) as orchestrator:
        try:
            merged = await orchestrator.search(
                query,
                filters=filters,
                platforms=platforms,
                bypass_cache=args.bypass_cache,
                max_pages=args.max_pages,
            )
        except (CrawlBusy, CrawlInfrastructureError) as e:
            print(f"\nSearch failed: {e.message}", file=sys.stderr)
            return 2

    records = reorder(merged.results, sort)

    if args.json:
        print(json.dumps(
            {
                "success": merged.success,
                "results": [r.to_dict() for r in records],
                "errors": [str(e) for e in merged.errors],
                "stale": merged.stale,
                "cached": merged.from_cache,
            },
            ensure_ascii=False,
            indent=2,
        ))
        return 0

    print(f"\n{'='*78}")
    print(f"  '{merged.key.query}' on {merged.key.platform_set}")
    if not merged.key.filters.is_empty:
        active = {k: v for k, v in merged.key.filters.to_dict().items() if v is not None}
        print(f"  Filters: {active}")
    source = "stale cache" if merged.stale else "cache" if merged.from_cache else "live crawl"
    print(f"  {len(records)} results from {source}, sorted by {sort}")
    print(f"{'='*78}\n")

    for i, record in enumerate(records[: args.limit], 1):
        rating = f"{record.rating:.1f}*" if record.rating is not None else "  -  "
        print(f"{i:3}. {record.currency} {record.price:>10,.2f}  {rating}  [{record.source_platform.value}] {record.title[:60]}")
        print(f"     {record.product_url}")

    if len(records) > args.limit:
        print(f"\n  ... and {len(records) - args.limit} more")

    if merged.errors:
        print("\nPlatform errors:")
        for error in merged.errors:
            print(f"  - {error}")

    return 0


def main() -> None:
    args = build_parser().parse_args()
    try:
        exit_code = asyncio.run(run_search(args))
    except (ValueError, PriceScoutException) as e:
        print(f"\nError: {e}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
