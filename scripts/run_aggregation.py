"""Manual aggregation runner for testing and debugging sources.

Runs one aggregation pass (or the expiry cleanup) against the configured
database and prints the result.

Usage:
    python scripts/run_aggregation.py --source kroger
    python scripts/run_aggregation.py --source all
    python scripts/run_aggregation.py --cleanup
    python scripts/run_aggregation.py --compare milk eggs --lat 33.75 --lon -84.39
"""

import argparse
import asyncio

from grocery_deals.core.logging_config import configure_logging
from grocery_deals.db.session import create_tables
from grocery_deals.main import build_aggregator, build_price_comparison


def _print_result(result) -> None:
    status = "✅" if result.success else "❌"
    print(f"{status} {result.source.value.upper()}")
    print(f"    Processed: {result.total_processed}")
    print(f"    New:       {result.new_deals}")
    print(f"    Updated:   {result.updated_deals}")
    print(f"    Errors:    {len(result.errors)}")
    for error in result.errors[:10]:
        print(f"      - {error}")
    if len(result.errors) > 10:
        print(f"      ... {len(result.errors) - 10} more")
    print()


async def run_aggregation(source: str) -> None:
    """Run one aggregation pass and display the results.

    Args:
        source: "kroger", "publix" or "all"
    """
    print(f"\n{'='*70}")
    print(f"  Aggregating {source.upper()} deals")
    print(f"{'='*70}\n")

    aggregator = build_aggregator()
    try:
        if source == "kroger":
            results = [await aggregator.aggregate_kroger_deals()]
        elif source == "publix":
            results = [await aggregator.aggregate_publix_deals()]
        else:
            results = await aggregator.aggregate_all_deals()

        for result in results:
            _print_result(result)

        stats = aggregator.get_stats()
        print(f"{'='*70}")
        print(f"  Processing time: {stats.average_processing_time_ms:.0f} ms")
        print(f"{'='*70}\n")
    finally:
        await aggregator.cleanup()
        await aggregator.kroger_client.aclose()


async def run_cleanup() -> None:
    """Soft-delete expired deals and display the count."""
    aggregator = build_aggregator()
    try:
        result = await aggregator.cleanup_expired_deals()
        print(f"\n🧹 Deactivated {result.deleted_count} expired deals")
        for error in result.errors:
            print(f"   - {error}")
        print()
    finally:
        await aggregator.cleanup()
        await aggregator.kroger_client.aclose()


async def run_comparison(items, latitude: float, longitude: float, radius: float) -> None:
    """Compare a shopping list near a location and display the recommendation."""
    service = build_price_comparison()
    recommendation = await service.get_best_store_for_list(items, latitude, longitude, radius)

    for comparison in recommendation.item_comparisons:
        print(f"\n🔍 {comparison.item_name}")
        for store in comparison.stores:
            distance = f"{store.distance_miles:.1f} mi" if store.distance_miles is not None else "n/a"
            print(f"    {store.store_name:<10} ${store.price:>7.2f}  {distance}")
        print(f"    Best: {comparison.best_value.store_name} ${comparison.best_value.price:.2f}")

    store = recommendation.recommended_store
    if store is None:
        print("\n⚠️  No deals matched the list.\n")
        return
    print(f"\n🏪 Recommended: {store.store_name} ({store.store_id})")
    print(f"   Savings: ${store.total_savings:.2f}\n")


async def _main(args) -> None:
    configure_logging()
    await create_tables()

    if args.cleanup:
        await run_cleanup()
    elif args.compare:
        await run_comparison(args.compare, args.lat, args.lon, args.radius)
    else:
        await run_aggregation(args.source)


def main():
    """Parse arguments and run the requested operation."""
    parser = argparse.ArgumentParser(
        description="Run a grocery deal aggregation pass",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_aggregation.py --source kroger
  python scripts/run_aggregation.py --source all
  python scripts/run_aggregation.py --cleanup
        """,
    )

    parser.add_argument(
        "--source",
        choices=["kroger", "publix", "all"],
        default="all",
        help="Source to aggregate (default: all)",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Deactivate expired deals instead of aggregating",
    )
    parser.add_argument(
        "--compare",
        nargs="+",
        metavar="ITEM",
        help="Compare a shopping list instead of aggregating",
    )
    parser.add_argument("--lat", type=float, help="Latitude for --compare")
    parser.add_argument("--lon", type=float, help="Longitude for --compare")
    parser.add_argument(
        "--radius",
        type=float,
        default=10.0,
        help="Search radius in miles for --compare (default: 10)",
    )

    args = parser.parse_args()
    if args.compare and (args.lat is None or args.lon is None):
        parser.error("--compare requires --lat and --lon")

    asyncio.run(_main(args))


if __name__ == "__main__":
    main()
