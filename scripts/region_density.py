"""
Region Density Report
Aggregates incidents for a city and window, then prints the busiest regions
with their choropleth deciles

Usage:
    python scripts/region_density.py --city nyc --start 2023-01-01 --end 2024-01-01
    python scripts/region_density.py --city sf --start 2017-06-01 --end 2019-01-01 --violence violent
    python scripts/region_density.py --city nyc --start 2023-01-01 --end 2023-07-01 --output density.json
"""

import argparse
import asyncio
import json
import logging
from pathlib import Path

from incident_atlas.aggregation import AggregationFilter, count_scale
from incident_atlas.service import IncidentAtlas
from incident_atlas.shared.config import get_config

config = get_config()

# Set up logging
logging.basicConfig(
    level=config.logging.level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def build_report(args):
    """Aggregate, bin and summarize one request"""
    atlas = IncidentAtlas(config)
    f = AggregationFilter.from_params(
        city=args.city,
        start=args.start,
        end=args.end,
        bbox=args.bbox,
        offenses=args.offenses,
        violence_classes=args.violence,
        include_unknown=args.include_unknown,
    )

    result = await atlas.aggregate(f, timeout=args.timeout)
    if result.partial:
        logger.warning(f"Partial result, failed sources: {list(result.failed_sources)}")

    counts = atlas.region_counts(args.city, result)
    buckets = atlas.bin_regions(counts)

    return {
        "city": args.city,
        "total": result.total,
        "partial": result.partial,
        "sources": list(result.sources),
        "duplicates_dropped": result.duplicates_dropped,
        "scale": count_scale(counts.values()).to_dict(),
        "trend": result.trend.to_dict() if result.trend else None,
        "top_offenses": [e.to_dict() for e in result.by_offense[:5]],
        "regions": [b.to_dict() for b in sorted(buckets, key=lambda b: -b.count)],
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Per-region incident density report")
    parser.add_argument("--city", required=True)
    parser.add_argument("--start", required=True, help="Window start (inclusive), YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="Window end (exclusive), YYYY-MM-DD")
    parser.add_argument("--bbox", help="minLon,minLat,maxLon,maxLat")
    parser.add_argument("--offenses", help="Comma-separated offense descriptors")
    parser.add_argument("--violence", help="Comma-separated violence classes (violent,nonviolent)")
    parser.add_argument("--include-unknown", action="store_true")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for upstream fetches; sources still running are reported as failed "
        "and stop after their current page request",
    )
    parser.add_argument("--top", type=int, default=15, help="Regions to print")
    parser.add_argument("--output", help="Write the full report as JSON")
    args = parser.parse_args()

    report = asyncio.run(build_report(args))

    if args.output:
        Path(args.output).write_text(json.dumps(report, indent=2))
        logger.info(f"Report written to {args.output}")

    print(f"\n=== {report['city'].upper()} {args.start} .. {args.end} ===")
    print(f"Total incidents: {report['total']}")
    print(f"Duplicates dropped: {report['duplicates_dropped']}")
    print(f"Partial: {report['partial']}")
    print(f"Scale: {report['scale']}")
    for bucket in report["regions"][: args.top]:
        print(f"  {bucket['region_id']:<24} {bucket['count']:>8}  decile {bucket['decile']}")
