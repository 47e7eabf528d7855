"""
Incident Atlas - Percentile Binning

Rank-based decile buckets for choropleth coloring. The lowest ~10% of
regions go to decile 0 and the highest ~10% to decile 9; the rest are spread
over deciles 1-8 by rank, not by value, so a heavily skewed distribution
(one region with thousands of events, the rest with a handful) still uses
the whole color ramp.

Usage:
    from incident_atlas.aggregation.binning import bin_regions, count_scale

    buckets = bin_regions({"BK0101": 12, "BK0102": 430, "MN0201": 3})
    scale = count_scale([12, 430, 3])
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_EXTREME_FRACTION = 0.10


@dataclass(frozen=True)
class RegionBucket:
    """Decile bucket of one region."""

    region_id: str
    count: int
    percentile: float
    decile: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "region_id": self.region_id,
            "count": self.count,
            "percentile": self.percentile,
            "decile": self.decile,
        }


@dataclass(frozen=True)
class CountScale:
    """Summary of a count distribution for value-based legends."""

    min: int
    max: int
    p50: int
    p90: int
    p99: int

    def to_dict(self) -> dict[str, int]:
        return {"min": self.min, "max": self.max, "p50": self.p50, "p90": self.p90, "p99": self.p99}


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (round() rounds to even)."""
    return math.floor(value + 0.5)


def extreme_size(n: int, fraction: float = DEFAULT_EXTREME_FRACTION) -> int:
    """Number of regions assigned to each extreme decile."""
    return max(1, round_half_up(fraction * n))


def bin_regions(
    per_region_counts: Mapping[str, int],
    extreme_fraction: float = DEFAULT_EXTREME_FRACTION,
) -> list[RegionBucket]:
    """
    Assign every region a decile and percentile by rank.

    Regions are sorted ascending by count (ties broken by region id). With n
    regions, the bottom and top max(1, round(0.1 * n)) regions get deciles 0
    and 9; the middle ones get 1 + floor(rank * 8 / mid_count), clamped to
    1..8. Percentile is rank / (n - 1), 0 for a single region. When n is too
    small for both extremes, the bottom extreme takes precedence.

    Args:
        per_region_counts: Mapping of region id to event count
        extreme_fraction: Share of regions in each extreme decile

    Returns:
        Buckets in ascending rank order
    """
    n = len(per_region_counts)
    if n == 0:
        return []

    ordered = sorted(per_region_counts.items(), key=lambda item: (item[1], item[0]))
    bottom_n = extreme_size(n, extreme_fraction)
    top_n = extreme_size(n, extreme_fraction)
    mid_count = max(0, n - bottom_n - top_n)

    buckets = []
    for rank, (region_id, count) in enumerate(ordered):
        if rank < bottom_n:
            decile = 0
        elif rank >= n - top_n:
            decile = 9
        else:
            mid_rank = rank - bottom_n
            decile = min(8, max(1, 1 + (mid_rank * 8) // mid_count))

        percentile = rank / (n - 1) if n > 1 else 0.0
        buckets.append(
            RegionBucket(region_id=region_id, count=int(count), percentile=percentile, decile=decile)
        )
    return buckets


def count_scale(counts: Iterable[int]) -> CountScale:
    """
    Min, max and p50/p90/p99 of a count distribution.

    Quantiles are taken at index floor(n * q) of the sorted counts, capped at
    the last element. An empty distribution gives an all-zero scale.
    """
    values = sorted(int(c) for c in counts)
    if not values:
        return CountScale(0, 0, 0, 0, 0)

    def _quantile(q: float) -> int:
        return values[min(len(values) - 1, math.floor(len(values) * q))]

    return CountScale(
        min=values[0],
        max=values[-1],
        p50=_quantile(0.5),
        p90=_quantile(0.9),
        p99=_quantile(0.99),
    )
