"""
Incident Atlas - Aggregation

Deduplicated incident statistics over the datasets of a city:
- Request filters and geographic scopes (AggregationFilter, PolygonScope)
- Era-aware routing of a window to datasets (SourceRouter)
- Concurrent fetch, dedup and summarization (DeduplicatingAggregator)
- Short-TTL result caching (ResultCache)
- Rank-based decile binning for choropleths (bin_regions)
"""

from incident_atlas.aggregation.filters import AggregationFilter, InvalidFilterError, PolygonScope
from incident_atlas.aggregation.result import (
    AggregationResult,
    BreakdownEntry,
    CrossTab,
    CrossTabCell,
    DemographicBreakdown,
    FilterOptions,
    TimeBucket,
    TrendStats,
)
from incident_atlas.aggregation.router import SourceRouter
from incident_atlas.aggregation.binning import CountScale, RegionBucket, bin_regions, count_scale
from incident_atlas.aggregation.cache import ResultCache, build_cache_key
from incident_atlas.aggregation.aggregator import DeduplicatingAggregator

__all__ = [
    "AggregationFilter",
    "AggregationResult",
    "BreakdownEntry",
    "CountScale",
    "CrossTab",
    "CrossTabCell",
    "DeduplicatingAggregator",
    "DemographicBreakdown",
    "FilterOptions",
    "InvalidFilterError",
    "PolygonScope",
    "RegionBucket",
    "ResultCache",
    "SourceRouter",
    "TimeBucket",
    "TrendStats",
    "bin_regions",
    "build_cache_key",
    "count_scale",
]
