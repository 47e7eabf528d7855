"""
Incident Atlas - Service Facade

The entry point an HTTP layer (or a script) talks to. Wires the spatial
resolver, the source router, the upstream provider, the deduplicating
aggregator and the result cache together from configuration.

Usage:
    import asyncio

    from incident_atlas.aggregation import AggregationFilter
    from incident_atlas.service import IncidentAtlas

    atlas = IncidentAtlas()
    atlas.warmup()

    atlas.lookup_point("nyc", 40.6782, -73.9442)
    # {"region_id": "BK0101", "region_name": "Greenpoint"}

    f = AggregationFilter.from_params(city="nyc", start="2023-01-01", end="2024-01-01")
    result = asyncio.run(atlas.aggregate(f))
    buckets = atlas.bin_regions(atlas.region_counts("nyc", result))

    options = asyncio.run(atlas.filter_options("nyc", "2023-01-01", "2024-01-01"))
    [entry.label for entry in options.offenses]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any

from incident_atlas.aggregation import (
    AggregationFilter,
    AggregationResult,
    DeduplicatingAggregator,
    FilterOptions,
    RegionBucket,
    ResultCache,
    SourceRouter,
    bin_regions,
    build_cache_key,
)
from incident_atlas.datasets.base import BaseEventProvider
from incident_atlas.datasets.socrata import SocrataEventProvider
from incident_atlas.regions import Region, RegionCatalog, SpatialRegionResolver
from incident_atlas.shared.config import CityConfig, Settings, get_city_config, get_config
from incident_atlas.shared.geo import BoundingBox

logger = logging.getLogger(__name__)


class IncidentAtlas:
    """Region lookups, cached aggregations and choropleth bins for configured cities."""

    def __init__(
        self,
        config: Settings | None = None,
        provider: BaseEventProvider | None = None,
        resolver: SpatialRegionResolver | None = None,
        router: SourceRouter | None = None,
        cache: ResultCache | None = None,
        city_config_loader: Callable[[str], CityConfig] | None = None,
        catalog_loader: Callable[[str], RegionCatalog] | None = None,
    ):
        """
        Initialize the service.

        Args:
            config: Configuration object (uses default if not provided)
            provider: Upstream event provider (defaults to Socrata)
            resolver: Spatial resolver (built from config and catalog_loader if not provided)
            router: Source router (built from city_config_loader if not provided)
            cache: Result cache (built from config.cache if not provided)
            city_config_loader: Callable returning a CityConfig
            catalog_loader: Callable returning the RegionCatalog of a city
        """
        self.config = config or get_config()
        self.city_config_loader = city_config_loader or get_city_config
        self.provider = provider or SocrataEventProvider(self.config)
        self.resolver = resolver or SpatialRegionResolver(self.config, catalog_loader)
        self.router = router or SourceRouter(self.city_config_loader)
        self.cache = cache or ResultCache(
            ttl_seconds=self.config.cache.ttl_seconds,
            max_entries=self.config.cache.max_entries,
        )
        self.aggregator = DeduplicatingAggregator(
            provider=self.provider,
            resolver=self.resolver,
            router=self.router,
            config=self.config,
            city_config_loader=self.city_config_loader,
        )

    # =========================================================================
    # Region Lookups
    # =========================================================================

    def lookup_point(self, city: str, lat: Any, lon: Any) -> dict[str, str] | None:
        """Region of a point as {"region_id", "region_name"}, or None."""
        match = self.resolver.lookup_point(city, lat, lon)
        return match.to_dict() if match else None

    def batch_lookup_points(
        self,
        city: str,
        points: Iterable[Mapping[str, Any] | tuple[Any, Any]],
    ) -> list[dict[str, Any]]:
        """Resolve many points, one result per input point in input order."""
        return [result.to_dict() for result in self.resolver.batch_lookup_points(city, points)]

    def get_city_regions(self, city: str) -> list[Region]:
        return self.resolver.get_city_regions(city)

    def index_stats(self) -> dict[str, Any]:
        stats = self.resolver.stats()
        stats["cache"] = self.cache.stats()
        return stats

    def warmup(self, cities: Iterable[str] | None = None) -> None:
        """Build the spatial index of every configured city ahead of traffic."""
        self.resolver.init(cities)

    # =========================================================================
    # Aggregation
    # =========================================================================

    async def aggregate(self, filter: AggregationFilter, timeout: float | None = None) -> AggregationResult:
        """
        Aggregate events for a filter, served from the result cache when possible.

        Partial results are returned but never cached.

        Raises:
            InvalidFilterError: If the filter is malformed
        """
        filter.validate(self.aggregator.known_cities)

        if not self.config.cache.enabled:
            return await self.aggregator.aggregate(filter, timeout)

        key = build_cache_key(filter, self.config.cache.quantize_step_degrees)
        return await self.cache.get_or_compute(
            key,
            lambda: self.aggregator.aggregate(filter, timeout),
            cache_if=lambda result: not result.partial,
        )

    def region_counts(self, city: str, result: AggregationResult) -> dict[str, int]:
        """Event count of every region of a city, 0 for regions without matching events."""
        counts = {region.region_id: 0 for region in self.get_city_regions(city)}
        counts.update(result.by_region)
        return counts

    def bin_regions(self, per_region_counts: Mapping[str, int]) -> list[RegionBucket]:
        return bin_regions(per_region_counts, self.config.binning.extreme_fraction)

    async def choropleth(self, filter: AggregationFilter, timeout: float | None = None) -> list[RegionBucket]:
        """
        Decile buckets for every region of the filter's city.

        Regions without matching events are binned with a count of 0.
        """
        result = await self.aggregate(filter, timeout)
        return self.bin_regions(self.region_counts(filter.city, result))

    async def filter_options(
        self,
        city: str,
        start: date | datetime | str,
        end: date | datetime | str,
        bbox: BoundingBox | str | None = None,
        polygon: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> FilterOptions:
        """
        Offense labels and law classes selectable for a city over a window.

        Served from the result cache like aggregate(); partial answers are
        returned but never cached.

        Raises:
            InvalidFilterError: For unknown cities or malformed windows and scopes
        """
        filter = AggregationFilter.from_params(
            city=city, start=start, end=end, bbox=bbox, polygon=polygon, include_unknown=True
        )
        filter.validate(self.aggregator.known_cities)

        if not self.config.cache.enabled:
            return await self.aggregator.filter_options(filter, timeout)

        key = build_cache_key(filter, self.config.cache.quantize_step_degrees, prefix="options")
        return await self.cache.get_or_compute(
            key,
            lambda: self.aggregator.filter_options(filter, timeout),
            cache_if=lambda options: not options.partial,
        )

    def year_range(self, city: str) -> tuple[int, int]:
        """Selectable (min_year, max_year) of a city."""
        return self.router.coverage(city)
