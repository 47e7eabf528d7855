"""
Incident Atlas - Spatial Region Resolver

Maps latitude/longitude points to a city's named regions through a
precomputed H3 cell index. Each region's polygons are covered with cells at a
fixed resolution; a lookup is then a single cell computation plus a dict hit.

Cells on a boundary between two regions map to whichever region covered them
last in catalog order. Points in such cells may be attributed to the
neighbouring region; exact attribution is left to callers that need it
(the aggregator re-tests polygon scopes with shapely).

Usage:
    from incident_atlas.regions.resolver import SpatialRegionResolver

    resolver = SpatialRegionResolver()
    match = resolver.lookup_point("nyc", 40.7128, -74.0060)
    if match:
        print(match.region_id, match.region_name)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

import h3

from incident_atlas.regions.catalog import Region, RegionCatalog, load_region_catalog
from incident_atlas.shared.config import Settings, get_config
from incident_atlas.shared.geo import Polygon, is_valid_coordinate

logger = logging.getLogger(__name__)

CatalogLoader = Callable[[str], RegionCatalog]


@dataclass(frozen=True)
class RegionMatch:
    """Region a point resolved to."""

    region_id: str
    region_name: str

    def to_dict(self) -> dict[str, str]:
        return {"region_id": self.region_id, "region_name": self.region_name}


@dataclass(frozen=True)
class BatchLookupResult:
    """Result of one point of a batch lookup, carrying the caller's id."""

    id: Any
    lat: Any
    lon: Any
    region_id: str | None
    region_name: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lat": self.lat,
            "lon": self.lon,
            "region_id": self.region_id,
            "region_name": self.region_name,
        }


@dataclass
class CityIndex:
    """H3 cell -> region id mapping of one city."""

    city: str
    resolution: int
    catalog: RegionCatalog
    cell_to_region: dict[str, str]
    cells_covered: int = 0
    build_seconds: float = 0.0
    built_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def total_cells(self) -> int:
        return len(self.cell_to_region)


def cover_polygon(polygon: Polygon, resolution: int) -> list[str]:
    """
    Cover one polygon with H3 cells.

    Rings are (lon, lat) and closed; H3 expects open (lat, lon) loops. Holes
    are excluded from the cover.
    """
    exterior, *holes = polygon
    outer = [(lat, lon) for lon, lat in exterior[:-1]]
    inner = [[(lat, lon) for lon, lat in hole[:-1]] for hole in holes]
    shape = h3.LatLngPoly(outer, *inner)
    return list(h3.polygon_to_cells(shape, resolution))


def cover_region(region: Region, resolution: int) -> list[str]:
    """Cover every polygon of a region; polygons H3 rejects are skipped."""
    cells: list[str] = []
    for index, polygon in enumerate(region.polygons):
        try:
            cells.extend(cover_polygon(polygon, resolution))
        except (ValueError, h3.H3BaseException) as e:
            logger.warning(
                f"Could not cover polygon {index} of region {region.region_id}: {e}",
                extra={"city": region.city, "region_id": region.region_id},
            )
    return cells


def build_city_index(catalog: RegionCatalog, resolution: int) -> CityIndex:
    """
    Build the cell index of a catalog.

    Deterministic: the same catalog and resolution always give the same
    mapping. Overlapping cells go to the last region in catalog order.
    """
    start = time.time()
    cell_to_region: dict[str, str] = {}
    covered = 0

    for region in catalog:
        cells = cover_region(region, resolution)
        covered += len(cells)
        for cell in cells:
            cell_to_region[cell] = region.region_id

    duration = time.time() - start
    logger.info(
        f"Built H3 index for {catalog.city}: {len(catalog)} regions, {len(cell_to_region)} cells",
        extra={
            "city": catalog.city,
            "regions": len(catalog),
            "cells": len(cell_to_region),
            "resolution": resolution,
            "duration_seconds": round(duration, 3),
        },
    )
    return CityIndex(
        city=catalog.city,
        resolution=resolution,
        catalog=catalog,
        cell_to_region=cell_to_region,
        cells_covered=covered,
        build_seconds=duration,
    )


def _point_fields(point: Any) -> tuple[Any, Any, Any]:
    """(id, lat, lon) of one batch point; points of any other shape give (None, None, None)."""
    if isinstance(point, Mapping):
        return point.get("id"), point.get("lat"), point.get("lon")
    if isinstance(point, (str, bytes)):
        return None, None, None
    try:
        lat, lon = point
    except (TypeError, ValueError):
        logger.debug(f"Malformed batch point: {point!r}")
        return None, None, None
    return None, lat, lon


class SpatialRegionResolver:
    """
    Per-city point -> region resolver.

    Indexes are built lazily on first use and memoized. Concurrent first-time
    builds for one city are serialized by a per-city lock so the index is
    built once.
    """

    def __init__(
        self,
        config: Settings | None = None,
        catalog_loader: CatalogLoader | None = None,
    ):
        """
        Initialize the resolver.

        Args:
            config: Configuration object (uses default if not provided)
            catalog_loader: Callable returning the RegionCatalog of a city
                            (defaults to the configured GeoJSON boundary files)
        """
        self.config = config or get_config()
        self.resolution = self.config.spatial.h3_resolution
        self.catalog_loader = catalog_loader or partial(load_region_catalog, settings=self.config)
        self._indexes: dict[str, CityIndex] = {}
        self._city_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @property
    def cities(self) -> list[str]:
        return list(self.config.spatial.cities)

    def is_known_city(self, city: str) -> bool:
        return city in self.config.spatial.cities

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def init(self, cities: Iterable[str] | None = None) -> None:
        """Build the index of every configured city (or the given ones)."""
        for city in cities if cities is not None else self.cities:
            self._ensure_index(city)
        logger.info("Spatial index initialized", extra=self.stats())

    def reset(self) -> None:
        """Drop every built index; the next lookup rebuilds lazily."""
        with self._registry_lock:
            self._indexes.clear()
        logger.info("Spatial index reset")

    def is_ready(self, city: str | None = None) -> bool:
        """Check whether the index of a city (or of every configured city) is built."""
        if city is not None:
            return city in self._indexes
        return all(c in self._indexes for c in self.cities)

    def _lock_for(self, city: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._city_locks.get(city)
            if lock is None:
                lock = threading.Lock()
                self._city_locks[city] = lock
            return lock

    def _ensure_index(self, city: str) -> CityIndex:
        index = self._indexes.get(city)
        if index is not None:
            return index

        with self._lock_for(city):
            # Another caller may have finished the build while we waited
            index = self._indexes.get(city)
            if index is not None:
                return index

            logger.info(f"Spatial index for {city} not built, building now", extra={"city": city})
            index = build_city_index(self.catalog_loader(city), self.resolution)
            with self._registry_lock:
                self._indexes[city] = index
            return index

    def get_index(self, city: str) -> CityIndex | None:
        """Index of a known city (built on demand), None for unknown cities."""
        if not self.is_known_city(city):
            return None
        return self._ensure_index(city)

    def get_catalog(self, city: str) -> RegionCatalog | None:
        index = self.get_index(city)
        return index.catalog if index else None

    # =========================================================================
    # Lookups
    # =========================================================================

    def lookup_point(self, city: str, lat: Any, lon: Any) -> RegionMatch | None:
        """
        Resolve a point to a region.

        Returns None for invalid coordinates, unknown cities and points whose
        cell is not covered by any region. Never raises for bad input.
        """
        if not is_valid_coordinate(lat, lon):
            logger.debug(f"Invalid coordinates: lat={lat!r}, lon={lon!r}")
            return None

        index = self.get_index(city)
        if index is None:
            return None

        region_id = self._region_id_for(index, float(lat), float(lon))
        if region_id is None:
            return None
        region = index.catalog.get(region_id)
        return RegionMatch(region_id, region.region_name if region else region_id)

    def _region_id_for(self, index: CityIndex, lat: float, lon: float) -> str | None:
        try:
            cell = h3.latlng_to_cell(lat, lon, index.resolution)
        except (ValueError, h3.H3BaseException) as e:
            logger.debug(f"Cell lookup failed for ({lat}, {lon}): {e}")
            return None
        return index.cell_to_region.get(cell)

    def lookup_region_ids(self, city: str, lats: Iterable[Any], lons: Iterable[Any]) -> list[str | None]:
        """Region id per point, in input order (None where unresolved)."""
        index = self.get_index(city)
        results: list[str | None] = []
        for lat, lon in zip(lats, lons):
            if index is None or not is_valid_coordinate(lat, lon):
                results.append(None)
                continue
            results.append(self._region_id_for(index, float(lat), float(lon)))
        return results

    def batch_lookup_points(
        self,
        city: str,
        points: Iterable[Mapping[str, Any] | tuple[Any, Any]],
    ) -> list[BatchLookupResult]:
        """
        Resolve many points, preserving input order and caller-supplied ids.

        Args:
            city: City id
            points: Mappings with "lat", "lon" and an optional "id", or
                    (lat, lon) tuples

        Returns:
            One BatchLookupResult per input point
        """
        results = []
        for point in points:
            point_id, lat, lon = _point_fields(point)
            match = self.lookup_point(city, lat, lon)
            results.append(
                BatchLookupResult(
                    id=point_id,
                    lat=lat,
                    lon=lon,
                    region_id=match.region_id if match else None,
                    region_name=match.region_name if match else None,
                )
            )
        return results

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_city_regions(self, city: str) -> list[Region]:
        """Every region of a city in catalog order (empty for unknown cities)."""
        catalog = self.get_catalog(city)
        return list(catalog.regions) if catalog else []

    def get_cell_mapping(self, city: str) -> dict[str, str]:
        """Copy of a city's cell -> region id mapping."""
        index = self.get_index(city)
        return dict(index.cell_to_region) if index else {}

    def stats(self) -> dict[str, Any]:
        """Statistics of the built indexes with a rough memory estimate."""
        with self._registry_lock:
            indexes = list(self._indexes.values())

        total_cells = sum(index.total_cells for index in indexes)
        memory_bytes = total_cells * self.config.spatial.bytes_per_cell_estimate
        return {
            "total_cities": len(indexes),
            "cities_loaded": [index.city for index in indexes],
            "total_regions": sum(len(index.catalog) for index in indexes),
            "total_cells": total_cells,
            "resolution": self.resolution,
            "memory_estimate_mb": round(memory_bytes / 1024 / 1024, 2),
        }

