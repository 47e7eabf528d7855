"""
Incident Atlas - Polygon Helpers

GeoJSON geometries are kept as plain tuples of (lon, lat) rings so regions
stay immutable and hashable; shapely geometries are only built when an exact
containment test is needed.

Usage:
    polygons = polygons_from_geometry(feature["geometry"])
    bbox = bbox_of_polygons(polygons)

    shape = to_shape(polygons)
    inside = points_in_shape(shape, lons, lats)
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import shapely
from shapely import geometry as sgeom
from shapely.geometry.base import BaseGeometry

from incident_atlas.shared.geo.validators import to_finite_float

Ring = tuple[tuple[float, float], ...]
Polygon = tuple[Ring, ...]


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in lon/lat degrees."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self) -> None:
        values = (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        if any(to_finite_float(v) is None for v in values):
            raise ValueError(f"Bounding box values must be finite numbers: {values}")
        if self.min_lon > self.max_lon or self.min_lat > self.max_lat:
            raise ValueError(f"Bounding box minimums exceed maximums: {values}")

    @classmethod
    def from_string(cls, value: str) -> BoundingBox:
        """Parse a "minLon,minLat,maxLon,maxLat" string."""
        parts = [p.strip() for p in value.split(",")]
        if len(parts) != 4:
            raise ValueError(f"Expected 4 comma separated values, got {len(parts)}")
        numbers = [to_finite_float(p) for p in parts]
        if any(n is None for n in numbers):
            raise ValueError(f"Bounding box contains non-numeric values: {value!r}")
        return cls(*numbers)  # type: ignore[arg-type]

    def contains(self, lat: float, lon: float) -> bool:
        """Check whether a point lies inside the box (edges included)."""
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon

    def union(self, other: BoundingBox) -> BoundingBox:
        return BoundingBox(
            min(self.min_lon, other.min_lon),
            min(self.min_lat, other.min_lat),
            max(self.max_lon, other.max_lon),
            max(self.max_lat, other.max_lat),
        )

    def quantize(self, step: float) -> tuple[float, float, float, float]:
        """Snap every corner to the nearest multiple of step."""
        return tuple(  # type: ignore[return-value]
            round(round(v / step) * step, 6)
            for v in (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        )

    def to_list(self) -> list[float]:
        return [self.min_lon, self.min_lat, self.max_lon, self.max_lat]


def _ring_from_coordinates(coordinates: Sequence[Sequence[Any]]) -> Ring:
    ring = []
    for position in coordinates:
        lon = to_finite_float(position[0])
        lat = to_finite_float(position[1])
        if lon is None or lat is None:
            raise ValueError(f"Invalid ring position: {position!r}")
        ring.append((lon, lat))
    if len(ring) < 3:
        raise ValueError("A ring needs at least 3 positions")
    if ring[0] != ring[-1]:
        ring.append(ring[0])
    return tuple(ring)


def polygons_from_geometry(geometry: dict[str, Any]) -> list[Polygon]:
    """
    Convert a GeoJSON Polygon or MultiPolygon into tuples of closed rings.

    Args:
        geometry: GeoJSON geometry mapping

    Returns:
        List of polygons; each polygon is (exterior, *holes)

    Raises:
        ValueError: For unsupported geometry types or malformed rings
    """
    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates") or []

    if geom_type == "Polygon":
        raw_polygons = [coordinates]
    elif geom_type == "MultiPolygon":
        raw_polygons = coordinates
    else:
        raise ValueError(f"Unsupported geometry type: {geom_type}")

    polygons = []
    for raw in raw_polygons:
        if not raw:
            continue
        polygons.append(tuple(_ring_from_coordinates(ring) for ring in raw))
    if not polygons:
        raise ValueError("Geometry has no rings")
    return polygons


def bbox_of_polygons(polygons: Iterable[Polygon]) -> BoundingBox:
    """Compute the bounding box of every ring of every polygon."""
    lons: list[float] = []
    lats: list[float] = []
    for polygon in polygons:
        for ring in polygon:
            for lon, lat in ring:
                lons.append(lon)
                lats.append(lat)
    if not lons:
        raise ValueError("Cannot compute the bounding box of an empty geometry")
    return BoundingBox(min(lons), min(lats), max(lons), max(lats))


def ring_area(ring: Ring) -> float:
    """Planar area of a ring in squared degrees (shoelace formula)."""
    area = 0.0
    for (x1, y1), (x2, y2) in zip(ring, ring[1:] + ring[:1]):
        area += x1 * y2 - x2 * y1
    return abs(area) / 2.0


def ring_centroid(ring: Ring) -> tuple[float, float]:
    """
    Centroid of a ring as (lon, lat).

    Falls back to the vertex average for degenerate (zero-area) rings.
    """
    area = 0.0
    cx = 0.0
    cy = 0.0
    for (x1, y1), (x2, y2) in zip(ring, ring[1:] + ring[:1]):
        cross = x1 * y2 - x2 * y1
        area += cross
        cx += (x1 + x2) * cross
        cy += (y1 + y2) * cross

    if math.isclose(area, 0.0, abs_tol=1e-18):
        return (
            sum(x for x, _ in ring) / len(ring),
            sum(y for _, y in ring) / len(ring),
        )

    area *= 0.5
    return cx / (6 * area), cy / (6 * area)


def label_point(polygons: Sequence[Polygon]) -> tuple[float, float]:
    """Centroid of the exterior ring of the largest polygon, as (lon, lat)."""
    largest = max(polygons, key=lambda polygon: ring_area(polygon[0]))
    return ring_centroid(largest[0])


def to_shape(polygons: Sequence[Polygon]) -> BaseGeometry:
    """Build a prepared shapely geometry from polygons."""
    parts = [sgeom.Polygon(polygon[0], holes=list(polygon[1:])) for polygon in polygons]
    shape = parts[0] if len(parts) == 1 else sgeom.MultiPolygon(parts)
    if not shape.is_valid:
        shape = shapely.make_valid(shape)
    shapely.prepare(shape)
    return shape


def points_in_shape(
    shape: BaseGeometry,
    lons: Sequence[float] | np.ndarray,
    lats: Sequence[float] | np.ndarray,
) -> np.ndarray:
    """Vectorized exact containment test; returns a boolean array."""
    x = np.asarray(lons, dtype=float)
    y = np.asarray(lats, dtype=float)
    if x.size == 0:
        return np.zeros(0, dtype=bool)
    return np.asarray(shapely.contains_xy(shape, x, y), dtype=bool)
