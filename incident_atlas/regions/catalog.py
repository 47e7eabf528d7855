"""
Incident Atlas - Region Catalog

Loads a city's named administrative polygons (neighborhoods, NTAs) from the
GeoJSON boundary file configured in configs/cities/<city>.yaml.

Usage:
    from incident_atlas.regions.catalog import load_region_catalog

    catalog = load_region_catalog("nyc")
    region = catalog.get("BK0101")
    print(region.region_name, region.bbox)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from incident_atlas.shared.config import (
    BoundariesConfig,
    Settings,
    get_city_config,
    get_config,
    resolve_path,
)
from incident_atlas.shared.geo import (
    BoundingBox,
    Polygon,
    bbox_of_polygons,
    label_point,
    polygons_from_geometry,
)

logger = logging.getLogger(__name__)

# Property names that usually carry a neighborhood's display name
LABEL_FIELD_CANDIDATES = (
    "ntaname",
    "nta_name",
    "name",
    "neighborhood",
    "label",
    "ntaname2020",
    "ntaname_2020",
    "analysis_neighborhood",
    "district",
    "nta",
    "nta_name_2025",
    "nta2025",
)


@dataclass(frozen=True)
class Region:
    """A named polygonal region of one city."""

    region_id: str
    region_name: str
    city: str
    polygons: tuple[Polygon, ...]
    bbox: BoundingBox
    label_point: tuple[float, float]
    properties: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "region_id": self.region_id,
            "region_name": self.region_name,
            "city": self.city,
            "bbox": self.bbox.to_list(),
            "label_point": list(self.label_point),
        }


class RegionCatalog:
    """Immutable, ordered collection of a city's regions."""

    def __init__(self, city: str, regions: list[Region]):
        self.city = city
        self._regions = tuple(regions)
        self._by_id = {region.region_id: region for region in self._regions}

    @property
    def regions(self) -> tuple[Region, ...]:
        return self._regions

    @property
    def bbox(self) -> BoundingBox | None:
        """Union of every region's bounding box (None for an empty catalog)."""
        if not self._regions:
            return None
        box = self._regions[0].bbox
        for region in self._regions[1:]:
            box = box.union(region.bbox)
        return box

    def get(self, region_id: str) -> Region | None:
        return self._by_id.get(region_id)

    def region_ids(self) -> list[str]:
        return [region.region_id for region in self._regions]

    def __contains__(self, region_id: object) -> bool:
        return region_id in self._by_id

    def __iter__(self) -> Iterator[Region]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __repr__(self) -> str:
        return f"RegionCatalog(city={self.city!r}, regions={len(self)})"


def guess_label_field(properties: dict[str, Any] | None) -> str:
    """Pick the property that most likely holds a region's display name."""
    if not properties:
        return "name"
    lowered = {key.lower(): key for key in properties}
    for candidate in LABEL_FIELD_CANDIDATES:
        if candidate in lowered:
            return lowered[candidate]
    return "name"


def _first_present(properties: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = properties.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def extract_region_info(
    properties: dict[str, Any] | None,
    index: int,
    id_field: str,
    name_field: str,
) -> tuple[str, str]:
    """
    Resolve the id and display name of a boundary feature.

    Id: configured field, then "id", then "name", then the guessed label field,
    then region_<index>. Name: configured field, then "name", then the id.
    """
    props = properties or {}
    label_field = guess_label_field(props)

    region_id = _first_present(props, id_field, "id", "name", label_field) or f"region_{index}"
    region_name = _first_present(props, name_field, "name", label_field) or region_id
    return region_id, region_name


def build_region_catalog(
    city: str,
    collection: dict[str, Any],
    boundaries: BoundariesConfig | None = None,
) -> RegionCatalog:
    """
    Build a catalog from a GeoJSON FeatureCollection mapping.

    Features without geometry or with non-polygonal geometry are skipped with
    a warning; duplicate region ids keep the first feature.
    """
    boundaries = boundaries or BoundariesConfig(path="")
    regions: list[Region] = []
    seen: set[str] = set()
    skipped = 0

    for index, feature in enumerate(collection.get("features") or []):
        geometry = feature.get("geometry")
        properties = feature.get("properties") or {}
        if not geometry:
            skipped += 1
            continue

        try:
            polygons = polygons_from_geometry(geometry)
        except ValueError as e:
            logger.warning(
                f"Skipping boundary feature {index} of {city}: {e}",
                extra={"city": city, "feature_index": index},
            )
            skipped += 1
            continue

        region_id, region_name = extract_region_info(
            properties, index, boundaries.region_id_field, boundaries.region_name_field
        )
        if region_id in seen:
            logger.warning(
                f"Duplicate region id '{region_id}' in {city} boundaries, keeping the first",
                extra={"city": city, "region_id": region_id},
            )
            skipped += 1
            continue
        seen.add(region_id)

        regions.append(
            Region(
                region_id=region_id,
                region_name=region_name,
                city=city,
                polygons=tuple(polygons),
                bbox=bbox_of_polygons(polygons),
                label_point=label_point(polygons),
                properties=dict(properties),
            )
        )

    logger.info(
        f"Loaded {len(regions)} regions for {city}",
        extra={"city": city, "regions": len(regions), "skipped": skipped},
    )
    return RegionCatalog(city, regions)


def load_region_catalog(city: str, settings: Settings | None = None) -> RegionCatalog:
    """
    Load the region catalog of a city from its configured boundary file.

    Args:
        city: City id (a configs/cities/<city>.yaml must exist)
        settings: Configuration object (uses default if not provided)

    Returns:
        RegionCatalog

    Raises:
        KeyError: If the city has no configuration
        FileNotFoundError: If the boundary file does not exist
    """
    settings = settings or get_config()
    city_config = get_city_config(city)
    path = resolve_path(city_config.boundaries.path)
    if not path.exists():
        raise FileNotFoundError(f"Boundary file for {city} not found: {path}")

    logger.debug(
        f"Reading {city} boundaries from {path}",
        extra={"city": city, "path": str(path), "environment": settings.environment},
    )
    with open(path) as f:
        collection = json.load(f)

    return build_region_catalog(city, collection, city_config.boundaries)
