"""
Incident Atlas - Regions

Region catalogs (named city polygons) and the H3-backed spatial resolver.
"""

from incident_atlas.regions.catalog import Region, RegionCatalog, load_region_catalog
from incident_atlas.regions.resolver import (
    BatchLookupResult,
    CityIndex,
    RegionMatch,
    SpatialRegionResolver,
)

__all__ = [
    "Region",
    "RegionCatalog",
    "load_region_catalog",
    "BatchLookupResult",
    "CityIndex",
    "RegionMatch",
    "SpatialRegionResolver",
]
