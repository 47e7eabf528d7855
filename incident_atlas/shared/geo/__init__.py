"""
Incident Atlas - Geographic Utilities

Geographic processing utilities shared by the region catalog, the spatial
resolver and the aggregator:
- Coordinate validation
- Bounding boxes and their quantization
- Polygon ring helpers (bbox, area, centroid)
- Exact point-in-polygon tests (shapely)
"""

from incident_atlas.shared.geo.polygons import (
    BoundingBox,
    Polygon,
    Ring,
    bbox_of_polygons,
    label_point,
    points_in_shape,
    polygons_from_geometry,
    ring_area,
    ring_centroid,
    to_shape,
)
from incident_atlas.shared.geo.validators import is_valid_coordinate, to_finite_float

__all__ = [
    "BoundingBox",
    "Polygon",
    "Ring",
    "bbox_of_polygons",
    "is_valid_coordinate",
    "label_point",
    "points_in_shape",
    "polygons_from_geometry",
    "ring_area",
    "ring_centroid",
    "to_finite_float",
    "to_shape",
]
