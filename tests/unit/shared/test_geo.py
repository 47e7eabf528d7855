"""
Unit tests for the geographic helpers.
"""

import math

import numpy as np
import pytest

from incident_atlas.shared.geo import (
    BoundingBox,
    bbox_of_polygons,
    is_valid_coordinate,
    label_point,
    points_in_shape,
    polygons_from_geometry,
    ring_area,
    to_finite_float,
    to_shape,
)


class TestValidators:
    """Test cases for coordinate validation."""

    @pytest.mark.parametrize(
        "lat,lon",
        [(40.7, -73.9), ("40.7", "-73.9"), (90, 180), (-90, -180), (0, 0)],
    )
    def test_valid(self, lat, lon):
        assert is_valid_coordinate(lat, lon)

    @pytest.mark.parametrize(
        "lat,lon",
        [
            (None, -73.9),
            ("", -73.9),
            ("abc", -73.9),
            (math.nan, -73.9),
            (math.inf, -73.9),
            (91, 0),
            (0, -181),
            (True, 0),
        ],
    )
    def test_invalid(self, lat, lon):
        assert not is_valid_coordinate(lat, lon)

    def test_to_finite_float(self):
        assert to_finite_float(" 1.5 ") == 1.5
        assert to_finite_float("nan") is None
        assert to_finite_float([1]) is None


class TestBoundingBox:
    """Test cases for BoundingBox."""

    def test_from_string(self):
        box = BoundingBox.from_string("-74.0, 40.7, -73.9, 40.8")
        assert box.to_list() == [-74.0, 40.7, -73.9, 40.8]

    @pytest.mark.parametrize("value", ["1,2,3", "a,b,c,d", "-73.9,40.7,-74.0,40.8"])
    def test_from_string_invalid(self, value):
        with pytest.raises(ValueError):
            BoundingBox.from_string(value)

    def test_contains_edges(self):
        box = BoundingBox(-74.0, 40.7, -73.9, 40.8)
        assert box.contains(40.7, -74.0)
        assert box.contains(40.75, -73.95)
        assert not box.contains(40.81, -73.95)

    def test_quantize_absorbs_small_pans(self):
        a = BoundingBox(-74.00012, 40.70004, -73.90009, 40.80002)
        b = BoundingBox(-74.00004, 40.69996, -73.89991, 40.79998)
        assert a.quantize(0.001) == b.quantize(0.001) == (-74.0, 40.7, -73.9, 40.8)

    def test_union(self):
        box = BoundingBox(0, 0, 1, 1).union(BoundingBox(-1, 0.5, 0.5, 2))
        assert box == BoundingBox(-1, 0, 1, 2)


class TestPolygons:
    """Test cases for polygon helpers."""

    def test_polygon_is_closed(self):
        polygons = polygons_from_geometry(
            {"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}
        )
        assert len(polygons) == 1
        assert polygons[0][0][0] == polygons[0][0][-1]

    def test_multipolygon(self):
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [
                [[[0, 0], [1, 0], [1, 1], [0, 0]]],
                [[[2, 2], [4, 2], [4, 4], [2, 4], [2, 2]]],
            ],
        }
        polygons = polygons_from_geometry(geometry)
        assert len(polygons) == 2
        assert bbox_of_polygons(polygons) == BoundingBox(0, 0, 4, 4)
        # Label point sits in the larger polygon
        assert label_point(polygons) == pytest.approx((3.0, 3.0))

    @pytest.mark.parametrize(
        "geometry",
        [
            {"type": "Point", "coordinates": [0, 0]},
            {"type": "Polygon", "coordinates": []},
            {"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]},
            {"type": "Polygon", "coordinates": [[[0, 0], ["x", 1], [1, 1]]]},
        ],
    )
    def test_invalid_geometry(self, geometry):
        with pytest.raises(ValueError):
            polygons_from_geometry(geometry)

    def test_ring_area(self):
        ring = ((0.0, 0.0), (2.0, 0.0), (2.0, 2.0), (0.0, 2.0), (0.0, 0.0))
        assert ring_area(ring) == pytest.approx(4.0)

    def test_points_in_shape_respects_holes(self, boundary_collection):
        ring_feature = boundary_collection["features"][3]
        shape = to_shape(polygons_from_geometry(ring_feature["geometry"]))
        inside = points_in_shape(shape, [-73.965, -73.955, -73.90], [40.71, 40.71, 40.71])
        assert inside.tolist() == [True, False, False]

    def test_points_in_shape_empty(self):
        shape = to_shape(
            polygons_from_geometry({"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1]]]})
        )
        assert points_in_shape(shape, [], []).shape == (0,)
        assert isinstance(points_in_shape(shape, np.array([0.5]), np.array([0.1])), np.ndarray)
