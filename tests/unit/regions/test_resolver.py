"""
Unit tests for SpatialRegionResolver.

Tests H3 polygon covering, point lookups, batch lookups and the lazy,
single-flight index lifecycle.
"""

import threading
import time

import h3
import pytest

from incident_atlas.regions import SpatialRegionResolver
from incident_atlas.regions.catalog import build_region_catalog
from incident_atlas.regions.resolver import build_city_index, cover_polygon


class TestCovering:
    """Test cases for polygon covering."""

    def test_cover_polygon_excludes_holes(self, boundary_collection):
        catalog = build_region_catalog("testville", boundary_collection)
        ring = catalog.regions[3]
        cells = set(cover_polygon(ring.polygons[0], 9))

        assert h3.latlng_to_cell(40.71, -73.965, 9) in cells
        assert h3.latlng_to_cell(40.71, -73.955, 9) not in cells

    def test_build_city_index(self, boundary_collection):
        catalog = build_region_catalog("testville", boundary_collection)
        index = build_city_index(catalog, 9)

        assert index.city == "testville"
        assert index.resolution == 9
        assert index.total_cells > 0
        assert set(index.cell_to_region.values()) == {region.region_id for region in catalog}
        assert all(h3.get_resolution(cell) == 9 for cell in index.cell_to_region)


class TestLookupPoint:
    """Test cases for single point lookups."""

    @pytest.mark.parametrize("region_id", ["WEST", "CENTER", "EAST", "RING"])
    def test_point_in_region(self, resolver, region_points, region_id):
        lat, lon = region_points[region_id]
        match = resolver.lookup_point("testville", lat, lon)

        assert match is not None
        assert match.region_id == region_id

    def test_region_name(self, resolver, region_points):
        match = resolver.lookup_point("testville", *region_points["WEST"])
        assert match.to_dict() == {"region_id": "WEST", "region_name": "West Side"}

    def test_point_in_hole(self, resolver, region_points):
        assert resolver.lookup_point("testville", *region_points["HOLE"]) is None

    def test_point_outside(self, resolver, region_points):
        assert resolver.lookup_point("testville", *region_points["OUTSIDE"]) is None

    def test_string_coordinates(self, resolver):
        match = resolver.lookup_point("testville", "40.71", "-73.995")
        assert match.region_id == "WEST"

    @pytest.mark.parametrize(
        "lat,lon",
        [(None, -73.995), ("", -73.995), ("abc", "def"), (float("nan"), -73.995), (95, -73.995), (40.71, 200)],
    )
    def test_invalid_coordinates(self, resolver, lat, lon):
        assert resolver.lookup_point("testville", lat, lon) is None

    def test_invalid_coordinates_do_not_build_index(self, resolver, catalog_loader):
        resolver.lookup_point("testville", None, None)
        assert catalog_loader.calls == []

    def test_unknown_city(self, resolver, catalog_loader):
        assert resolver.lookup_point("atlantis", 40.71, -73.995) is None
        assert catalog_loader.calls == []

    def test_deterministic(self, resolver):
        results = {resolver.lookup_point("testville", 40.7101, -73.9851).region_id for _ in range(5)}
        assert results == {"CENTER"}


class TestBatchLookup:
    """Test cases for batch lookups."""

    def test_preserves_order_and_ids(self, resolver, region_points):
        points = [
            {"id": "a", "lat": region_points["EAST"][0], "lon": region_points["EAST"][1]},
            {"id": "b", "lat": None, "lon": None},
            {"id": "c", "lat": region_points["WEST"][0], "lon": region_points["WEST"][1]},
            {"lat": region_points["HOLE"][0], "lon": region_points["HOLE"][1]},
        ]
        results = resolver.batch_lookup_points("testville", points)

        assert [r.id for r in results] == ["a", "b", "c", None]
        assert [r.region_id for r in results] == ["EAST", None, "WEST", None]
        assert results[0].region_name == "East Side"
        assert results[1].to_dict()["region_id"] is None

    def test_tuple_points(self, resolver, region_points):
        results = resolver.batch_lookup_points("testville", [region_points["CENTER"], region_points["RING"]])
        assert [r.region_id for r in results] == ["CENTER", "RING"]

    @pytest.mark.parametrize("malformed", [None, (1.0,), (1, 2, 3), 5, "abc", "ab"])
    def test_malformed_points_do_not_abort_the_batch(self, resolver, region_points, malformed):
        points = [region_points["WEST"], malformed, region_points["EAST"]]
        results = resolver.batch_lookup_points("testville", points)

        assert [r.region_id for r in results] == ["WEST", None, "EAST"]
        assert results[1].to_dict() == {
            "id": None,
            "lat": None,
            "lon": None,
            "region_id": None,
            "region_name": None,
        }

    def test_matches_single_lookups(self, resolver, region_points):
        points = list(region_points.values())
        batch = resolver.batch_lookup_points("testville", points)
        singles = [resolver.lookup_point("testville", lat, lon) for lat, lon in points]
        assert [r.region_id for r in batch] == [m.region_id if m else None for m in singles]

    def test_lookup_region_ids(self, resolver, region_points):
        lats = [region_points["WEST"][0], None, region_points["EAST"][0]]
        lons = [region_points["WEST"][1], None, region_points["EAST"][1]]
        assert resolver.lookup_region_ids("testville", lats, lons) == ["WEST", None, "EAST"]

    def test_lookup_region_ids_unknown_city(self, resolver):
        assert resolver.lookup_region_ids("atlantis", [40.71], [-73.995]) == [None]


class TestLifecycle:
    """Test cases for lazy building, warmup and reset."""

    def test_lazy_build(self, resolver, catalog_loader):
        assert not resolver.is_ready("testville")
        resolver.lookup_point("testville", 40.71, -73.995)
        assert resolver.is_ready("testville")
        assert catalog_loader.calls == ["testville"]

    def test_index_is_memoized(self, resolver, catalog_loader):
        for _ in range(3):
            resolver.lookup_point("testville", 40.71, -73.995)
        assert catalog_loader.calls == ["testville"]

    def test_concurrent_first_use_builds_once(self, settings, boundary_collection):
        calls = []

        def slow_loader(city):
            calls.append(city)
            time.sleep(0.05)
            return build_region_catalog(city, boundary_collection)

        resolver = SpatialRegionResolver(config=settings, catalog_loader=slow_loader)
        threads = [
            threading.Thread(target=resolver.lookup_point, args=("testville", 40.71, -73.995))
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert calls == ["testville"]

    def test_init_builds_every_city(self, resolver, catalog_loader):
        resolver.init()
        assert resolver.is_ready()
        assert sorted(catalog_loader.calls) == ["splitcity", "testville"]

    def test_reset(self, resolver, catalog_loader):
        resolver.init(["testville"])
        resolver.reset()
        assert not resolver.is_ready("testville")

        resolver.lookup_point("testville", 40.71, -73.995)
        assert catalog_loader.calls == ["testville", "testville"]

    def test_loader_errors_propagate(self, settings):
        def missing(city):
            raise FileNotFoundError(f"Boundary file for {city} not found")

        resolver = SpatialRegionResolver(config=settings, catalog_loader=missing)
        with pytest.raises(FileNotFoundError):
            resolver.lookup_point("testville", 40.71, -73.995)
        assert not resolver.is_ready("testville")


class TestIntrospection:
    """Test cases for regions, cell mapping and stats."""

    def test_get_city_regions(self, resolver):
        regions = resolver.get_city_regions("testville")
        assert [r.region_id for r in regions] == ["WEST", "CENTER", "EAST", "RING"]
        assert resolver.get_city_regions("atlantis") == []

    def test_get_cell_mapping_is_a_copy(self, resolver):
        mapping = resolver.get_cell_mapping("testville")
        mapping.clear()
        assert resolver.get_cell_mapping("testville")

    def test_stats(self, resolver):
        empty = resolver.stats()
        assert empty["total_cities"] == 0
        assert empty["total_cells"] == 0

        resolver.init(["testville"])
        stats = resolver.stats()
        assert stats["total_cities"] == 1
        assert stats["cities_loaded"] == ["testville"]
        assert stats["total_regions"] == 4
        assert stats["resolution"] == 9
        assert stats["total_cells"] == len(resolver.get_cell_mapping("testville"))
        assert stats["memory_estimate_mb"] >= 0
