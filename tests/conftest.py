"""
Incident Atlas - Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Configuration fixtures (settings, synthetic city configs)
- A small synthetic boundary catalog written to tmp_path
- Fake upstream providers
"""

import os
import threading
import time
from collections.abc import Callable, Generator
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from incident_atlas.datasets.base import BaseEventProvider, EventRow, FetchCancelledError
from incident_atlas.regions.catalog import build_region_catalog
from incident_atlas.shared.config import BoundariesConfig, CityConfig, DatasetConfig, Settings

# Set test environment
os.environ["IA_ENVIRONMENT"] = "dev"

# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def configs_dir(project_root: Path) -> Path:
    """Get the configs directory."""
    return project_root / "configs"


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def test_config() -> Any:
    """Get test configuration from the YAML files."""
    from incident_atlas.shared.config import get_config, reload_config

    # Ensure fresh config for tests
    reload_config("dev")
    return get_config("dev")


@pytest.fixture
def settings() -> Settings:
    """Settings for the synthetic cities, independent of the YAML files."""
    return Settings(
        environment="dev",
        spatial={"h3_resolution": 9, "cities": ["testville", "splitcity"]},
        aggregation={"fetch_timeout_seconds": 5, "max_monthly_points": 60},
        cache={"enabled": True, "ttl_seconds": 60, "max_entries": 10},
    )


@pytest.fixture
def testville_config() -> CityConfig:
    """City with demographics and two overlapping feeds keyed by a global id."""
    return CityConfig(
        id="testville",
        display_name="Testville",
        center=(-73.975, 40.705),
        has_demographics=True,
        has_law_class=True,
        min_year=2010,
        boundaries=BoundariesConfig(path="unused.geojson", region_id_field="code", region_name_field="label"),
        datasets=[
            DatasetConfig(
                name="historic",
                url="https://data.example.org/resource/hist-0001.json",
                schema="nyc_complaints",
                min_year=2010,
                id_scope="global",
                timestamp_field="cmplnt_fr_dt",
                point_field="lat_lon",
            ),
            DatasetConfig(
                name="ytd",
                url="https://data.example.org/resource/ytd0-0001.json",
                schema="nyc_complaints",
                id_scope="global",
                timestamp_field="cmplnt_fr_dt",
                point_field="lat_lon",
            ),
        ],
    )


@pytest.fixture
def splitcity_config() -> CityConfig:
    """City whose feed changed format after 2017, without demographics."""
    return CityConfig(
        id="splitcity",
        display_name="Split City",
        has_demographics=False,
        cutover_year=2017,
        min_year=2003,
        boundaries=BoundariesConfig(path="unused.geojson"),
        datasets=[
            DatasetConfig(
                name="legacy",
                url="https://data.example.org/resource/lgcy-0001.json",
                schema="sf_legacy",
                era="legacy",
                min_year=2003,
                timestamp_field="date",
            ),
            DatasetConfig(
                name="modern",
                url="https://data.example.org/resource/mdrn-0001.json",
                schema="sf_modern",
                era="modern",
                timestamp_field="incident_datetime",
                point_field="point",
            ),
        ],
    )


@pytest.fixture
def city_config_loader(
    testville_config: CityConfig, splitcity_config: CityConfig
) -> Callable[[str], CityConfig]:
    configs = {"testville": testville_config, "splitcity": splitcity_config}

    def _load(city: str) -> CityConfig:
        if city not in configs:
            raise KeyError(f"No city configuration found for '{city}'")
        return configs[city]

    return _load


# =============================================================================
# Boundary Fixtures
# =============================================================================


def _square(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list[list[float]]:
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


@pytest.fixture
def boundary_collection() -> dict[str, Any]:
    """
    Four regions in a row along latitude 40.70-40.72:

    WEST   -74.00 .. -73.99
    CENTER -73.99 .. -73.98
    EAST   -73.98 .. -73.97
    RING   -73.97 .. -73.94, with a hole at -73.96 .. -73.95 / 40.705 .. 40.715
    """
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"code": "WEST", "label": "West Side"},
                "geometry": {"type": "Polygon", "coordinates": [_square(-74.00, 40.70, -73.99, 40.72)]},
            },
            {
                "type": "Feature",
                "properties": {"code": "CENTER", "label": "Center"},
                "geometry": {"type": "Polygon", "coordinates": [_square(-73.99, 40.70, -73.98, 40.72)]},
            },
            {
                "type": "Feature",
                "properties": {"code": "EAST", "label": "East Side"},
                "geometry": {
                    "type": "MultiPolygon",
                    "coordinates": [[_square(-73.98, 40.70, -73.97, 40.72)]],
                },
            },
            {
                "type": "Feature",
                "properties": {"code": "RING", "label": "Ring Park"},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [
                        _square(-73.97, 40.70, -73.94, 40.72),
                        _square(-73.96, 40.705, -73.95, 40.715),
                    ],
                },
            },
        ],
    }


@pytest.fixture
def region_points() -> dict[str, tuple[float, float]]:
    """(lat, lon) well inside each region, and inside the RING hole."""
    return {
        "WEST": (40.71, -73.995),
        "CENTER": (40.71, -73.985),
        "EAST": (40.71, -73.975),
        "RING": (40.71, -73.965),
        "HOLE": (40.71, -73.955),
        "OUTSIDE": (40.80, -73.90),
    }


@pytest.fixture
def boundary_file(tmp_path: Path, boundary_collection: dict[str, Any]) -> Path:
    import json

    path = tmp_path / "boundaries" / "testville.geojson"
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps(boundary_collection))
    return path


@pytest.fixture
def catalog_loader(boundary_collection: dict[str, Any], testville_config: CityConfig) -> Callable:
    """Catalog loader serving the synthetic boundaries for every synthetic city."""
    calls: list[str] = []

    def _load(city: str):
        calls.append(city)
        if city not in ("testville", "splitcity"):
            raise KeyError(f"No city configuration found for '{city}'")
        return build_region_catalog(city, boundary_collection, testville_config.boundaries)

    _load.calls = calls  # type: ignore[attr-defined]
    return _load


@pytest.fixture
def resolver(settings: Settings, catalog_loader: Callable) -> Any:
    from incident_atlas.regions import SpatialRegionResolver

    return SpatialRegionResolver(config=settings, catalog_loader=catalog_loader)


# =============================================================================
# Provider Fixtures
# =============================================================================


class FakeProvider(BaseEventProvider):
    """In-memory provider serving fixed rows per dataset name."""

    def __init__(
        self,
        config: Settings,
        rows: dict[str, list[EventRow]] | None = None,
        errors: dict[str, Exception] | None = None,
        delays: dict[str, float] | None = None,
    ):
        super().__init__(config)
        self.rows = rows or {}
        self.errors = errors or {}
        self.delays = delays or {}
        self.calls: list[str] = []
        self.cancelled: list[str] = []
        self._lock = threading.Lock()

    def get_provider_name(self) -> str:
        return "fake"

    def fetch_rows(self, descriptor, filter, cancel=None) -> list[EventRow]:
        with self._lock:
            self.calls.append(descriptor.name)
        delay = self.delays.get(descriptor.name)
        if delay:
            if cancel is not None:
                if cancel.wait(delay):
                    with self._lock:
                        self.cancelled.append(descriptor.name)
                    raise FetchCancelledError(descriptor.name, "cancelled")
            else:
                time.sleep(delay)
        if descriptor.name in self.errors:
            raise self.errors[descriptor.name]
        return list(self.rows.get(descriptor.name, []))


@pytest.fixture
def make_provider(settings: Settings) -> Callable[..., FakeProvider]:
    def _make(**kwargs: Any) -> FakeProvider:
        return FakeProvider(settings, **kwargs)

    return _make


@pytest.fixture
def make_row() -> Callable[..., EventRow]:
    """Build an EventRow with sensible defaults for the testville demographics."""

    def _make(source_id: str | None = "1", **overrides: Any) -> EventRow:
        values: dict[str, Any] = {
            "source_id": source_id,
            "timestamp": datetime(2023, 3, 15, 12, 0),
            "category": "ROBBERY",
            "lat": 40.71,
            "lon": -73.995,
            "dataset_tag": "historic",
            "id_scope": "global",
            "law_class": "FELONY",
            "premise": "STREET",
            "borough": "MANHATTAN",
            "susp_race": "BLACK",
            "susp_sex": "M",
            "susp_age": "25-44",
            "vic_race": "WHITE",
            "vic_sex": "F",
            "vic_age": "25-44",
        }
        values.update(overrides)
        return EventRow(**values)

    return _make


# =============================================================================
# Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def cleanup_env() -> Generator[None, None, None]:
    """Clean up environment variables after each test."""
    original_env = os.environ.copy()
    yield
    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
