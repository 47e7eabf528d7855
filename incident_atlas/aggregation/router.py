"""
Incident Atlas - Source Router

Decides which upstream datasets a time window needs. Cities whose feeds
changed format at a cutover year Y declare "legacy" datasets (years <= Y) and
"modern" datasets (years >= Y + 1); datasets with era "all" cover their
declared years. A window crossing the cutover is split into one clipped
sub-range per era.

Routing is pure: it reads configuration only and performs no I/O.

Usage:
    from incident_atlas.aggregation.router import SourceRouter

    router = SourceRouter()
    for descriptor in router.route(datetime(2016, 6, 1), datetime(2019, 1, 1), "sf"):
        print(descriptor.name, descriptor.start, descriptor.end)
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime

from incident_atlas.datasets.base import DatasetDescriptor
from incident_atlas.shared.config import CityConfig, DatasetConfig, get_city_config

CityConfigLoader = Callable[[str], CityConfig]


class SourceRouter:
    """Maps (window, city) to the dataset descriptors that cover it."""

    def __init__(
        self,
        city_config_loader: CityConfigLoader | None = None,
        today: date | None = None,
    ):
        """
        Initialize the router.

        Args:
            city_config_loader: Callable returning a CityConfig (defaults to
                                configs/cities/<city>.yaml)
            today: Fixed "today" for open-ended coverage (defaults to date.today())
        """
        self.city_config_loader = city_config_loader or get_city_config
        self._today = today

    @property
    def current_year(self) -> int:
        return (self._today or date.today()).year

    def coverage_years(self, city_config: CityConfig, dataset: DatasetConfig) -> tuple[int, int]:
        """Inclusive (first, last) year a dataset covers."""
        first = dataset.min_year if dataset.min_year is not None else city_config.min_year
        last = dataset.max_year if dataset.max_year is not None else self.current_year

        cutover = city_config.cutover_year
        if cutover is not None:
            if dataset.era == "legacy":
                last = min(last, cutover)
            elif dataset.era == "modern":
                first = max(first, cutover + 1)
        return first, last

    def route(self, start: datetime, end: datetime, city: str) -> list[DatasetDescriptor]:
        """
        Select the datasets covering [start, end) for a city.

        Args:
            start: Window start (inclusive)
            end: Window end (exclusive)
            city: City id

        Returns:
            Descriptors in configuration order, each clipped to the part of
            the window its dataset covers. Datasets that do not intersect the
            window are omitted.

        Raises:
            KeyError: If the city has no configuration
        """
        city_config = self.city_config_loader(city)
        descriptors = []

        for dataset in city_config.datasets:
            first, last = self.coverage_years(city_config, dataset)
            if first > last:
                continue
            sub_start = max(start, datetime(first, 1, 1))
            sub_end = min(end, datetime(last + 1, 1, 1))
            if sub_start >= sub_end:
                continue

            descriptors.append(
                DatasetDescriptor(
                    city=city,
                    name=dataset.name,
                    url=dataset.url,
                    schema_name=dataset.schema_name,
                    era=dataset.era,
                    start=sub_start,
                    end=sub_end,
                    id_scope=dataset.id_scope,
                    timestamp_field=dataset.timestamp_field,
                    point_field=dataset.point_field,
                )
            )
        return descriptors

    def coverage(self, city: str) -> tuple[int, int]:
        """Selectable (min_year, max_year) of a city across all its datasets."""
        city_config = self.city_config_loader(city)
        spans = [self.coverage_years(city_config, d) for d in city_config.datasets]
        spans = [(first, last) for first, last in spans if first <= last]
        if not spans:
            return city_config.min_year, self.current_year
        return min(first for first, _ in spans), max(last for _, last in spans)
