"""
Incident Atlas - Aggregation Filters

The request filter of an aggregation: city, half-open time window, offense,
law-class and violence-class selections, the unknown-demographics flag and
the geographic scope.

Selections follow one convention throughout: None means "no constraint",
an empty set means "nothing selected" (the aggregation short-circuits to an
empty result without fetching).

Usage:
    from incident_atlas.aggregation.filters import AggregationFilter

    f = AggregationFilter.from_params(
        city="nyc",
        start="2023-01-01",
        end="2024-01-01",
        bbox="-74.0,40.7,-73.9,40.8",
        offenses="ROBBERY,FELONY ASSAULT",
    )
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from functools import cached_property
from typing import Any

import numpy as np
from shapely.geometry.base import BaseGeometry

from incident_atlas.shared.categories import VIOLENCE_CLASSES
from incident_atlas.shared.geo import (
    BoundingBox,
    Polygon,
    bbox_of_polygons,
    points_in_shape,
    polygons_from_geometry,
    to_shape,
)
from incident_atlas.shared.temporal import as_datetime, parse_timestamp


class InvalidFilterError(ValueError):
    """A caller-supplied filter is malformed; raised before any fetch."""


@dataclass(frozen=True)
class PolygonScope:
    """Exact polygon scope; rows are re-tested against it point by point."""

    polygons: tuple[Polygon, ...]

    @classmethod
    def from_geometry(cls, geometry: dict[str, Any]) -> PolygonScope:
        """Build from a GeoJSON Polygon or MultiPolygon geometry."""
        try:
            return cls(tuple(polygons_from_geometry(geometry)))
        except (ValueError, TypeError, IndexError, AttributeError) as e:
            raise InvalidFilterError(f"Invalid polygon scope: {e}") from e

    @property
    def bbox(self) -> BoundingBox:
        return bbox_of_polygons(self.polygons)

    @cached_property
    def shape(self) -> BaseGeometry:
        return to_shape(self.polygons)

    def contains(self, lons: Sequence[float] | np.ndarray, lats: Sequence[float] | np.ndarray) -> np.ndarray:
        """Boolean mask of the points inside the polygon."""
        return points_in_shape(self.shape, lons, lats)


Scope = BoundingBox | PolygonScope | None


def _normalize_selection(values: Iterable[str] | str | None, upper: bool = True) -> frozenset[str] | None:
    if values is None:
        return None
    if isinstance(values, str):
        values = values.split(",")
    cleaned = (v.strip() for v in values)
    return frozenset((v.upper() if upper else v.lower()) for v in cleaned if v)


def _blank_to_none(values: Iterable[str] | str | None) -> Iterable[str] | str | None:
    # An empty query string parameter means "no constraint"
    if isinstance(values, str) and not values.strip():
        return None
    return values


def _parse_bound(value: date | datetime | str, name: str) -> datetime:
    if isinstance(value, (date, datetime)):
        return as_datetime(value)
    parsed = parse_timestamp(value)
    if parsed is None:
        raise InvalidFilterError(f"Invalid {name} date: {value!r}")
    return parsed


@dataclass(frozen=True)
class AggregationFilter:
    """Filter of one aggregation request."""

    city: str
    start: datetime
    end: datetime
    offenses: frozenset[str] | None = None
    law_classes: frozenset[str] | None = None
    violence_classes: frozenset[str] | None = None
    include_unknown: bool = False
    scope: Scope = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_datetime(self.start))
        object.__setattr__(self, "end", as_datetime(self.end))
        object.__setattr__(self, "offenses", _normalize_selection(self.offenses))
        object.__setattr__(self, "law_classes", _normalize_selection(self.law_classes))
        object.__setattr__(
            self, "violence_classes", _normalize_selection(self.violence_classes, upper=False)
        )

    @classmethod
    def from_params(
        cls,
        city: str,
        start: date | datetime | str,
        end: date | datetime | str,
        bbox: BoundingBox | str | None = None,
        polygon: dict[str, Any] | None = None,
        offenses: Iterable[str] | str | None = None,
        law_classes: Iterable[str] | str | None = None,
        violence_classes: Iterable[str] | str | None = None,
        include_unknown: bool = False,
    ) -> AggregationFilter:
        """
        Build a filter from loosely typed request parameters.

        Raises:
            InvalidFilterError: For unparseable dates, bounding boxes or polygons
        """
        scope: Scope = None
        if polygon is not None:
            scope = PolygonScope.from_geometry(polygon)
        elif isinstance(bbox, str):
            try:
                scope = BoundingBox.from_string(bbox)
            except ValueError as e:
                raise InvalidFilterError(f"Invalid bounding box: {e}") from e
        else:
            scope = bbox

        return cls(
            city=city,
            start=_parse_bound(start, "start"),
            end=_parse_bound(end, "end"),
            offenses=_blank_to_none(offenses),  # type: ignore[arg-type]
            law_classes=_blank_to_none(law_classes),  # type: ignore[arg-type]
            violence_classes=_blank_to_none(violence_classes),  # type: ignore[arg-type]
            include_unknown=include_unknown,
            scope=scope,
        )

    @property
    def is_empty_selection(self) -> bool:
        """True when a selection excludes everything."""
        return (
            self.offenses == frozenset()
            or self.law_classes == frozenset()
            or self.violence_classes == frozenset()
        )

    @property
    def scope_bbox(self) -> BoundingBox | None:
        if isinstance(self.scope, PolygonScope):
            return self.scope.bbox
        return self.scope

    def validate(self, known_cities: Iterable[str] | None = None) -> None:
        """
        Check the filter is well formed.

        Raises:
            InvalidFilterError: If the window is empty or inverted, the city is
                                unknown, or a violence class is unrecognized
        """
        if self.end <= self.start:
            raise InvalidFilterError(
                f"Filter end ({self.end.isoformat()}) must be after start ({self.start.isoformat()})"
            )
        if known_cities is not None and self.city not in set(known_cities):
            raise InvalidFilterError(f"Unknown city: {self.city!r}")
        if self.violence_classes:
            unknown = self.violence_classes - VIOLENCE_CLASSES
            if unknown:
                raise InvalidFilterError(f"Unknown violence classes: {sorted(unknown)}")

    def signature(self) -> str:
        """Canonical string of every non-geographic field."""

        def _fmt(values: frozenset[str] | None) -> str:
            return "*" if values is None else ",".join(sorted(values))

        return "|".join(
            [
                self.city,
                self.start.isoformat(),
                self.end.isoformat(),
                f"o:{_fmt(self.offenses)}",
                f"l:{_fmt(self.law_classes)}",
                f"v:{_fmt(self.violence_classes)}",
                f"u:{1 if self.include_unknown else 0}",
            ]
        )
