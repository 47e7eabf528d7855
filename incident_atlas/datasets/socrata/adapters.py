"""
Incident Atlas - Socrata Row Adapters

Maps raw Socrata JSON rows of each known schema into EventRows.

Schemas:
    nyc_complaints  NYPD complaint data (historic and year-to-date feeds)
    nyc_shootings   NYPD shooting incidents (historic and year-to-date feeds)
    sf_modern       SFPD incident reports, 2018 to present
    sf_legacy       SFPD incident reports, 2003 to 2017
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from incident_atlas.datasets.base import DatasetDescriptor, EventRow
from incident_atlas.shared.categories import normalize_age_group, normalize_demographic
from incident_atlas.shared.geo import is_valid_coordinate, to_finite_float
from incident_atlas.shared.temporal import parse_timestamp

RowAdapter = Callable[[dict[str, Any], DatasetDescriptor], EventRow]

SHOOTING_OFFENSE = "SHOOTING INCIDENT"
MURDER_OFFENSE = "MURDER & NON-NEGL. MANSLAUGHTER"

_PAIR_PATTERN = re.compile(r"(-?\d+(?:\.\d+)?)\s*[ ,]\s*(-?\d+(?:\.\d+)?)")


@dataclass(frozen=True)
class SchemaSpec:
    """Upstream column names of one schema, used to build SoQL queries."""

    select: tuple[str, ...]
    timestamp_field: str
    offense_field: str | None = None
    law_class_field: str | None = None
    # Location column usable with within_box(); None means numeric lat/lon columns
    geo_field: str | None = None
    lat_field: str = "latitude"
    lon_field: str = "longitude"
    demographic_fields: tuple[str, ...] = field(default_factory=tuple)


SCHEMAS: dict[str, SchemaSpec] = {
    "nyc_complaints": SchemaSpec(
        select=(
            "cmplnt_num",
            "ofns_desc",
            "law_cat_cd",
            "boro_nm",
            "prem_typ_desc",
            "susp_race",
            "susp_age_group",
            "susp_sex",
            "vic_race",
            "vic_age_group",
            "vic_sex",
            "cmplnt_fr_dt",
            "lat_lon",
            "latitude",
            "longitude",
        ),
        timestamp_field="cmplnt_fr_dt",
        offense_field="ofns_desc",
        law_class_field="law_cat_cd",
        geo_field="lat_lon",
        demographic_fields=(
            "susp_race",
            "susp_age_group",
            "susp_sex",
            "vic_race",
            "vic_age_group",
            "vic_sex",
        ),
    ),
    "nyc_shootings": SchemaSpec(
        select=(
            "incident_key",
            "statistical_murder_flag",
            "occur_date",
            "boro",
            "location_desc",
            "perp_race",
            "perp_age_group",
            "perp_sex",
            "vic_race",
            "vic_age_group",
            "vic_sex",
            "latitude",
            "longitude",
            "geocoded_column",
        ),
        timestamp_field="occur_date",
        geo_field="geocoded_column",
        demographic_fields=(
            "perp_race",
            "perp_age_group",
            "perp_sex",
            "vic_race",
            "vic_age_group",
            "vic_sex",
        ),
    ),
    "sf_modern": SchemaSpec(
        select=(
            "row_id",
            "incident_id",
            "incident_datetime",
            "incident_category",
            "police_district",
            "latitude",
            "longitude",
        ),
        timestamp_field="incident_datetime",
        offense_field="incident_category",
    ),
    "sf_legacy": SchemaSpec(
        select=("pdid", "incidntnum", "date", "category", "pddistrict", "x", "y"),
        timestamp_field="date",
        offense_field="category",
        lat_field="y",
        lon_field="x",
    ),
}


# =============================================================================
# Field Helpers
# =============================================================================


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _upper(value: Any) -> str | None:
    text = _text(value)
    return text.upper() if text else None


def _ordered_pair(a: float, b: float, lat_first: bool) -> tuple[float, float] | None:
    """Order a coordinate pair as (lat, lon), swapping when the values say so."""
    lat, lon = (a, b) if lat_first else (b, a)
    if is_valid_coordinate(lat, lon):
        return lat, lon
    if is_valid_coordinate(lon, lat):
        return lon, lat
    return None


def parse_point(value: Any, lat_first: bool) -> tuple[float, float] | None:
    """
    Parse an embedded location into (lat, lon).

    Accepts GeoJSON points ({"coordinates": [lon, lat]}), Socrata location
    objects ({"latitude": .., "longitude": ..}) and strings holding a pair of
    numbers ("(40.7, -73.9)", "POINT (-122.4 37.7)"). lat_first gives the
    order of a string pair; a pair that is out of range in that order is
    swapped.
    """
    if value is None:
        return None

    if isinstance(value, dict):
        coordinates = value.get("coordinates")
        if isinstance(coordinates, (list, tuple)) and len(coordinates) >= 2:
            lon = to_finite_float(coordinates[0])
            lat = to_finite_float(coordinates[1])
        else:
            lat = to_finite_float(value.get("latitude"))
            lon = to_finite_float(value.get("longitude"))
        if lat is None or lon is None or not is_valid_coordinate(lat, lon):
            return None
        return lat, lon

    if isinstance(value, str):
        match = _PAIR_PATTERN.search(value)
        if not match:
            return None
        return _ordered_pair(float(match.group(1)), float(match.group(2)), lat_first)

    return None


def extract_point(
    raw: dict[str, Any],
    lat_field: str = "latitude",
    lon_field: str = "longitude",
    embedded_field: str | None = None,
    lat_first: bool = True,
) -> tuple[float | None, float | None]:
    """Coordinates of a raw row from its numeric columns, else its embedded location."""
    lat = to_finite_float(raw.get(lat_field))
    lon = to_finite_float(raw.get(lon_field))
    if lat is not None and lon is not None and lat != 0 and lon != 0:
        if is_valid_coordinate(lat, lon):
            return lat, lon

    if embedded_field:
        point = parse_point(raw.get(embedded_field), lat_first)
        if point:
            return point
    return None, None


def _is_truthy_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "t", "1", "y", "yes"}


# =============================================================================
# Adapters
# =============================================================================


def adapt_nyc_complaint(raw: dict[str, Any], descriptor: DatasetDescriptor) -> EventRow:
    lat, lon = extract_point(raw, embedded_field="lat_lon", lat_first=True)
    return EventRow(
        source_id=_text(raw.get("cmplnt_num")),
        timestamp=parse_timestamp(raw.get("cmplnt_fr_dt")),
        category=_upper(raw.get("ofns_desc")),
        lat=lat,
        lon=lon,
        dataset_tag=descriptor.name,
        id_scope=descriptor.id_scope,
        law_class=_upper(raw.get("law_cat_cd")),
        premise=_upper(raw.get("prem_typ_desc")),
        borough=_upper(raw.get("boro_nm")),
        susp_race=normalize_demographic(raw.get("susp_race")),
        susp_sex=normalize_demographic(raw.get("susp_sex")),
        susp_age=normalize_age_group(raw.get("susp_age_group")),
        vic_race=normalize_demographic(raw.get("vic_race")),
        vic_sex=normalize_demographic(raw.get("vic_sex")),
        vic_age=normalize_age_group(raw.get("vic_age_group")),
    )


def adapt_nyc_shooting(raw: dict[str, Any], descriptor: DatasetDescriptor) -> EventRow:
    lat, lon = extract_point(raw, embedded_field="geocoded_column", lat_first=True)
    murder = _is_truthy_flag(raw.get("statistical_murder_flag"))
    return EventRow(
        source_id=_text(raw.get("incident_key")),
        timestamp=parse_timestamp(raw.get("occur_date")),
        category=MURDER_OFFENSE if murder else SHOOTING_OFFENSE,
        lat=lat,
        lon=lon,
        dataset_tag=descriptor.name,
        id_scope=descriptor.id_scope,
        law_class="FELONY",
        premise=_upper(raw.get("location_desc")),
        borough=_upper(raw.get("boro")),
        susp_race=normalize_demographic(raw.get("perp_race")),
        susp_sex=normalize_demographic(raw.get("perp_sex")),
        susp_age=normalize_age_group(raw.get("perp_age_group")),
        vic_race=normalize_demographic(raw.get("vic_race")),
        vic_sex=normalize_demographic(raw.get("vic_sex")),
        vic_age=normalize_age_group(raw.get("vic_age_group")),
    )


def adapt_sf_modern(raw: dict[str, Any], descriptor: DatasetDescriptor) -> EventRow:
    # WKT points are "POINT (lon lat)"
    lat, lon = extract_point(raw, embedded_field="point", lat_first=False)
    return EventRow(
        source_id=_text(raw.get("row_id")) or _text(raw.get("incident_id")),
        timestamp=parse_timestamp(raw.get("incident_datetime")),
        category=_text(raw.get("incident_category")),
        lat=lat,
        lon=lon,
        dataset_tag=descriptor.name,
        id_scope=descriptor.id_scope,
        borough=_upper(raw.get("police_district")),
    )


def adapt_sf_legacy(raw: dict[str, Any], descriptor: DatasetDescriptor) -> EventRow:
    lat, lon = extract_point(raw, lat_field="y", lon_field="x", embedded_field="location")
    return EventRow(
        source_id=_text(raw.get("pdid")) or _text(raw.get("incidntnum")),
        timestamp=parse_timestamp(raw.get("date")),
        category=_text(raw.get("category")),
        lat=lat,
        lon=lon,
        dataset_tag=descriptor.name,
        id_scope=descriptor.id_scope,
        borough=_upper(raw.get("pddistrict")),
    )


ADAPTERS: dict[str, RowAdapter] = {
    "nyc_complaints": adapt_nyc_complaint,
    "nyc_shootings": adapt_nyc_shooting,
    "sf_modern": adapt_sf_modern,
    "sf_legacy": adapt_sf_legacy,
}


def get_adapter(schema_name: str) -> RowAdapter:
    """Get the row adapter of a schema."""
    if schema_name not in ADAPTERS:
        raise KeyError(f"No row adapter for schema '{schema_name}'")
    return ADAPTERS[schema_name]


def get_schema(schema_name: str) -> SchemaSpec:
    if schema_name not in SCHEMAS:
        raise KeyError(f"Unknown schema '{schema_name}'")
    return SCHEMAS[schema_name]
