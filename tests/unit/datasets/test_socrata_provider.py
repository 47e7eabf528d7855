"""
Unit tests for SocrataEventProvider.

Tests SoQL query construction per schema and row adaptation.
"""

import threading
from datetime import datetime
from unittest.mock import ANY, MagicMock

import pytest

from incident_atlas.aggregation.filters import AggregationFilter, PolygonScope
from incident_atlas.datasets.base import DatasetDescriptor, FetchCancelledError, UpstreamUnavailableError
from incident_atlas.datasets.socrata import SocrataClient, SocrataEventProvider
from incident_atlas.shared.geo import BoundingBox


def _descriptor(schema_name, name="dataset"):
    return DatasetDescriptor(
        city="testville",
        name=name,
        url="https://data.example.org/resource/abcd-1234.json",
        schema_name=schema_name,
        era="all",
        start=datetime(2023, 1, 1),
        end=datetime(2023, 7, 1),
        id_scope="global",
    )


def _filter(**kwargs):
    return AggregationFilter(city="testville", start=datetime(2022, 1, 1), end=datetime(2024, 1, 1), **kwargs)


class TestBuildQuery:
    """Test cases for SoQL query construction."""

    @pytest.fixture
    def provider(self, settings):
        return SocrataEventProvider(settings, client=MagicMock(spec=SocrataClient))

    def test_time_range_uses_descriptor_window(self, provider):
        query = provider.build_query(_descriptor("nyc_complaints"), _filter(include_unknown=True))

        assert query.where[:2] == [
            "cmplnt_fr_dt >= '2023-01-01T00:00:00.000'",
            "cmplnt_fr_dt < '2023-07-01T00:00:00.000'",
        ]
        assert query.order == "cmplnt_fr_dt DESC"
        assert "cmplnt_num" in query.select

    def test_within_box(self, provider):
        box = BoundingBox(-74.0, 40.7, -73.9, 40.8)
        query = provider.build_query(_descriptor("nyc_complaints"), _filter(scope=box, include_unknown=True))
        assert "within_box(lat_lon, 40.8, -74.0, 40.7, -73.9)" in query.where

    def test_polygon_scope_uses_its_bbox(self, provider):
        scope = PolygonScope.from_geometry(
            {"type": "Polygon", "coordinates": [[[-74.0, 40.7], [-73.9, 40.7], [-73.9, 40.8], [-74.0, 40.7]]]}
        )
        query = provider.build_query(_descriptor("nyc_complaints"), _filter(scope=scope, include_unknown=True))
        assert "within_box(lat_lon, 40.8, -74.0, 40.7, -73.9)" in query.where

    def test_numeric_box_for_legacy_schema(self, provider):
        box = BoundingBox(-122.5, 37.7, -122.4, 37.8)
        query = provider.build_query(_descriptor("sf_legacy"), _filter(scope=box))
        assert "y >= 37.7 AND y <= 37.8 AND x >= -122.5 AND x <= -122.4" in query.where

    def test_offense_and_law_class_pushdown(self, provider):
        f = _filter(offenses={"robbery", "O'MALLEY"}, law_classes={"felony"}, include_unknown=True)
        query = provider.build_query(_descriptor("nyc_complaints"), f)

        assert "upper(ofns_desc) in ('O''MALLEY', 'ROBBERY')" in query.where
        assert "upper(law_cat_cd) in ('FELONY')" in query.where

    def test_violence_pushdown(self, provider):
        violent = provider.build_query(
            _descriptor("nyc_complaints"), _filter(violence_classes={"violent"}, include_unknown=True)
        )
        nonviolent = provider.build_query(
            _descriptor("nyc_complaints"), _filter(violence_classes={"nonviolent"}, include_unknown=True)
        )
        both = provider.build_query(
            _descriptor("nyc_complaints"),
            _filter(violence_classes={"violent", "nonviolent"}, include_unknown=True),
        )

        assert any(clause.startswith("(upper(ofns_desc)") for clause in violent.where)
        assert any(clause.startswith("NOT (upper(ofns_desc)") for clause in nonviolent.where)
        assert len(both.where) == 2

    def test_unknown_exclusion(self, provider):
        query = provider.build_query(_descriptor("nyc_complaints"), _filter())
        unknown_clauses = [c for c in query.where if "IS NOT NULL" in c]
        assert len(unknown_clauses) == 6
        assert any(c.startswith("(vic_age_group IS NOT NULL") for c in unknown_clauses)

    def test_no_unknown_exclusion_without_demographics(self, provider):
        query = provider.build_query(_descriptor("sf_modern"), _filter())
        assert not any("IS NOT NULL" in c for c in query.where)

    def test_shootings_have_no_offense_pushdown(self, provider):
        query = provider.build_query(
            _descriptor("nyc_shootings"), _filter(offenses={"ROBBERY"}, include_unknown=True)
        )
        assert len(query.where) == 2


class TestFetchRows:
    """Test cases for fetching and adapting rows."""

    def test_fetch_rows(self, settings):
        client = MagicMock(spec=SocrataClient)
        client.fetch_all.return_value = [
            {"cmplnt_num": "1", "ofns_desc": "ROBBERY", "cmplnt_fr_dt": "2023-02-01T00:00:00.000",
             "latitude": "40.71", "longitude": "-73.99"},
            {"cmplnt_num": "2", "ofns_desc": "PETIT LARCENY", "cmplnt_fr_dt": "2023-03-01T00:00:00.000"},
        ]
        provider = SocrataEventProvider(settings, client=client)
        rows = provider.fetch_rows(_descriptor("nyc_complaints", "complaints_ytd"), _filter())

        assert [r.source_id for r in rows] == ["1", "2"]
        assert rows[0].dataset_tag == "complaints_ytd"
        assert rows[1].lat is None
        client.fetch_all.assert_called_once()

    def test_fetch_wraps_upstream_errors(self, settings):
        client = MagicMock(spec=SocrataClient)
        client.fetch_all.side_effect = UpstreamUnavailableError("abcd-1234", "HTTP 500")
        provider = SocrataEventProvider(settings, client=client)

        outcome = provider.fetch(_descriptor("nyc_complaints"), _filter())
        assert not outcome.success
        assert "HTTP 500" in outcome.error

    def test_cancellation_reaches_the_client(self, settings):
        client = MagicMock(spec=SocrataClient)
        client.fetch_all.side_effect = FetchCancelledError("abcd-1234", "cancelled after 2 page(s)")
        provider = SocrataEventProvider(settings, client=client)
        cancel = threading.Event()

        outcome = provider.fetch(_descriptor("nyc_complaints"), _filter(), cancel)

        assert not outcome.success
        assert "cancelled" in outcome.error
        client.fetch_all.assert_called_once_with(ANY, ANY, cancel=cancel)

    def test_provider_name(self, settings):
        assert SocrataEventProvider(settings, client=MagicMock()).get_provider_name() == "socrata"
