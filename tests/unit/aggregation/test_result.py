"""
Unit tests for aggregation result types.
"""

import json
from datetime import datetime

import pytest

from incident_atlas.aggregation.result import (
    AggregationResult,
    BreakdownEntry,
    CrossTab,
    CrossTabCell,
    DemographicBreakdown,
    TimeBucket,
    TrendStats,
)


class TestCrossTab:
    """Test cases for cross-tab matrices."""

    def test_to_matrix(self):
        tab = CrossTab(
            "race",
            (
                CrossTabCell("BLACK", "BLACK", 5),
                CrossTabCell("WHITE", "BLACK", 2),
                CrossTabCell("BLACK", "WHITE", 1),
            ),
        )
        assert tab.suspect_labels == ["BLACK", "WHITE"]
        assert tab.victim_labels == ["BLACK", "WHITE"]
        assert tab.to_matrix() == [[5, 1], [2, 0]]

    def test_empty(self):
        tab = CrossTab("sex")
        assert tab.to_matrix() == []
        assert tab.to_dict()["cells"] == []


class TestTrendStats:
    """Test cases for least-squares trends."""

    def _series(self, counts):
        return tuple(TimeBucket(f"2023-{i + 1:02d}", c) for i, c in enumerate(counts))

    def test_upward(self):
        trend = TrendStats.from_series(self._series([10, 20, 30, 40]))
        assert trend.slope == pytest.approx(10.0)
        assert trend.intercept == pytest.approx(10.0)
        assert trend.avg_period_pct == pytest.approx(40.0)
        assert trend.direction == "up"

    def test_downward(self):
        assert TrendStats.from_series(self._series([40, 30, 20, 10])).direction == "down"

    def test_stable(self):
        assert TrendStats.from_series(self._series([100, 100, 101, 100])).direction == "stable"

    def test_all_zero(self):
        trend = TrendStats.from_series(self._series([0, 0, 0]))
        assert trend.avg_period_pct == 0.0
        assert trend.direction == "stable"

    def test_too_short(self):
        assert TrendStats.from_series(self._series([5])) is None
        assert TrendStats.from_series(()) is None


class TestAggregationResult:
    """Test cases for AggregationResult."""

    def test_empty(self):
        series = (TimeBucket("2023-01", 0), TimeBucket("2023-02", 0))
        result = AggregationResult.empty("testville", datetime(2023, 1, 1), datetime(2023, 3, 1), series)

        assert result.total == 0
        assert result.time_series == series
        assert result.by_region == {}
        assert result.partial is False
        assert result.trend.direction == "stable"
        assert AggregationResult.empty("testville", datetime(2023, 1, 1), datetime(2023, 3, 1)).trend is None

    def test_to_dict_is_json_serializable(self):
        result = AggregationResult(
            city="testville",
            start=datetime(2023, 1, 1),
            end=datetime(2023, 3, 1),
            total=3,
            by_offense=(BreakdownEntry("ROBBERY", 2), BreakdownEntry("BURGLARY", 1)),
            by_region={"WEST": 3},
            suspect=DemographicBreakdown(race=(BreakdownEntry("BLACK", 3),)),
            time_series=(TimeBucket("2023-01", 1), TimeBucket("2023-02", 2)),
            race_pairs=CrossTab("race", (CrossTabCell("BLACK", "WHITE", 3),)),
            trend=TrendStats.from_series((TimeBucket("2023-01", 1), TimeBucket("2023-02", 2))),
            sources=("historic",),
            failed_sources=("ytd",),
            partial=True,
        )
        data = json.loads(json.dumps(result.to_dict()))

        assert data["start"] == "2023-01-01T00:00:00"
        assert data["by_offense"][0] == {"label": "ROBBERY", "count": 2}
        assert data["by_race"] == [{"label": "BLACK", "count": 3}]
        assert data["demographics"]["pairs"]["race"]["matrix"] == [[3]]
        assert data["time_series"][1] == {"period": "2023-02", "count": 2}
        assert data["trend"]["direction"] == "up"
        assert data["partial"] is True
        assert data["failed_sources"] == ["ytd"]

    def test_by_race_and_age_are_suspect_breakdowns(self):
        suspect = DemographicBreakdown(race=(BreakdownEntry("WHITE", 1),), age=(BreakdownEntry("18-24", 1),))
        result = AggregationResult("testville", datetime(2023, 1, 1), datetime(2024, 1, 1), suspect=suspect)
        assert result.by_race == suspect.race
        assert result.by_age == suspect.age
