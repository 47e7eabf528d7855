"""
Incident Atlas - Aggregation Results

Result types of the deduplicating aggregator. Results are built once per
aggregation and never mutated afterwards; to_dict() gives the
JSON-serializable form handed to the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

import numpy as np

from incident_atlas.shared.temporal import Granularity

TrendDirection = Literal["up", "down", "stable"]

# Average change per period, in percent of the mean, below which a series is "stable"
STABLE_TREND_PCT = 1.0


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "count": self.count}


@dataclass(frozen=True)
class TimeBucket:
    period: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"period": self.period, "count": self.count}


@dataclass(frozen=True)
class CrossTabCell:
    suspect: str
    victim: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"suspect": self.suspect, "victim": self.victim, "count": self.count}


@dataclass(frozen=True)
class CrossTab:
    """Top suspect x victim pairs of one demographic dimension."""

    dimension: str
    cells: tuple[CrossTabCell, ...] = ()

    @property
    def suspect_labels(self) -> list[str]:
        return sorted({cell.suspect for cell in self.cells})

    @property
    def victim_labels(self) -> list[str]:
        return sorted({cell.victim for cell in self.cells})

    def to_matrix(self) -> list[list[int]]:
        """Counts as rows of suspect_labels by columns of victim_labels."""
        suspects = self.suspect_labels
        victims = self.victim_labels
        matrix = [[0] * len(victims) for _ in suspects]
        for cell in self.cells:
            matrix[suspects.index(cell.suspect)][victims.index(cell.victim)] = cell.count
        return matrix

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.dimension,
            "cells": [cell.to_dict() for cell in self.cells],
            "suspect_labels": self.suspect_labels,
            "victim_labels": self.victim_labels,
            "matrix": self.to_matrix(),
        }


@dataclass(frozen=True)
class DemographicBreakdown:
    """Race, sex and age group breakdowns of one party (suspect or victim)."""

    race: tuple[BreakdownEntry, ...] = ()
    sex: tuple[BreakdownEntry, ...] = ()
    age: tuple[BreakdownEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "race": [e.to_dict() for e in self.race],
            "sex": [e.to_dict() for e in self.sex],
            "age": [e.to_dict() for e in self.age],
        }


@dataclass(frozen=True)
class TrendStats:
    """Least-squares trend of a time series."""

    slope: float
    intercept: float
    avg_period_pct: float
    direction: TrendDirection

    @classmethod
    def from_series(cls, series: tuple[TimeBucket, ...] | list[TimeBucket]) -> TrendStats | None:
        """Fit a line through the series; None for fewer than two points."""
        if len(series) < 2:
            return None
        counts = np.array([bucket.count for bucket in series], dtype=float)
        x = np.arange(len(counts), dtype=float)
        slope, intercept = np.polyfit(x, counts, 1)

        mean = counts.mean()
        pct = float(slope / mean * 100) if mean > 0 else 0.0
        direction: TrendDirection = "stable"
        if abs(pct) > STABLE_TREND_PCT:
            direction = "up" if pct > 0 else "down"
        return cls(
            slope=float(slope),
            intercept=float(intercept),
            avg_period_pct=pct,
            direction=direction,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slope": round(self.slope, 6),
            "intercept": round(self.intercept, 6),
            "avg_period_pct": round(self.avg_period_pct, 4),
            "direction": self.direction,
        }


@dataclass(frozen=True)
class AggregationResult:
    """
    Summary of one aggregation.

    A partial result (one or more sources failed or timed out) has the same
    shape as a complete one; callers must check `partial`.
    """

    city: str
    start: datetime
    end: datetime
    total: int = 0
    by_offense: tuple[BreakdownEntry, ...] = ()
    by_law_class: tuple[BreakdownEntry, ...] = ()
    by_premise: tuple[BreakdownEntry, ...] = ()
    by_borough: tuple[BreakdownEntry, ...] = ()
    by_region: dict[str, int] = field(default_factory=dict)
    suspect: DemographicBreakdown = field(default_factory=DemographicBreakdown)
    victim: DemographicBreakdown = field(default_factory=DemographicBreakdown)
    time_series: tuple[TimeBucket, ...] = ()
    granularity: Granularity = "month"
    race_pairs: CrossTab = field(default_factory=lambda: CrossTab("race"))
    sex_pairs: CrossTab = field(default_factory=lambda: CrossTab("sex"))
    race_sex_pairs: CrossTab = field(default_factory=lambda: CrossTab("race_sex"))
    trend: TrendStats | None = None
    partial: bool = False
    sources: tuple[str, ...] = ()
    failed_sources: tuple[str, ...] = ()
    rows_fetched: int = 0
    duplicates_dropped: int = 0

    @property
    def by_race(self) -> tuple[BreakdownEntry, ...]:
        """Suspect race breakdown."""
        return self.suspect.race

    @property
    def by_age(self) -> tuple[BreakdownEntry, ...]:
        """Suspect age group breakdown."""
        return self.suspect.age

    @classmethod
    def empty(
        cls,
        city: str,
        start: datetime,
        end: datetime,
        time_series: tuple[TimeBucket, ...] = (),
        granularity: Granularity = "month",
    ) -> AggregationResult:
        """Zero-count result (zero-filled series and its flat trend when a series is given)."""
        return cls(
            city=city,
            start=start,
            end=end,
            time_series=time_series,
            granularity=granularity,
            trend=TrendStats.from_series(time_series),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert result to a JSON-serializable dictionary."""
        return {
            "city": self.city,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "total": self.total,
            "by_offense": [e.to_dict() for e in self.by_offense],
            "by_law_class": [e.to_dict() for e in self.by_law_class],
            "by_premise": [e.to_dict() for e in self.by_premise],
            "by_borough": [e.to_dict() for e in self.by_borough],
            "by_region": dict(self.by_region),
            "by_race": [e.to_dict() for e in self.by_race],
            "by_age": [e.to_dict() for e in self.by_age],
            "demographics": {
                "suspect": self.suspect.to_dict(),
                "victim": self.victim.to_dict(),
                "pairs": {
                    "race": self.race_pairs.to_dict(),
                    "sex": self.sex_pairs.to_dict(),
                    "race_sex": self.race_sex_pairs.to_dict(),
                },
            },
            "time_series": [b.to_dict() for b in self.time_series],
            "granularity": self.granularity,
            "trend": self.trend.to_dict() if self.trend else None,
            "partial": self.partial,
            "sources": list(self.sources),
            "failed_sources": list(self.failed_sources),
            "rows_fetched": self.rows_fetched,
            "duplicates_dropped": self.duplicates_dropped,
        }


@dataclass(frozen=True)
class FilterOptions:
    """
    Offense labels and law classes selectable for a city over a window.

    Offense labels that differ only in case or punctuation are merged into
    one entry. Counts are of deduplicated events, so they match what an
    aggregation over the same window would report.
    """

    city: str
    start: datetime
    end: datetime
    offenses: tuple[BreakdownEntry, ...] = ()
    law_classes: tuple[BreakdownEntry, ...] = ()
    partial: bool = False
    failed_sources: tuple[str, ...] = ()

    @property
    def total_offenses(self) -> int:
        return len(self.offenses)

    def to_dict(self) -> dict[str, Any]:
        return {
            "city": self.city,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "offenses": [e.to_dict() for e in self.offenses],
            "law_classes": [e.to_dict() for e in self.law_classes],
            "total_offenses": self.total_offenses,
            "partial": self.partial,
            "failed_sources": list(self.failed_sources),
        }
