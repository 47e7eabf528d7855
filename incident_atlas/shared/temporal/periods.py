"""
Incident Atlas - Time Periods

Helpers for half-open [start, end) windows and the period labels of the
aggregated time series.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal

import pandas as pd

Granularity = Literal["month", "year"]

_PANDAS_FREQ = {"month": "M", "year": "Y"}
_LABEL_FORMAT = {"month": "%Y-%m", "year": "%Y"}


def last_instant(end: datetime) -> datetime:
    """Last representable instant inside a window that ends (exclusive) at end."""
    return end - timedelta(microseconds=1)


def month_span(start: datetime, end: datetime) -> int:
    """Number of calendar months touched by [start, end)."""
    last = last_instant(end)
    return (last.year - start.year) * 12 + (last.month - start.month) + 1


def years_in_window(start: datetime, end: datetime) -> range:
    """Calendar years touched by [start, end)."""
    return range(start.year, last_instant(end).year + 1)


def choose_granularity(start: datetime, end: datetime, max_monthly_points: int) -> Granularity:
    """Monthly buckets unless that would exceed max_monthly_points."""
    if month_span(start, end) > max_monthly_points:
        return "year"
    return "month"


def period_label(value: datetime, granularity: Granularity) -> str:
    return value.strftime(_LABEL_FORMAT[granularity])


def period_labels(start: datetime, end: datetime, granularity: Granularity) -> list[str]:
    """
    Every period label of [start, end) in chronological order.

    Example:
        period_labels(datetime(2023, 1, 1), datetime(2023, 4, 1), "month")
        -> ["2023-01", "2023-02", "2023-03"]
    """
    if end <= start:
        return []
    periods = pd.period_range(
        start=start, end=last_instant(end), freq=_PANDAS_FREQ[granularity]
    )
    return [p.strftime(_LABEL_FORMAT[granularity]) for p in periods]
