"""
Incident Atlas - Temporal Utilities

Temporal helpers shared by the dataset adapters and the aggregator:
- Timestamp parsing into naive "floating" datetimes
- SoQL floating timestamp formatting
- Time series granularity and zero-filled period labels
"""

from incident_atlas.shared.temporal.parsers import (
    as_datetime,
    parse_timestamp,
    to_floating_timestamp,
)
from incident_atlas.shared.temporal.periods import (
    Granularity,
    choose_granularity,
    last_instant,
    month_span,
    period_label,
    period_labels,
    years_in_window,
)

__all__ = [
    "as_datetime",
    "parse_timestamp",
    "to_floating_timestamp",
    "Granularity",
    "choose_granularity",
    "last_instant",
    "month_span",
    "period_label",
    "period_labels",
    "years_in_window",
]
