"""
Incident Atlas - Base Classes for Datasets

The normalized event row and the provider contract every upstream dataset
implementation follows:
- Event rows and their dedup keys (EventRow)
- Dataset descriptors produced by the source router (DatasetDescriptor)
- Upstream providers (BaseEventProvider) and their outcomes (FetchOutcome)

Usage:
    from incident_atlas.datasets.base import BaseEventProvider, EventRow

    class CsvProvider(BaseEventProvider):
        def fetch_rows(self, descriptor, filter, cancel=None) -> list[EventRow]:
            ...
"""

from incident_atlas.datasets.base.events import EVENT_COLUMNS, DedupKey, EventRow, IdScope
from incident_atlas.datasets.base.provider import (
    BaseEventProvider,
    DatasetDescriptor,
    FetchCancelledError,
    FetchOutcome,
    UpstreamUnavailableError,
)

__all__ = [
    "EVENT_COLUMNS",
    "DedupKey",
    "EventRow",
    "IdScope",
    "BaseEventProvider",
    "DatasetDescriptor",
    "FetchCancelledError",
    "FetchOutcome",
    "UpstreamUnavailableError",
]
