"""
Incident Atlas - Event Rows

The normalized row shape every dataset adapter maps its upstream records
into. The aggregator only ever reads these fields; it never branches on
upstream column names.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Literal

IdScope = Literal["point", "global"]

DedupKey = tuple[Any, ...]


@dataclass(frozen=True)
class EventRow:
    """One incident from one upstream dataset."""

    source_id: str | None
    timestamp: datetime | None
    category: str | None
    lat: float | None
    lon: float | None
    dataset_tag: str
    id_scope: IdScope = "point"
    law_class: str | None = None
    premise: str | None = None
    borough: str | None = None
    susp_race: str | None = None
    susp_sex: str | None = None
    susp_age: str | None = None
    vic_race: str | None = None
    vic_sex: str | None = None
    vic_age: str | None = None

    def __post_init__(self) -> None:
        # Timestamps are city-local wall time; an attached zone is dropped, not converted
        if self.timestamp is not None and self.timestamp.tzinfo is not None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=None))

    def dedup_key(self, precision: int = 5) -> DedupKey | None:
        """
        Identity used to collapse duplicate rows.

        Globally unique ids are keyed by the id alone; point-scoped ids are
        combined with the rounded coordinates. Rows without an id return None
        and are never collapsed.
        """
        if not self.source_id:
            return None
        if self.id_scope == "global":
            return (self.source_id,)
        lat = round(self.lat, precision) if self.lat is not None else None
        lon = round(self.lon, precision) if self.lon is not None else None
        return (self.source_id, lat, lon)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


EVENT_COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(EventRow))
