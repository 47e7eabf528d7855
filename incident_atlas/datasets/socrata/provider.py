"""
Incident Atlas - Socrata Event Provider

Fetches the rows of a routed dataset descriptor from Socrata and adapts them
into EventRows. Filters that SoQL can express (time sub-range, bounding box,
offense and law-class selections, violence class, unknown demographics) are
pushed down to keep pulls small; the aggregator still re-applies every
filter on the adapted rows.

Usage:
    from incident_atlas.datasets.socrata import SocrataEventProvider

    provider = SocrataEventProvider()
    outcome = provider.fetch(descriptor, filter)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from incident_atlas.datasets.base import BaseEventProvider, DatasetDescriptor, EventRow
from incident_atlas.datasets.socrata.adapters import SchemaSpec, get_adapter, get_schema
from incident_atlas.datasets.socrata.client import SocrataClient, SoqlQuery
from incident_atlas.shared.categories import UNKNOWN_TOKENS, soql_literal, violent_soql_condition
from incident_atlas.shared.config import Settings
from incident_atlas.shared.geo import BoundingBox
from incident_atlas.shared.temporal import to_floating_timestamp

if TYPE_CHECKING:
    from incident_atlas.aggregation.filters import AggregationFilter

logger = logging.getLogger(__name__)


def _in_clause(column: str, values: frozenset[str]) -> str:
    literals = ", ".join(soql_literal(v) for v in sorted(values))
    return f"upper({column}) in ({literals})"


def _not_unknown(column: str) -> str:
    tokens = ", ".join(soql_literal(t) for t in sorted(UNKNOWN_TOKENS) if t)
    return f"({column} IS NOT NULL AND trim({column}) <> '' AND upper({column}) NOT IN ({tokens}))"


def _box_clause(spec: SchemaSpec, box: BoundingBox) -> str:
    if spec.geo_field:
        # within_box(column, north-west lat, north-west lon, south-east lat, south-east lon)
        return (
            f"within_box({spec.geo_field}, {box.max_lat}, {box.min_lon}, "
            f"{box.min_lat}, {box.max_lon})"
        )
    return (
        f"{spec.lat_field} >= {box.min_lat} AND {spec.lat_field} <= {box.max_lat} "
        f"AND {spec.lon_field} >= {box.min_lon} AND {spec.lon_field} <= {box.max_lon}"
    )


class SocrataEventProvider(BaseEventProvider):
    """Event provider for the Socrata datasets declared in the city configs."""

    def __init__(self, config: Settings | None = None, client: SocrataClient | None = None):
        super().__init__(config)
        self.client = client or SocrataClient(self.config)

    def get_provider_name(self) -> str:
        return "socrata"

    def build_query(self, descriptor: DatasetDescriptor, filter: AggregationFilter) -> SoqlQuery:
        """
        Build the SoQL query of one descriptor.

        Args:
            descriptor: Dataset and its routed time sub-range
            filter: Request filter

        Returns:
            SoqlQuery with select, where and order clauses
        """
        spec = get_schema(descriptor.schema_name)
        ts = spec.timestamp_field
        where = [
            f"{ts} >= '{to_floating_timestamp(descriptor.start)}'",
            f"{ts} < '{to_floating_timestamp(descriptor.end)}'",
        ]

        box = filter.scope_bbox
        if box is not None:
            where.append(_box_clause(spec, box))

        if spec.offense_field:
            if filter.offenses:
                where.append(_in_clause(spec.offense_field, filter.offenses))
            if filter.violence_classes == frozenset({"violent"}):
                where.append(violent_soql_condition(spec.offense_field))
            elif filter.violence_classes == frozenset({"nonviolent"}):
                where.append(f"NOT {violent_soql_condition(spec.offense_field)}")

        if spec.law_class_field and filter.law_classes:
            where.append(_in_clause(spec.law_class_field, filter.law_classes))

        if not filter.include_unknown:
            where.extend(_not_unknown(column) for column in spec.demographic_fields)

        return SoqlQuery(select=list(spec.select), where=where, order=f"{ts} DESC")

    def fetch_rows(
        self,
        descriptor: DatasetDescriptor,
        filter: AggregationFilter,
        cancel: threading.Event | None = None,
    ) -> list[EventRow]:
        """
        Fetch every page of a descriptor and adapt the rows.

        Raises:
            UpstreamUnavailableError: If any page cannot be fetched
            FetchCancelledError: If cancel is set between two pages
        """
        query = self.build_query(descriptor, filter)
        adapter = get_adapter(descriptor.schema_name)

        raw_rows = self.client.fetch_all(descriptor.url, query, cancel=cancel)
        rows = [adapter(raw, descriptor) for raw in raw_rows]

        logger.debug(
            f"Adapted {len(rows)} rows from {descriptor.name}",
            extra={"dataset": descriptor.name, "schema": descriptor.schema_name},
        )
        return rows
