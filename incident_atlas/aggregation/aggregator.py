"""
Incident Atlas - Deduplicating Aggregator

Fans out to the datasets the source router selects, merges their rows,
drops duplicates and summarizes what is left into breakdowns, region counts,
a zero-filled time series and suspect x victim cross-tabs.

Pipeline:
    1. Validate the filter (InvalidFilterError before any fetch)
    2. Short-circuit empty selections to a zero result (no fetch)
    3. Route and fetch every descriptor concurrently, bounded by a timeout
    4. Merge outcomes in routing order and drop duplicate dedup keys
    5. Apply time, offense, law-class, violence and unknown filters
    6. Re-test rows against an exact polygon scope
    7. Accumulate and return an AggregationResult

A failed or timed-out source never aborts the aggregation: its contribution
is empty and the result is flagged partial. Timed-out fetches are asked to
stop through a shared cancellation event.

Usage:
    from incident_atlas.aggregation.aggregator import DeduplicatingAggregator

    aggregator = DeduplicatingAggregator(provider=SocrataEventProvider())
    result = asyncio.run(aggregator.aggregate(filter, timeout=20))
    options = asyncio.run(aggregator.filter_options(filter))
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Sequence

import pandas as pd

from incident_atlas.aggregation.filters import AggregationFilter, PolygonScope
from incident_atlas.aggregation.result import (
    AggregationResult,
    BreakdownEntry,
    CrossTab,
    CrossTabCell,
    DemographicBreakdown,
    FilterOptions,
    TimeBucket,
    TrendStats,
)
from incident_atlas.aggregation.router import SourceRouter
from incident_atlas.datasets.base import (
    EVENT_COLUMNS,
    BaseEventProvider,
    DatasetDescriptor,
    EventRow,
    FetchOutcome,
)
from incident_atlas.regions.resolver import SpatialRegionResolver
from incident_atlas.shared.categories import canonical_offense, is_unknown, is_violent
from incident_atlas.shared.config import CityConfig, Settings, get_city_config, get_config
from incident_atlas.shared.temporal import (
    Granularity,
    choose_granularity,
    period_labels,
)

logger = logging.getLogger(__name__)

DEMOGRAPHIC_COLUMNS = ("susp_race", "susp_sex", "susp_age", "vic_race", "vic_sex", "vic_age")

_LABEL_FORMAT = {"month": "%Y-%m", "year": "%Y"}


# =============================================================================
# Row Helpers
# =============================================================================


def rows_to_frame(rows: Sequence[EventRow], precision: int = 5) -> pd.DataFrame:
    """
    Build a DataFrame of event rows with a "dedup_key" column.

    Rows without a source id get a key unique to their position so they are
    never collapsed.
    """
    frame = pd.DataFrame([row.to_dict() for row in rows], columns=list(EVENT_COLUMNS))
    keys = []
    for position, row in enumerate(rows):
        key = row.dedup_key(precision)
        keys.append("|".join(map(str, key)) if key is not None else f"#row{position}")
    frame["dedup_key"] = keys
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], errors="coerce")
    frame["lat"] = pd.to_numeric(frame["lat"], errors="coerce")
    frame["lon"] = pd.to_numeric(frame["lon"], errors="coerce")
    return frame


def deduplicate(frame: pd.DataFrame) -> pd.DataFrame:
    """Keep the first row of every dedup key."""
    return frame.drop_duplicates(subset="dedup_key", keep="first")


def breakdown(values: pd.Series, limit: int | None = None) -> tuple[BreakdownEntry, ...]:
    """
    Count labels, sorted by count descending then label ascending.

    Missing and blank labels are not counted.
    """
    labels = values.dropna().astype(str)
    labels = labels[labels.str.strip() != ""]
    counts = labels.value_counts()
    items = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        items = items[:limit]
    return tuple(BreakdownEntry(label, int(count)) for label, count in items)


def offense_catalog(
    categories: pd.Series,
    legacy: pd.Series,
    limit: int | None = None,
) -> tuple[BreakdownEntry, ...]:
    """
    Count offense labels, merging labels that differ only in case or punctuation.

    A merged entry is labelled as its first row outside a legacy feed, or as
    its first row when the offense only appears in legacy feeds. Sorted like
    breakdown().
    """
    labels = categories.fillna("").astype(str).str.strip()
    entries = pd.DataFrame({"label": labels, "legacy": legacy.astype(bool)})
    entries = entries[entries["label"] != ""]
    if entries.empty:
        return ()
    entries = entries.assign(key=entries["label"].map(canonical_offense))
    entries = entries.sort_values("legacy", kind="stable")
    grouped = entries.groupby("key", sort=False).agg(
        label=("label", "first"), count=("label", "size")
    )
    items = sorted(zip(grouped["label"], grouped["count"]), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        items = items[:limit]
    return tuple(BreakdownEntry(label, int(count)) for label, count in items)


def cross_tab(
    suspect: pd.Series,
    victim: pd.Series,
    dimension: str,
    limit: int | None = None,
) -> CrossTab:
    """Top suspect x victim label pairs by count."""
    pairs = pd.DataFrame({"suspect": suspect, "victim": victim}).dropna()
    if pairs.empty:
        return CrossTab(dimension)
    counts = pairs.groupby(["suspect", "victim"]).size()
    items = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        items = items[:limit]
    return CrossTab(
        dimension,
        tuple(CrossTabCell(str(s), str(v), int(count)) for (s, v), count in items),
    )


def zero_filled_series(
    timestamps: pd.Series, labels: list[str], granularity: Granularity
) -> tuple[TimeBucket, ...]:
    """Counts per period label, with explicit zeros for empty periods."""
    if timestamps.empty:
        counts = pd.Series(dtype="int64")
    else:
        counts = timestamps.dt.strftime(_LABEL_FORMAT[granularity]).value_counts()
    filled = counts.reindex(labels, fill_value=0)
    return tuple(TimeBucket(label, int(count)) for label, count in filled.items())


# =============================================================================
# Aggregator
# =============================================================================


class DeduplicatingAggregator:
    """
    Concurrent, partial-failure tolerant aggregation over routed datasets.

    The aggregator holds no per-request state; one instance can serve
    concurrent aggregate() calls.
    """

    def __init__(
        self,
        provider: BaseEventProvider,
        resolver: SpatialRegionResolver | None = None,
        router: SourceRouter | None = None,
        config: Settings | None = None,
        city_config_loader: Callable[[str], CityConfig] | None = None,
    ):
        """
        Initialize the aggregator.

        Args:
            provider: Upstream event provider
            resolver: Spatial resolver for per-region counts (None disables them)
            router: Source router (defaults to one over the city configs)
            config: Configuration object (uses default if not provided)
            city_config_loader: Callable returning a CityConfig
        """
        self.config = config or get_config()
        self.provider = provider
        self.resolver = resolver
        self.city_config_loader = city_config_loader or get_city_config
        self.router = router or SourceRouter(self.city_config_loader)

    @property
    def known_cities(self) -> list[str]:
        return list(self.config.spatial.cities)

    async def aggregate(self, filter: AggregationFilter, timeout: float | None = None) -> AggregationResult:
        """
        Aggregate the events matching a filter.

        Args:
            filter: Aggregation filter
            timeout: Seconds to wait for upstream fetches (defaults to
                     aggregation.fetch_timeout_seconds); sources still running
                     at the deadline count as failed

        Returns:
            AggregationResult, with partial=True if any source failed

        Raises:
            InvalidFilterError: If the filter is malformed
        """
        filter.validate(self.known_cities)

        granularity = choose_granularity(
            filter.start, filter.end, self.config.aggregation.max_monthly_points
        )
        labels = period_labels(filter.start, filter.end, granularity)

        if filter.is_empty_selection:
            logger.debug("Empty selection, skipping upstream fetches", extra={"city": filter.city})
            return AggregationResult.empty(
                filter.city,
                filter.start,
                filter.end,
                time_series=tuple(TimeBucket(label, 0) for label in labels),
                granularity=granularity,
            )

        descriptors = self.router.route(filter.start, filter.end, filter.city)
        if timeout is None:
            timeout = self.config.aggregation.fetch_timeout_seconds

        start_time = time.time()
        outcomes = await self.fetch_all(descriptors, filter, timeout)
        result = self.summarize(filter, outcomes)

        logger.info(
            f"Aggregated {result.total} events for {filter.city}",
            extra={
                "city": filter.city,
                "total": result.total,
                "rows_fetched": result.rows_fetched,
                "duplicates_dropped": result.duplicates_dropped,
                "partial": result.partial,
                "duration_seconds": round(time.time() - start_time, 3),
            },
        )
        return result

    async def fetch_all(
        self,
        descriptors: Sequence[DatasetDescriptor],
        filter: AggregationFilter,
        timeout: float,
    ) -> list[FetchOutcome]:
        """
        Fetch every descriptor concurrently.

        Returns one outcome per descriptor, in descriptor order regardless of
        completion order. Sources not finished within timeout are failed and
        their worker threads are asked to stop at the next request boundary.
        """
        if not descriptors:
            return []

        cancel = threading.Event()
        tasks = [
            asyncio.create_task(asyncio.to_thread(self.provider.fetch, descriptor, filter, cancel))
            for descriptor in descriptors
        ]
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            cancel.set()
        for task in pending:
            task.cancel()

        outcomes = []
        for descriptor, task in zip(descriptors, tasks):
            if task not in done:
                logger.warning(
                    f"Fetch of {descriptor.name} timed out after {timeout}s",
                    extra={"dataset": descriptor.name, "timeout_seconds": timeout},
                )
                outcomes.append(FetchOutcome.failed(descriptor, f"timed out after {timeout}s"))
                continue

            error = task.exception()
            if error is not None:
                logger.error(
                    f"Provider raised for {descriptor.name}: {error}",
                    extra={"dataset": descriptor.name, "error": str(error)},
                    exc_info=error,
                )
                outcomes.append(FetchOutcome.failed(descriptor, str(error)))
            else:
                outcomes.append(task.result())
        return outcomes

    def summarize(self, filter: AggregationFilter, outcomes: Sequence[FetchOutcome]) -> AggregationResult:
        """
        Build the result of an aggregation from its fetch outcomes.

        Pure with respect to the outcomes: the same outcomes in the same
        order always give the same result.
        """
        city_config = self.city_config_loader(filter.city)
        settings = self.config.aggregation
        limits = settings.limits

        granularity = choose_granularity(filter.start, filter.end, settings.max_monthly_points)
        labels = period_labels(filter.start, filter.end, granularity)

        failed = tuple(o.descriptor.name for o in outcomes if not o.success)
        succeeded = tuple(o.descriptor.name for o in outcomes if o.success)
        if failed:
            logger.warning(
                f"Partial result for {filter.city}: {len(failed)} source(s) failed",
                extra={"city": filter.city, "failed_sources": list(failed)},
            )

        rows = [row for outcome in outcomes if outcome.success for row in outcome.rows]
        frame = rows_to_frame(rows, settings.dedup_precision)
        rows_fetched = len(frame)
        frame = deduplicate(frame)
        duplicates = rows_fetched - len(frame)

        frame = self.apply_filters(frame, filter, city_config)

        by_region: dict[str, int] = {}
        if self.resolver is not None and not frame.empty:
            region_ids = self.resolver.lookup_region_ids(
                filter.city, frame["lat"].tolist(), frame["lon"].tolist()
            )
            counts = pd.Series(region_ids, dtype="object").dropna().value_counts()
            by_region = {str(k): int(v) for k, v in counts.items()}

        series = zero_filled_series(frame["timestamp"], labels, granularity)

        suspect = victim = DemographicBreakdown()
        race_pairs, sex_pairs, race_sex_pairs = CrossTab("race"), CrossTab("sex"), CrossTab("race_sex")
        if city_config.has_demographics:
            suspect = DemographicBreakdown(
                race=breakdown(frame["susp_race"], limits.demographic),
                sex=breakdown(frame["susp_sex"], limits.demographic),
                age=breakdown(frame["susp_age"], limits.demographic),
            )
            victim = DemographicBreakdown(
                race=breakdown(frame["vic_race"], limits.demographic),
                sex=breakdown(frame["vic_sex"], limits.demographic),
                age=breakdown(frame["vic_age"], limits.demographic),
            )
            race_pairs = cross_tab(frame["susp_race"], frame["vic_race"], "race", limits.race_pairs)
            sex_pairs = cross_tab(frame["susp_sex"], frame["vic_sex"], "sex", limits.sex_pairs)
            race_sex_pairs = cross_tab(
                frame["susp_race"].str.cat(frame["susp_sex"], sep=" "),
                frame["vic_race"].str.cat(frame["vic_sex"], sep=" "),
                "race_sex",
                limits.race_sex_pairs,
            )

        return AggregationResult(
            city=filter.city,
            start=filter.start,
            end=filter.end,
            total=len(frame),
            by_offense=breakdown(frame["category"], limits.offense),
            by_law_class=breakdown(frame["law_class"], limits.law_class),
            by_premise=breakdown(frame["premise"], limits.premise),
            by_borough=breakdown(frame["borough"], limits.borough),
            by_region=by_region,
            suspect=suspect,
            victim=victim,
            time_series=series,
            granularity=granularity,
            race_pairs=race_pairs,
            sex_pairs=sex_pairs,
            race_sex_pairs=race_sex_pairs,
            trend=TrendStats.from_series(series),
            partial=bool(failed),
            sources=succeeded,
            failed_sources=failed,
            rows_fetched=rows_fetched,
            duplicates_dropped=duplicates,
        )

    async def filter_options(self, filter: AggregationFilter, timeout: float | None = None) -> FilterOptions:
        """
        Offense labels and law classes with event counts over a filter's window.

        Only the city, window and scope of the filter are used. Rows of every
        routed feed are merged and deduplicated as in aggregate(), so shooting
        incidents are counted under the labels their adapter gives them.

        Raises:
            InvalidFilterError: If the filter is malformed
        """
        window = dataclasses.replace(
            filter, offenses=None, law_classes=None, violence_classes=None, include_unknown=True
        )
        window.validate(self.known_cities)

        descriptors = self.router.route(window.start, window.end, window.city)
        if timeout is None:
            timeout = self.config.aggregation.fetch_timeout_seconds
        outcomes = await self.fetch_all(descriptors, window, timeout)

        city_config = self.city_config_loader(window.city)
        settings = self.config.aggregation
        failed = tuple(o.descriptor.name for o in outcomes if not o.success)

        rows = [row for outcome in outcomes if outcome.success for row in outcome.rows]
        frame = deduplicate(rows_to_frame(rows, settings.dedup_precision))
        frame = self.apply_filters(frame, window, city_config)

        legacy_tags = {d.name for d in descriptors if d.era == "legacy"}
        offenses = offense_catalog(
            frame["category"], frame["dataset_tag"].isin(legacy_tags), settings.limits.offense_options
        )
        law_classes: tuple[BreakdownEntry, ...] = ()
        if city_config.has_law_class:
            law_classes = breakdown(frame["law_class"].fillna("").astype(str).str.strip().str.upper())

        logger.info(
            f"Found {len(offenses)} offense labels for {window.city}",
            extra={"city": window.city, "offenses": len(offenses), "failed_sources": list(failed)},
        )
        return FilterOptions(
            city=window.city,
            start=window.start,
            end=window.end,
            offenses=offenses,
            law_classes=law_classes,
            partial=bool(failed),
            failed_sources=failed,
        )

    def apply_filters(
        self,
        frame: pd.DataFrame,
        filter: AggregationFilter,
        city_config: CityConfig,
    ) -> pd.DataFrame:
        """Apply the row filters of an aggregation to deduplicated rows."""
        if frame.empty:
            return frame

        ts = frame["timestamp"]
        mask = ts.notna() & (ts >= filter.start) & (ts < filter.end)

        category = frame["category"].fillna("").astype(str)
        if filter.offenses is not None:
            mask &= category.str.upper().isin(filter.offenses)

        if filter.law_classes is not None:
            law_class = frame["law_class"].fillna("").astype(str).str.upper()
            mask &= law_class.isin(filter.law_classes)

        selected = filter.violence_classes
        if selected is not None and selected != {"violent", "nonviolent"}:
            violent = category.map(is_violent).astype(bool)
            if selected == {"violent"}:
                mask &= violent
            else:
                mask &= ~violent

        if not filter.include_unknown:
            mask &= ~category.map(is_unknown).astype(bool)
            if city_config.has_demographics:
                for column in DEMOGRAPHIC_COLUMNS:
                    values = frame[column]
                    mask &= ~(values.isna() | values.map(is_unknown).astype(bool))

        frame = frame[mask]

        if isinstance(filter.scope, PolygonScope) and not frame.empty:
            has_point = frame["lat"].notna() & frame["lon"].notna()
            frame = frame[has_point]
            inside = filter.scope.contains(frame["lon"].to_numpy(), frame["lat"].to_numpy())
            frame = frame[inside]

        return frame
