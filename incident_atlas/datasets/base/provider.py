"""
Incident Atlas - Base Event Provider

Abstract base class for upstream event providers. A provider turns one
dataset descriptor (a dataset plus the time sub-range routed to it) into a
batch of EventRows.

Usage:
    class MyProvider(BaseEventProvider):
        def fetch_rows(self, descriptor, filter, cancel=None):
            ...
        def get_provider_name(self) -> str:
            return "my_provider"

    outcome = provider.fetch(descriptor, filter)
    if not outcome.success:
        ...
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from incident_atlas.datasets.base.events import EventRow, IdScope
from incident_atlas.shared.config import Settings, get_config

if TYPE_CHECKING:
    from incident_atlas.aggregation.filters import AggregationFilter

logger = logging.getLogger(__name__)


class UpstreamUnavailableError(Exception):
    """An upstream dataset could not be fetched (network, HTTP or payload error)."""

    def __init__(self, dataset: str, message: str):
        self.dataset = dataset
        super().__init__(f"{dataset}: {message}")


class FetchCancelledError(UpstreamUnavailableError):
    """A fetch was abandoned because its caller stopped waiting for it."""


@dataclass(frozen=True)
class DatasetDescriptor:
    """A dataset selected for a request, with the time sub-range it covers."""

    city: str
    name: str
    url: str
    schema_name: str
    era: str
    start: datetime
    end: datetime
    id_scope: IdScope = "point"
    timestamp_field: str = ""
    point_field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "city": self.city,
            "name": self.name,
            "url": self.url,
            "schema": self.schema_name,
            "era": self.era,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "id_scope": self.id_scope,
        }


@dataclass
class FetchOutcome:
    """Rows of one descriptor, or the error that prevented fetching them."""

    descriptor: DatasetDescriptor
    rows: list[EventRow] = field(default_factory=list)
    error: str | None = None
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, descriptor: DatasetDescriptor, error: str, duration: float = 0.0) -> FetchOutcome:
        return cls(descriptor=descriptor, rows=[], error=error, duration_seconds=duration)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset": self.descriptor.name,
            "rows": len(self.rows),
            "success": self.success,
            "error": self.error,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class BaseEventProvider(ABC):
    """
    Abstract base class for upstream event providers.

    Subclasses must implement:
    - fetch_rows(): Fetch and normalize the rows of one descriptor
    - get_provider_name(): Return the provider name

    fetch_rows() is blocking; the aggregator runs it in a worker thread.
    """

    def __init__(self, config: Settings | None = None):
        """
        Initialize the provider.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()

    @abstractmethod
    def fetch_rows(
        self,
        descriptor: DatasetDescriptor,
        filter: AggregationFilter,
        cancel: threading.Event | None = None,
    ) -> list[EventRow]:
        """
        Fetch the rows of one descriptor.

        Args:
            descriptor: Dataset and the time sub-range routed to it
            filter: The request filter (scope and category pushdown)
            cancel: Set by the caller once it no longer waits for the rows;
                    multi-request fetches stop at the next request boundary

        Returns:
            Normalized rows

        Raises:
            UpstreamUnavailableError: If the upstream cannot be fetched
            FetchCancelledError: If cancel was set before the fetch finished
        """
        pass

    @abstractmethod
    def get_provider_name(self) -> str:
        """
        Get the provider name.

        Returns:
            Provider name (e.g., "socrata")
        """
        pass

    def fetch(
        self,
        descriptor: DatasetDescriptor,
        filter: AggregationFilter,
        cancel: threading.Event | None = None,
    ) -> FetchOutcome:
        """
        Fetch one descriptor, capturing any failure as a failed outcome.

        Args:
            descriptor: Dataset and the time sub-range routed to it
            filter: The request filter
            cancel: Optional cancellation flag passed through to fetch_rows()

        Returns:
            FetchOutcome with rows on success or an error message on failure
        """
        start_time = time.time()
        logger.debug(
            f"Fetching {descriptor.name} for {descriptor.city}",
            extra={
                "provider": self.get_provider_name(),
                "dataset": descriptor.name,
                "start": descriptor.start.isoformat(),
                "end": descriptor.end.isoformat(),
            },
        )

        try:
            rows = self.fetch_rows(descriptor, filter, cancel=cancel)
        except FetchCancelledError as e:
            duration = time.time() - start_time
            logger.info(
                f"Fetch of {descriptor.name} cancelled",
                extra={"dataset": descriptor.name, "city": descriptor.city, "error": str(e)},
            )
            return FetchOutcome.failed(descriptor, str(e), duration)
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Fetch failed for {descriptor.name}: {e}",
                extra={"dataset": descriptor.name, "city": descriptor.city, "error": str(e)},
                exc_info=True,
            )
            return FetchOutcome.failed(descriptor, str(e), duration)

        outcome = FetchOutcome(
            descriptor=descriptor,
            rows=list(rows),
            duration_seconds=time.time() - start_time,
        )
        logger.info(
            f"Fetched {len(outcome.rows)} rows from {descriptor.name}",
            extra=outcome.to_dict(),
        )
        return outcome
