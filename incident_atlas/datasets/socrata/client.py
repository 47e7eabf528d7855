"""
Incident Atlas - Socrata Client

Thin SoQL client over requests for NYC Open Data and DataSF.

Usage:
    from incident_atlas.datasets.socrata.client import SocrataClient, SoqlQuery

    client = SocrataClient()
    query = SoqlQuery(select=["cmplnt_num"], where=["law_cat_cd = 'FELONY'"])
    rows = client.fetch_all("https://data.cityofnewyork.us/resource/qgea-i56i.json", query)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode, urlparse

import requests

from incident_atlas.datasets.base import FetchCancelledError, UpstreamUnavailableError
from incident_atlas.shared.config import Settings, get_config

logger = logging.getLogger(__name__)


@dataclass
class SoqlQuery:
    """SoQL clauses of one request; where clauses are joined with AND."""

    select: list[str] = field(default_factory=list)
    where: list[str] = field(default_factory=list)
    order: str | None = None
    group: list[str] = field(default_factory=list)

    def params(self, limit: int | None = None, offset: int | None = None) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.select:
            params["$select"] = ", ".join(self.select)
        if self.where:
            params["$where"] = " AND ".join(self.where)
        if self.group:
            params["$group"] = ", ".join(self.group)
        if self.order:
            params["$order"] = self.order
        if limit:
            params["$limit"] = str(limit)
        if offset:
            params["$offset"] = str(offset)
        return params


def dataset_id(url: str) -> str:
    """Socrata four-by-four id of a resource URL (e.g. "qgea-i56i")."""
    path = urlparse(url).path
    return path.rsplit("/", 1)[-1].removesuffix(".json")


class SocrataClient:
    """
    Paginated Socrata (SODA) client.

    Domain-specific app tokens are taken from the environment settings and
    sent as X-App-Token to raise rate limits.
    """

    def __init__(self, config: Settings | None = None, session: requests.Session | None = None):
        self.config = config or get_config()
        self.session = session or requests.Session()
        self.timeout = self.config.socrata.timeout_seconds

    @staticmethod
    def build_url(
        dataset_url: str,
        query: SoqlQuery,
        limit: int | None = None,
        offset: int | None = None,
    ) -> str:
        """Build the full request URL of a query."""
        params = query.params(limit=limit, offset=offset)
        if not params:
            return dataset_url
        return f"{dataset_url}?{urlencode(params)}"

    def _headers(self, dataset_url: str) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.config.app_token_for_host(urlparse(dataset_url).hostname or "")
        if token:
            headers["X-App-Token"] = token
        return headers

    def fetch_page(
        self,
        dataset_url: str,
        query: SoqlQuery,
        limit: int,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Fetch one page of rows.

        Raises:
            UpstreamUnavailableError: On network errors, non-200 responses or
                                      payloads that are not a JSON array
        """
        name = dataset_id(dataset_url)
        start = time.time()
        try:
            response = self.session.get(
                dataset_url,
                params=query.params(limit=limit, offset=offset),
                headers=self._headers(dataset_url),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamUnavailableError(name, f"request failed: {e}") from e

        if response.status_code != 200:
            raise UpstreamUnavailableError(
                name, f"HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailableError(name, f"invalid JSON payload: {e}") from e

        if not isinstance(data, list):
            raise UpstreamUnavailableError(name, f"expected a JSON array, got {type(data).__name__}")

        logger.debug(
            f"Fetched {len(data)} rows from {name}",
            extra={
                "dataset": name,
                "offset": offset,
                "limit": limit,
                "rows": len(data),
                "duration_ms": round((time.time() - start) * 1000),
            },
        )
        return data

    def fetch_all(
        self,
        dataset_url: str,
        query: SoqlQuery,
        page_size: int | None = None,
        max_rows: int | None = None,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch every page of a query.

        Stops when a page is shorter than page_size or max_rows is reached.

        Raises:
            UpstreamUnavailableError: If any page cannot be fetched
            FetchCancelledError: If cancel is set before the next page is requested
        """
        page_size = page_size or self.config.socrata.page_size
        max_rows = max_rows or self.config.socrata.max_rows
        name = dataset_id(dataset_url)

        all_rows: list[dict[str, Any]] = []
        offset = 0
        pages = 0

        while len(all_rows) < max_rows:
            if cancel is not None and cancel.is_set():
                raise FetchCancelledError(name, f"cancelled after {pages} page(s)")
            limit = min(page_size, max_rows - len(all_rows))
            page = self.fetch_page(dataset_url, query, limit=limit, offset=offset)
            all_rows.extend(page)
            pages += 1

            if len(page) < limit:
                break

            offset += len(page)
            delay = self.config.socrata.page_delay_seconds
            if delay:
                if cancel is not None:
                    cancel.wait(delay)
                else:
                    time.sleep(delay)

        if len(all_rows) >= max_rows:
            logger.warning(
                f"Row cap reached for {name}, results are truncated",
                extra={"dataset": name, "max_rows": max_rows},
            )

        logger.info(
            f"Fetched {len(all_rows)} total rows from {name}",
            extra={"dataset": name, "pages": pages, "rows": len(all_rows)},
        )
        return all_rows
