"""Incremental, windowed pagination over Cloudflare analytics datasets.

For each zone and dataset the fetcher asks for buckets newer than the
watermark minus a grace period. The overlap with the previous poll is
harmless because only buckets strictly newer than the watermark are counted.
A full page means more data may be waiting, so the query is repeated from the
advanced watermark until a short page comes back. Rows at the last time of a
full page are left for the next page, and a full page holding a single time is
asked for again with a larger limit. A first page filled entirely by the grace
window is retried from the watermark itself.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from .cloudflare import CloudflareClient
from .config import ExporterConfig
from .errors import InvariantViolationError, MalformedResponseError
from .extract import DEFAULT_MAX_PAGE_SIZE, Dataset, extract_page, record_times
from .helpers import format_rfc3339, utcnow
from .metrics import ZoneMetrics
from .watermarks import WatermarkTable


logger = logging.getLogger(__name__)


class WindowedFetcher:
    def __init__(
        self,
        client: CloudflareClient,
        zone_metrics: ZoneMetrics,
        watermarks: WatermarkTable,
        config: ExporterConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.zone_metrics = zone_metrics
        self.watermarks = watermarks
        self.config = config
        self.clock = clock

    def page_size(self, dataset: Dataset) -> int:
        return self.config.max_page_size or dataset.max_page_size

    def grace_period(self, dataset: Dataset) -> timedelta:
        if dataset.grace_period is not None:
            return dataset.grace_period
        return self.config.grace_period

    def max_query_window(self, dataset: Dataset) -> timedelta:
        if dataset.max_query_window is not None:
            return dataset.max_query_window
        return self.config.max_query_window

    def _last_seen(self, dataset: Dataset, zone_id: str, now: datetime) -> datetime:
        last_seen = self.watermarks.get(zone_id, dataset.name)
        if last_seen is None:
            # Start from one interval ago rather than the epoch; older data is
            # not worth an expensive first query.
            last_seen = now - self.config.scrape_interval
            self.watermarks.advance(zone_id, dataset.name, last_seen)
        return last_seen

    async def _query_page(
        self, dataset: Dataset, zone_id: str, start: datetime, limit: int
    ) -> List[Any]:
        data = await self.client.query(
            dataset.query,
            {"zone": zone_id, "start_time": format_rfc3339(start), "limit": limit},
        )
        return zone_records(data, dataset, zone_id)

    async def fetch(self, dataset: Dataset, zone_id: str, zone_names: Dict[str, str]) -> int:
        """Drain ``dataset`` for one zone; return the number of deltas applied."""
        zone_name = zone_names.get(zone_id, zone_id)
        limit = self.page_size(dataset)
        widest = max(limit, DEFAULT_MAX_PAGE_SIZE)
        page_limit = limit
        grace = self.grace_period(dataset)
        applied = 0
        pages = 0

        while True:
            now = self.clock()
            last_seen = self._last_seen(dataset, zone_id, now)
            page_grace = grace
            records = await self._query_page(
                dataset, zone_id, last_seen - page_grace, page_limit
            )
            pages += 1
            full = len(records) >= page_limit

            if full:
                times = record_times(dataset, records)
                if times[0] == times[-1] > last_seen:
                    # datetime_gt cannot page within one timestamp; ask for more rows.
                    if page_limit < widest:
                        page_limit = min(page_limit * 2, widest)
                        logger.debug(
                            f"Page of {dataset.name} for zone {zone_name} holds only "
                            f"{times[0].isoformat()}, widening to {page_limit}"
                        )
                        continue
                    logger.warning(
                        f"{page_limit} rows of {dataset.name} for zone {zone_name} share "
                        f"{times[0].isoformat()}, later rows at that time are lost"
                    )

            # Only the first page overlaps the previous poll; later pages
            # continue exactly where this one stopped.
            grace = timedelta(0)
            page_limit = limit

            deltas, new_mark = extract_page(
                dataset, records, zone_name, last_seen, full_page=full
            )
            applied += self.zone_metrics.apply(deltas)
            if new_mark is not None and new_mark > last_seen:
                self.watermarks.advance(zone_id, dataset.name, new_mark)
            self.watermarks.cap_if_stale(
                zone_id, dataset.name, self.max_query_window(dataset), now
            )

            if not full:
                break
            if self.watermarks.get(zone_id, dataset.name) <= last_seen:
                if page_grace > timedelta(0):
                    logger.debug(
                        f"Full page of {dataset.name} for zone {zone_name} lies inside "
                        f"the grace window, retrying from {last_seen.isoformat()}"
                    )
                    continue
                logger.warning(
                    f"Full page of {dataset.name} for zone {zone_name} did not move "
                    f"the watermark past {last_seen.isoformat()}, stopping"
                )
                break
            logger.debug(f"Full page of {dataset.name} for zone {zone_name}, fetching next page")

        logger.debug(
            f"Fetched {pages} page(s) of {dataset.name} for zone {zone_name}, "
            f"{applied} deltas, watermark "
            f"{self.watermarks.get(zone_id, dataset.name).isoformat()}"
        )
        return applied


def zone_records(data: Dict[str, Any], dataset: Dataset, zone_id: str) -> List[Any]:
    """Pull the dataset's records for ``zone_id`` out of a GraphQL ``data`` object."""
    viewer = data.get("viewer")
    zones = viewer.get("zones") if isinstance(viewer, dict) else None
    if not isinstance(zones, list):
        raise MalformedResponseError(f"{dataset.name}: response has no viewer.zones list")
    if len(zones) != 1:
        raise InvariantViolationError(
            f"{dataset.name}: expected exactly one zone for {zone_id}, got {len(zones)}"
        )

    zone = zones[0]
    if not isinstance(zone, dict):
        raise MalformedResponseError(f"{dataset.name}: zone entry is not an object")
    records = zone.get(dataset.field)
    if records is None:
        return []
    if not isinstance(records, list):
        raise MalformedResponseError(f"{dataset.name}: {dataset.field} is not a list")
    return records
