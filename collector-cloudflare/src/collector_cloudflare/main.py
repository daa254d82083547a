"""Cloudflare analytics collector main async loop."""

import asyncio
import logging
import sys
import threading
from datetime import datetime
from typing import Callable, Optional

from prometheus_client import CollectorRegistry, start_http_server

from analytics_core.utils.logging import log_fields, setup_logging

from .cloudflare import CloudflareClient
from .config import ExporterConfig
from .errors import CollectorError, PartialScrapeError, RateLimitedError
from .extract import DATASETS
from .fetcher import WindowedFetcher
from .helpers import utcnow
from .metrics import ExporterMetrics, ZoneMetrics, build_registry
from .scheduler import ScrapeScheduler, ScrapeState
from .timestamped import TimestampedMetricStore


logger = logging.getLogger(__name__)


class CloudflareCollector:
    """Main collector class.

    Owns the metric store, the scrape state and the scheduler. The metric store
    and the scrape pass share ``scrape_lock`` so a Prometheus scrape never sees
    a half-ingested pass.
    """

    def __init__(
        self,
        config: ExporterConfig,
        client: Optional[CloudflareClient] = None,
        registry: Optional[CollectorRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.clock = clock
        self.registry = registry if registry is not None else build_registry()
        self.scrape_lock = threading.Lock()
        self.scrape_state = ScrapeState()

        self.store = TimestampedMetricStore(
            max_age=config.metrics_max_age, lock=self.scrape_lock, clock=clock
        )
        self.zone_metrics = ZoneMetrics(self.store)
        self.registry.register(self.store)
        self.metrics = ExporterMetrics(self.registry)

        self.client = client if client is not None else CloudflareClient(config)
        self.datasets = DATASETS
        self.fetcher = WindowedFetcher(
            self.client, self.zone_metrics, self.scrape_state.watermarks, config, clock
        )
        self.scheduler = ScrapeScheduler(
            self.scrape_once,
            self.scrape_state,
            self.scrape_lock,
            self.metrics,
            interval=config.scrape_interval,
            timeout=config.scrape_timeout,
        )

    async def scrape_once(self):
        """One ingestion pass: refresh zones, then drain every dataset per zone."""
        logger.info("Scraping Cloudflare")
        start = self.clock()

        zones = await self.client.get_zones()
        self.scrape_state.watermarks.prune(zones)
        self.zone_metrics.set_zone_count(len(zones), self.clock())

        failures = []
        for dataset in self.datasets:
            for zone_id in sorted(zones):
                try:
                    await self.fetcher.fetch(dataset, zone_id, zones)
                except RateLimitedError:
                    self.metrics.query_errors.labels(dataset=dataset.name).inc()
                    raise
                except CollectorError as e:
                    self.metrics.query_errors.labels(dataset=dataset.name).inc()
                    logger.warning(
                        f"Failed to fetch {dataset.name} for zone {zones[zone_id]}: {e}"
                    )
                    failures.append((dataset.name, zones[zone_id], e))

        duration = (self.clock() - start).total_seconds()
        if failures:
            raise PartialScrapeError(failures)
        logger.info(
            f"Scraped {len(zones)} zones in {duration:.2f}s",
            extra=log_fields(zones=len(zones), duration_seconds=duration),
        )

    async def run(self):
        """Main run method."""
        logger.info(
            "Cloudflare collector starting",
            extra=log_fields(status="starting", **self.config.describe()),
        )
        try:
            start_http_server(
                self.config.listen_port, addr=self.config.listen_host, registry=self.registry
            )
            logger.info(
                f"Prometheus metrics server started on "
                f"{self.config.listen_host}:{self.config.listen_port}"
            )

            await self.scheduler.run()

        finally:
            self.scheduler.stop()
            await self.client.close()
            logger.info("Collector shutdown complete")


async def main():
    """Entry point."""
    config = ExporterConfig.from_env().validate()
    setup_logging("collector_cloudflare", config.log_level)
    collector = CloudflareCollector(config)
    await collector.run()


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    run()
