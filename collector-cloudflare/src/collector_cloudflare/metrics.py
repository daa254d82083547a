"""Prometheus metrics for the Cloudflare collector."""

from datetime import datetime
from typing import Iterable

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    PlatformCollector,
    ProcessCollector,
)

from .extract import MetricDelta
from .timestamped import TimestampedMetricStore


VERSION = "0.1.0"

# Zone analytics, stamped with the bucket time they describe
ZONE_COUNTERS = {
    "cloudflare_zones_http_country_requests": (
        "Number of HTTP requests made by clients, by country",
        ("zone", "client_country_name"),
    ),
    "cloudflare_zones_http_country_threats": (
        "Number of HTTP threats from clients, by country",
        ("zone", "client_country_name"),
    ),
    "cloudflare_zones_http_country_bytes": (
        "Number of bytes served to clients, by country",
        ("zone", "client_country_name"),
    ),
    "cloudflare_zones_http_cached_requests": (
        "Number of HTTP requests served from cache",
        ("zone",),
    ),
    "cloudflare_zones_http_cached_bytes": (
        "Number of bytes served from cache",
        ("zone",),
    ),
    "cloudflare_zones_http_protocol_requests": (
        "Number of HTTP requests, by client HTTP protocol",
        ("zone", "client_http_protocol"),
    ),
    "cloudflare_zones_http_responses": (
        "Number of HTTP responses, by edge response status",
        ("zone", "edge_response_status"),
    ),
    "cloudflare_zones_http_threats": (
        "Number of HTTP threats, by threat path",
        ("zone", "threat_path"),
    ),
    "cloudflare_zones_firewall_events": (
        "Number of firewall events, excluding log-only actions",
        ("zone", "action", "source", "rule_id"),
    ),
    "cloudflare_zones_health_check_events": (
        "Number of health check events",
        (
            "zone",
            "failure_reason",
            "health_check_name",
            "health_status",
            "origin_response_status",
            "region",
            "scope",
        ),
    ),
}


class ZoneMetrics:
    """Timestamped zone metrics living on a :class:`TimestampedMetricStore`."""

    def __init__(self, store: TimestampedMetricStore):
        self.store = store
        for name, (documentation, labelnames) in ZONE_COUNTERS.items():
            store.counter(name, documentation, labelnames)
        self.zone_count = store.gauge(
            "cloudflare_zones_active_count",
            "Number of active zones in the target Cloudflare account",
        )

    def apply(self, deltas: Iterable[MetricDelta]) -> int:
        applied = 0
        for delta in deltas:
            self.store.get(delta.metric).add(delta.labels, delta.value, delta.observed_at)
            applied += 1
        return applied

    def set_zone_count(self, count: int, observed_at: datetime) -> None:
        self.zone_count.set((), count, observed_at)


class ExporterMetrics:
    """Self-instrumentation of the collector, registered on ``registry``."""

    def __init__(self, registry: CollectorRegistry):
        self.scrapes = Counter(
            "cloudflare_exporter_cloudflare_scrapes",
            "Number of times this exporter has scraped cloudflare",
            registry=registry,
        )
        self.scrape_errors = Counter(
            "cloudflare_exporter_cloudflare_scrape_errors",
            "Number of times this exporter has failed to scrape cloudflare",
            registry=registry,
        )
        self.rate_limited = Counter(
            "cloudflare_exporter_cloudflare_rate_limited",
            "Number of scrapes that cloudflare rejected as rate limited",
            registry=registry,
        )
        self.skipped_scrapes = Counter(
            "cloudflare_exporter_cloudflare_skipped_scrapes",
            "Number of scheduled scrapes skipped while backing off",
            registry=registry,
        )
        self.query_errors = Counter(
            "cloudflare_exporter_cloudflare_query_errors",
            "Number of failed analytics queries",
            ["dataset"],
            registry=registry,
        )
        self.scrape_duration_seconds = Histogram(
            "cloudflare_exporter_cloudflare_scrape_duration_seconds",
            "Duration of a full cloudflare scrape pass",
            buckets=(0.5, 1, 2.5, 5, 10, 20, 30, 60),
            registry=registry,
        )
        self.backoff_skip_remaining = Gauge(
            "cloudflare_exporter_backoff_skip_remaining",
            "Number of upcoming scrapes that will be skipped",
            registry=registry,
        )
        self.build_info = Info(
            "cloudflare_exporter_build",
            "Build information about the cloudflare exporter",
            registry=registry,
        )
        self.build_info.info({"version": VERSION})


def build_registry() -> CollectorRegistry:
    """Fresh registry with process and platform collectors attached."""
    registry = CollectorRegistry()
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    return registry
