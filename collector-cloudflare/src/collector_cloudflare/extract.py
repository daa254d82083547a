"""Turn pages of Cloudflare analytics groups into metric deltas.

Each dataset is described declaratively: which GraphQL field holds its
records and a list of facets saying which counter a record (or a list nested
inside it) feeds, with which labels. One generic extractor applies them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from .errors import MalformedResponseError
from .helpers import parse_rfc3339
from .queries import (
    FIREWALL_EVENTS_QUERY,
    HEALTH_CHECK_EVENTS_QUERY,
    HTTP_REQUESTS_QUERY,
)


DEFAULT_MAX_PAGE_SIZE = 10000


@dataclass(frozen=True)
class Facet:
    metric: str
    value: str
    labels: Tuple[Tuple[str, str], ...] = ()
    items: Optional[str] = None


@dataclass(frozen=True)
class Dataset:
    name: str
    field: str
    query: str
    facets: Tuple[Facet, ...]
    timestamp_path: str = "dimensions.datetime"
    max_page_size: int = DEFAULT_MAX_PAGE_SIZE
    grace_period: Optional[timedelta] = None
    max_query_window: Optional[timedelta] = None


class MetricDelta(NamedTuple):
    metric: str
    labels: Dict[str, str]
    value: float
    observed_at: datetime


def _lookup(data: Any, path: str) -> Any:
    for key in path.split("."):
        if not isinstance(data, Mapping):
            return None
        data = data.get(key)
    return data


def _label_value(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _count(value: Any, path: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedResponseError(f"{path} is not a number: {value!r}")
    if value < 0:
        raise MalformedResponseError(f"{path} is negative: {value!r}")
    return float(value)


def _facet_deltas(
    facet: Facet, record: Mapping[str, Any], zone_name: str, observed_at: datetime
) -> Iterator[MetricDelta]:
    if facet.items is None:
        items = [record]
    else:
        items = _lookup(record, facet.items) or []
        if not isinstance(items, list):
            raise MalformedResponseError(f"{facet.items} is not a list")

    for item in items:
        labels = {"zone": zone_name}
        for label, path in facet.labels:
            labels[label] = _label_value(_lookup(item, path))
        yield MetricDelta(
            facet.metric, labels, _count(_lookup(item, facet.value), facet.value), observed_at
        )


def record_times(dataset: Dataset, records: Sequence[Any]) -> List[datetime]:
    """Observation time of every record on a page, in page order."""
    times = []
    for record in records:
        if not isinstance(record, Mapping):
            raise MalformedResponseError(f"{dataset.field} entry is not an object")
        times.append(parse_rfc3339(_lookup(record, dataset.timestamp_path)))
    return times


def extract_page(
    dataset: Dataset,
    records: Sequence[Any],
    zone_name: str,
    watermark: Optional[datetime],
    full_page: bool = False,
) -> Tuple[List[MetricDelta], Optional[datetime]]:
    """Return the deltas for records newer than ``watermark`` and the new mark.

    Records at or before the watermark were counted by an earlier page and are
    skipped. On a ``full_page`` the rows at the last timestamp may continue on
    the next page, so they are held back for it, unless that timestamp is the
    only one on the page. The whole page is parsed before anything is
    returned, so a bad record leaves nothing half-applied.
    """
    times = record_times(dataset, records)
    deltas: List[MetricDelta] = []
    new_watermark = watermark

    held_back = None
    if full_page and times and min(times) < max(times):
        held_back = max(times)

    for record, observed_at in zip(records, times):
        if watermark is not None and observed_at <= watermark:
            continue
        if held_back is not None and observed_at >= held_back:
            continue
        if new_watermark is None or observed_at > new_watermark:
            new_watermark = observed_at
        for facet in dataset.facets:
            deltas.extend(_facet_deltas(facet, record, zone_name, observed_at))

    return deltas, new_watermark


def _country(metric: str, value: str) -> Facet:
    return Facet(
        metric=metric,
        items="sum.countryMap",
        labels=(("client_country_name", "clientCountryName"),),
        value=value,
    )


HTTP_REQUESTS = Dataset(
    name="http_requests",
    field="httpRequests1mGroups",
    query=HTTP_REQUESTS_QUERY,
    facets=(
        _country("cloudflare_zones_http_country_requests", "requests"),
        _country("cloudflare_zones_http_country_threats", "threats"),
        _country("cloudflare_zones_http_country_bytes", "bytes"),
        Facet(metric="cloudflare_zones_http_cached_requests", value="sum.cachedRequests"),
        Facet(metric="cloudflare_zones_http_cached_bytes", value="sum.cachedBytes"),
        Facet(
            metric="cloudflare_zones_http_protocol_requests",
            items="sum.clientHTTPVersionMap",
            labels=(("client_http_protocol", "clientHTTPProtocol"),),
            value="requests",
        ),
        Facet(
            metric="cloudflare_zones_http_responses",
            items="sum.responseStatusMap",
            labels=(("edge_response_status", "edgeResponseStatus"),),
            value="requests",
        ),
        Facet(
            metric="cloudflare_zones_http_threats",
            items="sum.threatPathingMap",
            labels=(("threat_path", "threatPathingName"),),
            value="requests",
        ),
    ),
)

FIREWALL_EVENTS = Dataset(
    name="firewall_events",
    field="firewallEventsAdaptiveGroups",
    query=FIREWALL_EVENTS_QUERY,
    facets=(
        Facet(
            metric="cloudflare_zones_firewall_events",
            labels=(
                ("action", "dimensions.action"),
                ("source", "dimensions.source"),
                ("rule_id", "dimensions.ruleId"),
            ),
            value="count",
        ),
    ),
)

HEALTH_CHECK_EVENTS = Dataset(
    name="health_check_events",
    field="healthCheckEventsGroups",
    query=HEALTH_CHECK_EVENTS_QUERY,
    facets=(
        Facet(
            metric="cloudflare_zones_health_check_events",
            labels=(
                ("failure_reason", "dimensions.failureReason"),
                ("health_check_name", "dimensions.healthCheckName"),
                ("health_status", "dimensions.healthStatus"),
                ("origin_response_status", "dimensions.originResponseStatus"),
                ("region", "dimensions.region"),
                ("scope", "dimensions.scope"),
            ),
            value="count",
        ),
    ),
)

DATASETS: Tuple[Dataset, ...] = (HTTP_REQUESTS, FIREWALL_EVENTS, HEALTH_CHECK_EVENTS)
