from datetime import datetime, timezone

import pytest

from collector_cloudflare.errors import MalformedResponseError
from collector_cloudflare.extract import (
    FIREWALL_EVENTS,
    HEALTH_CHECK_EVENTS,
    HTTP_REQUESTS,
    extract_page,
    record_times,
)

from conftest import http_bucket, load_testdata


def at(minute):
    return datetime(2020, 2, 6, 10, minute, tzinfo=timezone.utc)


def records(name, field):
    return load_testdata(name)["data"]["viewer"]["zones"][0][field]


def totals(deltas, metric, label=None):
    """Sum delta values for ``metric`` keyed by one label (or overall)."""
    result = {}
    for delta in deltas:
        if delta.metric != metric:
            continue
        key = delta.labels[label] if label else None
        result[key] = result.get(key, 0) + delta.value
    return result


def test_http_requests_facets():
    """Test that every HTTP facet yields deltas with the zone label"""
    page = records("http_reqs_resp.json", "httpRequests1mGroups")
    deltas, watermark = extract_page(HTTP_REQUESTS, page, "example.com", datetime(2020, 2, 6, 9, 59, tzinfo=timezone.utc))

    assert watermark == at(2)
    assert all(d.labels["zone"] == "example.com" for d in deltas)

    assert totals(deltas, "cloudflare_zones_http_country_requests", "client_country_name") == {
        "GB": 30,
        "US": 4,
    }
    assert totals(deltas, "cloudflare_zones_http_country_threats", "client_country_name") == {
        "GB": 3,
        "US": 0,
    }
    assert totals(deltas, "cloudflare_zones_http_country_bytes", "client_country_name") == {
        "GB": 7168,
        "US": 512,
    }
    assert totals(deltas, "cloudflare_zones_http_cached_requests") == {None: 16}
    assert totals(deltas, "cloudflare_zones_http_cached_bytes") == {None: 1792}
    assert totals(deltas, "cloudflare_zones_http_protocol_requests", "client_http_protocol") == {
        "HTTP/2": 32,
        "HTTP/1.1": 2,
    }
    assert totals(deltas, "cloudflare_zones_http_responses", "edge_response_status") == {
        "200": 31,
        "404": 1,
        "503": 2,
    }
    assert totals(deltas, "cloudflare_zones_http_threats", "threat_path") == {
        "bic.ban.unknown": 3,
    }


def test_deltas_carry_their_bucket_time():
    page = records("http_reqs_resp.json", "httpRequests1mGroups")
    deltas, _ = extract_page(HTTP_REQUESTS, page, "example.com", at(0))

    cached = [d for d in deltas if d.metric == "cloudflare_zones_http_cached_requests"]
    assert [(d.observed_at, d.value) for d in cached] == [(at(1), 5), (at(2), 3)]


def test_firewall_events_labels():
    page = records("firewall_events_resp.json", "firewallEventsAdaptiveGroups")
    deltas, watermark = extract_page(FIREWALL_EVENTS, page, "example.com", None)

    assert watermark == at(1)
    assert [(d.labels, d.value) for d in deltas] == [
        ({"zone": "example.com", "action": "block", "source": "waf", "rule_id": "100015"}, 3),
        ({"zone": "example.com", "action": "challenge", "source": "securitylevel", "rule_id": ""}, 2),
        ({"zone": "example.com", "action": "block", "source": "waf", "rule_id": "100015"}, 1),
    ]


def test_health_check_events_labels():
    page = records("health_check_events_resp.json", "healthCheckEventsGroups")
    (delta,), _ = extract_page(HEALTH_CHECK_EVENTS, page, "example.com", None)

    assert delta.metric == "cloudflare_zones_health_check_events"
    assert delta.value == 2
    assert delta.labels == {
        "zone": "example.com",
        "failure_reason": "Response timeout",
        "health_check_name": "origin-web",
        "health_status": "Unhealthy",
        "origin_response_status": "0",
        "region": "WEU",
        "scope": "Global",
    }


def test_repoll_of_counted_page_yields_nothing():
    """Test that records at or before the watermark are skipped"""
    page = records("http_reqs_resp.json", "httpRequests1mGroups")

    deltas, watermark = extract_page(HTTP_REQUESTS, page, "example.com", at(2))

    assert deltas == []
    assert watermark == at(2)


def test_empty_page_keeps_watermark():
    deltas, watermark = extract_page(HTTP_REQUESTS, [], "example.com", at(1))
    assert deltas == []
    assert watermark == at(1)


def test_missing_numbers_count_as_zero():
    bucket = http_bucket("2020-02-06T10:03:00Z")
    bucket["sum"]["cachedBytes"] = None

    deltas, _ = extract_page(HTTP_REQUESTS, [bucket], "example.com", at(2))

    assert totals(deltas, "cloudflare_zones_http_cached_bytes") == {None: 0}


@pytest.mark.parametrize("timestamp", [None, "", "yesterday", "2020-02-06T10:03:00"])
def test_bad_timestamp_fails_whole_page(timestamp):
    page = [http_bucket("2020-02-06T10:03:00Z", {"GB": 1}), http_bucket(timestamp, {"GB": 1})]

    with pytest.raises(MalformedResponseError):
        extract_page(HTTP_REQUESTS, page, "example.com", at(2))


@pytest.mark.parametrize("count", ["12", -1, True])
def test_bad_count_is_malformed(count):
    page = [http_bucket("2020-02-06T10:03:00Z", {"GB": count})]

    with pytest.raises(MalformedResponseError):
        extract_page(HTTP_REQUESTS, page, "example.com", at(2))


def test_non_object_record_is_malformed():
    with pytest.raises(MalformedResponseError):
        extract_page(FIREWALL_EVENTS, ["not a record"], "example.com", None)


def test_full_page_holds_back_its_last_time():
    """Test that rows at the last time of a full page wait for the next page"""
    page = [
        http_bucket("2020-02-06T10:01:00Z", {"GB": 1}),
        http_bucket("2020-02-06T10:02:00Z", {"GB": 2}),
        http_bucket("2020-02-06T10:02:00Z", {"FR": 4}),
    ]

    deltas, watermark = extract_page(HTTP_REQUESTS, page, "example.com", at(0), full_page=True)

    assert watermark == at(1)
    assert totals(deltas, "cloudflare_zones_http_country_requests", "client_country_name") == {"GB": 1}


def test_full_page_of_one_time_is_counted():
    page = [
        http_bucket("2020-02-06T10:02:00Z", {"GB": 2}),
        http_bucket("2020-02-06T10:02:00Z", {"FR": 4}),
    ]

    deltas, watermark = extract_page(HTTP_REQUESTS, page, "example.com", at(0), full_page=True)

    assert watermark == at(2)
    assert totals(deltas, "cloudflare_zones_http_country_requests") == {None: 6}


def test_record_times_in_page_order():
    page = records("firewall_events_resp.json", "firewallEventsAdaptiveGroups")

    times = record_times(FIREWALL_EVENTS, page)

    assert len(times) == len(page)
    assert times[0] == at(0)
    assert times == sorted(times)

    with pytest.raises(MalformedResponseError):
        record_times(FIREWALL_EVENTS, [page[0], 42])
