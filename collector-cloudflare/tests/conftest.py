import copy
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from collector_cloudflare.config import ExporterConfig
from collector_cloudflare.helpers import parse_rfc3339

TESTDATA = Path(__file__).parent / "testdata"

ZONE_A = "023e105f4ecef8ad9ca31a8372d0c353"
ZONE_B = "9a7806061c88ada191ed06f989cc3dac"
ZONES = {ZONE_A: "example.com", ZONE_B: "example.org"}


def load_testdata(name):
    with open(TESTDATA / name) as f:
        return json.load(f)


def zone_page(field, records, zone_id=ZONE_A):
    """GraphQL ``data`` object holding ``records`` for one zone."""
    return {"viewer": {"zones": [{"zoneTag": zone_id, field: records}]}}


def http_bucket(ts, countries=None, cached_requests=0):
    countries = countries or {}
    return {
        "dimensions": {"datetime": ts},
        "sum": {
            "countryMap": [
                {"clientCountryName": name, "requests": count, "threats": 0, "bytes": 0}
                for name, count in countries.items()
            ],
            "cachedRequests": cached_requests,
            "cachedBytes": 0,
            "clientHTTPVersionMap": [],
            "responseStatusMap": [],
            "threatPathingMap": [],
        },
    }


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now += delta


class FakeCloudflareClient:
    """Replays canned GraphQL ``data`` objects instead of calling Cloudflare.

    ``pages`` maps a dataset field, or a ``(field, zone_id)`` pair, to the
    responses to hand out in order. An exception in the list is raised instead.
    Once a list runs dry the zone gets an empty page.

    ``records`` instead maps a field to every row the dataset holds; each
    query gets the rows newer than its ``start_time``, oldest first, cut to
    its ``limit``.
    """

    def __init__(self, zones=None, pages=None, records=None):
        self.zones = dict(ZONES) if zones is None else zones
        self.pages = {key: list(value) for key, value in (pages or {}).items()}
        self.records = records or {}
        self.queries = []
        self.closed = False

    async def get_zones(self):
        if isinstance(self.zones, Exception):
            raise self.zones
        return dict(self.zones)

    async def query(self, query, variables):
        field = next(name for name in _FIELDS if name in query)
        self.queries.append((field, dict(variables)))

        zone_id = variables["zone"]
        if field in self.records:
            return zone_page(field, self._window(field, variables), zone_id)
        for key in ((field, zone_id), field):
            if self.pages.get(key):
                response = self.pages[key].pop(0)
                if isinstance(response, Exception):
                    raise response
                return copy.deepcopy(response)
        return zone_page(field, [], zone_id)

    def start_times(self, field):
        return [v["start_time"] for name, v in self.queries if name == field]

    def limits(self, field):
        return [v["limit"] for name, v in self.queries if name == field]

    def _window(self, field, variables):
        start = parse_rfc3339(variables["start_time"])
        rows = sorted(self.records[field], key=_row_time)
        newer = [row for row in rows if _row_time(row) > start]
        return copy.deepcopy(newer[: variables["limit"]])

    async def close(self):
        self.closed = True


_FIELDS = ("httpRequests1mGroups", "firewallEventsAdaptiveGroups", "healthCheckEventsGroups")


def _row_time(row):
    return parse_rfc3339(row["dimensions"]["datetime"])


@pytest.fixture
def clock():
    return FakeClock(datetime(2020, 2, 6, 10, 5, tzinfo=timezone.utc))


@pytest.fixture
def config():
    return ExporterConfig(
        api_token="test-token",
        scrape_interval=timedelta(seconds=60),
        scrape_timeout=timedelta(seconds=30),
    )
