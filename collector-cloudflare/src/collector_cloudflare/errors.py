"""Error taxonomy for the Cloudflare collector.

Every failure inside a scrape pass is one of these. The scheduler only needs
to tell rate limits apart from everything else; the finer classes exist so
logs and the per-dataset error counter say what actually went wrong.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for all collector errors."""


class TransportError(CollectorError):
    """Network failure, timeout or unexpected HTTP status from Cloudflare."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ScrapeTimeoutError(TransportError):
    """A whole scrape pass ran past its deadline."""


class RateLimitedError(CollectorError):
    """Cloudflare refused the request because the rate-limit budget is spent."""


class MalformedResponseError(CollectorError):
    """Response body could not be decoded or had an unexpected shape."""


class QueryError(CollectorError):
    """GraphQL query returned errors that are not rate limits."""


class InvariantViolationError(CollectorError):
    """Response violated an assumption the fetcher relies on."""


class WatermarkRegressionError(CollectorError, ValueError):
    """Attempt to move a watermark backwards."""


class PartialScrapeError(CollectorError):
    """Some zone/dataset queries of a pass failed; the rest were ingested."""

    def __init__(self, failures):
        self.failures = list(failures)
        summary = "; ".join(f"{dataset}/{zone}: {error}" for dataset, zone, error in self.failures)
        super().__init__(f"{len(self.failures)} queries failed: {summary}")
