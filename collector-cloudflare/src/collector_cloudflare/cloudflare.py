"""Cloudflare REST and GraphQL analytics client."""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from analytics_core.schemas import GraphQLError, GraphQLResponse, ZoneList

from .config import ExporterConfig
from .errors import (
    MalformedResponseError,
    QueryError,
    RateLimitedError,
    TransportError,
)
from .metrics import VERSION


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

RATE_LIMIT_MARKERS = ("rate limiter budget depleted", "rate limit")


def is_rate_limit_error(error: GraphQLError) -> bool:
    code = str((error.extensions or {}).get("code", "")).lower()
    if code == "ratelimited":
        return True
    message = error.message.lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class CloudflareClient:
    """Async Cloudflare API client.

    Every failure is raised as one of the collector error types; rate limits
    come back as :class:`RateLimitedError` whether Cloudflare signals them with
    HTTP 429 or inside a GraphQL error body.
    """

    def __init__(self, config: ExporterConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_base_url = config.api_base_url.rstrip("/")
        self.analytics_api_base_url = config.analytics_api_base_url
        self.zones_per_page = config.zones_per_page

        headers = {
            "Accept": "application/json",
            "User-Agent": f"cloudflare-exporter/{VERSION}",
        }
        headers.update(config.auth_headers())

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.scrape_timeout.total_seconds()),
            headers=headers,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} timed out: {e!r}") from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {e!r}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"{method} {url} rate limited (HTTP 429)")
        if response.status_code != 200:
            raise TransportError(
                f"{method} {url}: expected status 200, got {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _decode(response: httpx.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            # ValidationError is a ValueError too, as is a JSON decode error
            kind = "invalid" if isinstance(e, ValidationError) else "undecodable"
            raise MalformedResponseError(
                f"{kind} response from {response.request.url}: {e}"
            ) from e

    async def get_zones(self) -> Dict[str, str]:
        """Return ``{zone_id: zone_name}`` for every zone that is not pending."""
        # Only the first page is read; accounts with more zones are not supported.
        response = await self._request(
            "GET", f"{self.api_base_url}/zones", params={"per_page": self.zones_per_page}
        )
        zone_list = self._decode(response, ZoneList)
        if not zone_list.success:
            raise QueryError(f"zone list request failed: {zone_list.errors}")
        zones = zone_list.active_zones()
        logger.debug(f"Found {len(zones)} active zones")
        return zones

    async def query(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object."""
        response = await self._request(
            "POST",
            self.analytics_api_base_url,
            json={"query": query, "variables": variables},
        )
        gql_response = self._decode(response, GraphQLResponse)

        if gql_response.errors:
            messages = "; ".join(error.message for error in gql_response.errors)
            if any(is_rate_limit_error(error) for error in gql_response.errors):
                raise RateLimitedError(f"graphql: {messages}")
            raise QueryError(f"graphql: {messages}")

        if gql_response.data is None:
            raise MalformedResponseError("graphql response has neither data nor errors")
        return gql_response.data
