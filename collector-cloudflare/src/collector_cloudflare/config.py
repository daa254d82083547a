"""Collector configuration read from the environment."""

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple


DEFAULT_API_BASE_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_ANALYTICS_API_BASE_URL = "https://api.cloudflare.com/client/v4/graphql"
DEFAULT_LISTEN_ADDRESS = ":11313"


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def parse_listen_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (host may be empty) into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid listen address {address!r}, expected [host]:port")
    return host.strip("[]") or "0.0.0.0", int(port)


@dataclass
class ExporterConfig:
    api_email: str = ""
    api_key: str = ""
    api_token: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    analytics_api_base_url: str = DEFAULT_ANALYTICS_API_BASE_URL
    listen_host: str = "0.0.0.0"
    listen_port: int = 11313
    scrape_interval: timedelta = timedelta(seconds=60)
    scrape_timeout: timedelta = timedelta(seconds=30)
    metrics_max_age: timedelta = timedelta(minutes=15)
    max_page_size: Optional[int] = None
    max_query_window: timedelta = timedelta(hours=1)
    grace_period: timedelta = timedelta(minutes=5)
    zones_per_page: int = 50
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ExporterConfig":
        env = os.environ if environ is None else environ

        host, port = parse_listen_address(
            env.get("CLOUDFLARE_EXPORTER_LISTEN_ADDRESS", DEFAULT_LISTEN_ADDRESS)
        )
        max_page_size = _get_int(env, "CLOUDFLARE_MAX_PAGE_SIZE", 0)

        return cls(
            api_email=env.get("CLOUDFLARE_API_EMAIL", ""),
            api_key=env.get("CLOUDFLARE_API_KEY", ""),
            api_token=env.get("CLOUDFLARE_API_TOKEN", ""),
            api_base_url=env.get("CLOUDFLARE_API_BASE_URL", DEFAULT_API_BASE_URL),
            analytics_api_base_url=env.get(
                "CLOUDFLARE_ANALYTICS_API_BASE_URL", DEFAULT_ANALYTICS_API_BASE_URL
            ),
            listen_host=host,
            listen_port=port,
            scrape_interval=timedelta(
                seconds=_get_int(env, "CLOUDFLARE_SCRAPE_INTERVAL_SECONDS", 60)
            ),
            scrape_timeout=timedelta(
                seconds=_get_int(env, "CLOUDFLARE_EXPORTER_SCRAPE_TIMEOUT_SECONDS", 30)
            ),
            metrics_max_age=timedelta(
                seconds=_get_int(env, "CLOUDFLARE_METRICS_MAX_AGE_SECONDS", 900)
            ),
            max_page_size=max_page_size or None,
            max_query_window=timedelta(
                seconds=_get_int(env, "CLOUDFLARE_MAX_QUERY_WINDOW_SECONDS", 3600)
            ),
            grace_period=timedelta(
                seconds=_get_int(env, "CLOUDFLARE_GRACE_PERIOD_SECONDS", 300)
            ),
            zones_per_page=_get_int(env, "CLOUDFLARE_ZONES_PER_PAGE", 50),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> "ExporterConfig":
        if not self.api_token and not (self.api_email and self.api_key):
            raise ValueError(
                "either CLOUDFLARE_API_TOKEN or both CLOUDFLARE_API_EMAIL and "
                "CLOUDFLARE_API_KEY are required"
            )
        for name in ("scrape_interval", "scrape_timeout", "metrics_max_age", "max_query_window"):
            if getattr(self, name) <= timedelta(0):
                raise ValueError(f"{name} must be positive")
        if self.grace_period < timedelta(0):
            raise ValueError("grace_period must not be negative")
        if self.scrape_timeout >= self.scrape_interval:
            raise ValueError("scrape_timeout must be shorter than scrape_interval")
        if self.grace_period >= self.max_query_window:
            raise ValueError("grace_period must be shorter than max_query_window")
        if self.max_page_size is not None and self.max_page_size <= 0:
            raise ValueError("max_page_size must be positive")
        if not 1 <= self.zones_per_page <= 50:
            raise ValueError("zones_per_page must be between 1 and 50")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {self.log_level!r}")
        return self

    def auth_headers(self) -> Dict[str, str]:
        if self.api_token:
            return {"Authorization": f"Bearer {self.api_token}"}
        return {"X-Auth-Email": self.api_email, "X-Auth-Key": self.api_key}

    def describe(self) -> Dict[str, Any]:
        """Loggable view of the configuration with credentials redacted."""
        return {
            "api_base_url": self.api_base_url,
            "analytics_api_base_url": self.analytics_api_base_url,
            "listen_address": f"{self.listen_host}:{self.listen_port}",
            "scrape_interval": self.scrape_interval.total_seconds(),
            "scrape_timeout": self.scrape_timeout.total_seconds(),
            "metrics_max_age": self.metrics_max_age.total_seconds(),
            "max_page_size": self.max_page_size,
            "max_query_window": self.max_query_window.total_seconds(),
            "grace_period": self.grace_period.total_seconds(),
            "api_email": "set" if self.api_email else "not_set",
            "api_key": "set" if self.api_key else "not_set",
            "api_token": "set" if self.api_token else "not_set",
        }
