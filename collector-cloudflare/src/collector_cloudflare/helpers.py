from datetime import datetime, timezone

from .errors import MalformedResponseError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_rfc3339(value: str) -> datetime:
    """Parse a Cloudflare ``datetime`` dimension such as ``2020-02-06T10:01:00Z``."""
    if not isinstance(value, str) or not value:
        raise MalformedResponseError(f"missing or non-string timestamp: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise MalformedResponseError(f"unparsable timestamp: {value!r}") from None
    if parsed.tzinfo is None:
        raise MalformedResponseError(f"timestamp without offset: {value!r}")
    return parsed.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
