import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra_fields`` are merged into the object."""

    def __init__(self, service_name: Optional[str] = None):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        log_entry: Dict[str, Any] = {
            "timestamp": created.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if self.service_name:
            log_entry["service"] = self.service_name

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        log_entry.update(getattr(record, "extra_fields", None) or {})

        # timedeltas and datetimes in extra fields fall back to str()
        return json.dumps(log_entry, default=str)


def log_fields(**fields: Any) -> Dict[str, Dict[str, Any]]:
    """Build the ``extra`` argument for structured fields."""
    return {"extra_fields": fields}


def setup_logging(service_name: str, level: str = "INFO") -> logging.Logger:
    """Send ``service_name``'s loggers to stdout as JSON lines."""
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, level.upper()))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter(service_name))
        logger.addHandler(handler)

    return logger
