"""Structured JSON logging for the worker.

Outputs one JSON object per line so job lifecycle events can be filtered by
job id, queue or band in the log aggregator. Payload contents are never
logged, only identifiers.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Promoted to top-level keys, in this order, when present on a record
STANDARD_FIELDS = (
    "job_id", "queue", "job_type", "band_id", "priority",
    "attempts", "stage", "duration_ms", "status", "error_code",
)

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler", "asyncio")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def __init__(self, static_fields: Optional[dict[str, Any]] = None):
        super().__init__()
        self.static_fields = static_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self.static_fields,
        }

        entry.update(
            (name, getattr(record, name))
            for name in STANDARD_FIELDS
            if getattr(record, name, None) is not None
        )

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key in entry or key.startswith("_"):
                continue
            entry[key] = value

        return json.dumps(entry, default=str, ensure_ascii=False)


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Attaches fixed context fields to every record. Per-call `extra` wins."""

    def __init__(self, logger: logging.Logger, extra: Optional[dict] = None):
        super().__init__(logger, extra or {})

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def with_context(self, **context) -> "StructuredLoggerAdapter":
        return StructuredLoggerAdapter(self.logger, {**self.extra, **context})


def setup_json_logging(level: str = "INFO", **static_fields: Any) -> None:
    """
    Send all logging to stdout as JSON lines.

    Args:
        level: Root log level name
        **static_fields: Added to every line (e.g. service, environment)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(static_fields))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_structured_logger(name: str, **context) -> StructuredLoggerAdapter:
    return StructuredLoggerAdapter(logging.getLogger(name), context)


def job_logger(job_id: str, job_type: str, queue: Optional[str] = None) -> StructuredLoggerAdapter:
    """Logger for one job, named after its type so levels can be tuned per job type."""
    return get_structured_logger(
        f"bandhub_worker.jobs.{job_type}",
        job_id=job_id,
        job_type=job_type,
        queue=queue,
    )
