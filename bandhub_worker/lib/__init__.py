"""Library utilities for the band hub worker."""

from .json_logger import (
    JSONFormatter,
    StructuredLoggerAdapter,
    setup_json_logging,
    get_structured_logger,
    job_logger,
)

__all__ = [
    "JSONFormatter",
    "StructuredLoggerAdapter",
    "setup_json_logging",
    "get_structured_logger",
    "job_logger",
]
