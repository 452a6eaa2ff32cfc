"""Shared utilities for the extraction service."""

from utils.json_extraction import extract_json_from_response
from utils.logging import LogContext, configure_logging, get_logger
from utils.retry import NO_RETRY, RetryPolicy, calculate_backoff, retry, retry_async

__all__ = [
    # JSON extraction
    "extract_json_from_response",
    # Logging
    "LogContext",
    "configure_logging",
    "get_logger",
    # Retry utilities
    "NO_RETRY",
    "RetryPolicy",
    "calculate_backoff",
    "retry",
    "retry_async",
]
