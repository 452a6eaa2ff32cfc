"""Structured JSON logging for the extraction service.

This module provides:
- JSON-formatted log output for production environments
- Pipeline context via ContextVar (run_id, conversation_id)
- get_logger() that configures logging on first use
- Human-readable format for development
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

# Context variables for pipeline tracing
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
conversation_id_var: ContextVar[str | None] = ContextVar(
    "conversation_id", default=None
)


def get_run_id() -> str | None:
    """Get the current workflow run ID from context."""
    return run_id_var.get()


def get_conversation_id() -> str | None:
    """Get the current conversation ID from context."""
    return conversation_id_var.get()


def set_log_context(
    run_id: str | None = None,
    conversation_id: str | None = None,
):
    """Set pipeline context variables."""
    if run_id is not None:
        run_id_var.set(run_id)
    if conversation_id is not None:
        conversation_id_var.set(conversation_id)


def clear_log_context():
    """Clear all pipeline context variables."""
    run_id_var.set(None)
    conversation_id_var.set(None)


# Attributes every LogRecord carries; anything else came in via extra=
_STANDARD_ATTRS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "exc_info",
    "exc_text",
    "thread",
    "threadName",
    "taskName",
    "message",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production environments.

    Output format:
    {
        "timestamp": "2026-01-29T12:34:56.789Z",
        "level": "INFO",
        "logger": "services.pipeline",
        "message": "Log message here",
        "run_id": "abc-123",
        "conversation_id": "conv-456",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run_id = get_run_id()
        conversation_id = get_conversation_id()
        if run_id:
            log_data["run_id"] = run_id
        if conversation_id:
            log_data["conversation_id"] = conversation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
            log_data["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )

        # These come from logger.info("msg", extra={"key": "value"})
        extra_fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable log formatter for development.

    Output format:
    2026-01-29 12:34:56.789 | INFO     | services.pipeline | [run-abc1] Log message here
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        level = record.levelname.ljust(8)
        message = record.getMessage()

        run_id = get_run_id()
        prefix = f"[{run_id[:8]}] " if run_id else ""

        formatted = f"{timestamp} | {level} | {record.name} | {prefix}{message}"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
):
    """Configure the root logger with structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format. If None, auto-detect from environment.
    """
    if json_format is None:
        # JSON unless DEBUG is set
        debug_mode = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")
        json_format = not debug_mode

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())
    root_logger.addHandler(handler)

    # Noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the module, configuring logging if nothing has yet.

    Args:
        name: Module name (typically __name__)
    """
    logger = logging.getLogger(name)

    if not logging.getLogger().handlers:
        configure_logging()

    return logger


class LogContext:
    """Context manager that tags every log line with the pipeline run.

    Usage:
        async with LogContext(run_id="abc-123"):
            logger.info("This log will include the run id")
    """

    def __init__(
        self,
        run_id: str | None = None,
        conversation_id: str | None = None,
    ):
        self.run_id = run_id
        self.conversation_id = conversation_id
        self._tokens: list = []

    def __enter__(self):
        if self.run_id:
            self._tokens.append((run_id_var, run_id_var.set(self.run_id)))
        if self.conversation_id:
            self._tokens.append(
                (conversation_id_var, conversation_id_var.set(self.conversation_id))
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
