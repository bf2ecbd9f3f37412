"""
Structured logging utilities with JSON formatting and context injection.

This module provides structured logging capabilities with:
- JSON formatted log output for machine-readable logs
- Context injection (operation, error_type, correlation_id) via LoggerAdapter
- Mapping from pipeline severities to standard logging levels
- Integration with Python's standard logging module
"""

import logging
import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, MutableMapping, TYPE_CHECKING
from logging import LogRecord

from faultline.models.error_event import safe_str

if TYPE_CHECKING:
    from faultline.models import ErrorContext, ErrorEvent, LogEntry


# Context fields promoted to the top level of the JSON document
_PROMOTED_FIELDS = (
    "event_id",
    "operation",
    "error_type",
    "severity",
    "correlation_id",
)

_RESERVED_RECORD_FIELDS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName",
})

SEVERITY_LEVELS: Dict[str, int] = {
    "Critical": logging.CRITICAL,
    "Error": logging.ERROR,
    "Warning": logging.WARNING,
    "Info": logging.INFO,
    "Debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with standard fields:
    - timestamp: ISO 8601 formatted timestamp
    - level: Log level (INFO, WARNING, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - event_id, operation, error_type, severity, correlation_id when present
    - context: Any other extra fields
    - error: Error details when exception info is attached
    """

    def format(self, record: LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON formatted log string
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _PROMOTED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS and key not in _PROMOTED_FIELDS:
                extra_fields[key] = value

        if extra_fields:
            log_data["context"] = extra_fields

        if record.exc_info:
            log_data["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": safe_str(record.exc_info[1]) if record.exc_info[1] else None,
                "stack_trace": "".join(traceback.format_exception(*record.exc_info))
            }

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName
        }

        # default=str keeps arbitrary app_state values from breaking the sink
        return json.dumps(log_data, default=str)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that injects context fields into all log records.

    This adapter allows setting context fields (component, environment)
    that will be automatically included in all log entries.
    """

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        """
        Initialize context logger adapter.

        Args:
            logger: Base logger
            extra: Initial context fields
        """
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        """
        Process log message and inject context.

        Args:
            msg: Log message
            kwargs: Log kwargs

        Returns:
            Tuple of (message, kwargs) with context injected
        """
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> "ContextLoggerAdapter":
        """
        Create a new logger adapter with additional context.

        Args:
            **context: Additional context fields

        Returns:
            New logger adapter with merged context
        """
        new_extra = self.extra.copy()
        new_extra.update(context)
        return ContextLoggerAdapter(self.logger, new_extra)


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Sets up:
    - JSON formatter for all handlers
    - Console handler with appropriate log level
    - Root logger configuration

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    formatter = JSONFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str, **context: Any) -> ContextLoggerAdapter:
    """
    Get a context-aware logger for a module.

    Args:
        name: Logger name (typically __name__)
        **context: Initial context fields (component, environment, etc.)

    Returns:
        Context logger adapter

    Example:
        logger = get_logger(__name__, component="checkout")
        logger.info("Starting sync")  # Will include component
    """
    base_logger = logging.getLogger(name)
    return ContextLoggerAdapter(base_logger, context)


def severity_to_level(severity: str) -> int:
    """Map a pipeline severity name to a standard logging level."""
    return SEVERITY_LEVELS.get(str(severity), logging.ERROR)


def log_error_event(
    logger: logging.LoggerAdapter,
    event: "ErrorEvent",
    entry: Optional["LogEntry"] = None,
    context: Optional["ErrorContext"] = None,
) -> None:
    """
    Mirror a recorded error event to the standard logging sink.

    Args:
        logger: Logger to use
        event: Recorded error event
        entry: Log entry projected from the event (if available)
        context: Error context captured with the event (if available)
    """
    extra: Dict[str, Any] = {
        "event_id": event.id,
        "operation": event.operation,
        "error_type": event.error_type.value,
        "severity": event.severity.value,
        "is_transient": event.is_transient,
    }

    if entry is not None:
        extra["correlation_id"] = entry.correlation_id
        extra["component"] = entry.component
        extra["environment"] = entry.environment
    if context is not None:
        extra["context_summary"] = context.summary()
    if event.app_state:
        extra["app_state"] = event.app_state
    if event.stack_trace:
        extra["stack_trace"] = event.stack_trace

    logger.log(severity_to_level(event.severity.value), event.summary(), extra=extra)


def log_fallback(
    logger: logging.LoggerAdapter,
    message: str,
    operation: str,
    original: Any,
    failure: BaseException,
) -> None:
    """
    Minimal log used when recording an error event itself failed.

    Args:
        logger: Logger to use
        message: Description of what failed
        operation: Operation the original error occurred in
        original: The original error or message being recorded
        failure: Exception raised while recording
    """
    logger.error(
        message,
        extra={
            "operation": operation,
            "original_error": safe_str(original),
            "original_error_type": type(original).__name__,
        },
        exc_info=(type(failure), failure, failure.__traceback__),
    )
