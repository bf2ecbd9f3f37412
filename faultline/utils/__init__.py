"""
Utility modules for the error-event pipeline.
"""

from faultline.utils.logging import (
    get_logger,
    setup_logging,
    JSONFormatter,
    ContextLoggerAdapter,
    severity_to_level,
    log_error_event,
    log_fallback,
)
from faultline.utils.resilience import retry_with_backoff

__all__ = [
    "get_logger",
    "setup_logging",
    "JSONFormatter",
    "ContextLoggerAdapter",
    "severity_to_level",
    "log_error_event",
    "log_fallback",
    "retry_with_backoff",
]
