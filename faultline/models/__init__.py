"""Data models for the error-event pipeline."""

from .error_event import (
    ErrorEvent,
    ErrorSeverity,
    ErrorType,
    TRANSIENT_ERROR_TYPES,
    describe_exception,
    format_exception_text,
    format_timestamp,
    generate_id,
    is_transient_error_type,
    parse_timestamp,
    safe_str,
    utc_timestamp,
)
from .error_context import (
    REDACTED,
    ErrorContext,
    NavigationState,
    NetworkState,
    PerformanceMetrics,
    find_sensitive_paths,
    is_sensitive_key,
)
from .log_entry import DeviceInfo, LogEntry, collect_device_info
from .recovery_action import (
    ExecutionRecord,
    RecoveryAction,
    RecoveryActionType,
    RetryState,
)

__all__ = [
    # Event models
    "ErrorEvent",
    "ErrorSeverity",
    "ErrorType",
    "TRANSIENT_ERROR_TYPES",
    "describe_exception",
    "format_exception_text",
    "format_timestamp",
    "generate_id",
    "is_transient_error_type",
    "parse_timestamp",
    "safe_str",
    "utc_timestamp",
    # Context models
    "REDACTED",
    "ErrorContext",
    "NavigationState",
    "NetworkState",
    "PerformanceMetrics",
    "find_sensitive_paths",
    "is_sensitive_key",
    # Log entry models
    "DeviceInfo",
    "LogEntry",
    "collect_device_info",
    # Recovery models
    "ExecutionRecord",
    "RecoveryAction",
    "RecoveryActionType",
    "RetryState",
]
