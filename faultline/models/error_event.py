"""Error event data models."""

import re
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


_TIMESTAMP_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


class ErrorSeverity(str, Enum):
    """Severity level of a recorded error event."""

    CRITICAL = "Critical"
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    DEBUG = "Debug"


class ErrorType(str, Enum):
    """Category of failure, orthogonal to severity."""

    NETWORK = "Network"
    DATABASE = "Database"
    LOGIC = "Logic"
    UI = "UI"
    AUTHENTICATION = "Authentication"
    STORAGE = "Storage"


TRANSIENT_ERROR_TYPES = frozenset({ErrorType.NETWORK, ErrorType.AUTHENTICATION})

_ERROR_TYPE_DESCRIPTIONS = {
    ErrorType.NETWORK: "Network connectivity issue",
    ErrorType.DATABASE: "Database operation error",
    ErrorType.LOGIC: "Application logic error",
    ErrorType.UI: "User interface error",
    ErrorType.AUTHENTICATION: "Authentication or authorization error",
    ErrorType.STORAGE: "Local storage error",
}

_SEVERITY_DESCRIPTIONS = {
    ErrorSeverity.CRITICAL: "Critical system failure requiring immediate attention",
    ErrorSeverity.ERROR: "Error affecting functionality",
    ErrorSeverity.WARNING: "Potential issue that may affect performance",
    ErrorSeverity.INFO: "Informational message",
    ErrorSeverity.DEBUG: "Debug information for development",
}


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as ISO 8601 UTC with millisecond precision."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp produced by :func:`format_timestamp`."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def utc_timestamp() -> str:
    """Current time in the event timestamp format."""
    return format_timestamp(datetime.now(timezone.utc))


def generate_id(prefix: str, moment: Optional[datetime] = None, length: int = 9) -> str:
    """Build an identifier of the form ``<prefix>-<epoch-ms>-<random>``."""
    moment = moment or datetime.now(timezone.utc)
    epoch_ms = int(moment.timestamp() * 1000)
    return f"{prefix}-{epoch_ms}-{uuid.uuid4().hex[:length]}"


def is_transient_error_type(error_type: ErrorType) -> bool:
    """Whether failures of this category usually clear up on their own."""
    return ErrorType(error_type) in TRANSIENT_ERROR_TYPES


class ErrorEvent(BaseModel):
    """One recorded failure occurrence with its classification."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: generate_id("error"))
    timestamp: str = Field(default_factory=utc_timestamp)
    message: str
    stack_trace: Optional[str] = None
    severity: ErrorSeverity
    error_type: ErrorType
    is_transient: bool = False
    user_id: Optional[str] = None
    operation: str
    app_state: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_transient(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("is_transient") is None and "error_type" in data:
            data = dict(data)
            try:
                data["is_transient"] = is_transient_error_type(data["error_type"])
            except ValueError:
                # Invalid error_type is reported by field validation
                data["is_transient"] = False
        return data

    @field_validator("message", "operation")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be non-empty")
        return value

    @field_validator("timestamp")
    @classmethod
    def _validate_timestamp(cls, value: str) -> str:
        if not _TIMESTAMP_PATTERN.match(value):
            raise ValueError("timestamp must be ISO 8601 UTC with millisecond precision")
        parse_timestamp(value)
        return value

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        operation: str,
        severity: ErrorSeverity,
        error_type: ErrorType,
        **additional: Any,
    ) -> "ErrorEvent":
        """Create an event from a raised exception, capturing its traceback."""
        return cls(
            message=describe_exception(error),
            stack_trace=format_exception_text(error),
            operation=operation,
            severity=severity,
            error_type=error_type,
            **additional,
        )

    @classmethod
    def from_message(
        cls,
        message: str,
        operation: str,
        severity: ErrorSeverity,
        error_type: ErrorType,
        **additional: Any,
    ) -> "ErrorEvent":
        """Create an event from a bare message."""
        return cls(
            message=message,
            operation=operation,
            severity=severity,
            error_type=error_type,
            **additional,
        )

    @property
    def recorded_at(self) -> datetime:
        """Timestamp as an aware datetime."""
        return parse_timestamp(self.timestamp)

    def is_critical(self) -> bool:
        return self.severity == ErrorSeverity.CRITICAL

    def is_recoverable(self) -> bool:
        return self.is_transient

    def error_type_description(self) -> str:
        return _ERROR_TYPE_DESCRIPTIONS.get(self.error_type, "Unknown error type")

    def severity_description(self) -> str:
        return _SEVERITY_DESCRIPTIONS.get(self.severity, "Unknown severity level")

    def summary(self) -> str:
        """One-line description for logs and displays."""
        return (
            f"[{self.severity.value}] {self.error_type.value} error in "
            f"{self.operation}: {self.message}"
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ErrorEvent":
        return cls.model_validate(data)


def safe_str(value: Any) -> str:
    """``str(value)``, or the type name when the object cannot render itself."""
    try:
        return str(value)
    except Exception:
        return f"<unprintable {type(value).__name__}>"


def describe_exception(error: BaseException) -> str:
    """Message text for an exception, falling back to its class name."""
    try:
        text = str(error).strip()
    except Exception:
        text = ""
    return text or type(error).__name__


def format_exception_text(error: BaseException) -> Optional[str]:
    """Formatted traceback for an exception, or None if it was never raised."""
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
