"""Log entry data models."""

import platform
import sys
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .error_event import ErrorSeverity, generate_id


class DeviceInfo(BaseModel):
    """Host the entry was produced on."""

    platform: str = Field(min_length=1)
    version: str = Field(min_length=1)


def collect_device_info() -> DeviceInfo:
    """Describe the running interpreter and operating system."""
    return DeviceInfo(
        platform=sys.platform or "unknown",
        version=f"python-{platform.python_version()}",
    )


class LogEntry(BaseModel):
    """Log-facing projection of an error event with session metadata."""

    entry_id: str = Field(default_factory=lambda: generate_id("log"))
    error_event_id: str
    log_level: ErrorSeverity
    component: str
    environment: str
    device_info: Optional[DeviceInfo] = None
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    @field_validator("error_event_id", "component", "environment")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be non-empty")
        return value

    @model_validator(mode="after")
    def _populate_defaults(self) -> "LogEntry":
        if self.device_info is None:
            self.device_info = collect_device_info()
        if not self.correlation_id:
            self.correlation_id = generate_id("corr", length=6)
        return self

    @classmethod
    def for_error_event(
        cls,
        error_event_id: str,
        log_level: ErrorSeverity,
        component: str,
        environment: str,
        **additional: Any,
    ) -> "LogEntry":
        return cls(
            error_event_id=error_event_id,
            log_level=log_level,
            component=component,
            environment=environment,
            **additional,
        )

    def set_session_id(self, session_id: str) -> None:
        self.session_id = session_id

    def set_correlation_id(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id

    def update_device_info(self, device_info: DeviceInfo) -> None:
        self.device_info = device_info

    def is_critical(self) -> bool:
        return self.log_level == ErrorSeverity.CRITICAL

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls.model_validate(data)
