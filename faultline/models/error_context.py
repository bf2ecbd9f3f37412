"""Error context data models."""

import logging
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .error_event import generate_id

logger = logging.getLogger(__name__)

SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "token",
    "secret",
    "key",
    "auth",
    "credential",
    "ssn",
    "credit",
)

REDACTED = "[REDACTED]"

# Nesting depth scanned for sensitive keys; deeper values are not inspected
MAX_SCAN_DEPTH = 3

HIGH_MEMORY_THRESHOLD = 100 * 1024 * 1024
HIGH_CPU_THRESHOLD = 80.0


class NetworkState(str, Enum):
    """Connectivity observed when the error occurred."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    LIMITED = "limited"


class NavigationState(BaseModel):
    """Route the host application was on when the error occurred."""

    current_route: str = Field(min_length=1)
    previous_route: Optional[str] = None


class PerformanceMetrics(BaseModel):
    """
    Resource usage snapshot.

    ``memory_usage`` is resident memory in bytes. Collected snapshots hold the
    current resident size, or the peak where the platform reports no other.
    ``cpu_usage`` is a percentage of one core since the previous sample.
    """

    memory_usage: Optional[float] = Field(default=None, ge=0)
    cpu_usage: Optional[float] = Field(default=None, ge=0, le=100)


def is_sensitive_key(key: Any) -> bool:
    """Whether a mapping key names something that looks like a secret."""
    lowered = str(key).lower()
    return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)


def _nested_mappings(
    obj: Any,
    path: str,
    depth: int,
    max_depth: int,
    seen: Set[int],
) -> Iterator[Tuple[Dict[str, Any], str]]:
    # Each mapping is visited once, so cyclic structures terminate
    if depth >= max_depth:
        return
    if isinstance(obj, dict):
        if id(obj) in seen:
            return
        seen.add(id(obj))
        yield obj, path
        for key, value in obj.items():
            current = f"{path}.{key}" if path else str(key)
            yield from _nested_mappings(value, current, depth + 1, max_depth, seen)
    elif isinstance(obj, list):
        for index, item in enumerate(obj):
            yield from _nested_mappings(item, f"{path}[{index}]", depth + 1, max_depth, seen)


def find_sensitive_paths(data: Dict[str, Any], max_depth: int = MAX_SCAN_DEPTH) -> List[str]:
    """
    Dotted paths of keys in ``data`` that look sensitive.

    Mappings inside lists are scanned too; a list counts as one nesting level.

    Args:
        data: Mapping to scan
        max_depth: Number of nesting levels to descend into

    Returns:
        Paths such as ``"user.password"`` or ``"users[0].token"`` in discovery order
    """
    found: List[str] = []
    for mapping, path in _nested_mappings(data, "", 0, max_depth, set()):
        for key in mapping:
            if is_sensitive_key(key):
                found.append(f"{path}.{key}" if path else str(key))
    return found


def _redact_in_place(data: Dict[str, Any], max_depth: int = MAX_SCAN_DEPTH) -> int:
    redacted = 0
    for mapping, _ in _nested_mappings(data, "", 0, max_depth, set()):
        for key in list(mapping):
            if is_sensitive_key(key):
                mapping[key] = REDACTED
                redacted += 1
    return redacted


class ErrorContext(BaseModel):
    """Application state captured alongside an error event."""

    model_config = ConfigDict(validate_assignment=True)

    context_id: str = Field(default_factory=lambda: generate_id("ctx"))
    error_event_id: str
    user_action: Optional[str] = None
    navigation_state: Optional[NavigationState] = None
    data_state: Optional[Dict[str, Any]] = None
    network_state: Optional[NetworkState] = None
    performance_metrics: Optional[PerformanceMetrics] = None

    @field_validator("error_event_id")
    @classmethod
    def _require_event_id(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("error_event_id must reference a valid ErrorEvent")
        return value

    @field_validator("user_action")
    @classmethod
    def _validate_user_action(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("user_action must be non-empty if provided")
        return value

    @field_validator("data_state")
    @classmethod
    def _warn_on_sensitive_data(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value:
            warn_sensitive_keys(value)
        return value

    @classmethod
    def for_error_event(cls, error_event_id: str, **additional: Any) -> "ErrorContext":
        return cls(error_event_id=error_event_id, **additional)

    @classmethod
    def with_user_action(cls, error_event_id: str, user_action: str, **additional: Any) -> "ErrorContext":
        return cls(error_event_id=error_event_id, user_action=user_action, **additional)

    @classmethod
    def with_navigation(
        cls,
        error_event_id: str,
        current_route: str,
        previous_route: Optional[str] = None,
        **additional: Any,
    ) -> "ErrorContext":
        return cls(
            error_event_id=error_event_id,
            navigation_state=NavigationState(
                current_route=current_route,
                previous_route=previous_route,
            ),
            **additional,
        )

    def set_user_action(self, user_action: str) -> None:
        self.user_action = user_action

    def set_navigation_state(self, current_route: str, previous_route: Optional[str] = None) -> None:
        self.navigation_state = NavigationState(
            current_route=current_route,
            previous_route=previous_route,
        )

    def add_data_state(self, key: str, value: Any) -> None:
        """Add or replace one data_state entry, scanning it for secrets."""
        if self.data_state is None:
            self.data_state = {}
        self.data_state[key] = value
        warn_sensitive_keys({key: value})

    def sanitize_data_state(self) -> int:
        """
        Replace values under sensitive-looking keys with a redaction marker.

        Sanitization happens in place, including mappings nested in other
        mappings or in lists, down to ``MAX_SCAN_DEPTH`` levels.

        Returns:
            Number of values redacted
        """
        if not self.data_state:
            return 0
        return _redact_in_place(self.data_state)

    def with_data_state(self, data_state: Dict[str, Any]) -> "ErrorContext":
        """Copy of this context with ``data_state`` merged in."""
        merged = dict(self.data_state or {})
        merged.update(data_state)
        fields = self.model_dump(exclude={"data_state"})
        return ErrorContext(data_state=merged, **fields)

    def is_during_user_interaction(self) -> bool:
        return bool(self.user_action)

    def has_network_issues(self) -> bool:
        return self.network_state in (NetworkState.DISCONNECTED, NetworkState.LIMITED)

    def has_performance_issues(self) -> bool:
        """Whether resident memory or CPU usage crossed its threshold when sampled."""
        metrics = self.performance_metrics
        if metrics is None:
            return False

        high_memory = metrics.memory_usage is not None and metrics.memory_usage > HIGH_MEMORY_THRESHOLD
        high_cpu = metrics.cpu_usage is not None and metrics.cpu_usage > HIGH_CPU_THRESHOLD
        return high_memory or high_cpu

    def summary(self) -> str:
        """Short human-readable description of the notable context."""
        parts = []

        if self.user_action:
            parts.append(f"Action: {self.user_action}")
        if self.navigation_state:
            parts.append(f"Route: {self.navigation_state.current_route}")
        if self.network_state and self.network_state != NetworkState.CONNECTED:
            parts.append(f"Network: {self.network_state.value}")
        if self.has_performance_issues():
            parts.append("Performance issues detected")

        return ", ".join(parts) if parts else "No significant context"

    def to_minimal(self) -> Dict[str, Any]:
        """Serialized context without the potentially large data and metrics."""
        return self.model_dump(
            mode="json",
            exclude={"data_state", "performance_metrics"},
            exclude_none=True,
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ErrorContext":
        return cls.model_validate(data)


def warn_sensitive_keys(data: Dict[str, Any]) -> List[str]:
    """Log a warning for every sensitive-looking key in ``data``."""
    paths = find_sensitive_paths(data)
    for path in paths:
        logger.warning(
            f"Potentially sensitive data in error context at {path}. "
            f"Consider excluding this field.",
            extra={"field_path": path},
        )
    return paths
