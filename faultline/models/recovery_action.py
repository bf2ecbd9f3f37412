"""
Recovery action policy and retry state machine.

A RecoveryAction describes how to respond to one category of failure. Retry
actions additionally carry a small state machine:

    IDLE (0 attempts) -> RETRYING (0 < attempts < max) -> EXHAUSTED (attempts >= max)

The same instance is shared between the logging service's registry and any
retry loop driving it, so the retry bound has a single source of truth.
"""

import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from faultline.exceptions import RecoveryActionContractError

from .error_event import ErrorType

DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_MAX_RETRIES = 3
EXECUTION_HISTORY_LIMIT = 10


class RecoveryActionType(str, Enum):
    """Kind of response a recovery action performs."""

    RETRY = "Retry"
    FALLBACK = "Fallback"
    USER_PROMPT = "UserPrompt"
    FAIL_GRACEFULLY = "FailGracefully"


class RetryState(str, Enum):
    """Position of a retry action in its state machine."""

    IDLE = "idle"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


class ExecutionRecord(BaseModel):
    """One recorded recovery attempt."""

    timestamp: datetime
    success: bool
    error: Optional[str] = None


_DEFAULT_MESSAGES = {
    RecoveryActionType.RETRY: "Retrying operation...",
    RecoveryActionType.FALLBACK: "Using alternative approach...",
    RecoveryActionType.USER_PROMPT: "An error occurred. Please try again.",
    RecoveryActionType.FAIL_GRACEFULLY: "Operation could not be completed.",
}


class RecoveryAction(BaseModel):
    """Configured response to a category of failure plus its execution state."""

    action_id: str
    error_type: ErrorType
    action_type: RecoveryActionType
    retry_count: Optional[int] = None
    retry_delay: Optional[int] = None
    max_retries: Optional[int] = None
    fallback_behavior: Optional[str] = None
    user_message: Optional[str] = None

    _current_retries: int = PrivateAttr(default=0)
    _last_executed_at: Optional[datetime] = PrivateAttr(default=None)
    _last_executed_monotonic: Optional[float] = PrivateAttr(default=None)
    _execution_history: Deque[ExecutionRecord] = PrivateAttr(
        default_factory=lambda: deque(maxlen=EXECUTION_HISTORY_LIMIT)
    )

    @model_validator(mode="after")
    def _apply_defaults_and_validate(self) -> "RecoveryAction":
        if not self.action_id or not self.action_id.strip():
            raise ValueError("action_id is required and must be non-empty")

        if self.action_type == RecoveryActionType.RETRY:
            if self.retry_count is None:
                self.retry_count = 0
            if self.retry_delay is None:
                self.retry_delay = DEFAULT_RETRY_DELAY_MS
            if self.max_retries is None:
                self.max_retries = DEFAULT_MAX_RETRIES

            if self.retry_count < 0:
                raise ValueError("retry_count must be a non-negative integer")
            if self.retry_delay <= 0:
                raise ValueError("retry_delay must be a positive integer")
            if self.max_retries <= 0:
                raise ValueError("max_retries must be a positive integer")
            if self.retry_count > self.max_retries:
                raise ValueError("retry_count cannot exceed max_retries")

        elif self.action_type == RecoveryActionType.FALLBACK:
            if self.fallback_behavior is None:
                self.fallback_behavior = "Use default behavior"

        elif not self.user_message or not self.user_message.strip():
            self.user_message = _DEFAULT_MESSAGES[self.action_type]

        return self

    def model_post_init(self, __context: Any) -> None:
        self._current_retries = self.retry_count or 0

    # ========== Factories ==========

    @classmethod
    def create_retry(
        cls,
        action_id: str,
        error_type: ErrorType,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: int = DEFAULT_RETRY_DELAY_MS,
    ) -> "RecoveryAction":
        return cls(
            action_id=action_id,
            error_type=error_type,
            action_type=RecoveryActionType.RETRY,
            retry_count=0,
            retry_delay=retry_delay,
            max_retries=max_retries,
        )

    @classmethod
    def create_fallback(
        cls,
        action_id: str,
        error_type: ErrorType,
        fallback_behavior: str,
        user_message: Optional[str] = None,
    ) -> "RecoveryAction":
        return cls(
            action_id=action_id,
            error_type=error_type,
            action_type=RecoveryActionType.FALLBACK,
            fallback_behavior=fallback_behavior,
            user_message=user_message,
        )

    @classmethod
    def create_user_prompt(cls, action_id: str, error_type: ErrorType, user_message: str) -> "RecoveryAction":
        return cls(
            action_id=action_id,
            error_type=error_type,
            action_type=RecoveryActionType.USER_PROMPT,
            user_message=user_message,
        )

    @classmethod
    def create_fail_gracefully(
        cls,
        action_id: str,
        error_type: ErrorType,
        user_message: Optional[str] = None,
    ) -> "RecoveryAction":
        return cls(
            action_id=action_id,
            error_type=error_type,
            action_type=RecoveryActionType.FAIL_GRACEFULLY,
            user_message=user_message,
        )

    @classmethod
    def for_error_type(cls, error_type: ErrorType) -> "RecoveryAction":
        """Default policy for a category of failure."""
        error_type = ErrorType(error_type)
        action_id = f"auto-{error_type.value.lower()}-recovery"
        strategy = _RECOVERY_STRATEGIES.get(error_type, _fail_gracefully_strategy)
        return strategy(action_id, error_type)

    # ========== State machine ==========

    @property
    def current_retries(self) -> int:
        return self._current_retries

    @property
    def last_executed_at(self) -> Optional[datetime]:
        return self._last_executed_at

    @property
    def state(self) -> RetryState:
        if not self.is_retry_action() or self._current_retries == 0:
            return RetryState.IDLE
        if self._current_retries >= self.get_max_retries():
            return RetryState.EXHAUSTED
        return RetryState.RETRYING

    def increment_retry(self) -> None:
        """
        Count one retry attempt and stamp the execution time.

        Raises:
            RecoveryActionContractError: If this is not a Retry action
        """
        if not self.is_retry_action():
            raise RecoveryActionContractError(
                f"Cannot increment retry count for {self.action_type.value} action {self.action_id}"
            )

        # Counter saturates at max_retries so retry_count never exceeds it
        self._current_retries = min(self._current_retries + 1, self.get_max_retries())
        self.retry_count = self._current_retries
        self._mark_executed()

    def reset_retries(self) -> None:
        """Return to IDLE and forget execution history."""
        self._current_retries = 0
        if self.is_retry_action():
            self.retry_count = 0
        self._execution_history.clear()

    def can_retry(self) -> bool:
        if not self.is_retry_action():
            return False
        return self._current_retries < self.get_max_retries()

    def is_exhausted(self) -> bool:
        if not self.is_retry_action():
            return False
        return self._current_retries >= self.get_max_retries()

    def get_time_until_next_retry(self) -> float:
        """Milliseconds to wait before the next retry may run."""
        if self._last_executed_monotonic is None or not self.is_retry_action():
            return 0
        elapsed_ms = (time.monotonic() - self._last_executed_monotonic) * 1000
        return max(0.0, self.get_retry_delay() - elapsed_ms)

    def record_execution(self, success: bool, error: Optional[str] = None) -> None:
        """Append an attempt to the bounded execution history."""
        self._execution_history.append(
            ExecutionRecord(
                timestamp=datetime.now(timezone.utc),
                success=success,
                error=error,
            )
        )
        self._mark_executed()

    def _mark_executed(self) -> None:
        self._last_executed_at = datetime.now(timezone.utc)
        self._last_executed_monotonic = time.monotonic()

    # ========== Introspection ==========

    @property
    def execution_history(self) -> list:
        return list(self._execution_history)

    def get_execution_stats(self) -> Dict[str, Any]:
        total = len(self._execution_history)
        successes = sum(1 for record in self._execution_history if record.success)
        return {
            "total_executions": total,
            "success_count": successes,
            "failure_count": total - successes,
            "success_rate": successes / total if total else 0.0,
            "last_executed": self._last_executed_at,
        }

    def is_retry_action(self) -> bool:
        return self.action_type == RecoveryActionType.RETRY

    def is_fallback_action(self) -> bool:
        return self.action_type == RecoveryActionType.FALLBACK

    def requires_user_interaction(self) -> bool:
        return self.action_type == RecoveryActionType.USER_PROMPT

    def get_retry_delay(self) -> int:
        return self.retry_delay or DEFAULT_RETRY_DELAY_MS

    def get_max_retries(self) -> int:
        return self.max_retries or DEFAULT_MAX_RETRIES

    def get_user_message(self) -> str:
        return self.user_message or _DEFAULT_MESSAGES[self.action_type]

    def description(self) -> str:
        if self.action_type == RecoveryActionType.RETRY:
            return f"Retry up to {self.max_retries} times with {self.retry_delay}ms delay"
        if self.action_type == RecoveryActionType.FALLBACK:
            return f"Fallback: {self.fallback_behavior}"
        if self.action_type == RecoveryActionType.USER_PROMPT:
            return f"Prompt user: {self.user_message}"
        return f"Fail gracefully: {self.user_message}"

    def summary(self) -> str:
        stats = self.get_execution_stats()
        return (
            f"{self.action_id} ({self.error_type.value}): {self.description()} - "
            f"Executions: {stats['total_executions']}, "
            f"Success rate: {stats['success_rate'] * 100:.1f}%"
        )

    # ========== Serialization ==========

    def to_json(self) -> Dict[str, Any]:
        """Configured fields only; execution state is not serialized."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "RecoveryAction":
        return cls.model_validate(data)

    def clone(self, **changes: Any) -> "RecoveryAction":
        """Fresh action (new execution state) with ``changes`` applied."""
        data = self.to_json()
        data.update(changes)
        return RecoveryAction.from_json(data)


def _fail_gracefully_strategy(action_id: str, error_type: ErrorType) -> RecoveryAction:
    return RecoveryAction.create_fail_gracefully(
        action_id,
        error_type,
        "An unexpected error occurred. Please try again.",
    )


_RECOVERY_STRATEGIES: Dict[ErrorType, Callable[[str, ErrorType], RecoveryAction]] = {
    ErrorType.NETWORK: lambda action_id, error_type: RecoveryAction.create_retry(
        action_id, error_type, max_retries=3, retry_delay=2000
    ),
    ErrorType.DATABASE: lambda action_id, error_type: RecoveryAction.create_retry(
        action_id, error_type, max_retries=2, retry_delay=1000
    ),
    ErrorType.AUTHENTICATION: lambda action_id, error_type: RecoveryAction.create_user_prompt(
        action_id, error_type, "Authentication required. Please sign in again."
    ),
    ErrorType.LOGIC: _fail_gracefully_strategy,
    ErrorType.UI: lambda action_id, error_type: RecoveryAction.create_fallback(
        action_id,
        error_type,
        "Use default UI behavior",
        "Display issue detected. Using fallback interface.",
    ),
    ErrorType.STORAGE: lambda action_id, error_type: RecoveryAction.create_fallback(
        action_id,
        error_type,
        "Use in-memory storage as fallback",
        "Local storage unavailable. Data will be stored temporarily.",
    ),
}
