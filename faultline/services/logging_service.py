"""
Logging service: buffering, persistence, retention and recovery policies.

The LoggingService owns:
- An in-memory buffer of ErrorEvents with their ErrorContext and LogEntry
  siblings, capped at ``max_buffer_size`` with oldest-first eviction
- A registry of one RecoveryAction per error category
- Best-effort persistence of every record to a KeyValueStore; records of
  evicted events are removed from the store as they leave the buffer

It sits on every failure path in the host application, so nothing in
``log_error``/``record_error`` is allowed to raise. Failures inside the
service degrade to a minimal fallback log line.

All buffer and registry mutations happen in a single synchronous step with
no ``await`` in between, so cooperatively scheduled callers never observe a
half-updated buffer.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from faultline.config import LoggingServiceConfig
from faultline.exceptions import ConfigurationError
from faultline.models import (
    ErrorContext,
    ErrorEvent,
    ErrorSeverity,
    ErrorType,
    LogEntry,
    RecoveryAction,
    RecoveryActionType,
    describe_exception,
    format_exception_text,
    format_timestamp,
    generate_id,
    parse_timestamp,
    safe_str,
)
from faultline.services.context_collector import ContextCollector
from faultline.services.storage import KeyValueStore
from faultline.utils.logging import get_logger, log_error_event, log_fallback


logger = get_logger(__name__)

DEBUG_DISABLED_ID = "debug-disabled"

ErrorInput = Union[BaseException, str]
RecoveryStrategy = Callable[[RecoveryAction, ErrorEvent], Awaitable[bool]]


class LoggingService:
    """
    Records error events and applies per-category recovery policies.

    Args:
        config: Service configuration (defaults used when omitted)
        store: Key-value store used for persistence; persistence is skipped
            when None or when disabled in the config
        context_collector: Source of automatic context snapshots

    Example:
        service = LoggingService(LoggingServiceConfig(environment="development"))
        event_id = await service.log_error(exc, "sync-orders", ErrorSeverity.ERROR, ErrorType.NETWORK)
    """

    def __init__(
        self,
        config: Optional[LoggingServiceConfig] = None,
        store: Optional[KeyValueStore] = None,
        context_collector: Optional[ContextCollector] = None,
    ):
        self.config = config or LoggingServiceConfig()
        self._store = store
        self._collector = context_collector or ContextCollector()

        self._events: Dict[str, ErrorEvent] = {}
        self._contexts: Dict[str, ErrorContext] = {}
        self._entries: Dict[str, LogEntry] = {}
        self._recovery_actions: Dict[ErrorType, RecoveryAction] = {}

        self._last_timestamp: Optional[datetime] = None
        self._pending_persist: List[str] = []
        self._pending_removal: List[str] = []
        self._background_tasks: Set[asyncio.Task] = set()

        self._logger = logger.with_context(
            component=self.config.component,
            environment=self.config.environment,
        )

        self._recovery_strategies: Dict[RecoveryActionType, RecoveryStrategy] = {
            RecoveryActionType.RETRY: self._recover_by_retry,
            RecoveryActionType.FALLBACK: self._recover_by_fallback,
            RecoveryActionType.USER_PROMPT: self._recover_by_message,
            RecoveryActionType.FAIL_GRACEFULLY: self._recover_by_message,
        }

    @property
    def persistence_enabled(self) -> bool:
        return self.config.enable_local_persistence and self._store is not None

    @property
    def buffer_size(self) -> int:
        return len(self._events)

    # ========== Recording ==========

    async def log_error(
        self,
        error: ErrorInput,
        operation: str,
        severity: Union[ErrorSeverity, str],
        error_type: Union[ErrorType, str],
        context: Optional[Mapping[str, Any]] = None,
        app_state: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Record an error event and persist it.

        Never raises: internal failures are logged and a fallback id is
        returned.

        Args:
            error: Exception instance or bare message
            operation: What was being attempted
            severity: Severity of the failure
            error_type: Category of the failure
            context: Partial ErrorContext fields supplied by the caller
            app_state: Opaque snapshot stored on the event

        Returns:
            Id of the recorded event
        """
        event_id = self.record_error(error, operation, severity, error_type, context, app_state, persist=False)
        if event_id in self._events:
            await self._persist_event(event_id)
        await self.flush_pending()
        return event_id

    def record_error(
        self,
        error: ErrorInput,
        operation: str,
        severity: Union[ErrorSeverity, str],
        error_type: Union[ErrorType, str],
        context: Optional[Mapping[str, Any]] = None,
        app_state: Optional[Dict[str, Any]] = None,
        persist: bool = True,
    ) -> str:
        """
        Synchronous variant of :meth:`log_error` for non-async call sites.

        The event is buffered immediately; persistence is scheduled on the
        running event loop or queued until the next :meth:`flush_pending`.
        """
        try:
            event, error_context, entry = self._build_records(
                error, operation, severity, error_type, context, app_state
            )
        except Exception as e:
            self._fallback_log("Failed to record error event", error, operation, e)
            return generate_id("fallback")

        self._store_records(event, error_context, entry)

        if self.config.enable_console_logging:
            try:
                log_error_event(self._logger, event, entry, error_context)
            except Exception as e:
                self._fallback_log("Failed to mirror error event to log", error, operation, e)

        if persist:
            self._schedule_persist(event.id)

        return event.id

    async def log_info(self, message: str, operation: str, data: Optional[Dict[str, Any]] = None) -> str:
        return await self.log_error(message, operation, ErrorSeverity.INFO, ErrorType.LOGIC, app_state=data)

    async def log_warning(self, message: str, operation: str, data: Optional[Dict[str, Any]] = None) -> str:
        return await self.log_error(message, operation, ErrorSeverity.WARNING, ErrorType.LOGIC, app_state=data)

    async def log_debug(self, message: str, operation: str, data: Optional[Dict[str, Any]] = None) -> str:
        """Record a debug event; outside development-like environments this is a no-op."""
        if not self.config.is_development_like:
            return DEBUG_DISABLED_ID
        return await self.log_error(message, operation, ErrorSeverity.DEBUG, ErrorType.LOGIC, app_state=data)

    def _build_records(
        self,
        error: ErrorInput,
        operation: str,
        severity: Union[ErrorSeverity, str],
        error_type: Union[ErrorType, str],
        context: Optional[Mapping[str, Any]],
        app_state: Optional[Dict[str, Any]],
    ) -> Tuple[ErrorEvent, ErrorContext, LogEntry]:
        severity = ErrorSeverity(severity)
        error_type = ErrorType(error_type)
        moment = self._next_moment()

        if isinstance(error, BaseException):
            message = describe_exception(error)
            stack_trace = format_exception_text(error)
        else:
            message = safe_str(error).strip() or "Unknown error"
            stack_trace = None

        event = ErrorEvent(
            id=generate_id("error", moment),
            timestamp=format_timestamp(moment),
            message=message,
            stack_trace=stack_trace,
            severity=severity,
            error_type=error_type,
            operation=operation,
            app_state=app_state,
        )

        try:
            error_context = self._collector.collect(event.id, dict(context) if context else None)
        except (ValidationError, TypeError) as e:
            self._logger.warning(
                f"Discarding invalid error context for {operation}: {e}",
                extra={"event_id": event.id, "operation": operation},
            )
            error_context = self._collector.collect(event.id)

        entry = LogEntry.for_error_event(
            event.id,
            severity,
            self.config.component,
            self.config.environment,
            session_id=self.config.session_id,
        )

        return event, error_context, entry

    def _next_moment(self) -> datetime:
        """Current UTC time, never earlier than the previously issued one."""
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _store_records(self, event: ErrorEvent, error_context: ErrorContext, entry: LogEntry) -> None:
        self._events[event.id] = event
        self._contexts[event.id] = error_context
        self._entries[event.id] = entry
        self._evict_overflow()

    def _evict_overflow(self) -> None:
        # Dicts preserve insertion order, so the first keys are the oldest events
        overflow = len(self._events) - self.config.max_buffer_size
        if overflow <= 0:
            return
        evicted = list(self._events)[:overflow]
        for event_id in evicted:
            self._drop_from_buffer(event_id)
        self._schedule_removal(evicted)

    def _drop_from_buffer(self, event_id: str) -> None:
        self._events.pop(event_id, None)
        self._contexts.pop(event_id, None)
        self._entries.pop(event_id, None)

    def _fallback_log(self, message: str, error: ErrorInput, operation: str, failure: Exception) -> None:
        try:
            log_fallback(self._logger, message, operation, error, failure)
        except Exception:
            # Last resort: the log sink itself is broken and recording must not raise
            pass

    # ========== Persistence ==========

    def _key(self, kind: str, event_id: str) -> str:
        return f"{self.config.storage_key_prefix}:{kind}:{event_id}"

    def _schedule_persist(self, event_id: str) -> None:
        if not self.persistence_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending_persist.append(event_id)
            return

        self._track(loop.create_task(self._persist_event(event_id)))

    def _schedule_removal(self, event_ids: List[str]) -> None:
        if not self.persistence_enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._pending_removal.extend(event_ids)
            return

        self._track(loop.create_task(self._remove_persisted(event_ids)))

    def _track(self, task: asyncio.Task) -> None:
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def flush_pending(self) -> int:
        """
        Persist events recorded while no event loop was running, remove the
        records of events evicted meanwhile and wait for scheduled persistence
        tasks.

        Returns:
            Number of queued events written
        """
        pending, self._pending_persist = self._pending_persist, []
        for event_id in pending:
            await self._persist_event(event_id)

        removals, self._pending_removal = self._pending_removal, []
        if removals:
            await self._remove_persisted(removals)

        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

        return len(pending)

    async def _persist_event(self, event_id: str) -> None:
        if not self.persistence_enabled:
            return

        event = self._events.get(event_id)
        if event is None:
            # Evicted before it could be written
            return

        records = [("event", event)]
        if event_id in self._contexts:
            records.append(("context", self._contexts[event_id]))
        if event_id in self._entries:
            records.append(("entry", self._entries[event_id]))

        try:
            for kind, record in records:
                await self._store.set(self._key(kind, event_id), json.dumps(record.to_json()))
        except Exception as e:
            self._logger.warning(
                f"Failed to persist error event {event_id}: {e}",
                extra={"event_id": event_id},
            )
            return

        if event_id not in self._events:
            # Evicted while the writes were in flight
            await self._remove_persisted([event_id])

    async def _remove_persisted(self, event_ids: List[str]) -> None:
        try:
            for event_id in event_ids:
                for kind in ("event", "context", "entry"):
                    await self._store.remove(self._key(kind, event_id))
        except Exception as e:
            self._logger.warning(
                f"Failed to remove persisted records of {len(event_ids)} evicted error events: {e}",
                extra={"event_ids": event_ids},
            )

    async def load_persisted_errors(self) -> int:
        """
        Rehydrate the buffer from the store.

        Events older than the retention window are skipped; the buffer cap
        still applies, keeping the most recent events.

        Returns:
            Number of events loaded into the buffer
        """
        if not self.persistence_enabled:
            return 0

        prefix = f"{self.config.storage_key_prefix}:event:"
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.config.max_retention_days)
        loaded: List[Tuple[ErrorEvent, Optional[ErrorContext], Optional[LogEntry]]] = []

        try:
            keys = await self._store.list_keys(prefix)
            for key in keys:
                event_id = key[len(prefix):]
                if event_id in self._events:
                    continue
                raw = await self._store.get(key)
                if raw is None:
                    continue
                event = ErrorEvent.from_json(json.loads(raw))
                if event.recorded_at < cutoff:
                    continue
                loaded.append((
                    event,
                    await self._load_sibling("context", event_id, ErrorContext),
                    await self._load_sibling("entry", event_id, LogEntry),
                ))
        except Exception as e:
            self._logger.warning(f"Failed to load persisted error events: {e}")

        loaded.sort(key=lambda record: record[0].timestamp)
        for event, error_context, entry in loaded:
            self._events[event.id] = event
            if error_context is not None:
                self._contexts[event.id] = error_context
            if entry is not None:
                self._entries[event.id] = entry

        self._reorder_buffer()
        return len(loaded)

    async def _load_sibling(self, kind: str, event_id: str, model):
        raw = await self._store.get(self._key(kind, event_id))
        if raw is None:
            return None
        try:
            return model.from_json(json.loads(raw))
        except (ValueError, ValidationError) as e:
            self._logger.warning(f"Skipping unreadable {kind} record for {event_id}: {e}")
            return None

    def _reorder_buffer(self) -> None:
        ordered = sorted(self._events.values(), key=lambda event: event.timestamp)
        self._events = {event.id: event for event in ordered}
        self._evict_overflow()

    # ========== Retrieval and retention ==========

    def get_recent_errors(
        self,
        limit: int = 50,
        severity: Optional[Union[ErrorSeverity, str]] = None,
    ) -> List[ErrorEvent]:
        """
        Buffered events, newest first.

        Args:
            limit: Maximum number of events to return
            severity: Only return events of this severity

        Returns:
            Events sorted by timestamp descending; events sharing a timestamp
            are ordered by insertion, later first
        """
        if limit <= 0:
            return []

        events = list(self._events.values())
        if severity is not None:
            wanted = ErrorSeverity(severity)
            events = [event for event in events if event.severity == wanted]

        events.reverse()
        events.sort(key=lambda event: event.timestamp, reverse=True)
        return events[:limit]

    def get_error_event(self, event_id: str) -> Optional[ErrorEvent]:
        return self._events.get(event_id)

    def get_error_context(self, event_id: str) -> Optional[ErrorContext]:
        return self._contexts.get(event_id)

    def get_log_entry(self, event_id: str) -> Optional[LogEntry]:
        return self._entries.get(event_id)

    def get_error_statistics(self) -> Dict[str, Any]:
        """Counts of buffered events by severity and error type."""
        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_type = {error_type.value: 0 for error_type in ErrorType}
        for event in self._events.values():
            by_severity[event.severity.value] += 1
            by_type[event.error_type.value] += 1

        return {
            "buffered": len(self._events),
            "max_buffer_size": self.config.max_buffer_size,
            "by_severity": by_severity,
            "by_error_type": by_type,
            "recovery_actions": {
                error_type.value: action.get_execution_stats()
                for error_type, action in self._recovery_actions.items()
            },
        }

    async def clear_old_errors(self, older_than_days: float) -> int:
        """
        Remove events older than ``older_than_days`` from buffer and store.

        ``0`` clears every buffered event.

        Returns:
            Number of events removed from the in-memory buffer
        """
        if older_than_days <= 0:
            removed_ids = list(self._events)
            cutoff = None
        else:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
            removed_ids = [
                event_id for event_id, event in self._events.items()
                if event.recorded_at < cutoff
            ]

        for event_id in removed_ids:
            self._drop_from_buffer(event_id)

        if removed_ids:
            self._logger.info(
                f"Cleared {len(removed_ids)} buffered error events",
                extra={"older_than_days": older_than_days},
            )

        if self.persistence_enabled:
            await self._purge_persisted(set(removed_ids), cutoff)

        return len(removed_ids)

    async def _purge_persisted(self, event_ids: Set[str], cutoff: Optional[datetime]) -> None:
        prefix = f"{self.config.storage_key_prefix}:event:"
        try:
            for key in await self._store.list_keys(prefix):
                event_id = key[len(prefix):]
                if event_id in event_ids or event_id in self._events:
                    continue
                if cutoff is None:
                    event_ids.add(event_id)
                    continue
                raw = await self._store.get(key)
                if raw is None:
                    continue
                try:
                    timestamp = parse_timestamp(json.loads(raw)["timestamp"])
                except (ValueError, KeyError, TypeError):
                    # Unreadable records are treated as expired
                    event_ids.add(event_id)
                    continue
                if timestamp < cutoff:
                    event_ids.add(event_id)

            for event_id in event_ids:
                for kind in ("event", "context", "entry"):
                    await self._store.remove(self._key(kind, event_id))
        except Exception as e:
            self._logger.warning(f"Failed to purge persisted error events: {e}")

    # ========== Recovery ==========

    def get_recovery_action(self, error_type: Union[ErrorType, str]) -> Optional[RecoveryAction]:
        try:
            return self._recovery_actions.get(ErrorType(error_type))
        except ValueError:
            return None

    def configure_recovery_action(
        self,
        error_type: Union[ErrorType, str],
        action: Union[RecoveryAction, Mapping[str, Any]],
    ) -> None:
        """
        Register the policy for a category; the last registration wins.

        Raises:
            ConfigurationError: If the action declares a different category
        """
        error_type = ErrorType(error_type)
        if not isinstance(action, RecoveryAction):
            action = RecoveryAction.from_json(dict(action))

        if action.error_type != error_type:
            raise ConfigurationError(
                f"Recovery action {action.action_id} declares {action.error_type.value} "
                f"but was registered for {error_type.value}"
            )

        self._recovery_actions[error_type] = action
        self._logger.debug(
            f"Configured recovery action {action.action_id}: {action.description()}",
            extra={"error_type": error_type.value},
        )

    async def attempt_recovery(self, event: ErrorEvent, grant_retry: bool = True) -> bool:
        """
        Run the recovery policy registered for the event's category.

        Retry policies only grant the retry (waiting out the backoff first);
        re-invoking the failed operation is the caller's job, and the caller
        reports the outcome through :meth:`mark_recovered` or
        :meth:`abandon_recovery`.

        Args:
            event: Failure to recover from
            grant_retry: False when nothing will re-invoke the failed
                operation; Retry policies are then left untouched

        Returns:
            True when the policy ran and reports success
        """
        action = self.get_recovery_action(event.error_type)
        if action is None:
            self._logger.debug(
                f"No recovery action configured for {event.error_type.value}",
                extra={"event_id": event.id, "error_type": event.error_type.value},
            )
            return False

        if action.is_retry_action() and not grant_retry:
            self._logger.debug(
                f"Nothing to re-invoke for {event.operation}; retry budget of {action.action_id} kept",
                extra={"event_id": event.id, "error_type": event.error_type.value},
            )
            return False

        if action.is_exhausted():
            self._logger.info(
                f"Recovery action {action.action_id} exhausted after {action.current_retries} retries",
                extra={"event_id": event.id, "error_type": event.error_type.value},
            )
            return False

        strategy = self._recovery_strategies[action.action_type]
        error_text: Optional[str] = None
        try:
            success = await strategy(action, event)
        except Exception as e:
            self._logger.warning(
                f"Recovery action {action.action_id} failed: {e}",
                extra={"event_id": event.id, "error_type": event.error_type.value},
            )
            success = False
            error_text = str(e)

        action.record_execution(success, error_text)
        if not success and action.can_retry():
            action.increment_retry()

        return success

    def mark_recovered(self, error_type: Union[ErrorType, str]) -> None:
        """Reset a retry policy after the caller's re-invocation succeeded."""
        action = self.get_recovery_action(error_type)
        if action is None or not action.is_retry_action() or action.current_retries == 0:
            return

        attempts = action.current_retries
        action.reset_retries()
        action.record_execution(True)
        self._logger.info(
            f"Recovered after {attempts} retries using {action.action_id}",
            extra={"error_type": action.error_type.value},
        )

    def abandon_recovery(self, error_type: Union[ErrorType, str]) -> None:
        """Reset a retry policy after the caller gave up, so the next caller gets a full budget."""
        action = self.get_recovery_action(error_type)
        if action is None or not action.is_retry_action() or action.current_retries == 0:
            return

        attempts = action.current_retries
        action.reset_retries()
        action.record_execution(False, f"gave up after {attempts} retries")
        self._logger.info(
            f"Recovery abandoned after {attempts} retries using {action.action_id}",
            extra={"error_type": action.error_type.value},
        )

    async def _recover_by_retry(self, action: RecoveryAction, event: ErrorEvent) -> bool:
        wait_ms = action.get_time_until_next_retry()
        if wait_ms > 0:
            await asyncio.sleep(wait_ms / 1000)

        # Another caller may have used up the last retry while we waited
        if not action.can_retry():
            return False

        action.increment_retry()
        self._logger.info(
            f"Retry {action.current_retries}/{action.get_max_retries()} granted for {event.operation}",
            extra={"event_id": event.id, "operation": event.operation},
        )
        return True

    async def _recover_by_fallback(self, action: RecoveryAction, event: ErrorEvent) -> bool:
        self._logger.info(
            f"Applying fallback for {event.operation}: {action.fallback_behavior}",
            extra={"event_id": event.id, "operation": event.operation},
        )
        return True

    async def _recover_by_message(self, action: RecoveryAction, event: ErrorEvent) -> bool:
        self._logger.info(
            f"{action.action_type.value} for {event.operation}: {action.get_user_message()}",
            extra={"event_id": event.id, "operation": event.operation},
        )
        return True
