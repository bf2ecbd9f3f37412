"""
Error handler: global capture, classification and wrapped execution.

The ErrorHandler is the application-facing half of the pipeline. It
installs global failure channels, classifies what they capture, and wraps
callables so that failures are logged, shown to the user and, for
recoverable categories, retried under the category's RecoveryAction.
"""

import asyncio
import functools
import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from faultline.models import (
    TRANSIENT_ERROR_TYPES,
    ErrorEvent,
    ErrorSeverity,
    ErrorType,
    describe_exception,
    format_exception_text,
    safe_str,
)
from faultline.services.channels import GlobalErrorChannel, default_channels
from faultline.services.logging_service import LoggingService
from faultline.services.user_error_display import UserErrorDisplay
from faultline.utils.logging import get_logger


logger = get_logger(__name__)

RECOVERABLE_ERROR_TYPES = frozenset({
    ErrorType.NETWORK,
    ErrorType.DATABASE,
    ErrorType.AUTHENTICATION,
})

# Scanned in order; the first matching category wins
_CLASSIFIERS: List[Tuple[ErrorType, Tuple[str, ...], Tuple[type, ...]]] = [
    (
        ErrorType.NETWORK,
        ("network", "fetch", "timeout", "connection", "socket"),
        (ConnectionError, TimeoutError, asyncio.TimeoutError),
    ),
    (
        ErrorType.AUTHENTICATION,
        ("unauthorized", "authentication", "auth", "token", "login", "permission"),
        (PermissionError,),
    ),
    (
        ErrorType.DATABASE,
        ("database", "sql", "query", "transaction"),
        (),
    ),
    (
        ErrorType.STORAGE,
        ("storage", "disk", "quota"),
        (),
    ),
    (
        ErrorType.UI,
        ("render", "component", "props", "element"),
        (),
    ),
]


def classify_error(error: Any) -> ErrorType:
    """
    Best-effort category for an error from its message, type and traceback.

    Args:
        error: Exception instance or any other captured value

    Returns:
        First matching category, Logic when nothing matches
    """
    if isinstance(error, BaseException):
        haystack = " ".join([
            safe_str(error),
            type(error).__name__,
            format_exception_text(error) or "",
        ]).lower()
    else:
        haystack = safe_str(error).lower()

    for error_type, keywords, exception_types in _CLASSIFIERS:
        if exception_types and isinstance(error, exception_types):
            return error_type
        if any(keyword in haystack for keyword in keywords):
            return error_type

    return ErrorType.LOGIC


class ErrorHandler:
    """
    Captures, classifies and recovers from application failures.

    Args:
        logging_service: Service events are recorded with
        user_error_display: Surface used to tell the user about failures
        channels: Global channels to install; defaults to every channel the
            runtime offers
        install_global_handlers: Install the channels on construction

    Example:
        handler = ErrorHandler(service, LoggingUserErrorDisplay())
        fetch_orders = handler.wrap_async_with_error_handling(
            fetch_orders, "fetch-orders", ErrorType.NETWORK, enable_recovery=True
        )
    """

    def __init__(
        self,
        logging_service: LoggingService,
        user_error_display: Optional[UserErrorDisplay] = None,
        channels: Optional[Iterable[GlobalErrorChannel]] = None,
        install_global_handlers: bool = True,
    ):
        self._logging_service = logging_service
        self._user_error_display = user_error_display
        self._channels: List[GlobalErrorChannel] = list(channels) if channels is not None else []
        self._use_default_channels = channels is None
        self._background_tasks: Set[asyncio.Task] = set()

        if install_global_handlers:
            self.install_global_handlers()

    @property
    def logging_service(self) -> LoggingService:
        return self._logging_service

    @property
    def installed_channels(self) -> List[str]:
        return [channel.name for channel in self._channels if channel.installed]

    # ========== Global capture ==========

    def install_global_handlers(self) -> List[str]:
        """
        Install every configured channel independently.

        Returns:
            Names of the channels that are now installed
        """
        if self._use_default_channels and not self._channels:
            self._channels = default_channels()

        for channel in self._channels:
            try:
                channel.install(self)
            except Exception as e:
                logger.warning(f"Could not install {channel.name} error channel: {e}")

        installed = self.installed_channels
        logger.debug(f"Global error channels installed: {', '.join(installed) or 'none'}")
        return installed

    def uninstall_global_handlers(self) -> None:
        """Restore every hook replaced by an installed channel."""
        for channel in reversed(self._channels):
            try:
                channel.uninstall()
            except Exception as e:
                logger.warning(f"Could not uninstall {channel.name} error channel: {e}")

    def handle_uncaught_error(self, error: Any, operation: str = "uncaught-error") -> None:
        """Record a failure that escaped all application handling."""
        self._capture(error, operation)

    def handle_unhandled_rejection(self, reason: Any, operation: str = "unhandled-rejection") -> None:
        """Record a failure reported by an asynchronous task nobody awaited."""
        self._capture(reason, operation)

    def _capture(self, error: Any, operation: str) -> None:
        if not isinstance(error, BaseException):
            error = safe_str(error) if error is not None else "Unknown error"

        error_type = classify_error(error)
        event_id = self._logging_service.record_error(error, operation, ErrorSeverity.CRITICAL, error_type)

        if self.is_recoverable_error(error_type):
            event = self._event_for_recovery(event_id, error, operation, ErrorSeverity.CRITICAL, error_type)
            # Nothing re-invokes a captured failure, so retry budgets stay with wrapped calls
            self._fire(
                self._logging_service.attempt_recovery(event, grant_retry=False),
                f"recovery for {operation}",
            )

    def _fire(self, awaitable: Awaitable, description: str) -> None:
        """Run ``awaitable`` in the background without blocking the caller."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.debug(f"No running event loop; skipped {description}")
            return

        task = loop.create_task(self._guard(awaitable, description))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _guard(self, awaitable: Awaitable, description: str) -> None:
        # Background failures must never reach the asyncio channel
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Background {description} failed: {e}")

    async def wait_for_background_tasks(self) -> None:
        """Wait for scheduled recoveries and notifications to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ========== Wrapped execution ==========

    def wrap_with_error_handling(
        self,
        fn: Callable[..., Any],
        operation: str,
        error_type: Union[ErrorType, str],
    ) -> Callable[..., Any]:
        """
        Wrap ``fn`` so it never raises.

        A failing call records exactly one Error event, notifies the user and
        returns None. When ``fn`` returns an awaitable, the wrapper returns an
        awaitable with the same guarantee.
        """
        error_type = ErrorType(error_type)

        async def _swallow(awaitable: Awaitable) -> Any:
            try:
                return await awaitable
            except Exception as e:
                await self._report_failure(e, operation, error_type)
                return None

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args, **kwargs):
                return await _swallow(fn(*args, **kwargs))

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                result = fn(*args, **kwargs)
            except Exception as e:
                self._logging_service.record_error(e, operation, ErrorSeverity.ERROR, error_type)
                self._fire(self._notify_user(error_type, operation), f"user notification for {operation}")
                return None

            if inspect.isawaitable(result):
                return _swallow(result)
            return result

        return wrapper

    def wrap_async_with_error_handling(
        self,
        fn: Callable[..., Awaitable[Any]],
        operation: str,
        error_type: Union[ErrorType, str],
        enable_recovery: bool = False,
    ) -> Callable[..., Awaitable[Any]]:
        """
        Wrap an async ``fn`` in a retry loop bounded by the category's
        RecoveryAction.

        Args:
            fn: Coroutine function (or function returning an awaitable)
            operation: Operation label used for events and user messages
            error_type: Category failures of ``fn`` are recorded under
            enable_recovery: Retry recoverable categories while the
                category's RecoveryAction permits it

        Returns:
            Async wrapper resolving to ``fn``'s result, or None on failure
        """
        error_type = ErrorType(error_type)

        @functools.wraps(fn)
        async def wrapper(*args, **kwargs):
            return await self._execute_with_retry(fn, args, kwargs, operation, error_type, enable_recovery)

        return wrapper

    async def _execute_with_retry(
        self,
        fn: Callable[..., Any],
        args: tuple,
        kwargs: Dict[str, Any],
        operation: str,
        error_type: ErrorType,
        enable_recovery: bool,
    ) -> Any:
        # Each invocation spends the shared budget and hands it back when it ends
        recovery_started = False

        while True:
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                event = await self._report_failure(e, operation, error_type)
                if self._may_retry(enable_recovery, error_type):
                    recovery_started = True
                    granted = await self._request_retry(event, operation)
                else:
                    granted = False

                if not granted:
                    if recovery_started:
                        self._logging_service.abandon_recovery(error_type)
                    return None

                await self._delay_before_retry(error_type)
                continue

            if recovery_started:
                self._logging_service.mark_recovered(error_type)
            return result

    async def _report_failure(self, error: Exception, operation: str, error_type: ErrorType) -> ErrorEvent:
        event_id = await self._logging_service.log_error(error, operation, ErrorSeverity.ERROR, error_type)
        await self._notify_user(error_type, operation)
        return self._event_for_recovery(event_id, error, operation, ErrorSeverity.ERROR, error_type)

    def _may_retry(self, enable_recovery: bool, error_type: ErrorType) -> bool:
        if not enable_recovery or not self.is_recoverable_error(error_type):
            return False

        action = self._logging_service.get_recovery_action(error_type)
        return action is not None and action.can_retry()

    async def _request_retry(self, event: ErrorEvent, operation: str) -> bool:
        try:
            return await self._logging_service.attempt_recovery(event)
        except Exception as e:
            await self._logging_service.log_error(
                e, f"{operation}-recovery", ErrorSeverity.WARNING, ErrorType.LOGIC
            )
            return False

    async def _delay_before_retry(self, error_type: ErrorType) -> None:
        action = self._logging_service.get_recovery_action(error_type)
        if action is None:
            return
        delay_ms = action.get_retry_delay()
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000)

    def _event_for_recovery(
        self,
        event_id: str,
        error: Any,
        operation: str,
        severity: ErrorSeverity,
        error_type: ErrorType,
    ) -> ErrorEvent:
        """Buffered event for ``event_id``, or a minimal stand-in if it is gone."""
        event = self._logging_service.get_error_event(event_id)
        if event is not None:
            return event

        message = describe_exception(error) if isinstance(error, BaseException) else safe_str(error)
        return ErrorEvent(
            id=event_id,
            message=message or "Unknown error",
            severity=severity,
            error_type=error_type,
            operation=operation,
        )

    # ========== User surface ==========

    async def _notify_user(self, error_type: ErrorType, operation: str) -> None:
        if self._user_error_display is None:
            return

        try:
            if error_type == ErrorType.NETWORK:
                await self._user_error_display.show_network_error(operation)
            elif error_type == ErrorType.AUTHENTICATION:
                await self._user_error_display.show_authentication_error(operation)
            else:
                await self._user_error_display.show_generic_error(
                    operation, can_retry=self.is_recoverable_error(error_type)
                )
        except Exception as e:
            logger.warning(
                f"Failed to show user error: {e}",
                extra={"operation": operation, "error_type": error_type.value},
            )

    # ========== Classification helpers ==========

    @staticmethod
    def is_recoverable_error(error_type: Union[ErrorType, str]) -> bool:
        return ErrorType(error_type) in RECOVERABLE_ERROR_TYPES

    @staticmethod
    def is_transient_error(error_type: Union[ErrorType, str]) -> bool:
        return ErrorType(error_type) in TRANSIENT_ERROR_TYPES

    def create_error_boundary(self, operation: str = "error-boundary") -> "ErrorBoundary":
        """Boundary object for UI frameworks that catch render failures."""
        return ErrorBoundary(self, operation)


class ErrorBoundary:
    """
    Records failures caught by a framework error boundary.

    The boundary remembers the last failure so the host can render a
    fallback until :meth:`reset` is called.
    """

    def __init__(self, handler: ErrorHandler, operation: str = "error-boundary"):
        self._handler = handler
        self.operation = operation
        self.error: Optional[BaseException] = None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def handle_error(self, error: BaseException, error_info: Any = None, is_fatal: bool = False) -> None:
        operation = f"{self.operation}-fatal" if is_fatal else self.operation
        self._handler.handle_uncaught_error(error, operation)
        self.error = error

    def get_error_state(self) -> Dict[str, Any]:
        return {"has_error": self.has_error, "error": self.error}

    def reset(self) -> None:
        self.error = None

    def __call__(self, error: BaseException, error_info: Any = None) -> None:
        self.handle_error(error, error_info)
