"""
Global failure channels.

A channel adapts one runtime hook for uncaught failures to the error handler:

- SysExceptHookChannel: exceptions escaping the main thread
- ThreadingExceptHookChannel: exceptions escaping worker threads
- AsyncioLoopChannel: unretrieved task exceptions and other failures
  reported to the event loop's exception handler

Every channel chains to the hook it replaced and restores it on uninstall.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Protocol

from faultline.utils.logging import get_logger


logger = get_logger(__name__)


class ErrorSink(Protocol):
    """Receiver of captured failures (implemented by ErrorHandler)."""

    def handle_uncaught_error(self, error: Any, operation: str = "uncaught-error") -> None:
        ...

    def handle_unhandled_rejection(self, reason: Any, operation: str = "unhandled-rejection") -> None:
        ...


class GlobalErrorChannel(ABC):
    """One runtime hook that reports uncaught failures."""

    name: str = "channel"

    def __init__(self) -> None:
        self._sink: Optional[ErrorSink] = None

    @property
    def installed(self) -> bool:
        return self._sink is not None

    def install(self, sink: ErrorSink) -> None:
        """
        Start forwarding failures to ``sink``.

        Raises:
            RuntimeError: If the hook is unavailable in this runtime
        """
        if self.installed:
            return
        self._install()
        self._sink = sink

    def uninstall(self) -> None:
        """Restore the previously installed hook."""
        if not self.installed:
            return
        self._uninstall()
        self._sink = None

    @abstractmethod
    def _install(self) -> None:
        ...

    @abstractmethod
    def _uninstall(self) -> None:
        ...

    def _forward(self, method: str, error: Any, operation: str) -> None:
        if self._sink is None:
            return
        try:
            getattr(self._sink, method)(error, operation)
        except Exception as e:
            logger.error(f"Error sink failed in {self.name} channel: {e}")


class SysExceptHookChannel(GlobalErrorChannel):
    """Captures exceptions that reach ``sys.excepthook``."""

    name = "sys.excepthook"

    def __init__(self) -> None:
        super().__init__()
        self._previous = None

    def _install(self) -> None:
        self._previous = sys.excepthook
        sys.excepthook = self._hook

    def _uninstall(self) -> None:
        if sys.excepthook == self._hook:
            sys.excepthook = self._previous or sys.__excepthook__
        self._previous = None

    def _hook(self, exc_type, exc_value, exc_traceback) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            self._forward("handle_uncaught_error", exc_value, "uncaught-error")

        previous = self._previous or sys.__excepthook__
        previous(exc_type, exc_value, exc_traceback)


class ThreadingExceptHookChannel(GlobalErrorChannel):
    """Captures exceptions that escape ``threading.Thread.run``."""

    name = "threading.excepthook"

    def __init__(self) -> None:
        super().__init__()
        self._previous = None

    def _install(self) -> None:
        self._previous = threading.excepthook
        threading.excepthook = self._hook

    def _uninstall(self) -> None:
        if threading.excepthook == self._hook:
            threading.excepthook = self._previous or threading.__excepthook__
        self._previous = None

    def _hook(self, args) -> None:
        # SystemExit ends a thread silently
        if args.exc_type is not SystemExit and args.exc_value is not None:
            thread_name = args.thread.name if args.thread is not None else "unknown"
            self._forward("handle_uncaught_error", args.exc_value, f"uncaught-error:{thread_name}")

        previous = self._previous or threading.__excepthook__
        previous(args)


class AsyncioLoopChannel(GlobalErrorChannel):
    """
    Captures failures reported to an event loop's exception handler.

    This is where never-retrieved task exceptions end up, so it plays the
    role of an unhandled-rejection channel.

    Args:
        loop: Loop to hook; defaults to the running loop at install time
    """

    name = "asyncio"

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        super().__init__()
        self._loop = loop
        self._hooked_loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous = None

    def _install(self) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._previous = loop.get_exception_handler()
        loop.set_exception_handler(self._handle)
        self._hooked_loop = loop

    def _uninstall(self) -> None:
        loop = self._hooked_loop
        if loop is not None and not loop.is_closed() and loop.get_exception_handler() == self._handle:
            loop.set_exception_handler(self._previous)
        self._hooked_loop = None
        self._previous = None

    def _handle(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        reason = context.get("exception")
        if reason is None:
            reason = context.get("message") or "Unhandled event loop error"
        self._forward("handle_unhandled_rejection", reason, "unhandled-rejection")

        if self._previous is not None:
            self._previous(loop, context)
        else:
            loop.default_exception_handler(context)


def default_channels() -> list:
    """Channels available in every Python runtime, plus the running loop if any."""
    channels = [SysExceptHookChannel(), ThreadingExceptHookChannel()]
    try:
        channels.append(AsyncioLoopChannel(asyncio.get_running_loop()))
    except RuntimeError:
        logger.debug("No running event loop; asyncio channel not available")
    return channels
