"""
Unit tests for global failure channels.
"""

import asyncio
import sys
import threading
from unittest.mock import MagicMock

import pytest

from faultline.config import LoggingServiceConfig
from faultline.services.channels import (
    AsyncioLoopChannel,
    GlobalErrorChannel,
    SysExceptHookChannel,
    ThreadingExceptHookChannel,
    default_channels,
)
from faultline.services.error_handler import ErrorHandler
from faultline.services.logging_service import LoggingService


@pytest.fixture
def sink() -> MagicMock:
    return MagicMock()


class TestSysExceptHookChannel:
    """Test the main-thread excepthook adapter."""

    def test_install_chains_and_uninstall_restores(self, sink, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(sys, "excepthook", previous)
        channel = SysExceptHookChannel()

        channel.install(sink)
        assert sys.excepthook != previous

        error = ValueError("escaped")
        sys.excepthook(ValueError, error, None)

        sink.handle_uncaught_error.assert_called_once_with(error, "uncaught-error")
        previous.assert_called_once_with(ValueError, error, None)

        channel.uninstall()
        assert sys.excepthook is previous
        assert not channel.installed

    def test_keyboard_interrupt_is_not_reported(self, sink, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(sys, "excepthook", previous)
        channel = SysExceptHookChannel()
        channel.install(sink)

        sys.excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)

        sink.handle_uncaught_error.assert_not_called()
        previous.assert_called_once()
        channel.uninstall()

    def test_sink_failure_does_not_break_chain(self, sink, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(sys, "excepthook", previous)
        sink.handle_uncaught_error.side_effect = RuntimeError("sink broke")
        channel = SysExceptHookChannel()
        channel.install(sink)

        sys.excepthook(ValueError, ValueError("escaped"), None)

        previous.assert_called_once()
        channel.uninstall()


class TestThreadingExceptHookChannel:
    """Test the worker-thread excepthook adapter."""

    def test_thread_failure_is_reported(self, sink, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(threading, "excepthook", previous)
        channel = ThreadingExceptHookChannel()
        channel.install(sink)

        def worker():
            raise RuntimeError("worker crashed")

        thread = threading.Thread(target=worker, name="sync-worker")
        thread.start()
        thread.join()
        channel.uninstall()

        error, operation = sink.handle_uncaught_error.call_args.args
        assert isinstance(error, RuntimeError)
        assert operation == "uncaught-error:sync-worker"
        previous.assert_called_once()
        assert threading.excepthook is previous

    def test_system_exit_is_ignored(self, sink, monkeypatch):
        monkeypatch.setattr(threading, "excepthook", MagicMock())
        channel = ThreadingExceptHookChannel()
        channel.install(sink)

        thread = threading.Thread(target=sys.exit)
        thread.start()
        thread.join()
        channel.uninstall()

        sink.handle_uncaught_error.assert_not_called()


class TestAsyncioLoopChannel:
    """Test the event loop exception handler adapter."""

    async def test_unretrieved_exception_is_reported(self, sink):
        loop = asyncio.get_running_loop()
        previous = MagicMock()
        loop.set_exception_handler(previous)
        channel = AsyncioLoopChannel()

        channel.install(sink)
        error = ConnectionError("stream reset")
        loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": error})

        sink.handle_unhandled_rejection.assert_called_once_with(error, "unhandled-rejection")
        previous.assert_called_once()

        channel.uninstall()
        assert loop.get_exception_handler() is previous
        loop.set_exception_handler(None)

    async def test_message_only_context(self, sink):
        loop = asyncio.get_running_loop()
        channel = AsyncioLoopChannel(loop)
        channel.install(sink)

        loop.call_exception_handler({"message": "Unclosed transport"})

        sink.handle_unhandled_rejection.assert_called_once_with("Unclosed transport", "unhandled-rejection")
        channel.uninstall()
        assert loop.get_exception_handler() is None

    def test_install_without_running_loop_fails(self, sink):
        with pytest.raises(RuntimeError):
            AsyncioLoopChannel().install(sink)


class BrokenChannel(GlobalErrorChannel):
    name = "broken"

    def _install(self):
        raise RuntimeError("hook unavailable")

    def _uninstall(self):
        pass


class TestHandlerChannelInstallation:
    """Test that channels install independently."""

    def test_failed_channel_does_not_block_others(self, monkeypatch):
        previous = MagicMock()
        monkeypatch.setattr(sys, "excepthook", previous)
        service = LoggingService(LoggingServiceConfig(environment="test", enable_local_persistence=False))
        working = SysExceptHookChannel()

        handler = ErrorHandler(service, channels=[BrokenChannel(), working])

        assert handler.installed_channels == ["sys.excepthook"]

        sys.excepthook(ValueError, ValueError("escaped"), None)
        assert service.get_recent_errors()[0].message == "escaped"

        handler.uninstall_global_handlers()
        assert sys.excepthook is previous

    def test_default_channels_outside_loop(self):
        names = [channel.name for channel in default_channels()]

        assert names == ["sys.excepthook", "threading.excepthook"]

    async def test_default_channels_inside_loop(self):
        names = [channel.name for channel in default_channels()]

        assert names == ["sys.excepthook", "threading.excepthook", "asyncio"]
