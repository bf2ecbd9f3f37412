"""
User error surface.

The pipeline never renders anything itself. After logging a wrapped failure
the error handler calls into a UserErrorDisplay, which host applications
implement on top of their own UI (dialogs, toasts, CLI output). The default
LoggingUserErrorDisplay formats the user-facing text and writes it to the
package logger.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from faultline.utils.logging import get_logger


class UserErrorDisplay(ABC):
    """Presents errors to the end user."""

    @abstractmethod
    async def show_generic_error(self, operation: str, can_retry: bool = False) -> None:
        """Show a generic failure for ``operation``."""

    @abstractmethod
    async def show_network_error(self, operation: str) -> None:
        """Show a connectivity failure for ``operation``."""

    @abstractmethod
    async def show_authentication_error(self, operation: str) -> None:
        """Show an authentication failure for ``operation``."""

    @abstractmethod
    async def show_custom_error(self, message: str, title: str = "Error") -> None:
        """Show an arbitrary message."""


def format_operation(operation: str) -> str:
    """Turn an operation label such as ``save-exercise`` into ``save exercise``."""
    return operation.replace("-", " ").replace("_", " ").strip() or "performing this action"


def format_generic_error_message(operation: str, can_retry: bool) -> str:
    base_message = f"An error occurred while {format_operation(operation)}."
    if can_retry:
        return f"{base_message} Please try again."
    return f"{base_message} Please contact support if the problem persists."


def format_network_error_message(operation: str) -> str:
    return (
        f"Unable to connect to the server while {format_operation(operation)}. "
        f"Please check your internet connection and try again."
    )


def format_authentication_error_message(operation: str) -> str:
    return (
        f"Authentication is required to {format_operation(operation)}. "
        f"Please sign in and try again."
    )


class LoggingUserErrorDisplay(UserErrorDisplay):
    """
    Display that writes user-facing messages to the log.

    Every shown message is also kept in ``shown`` so callers (and tests) can
    inspect what the user would have seen.
    """

    def __init__(self, logger: Optional[logging.LoggerAdapter] = None, history_limit: int = 50):
        self._logger = logger or get_logger(__name__, surface="user")
        self._history_limit = history_limit
        self.shown: List[dict] = []

    async def show_generic_error(self, operation: str, can_retry: bool = False) -> None:
        message = format_generic_error_message(operation, can_retry)
        self._show("Error", message, can_retry)

    async def show_network_error(self, operation: str) -> None:
        self._show("Network Error", format_network_error_message(operation), True)

    async def show_authentication_error(self, operation: str) -> None:
        self._show("Authentication Error", format_authentication_error_message(operation), False)

    async def show_custom_error(self, message: str, title: str = "Error") -> None:
        self._show(title, message or "An unexpected error occurred.", False)

    def _show(self, title: str, message: str, can_retry: bool) -> None:
        self.shown.append({"title": title, "message": message, "can_retry": can_retry})
        if len(self.shown) > self._history_limit:
            del self.shown[0]

        self._logger.error(
            f"{title}: {message}",
            extra={"title": title, "can_retry": can_retry},
        )
