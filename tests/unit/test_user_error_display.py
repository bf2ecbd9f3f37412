"""
Unit tests for the user error surface.
"""

import logging

import pytest

from faultline.services.user_error_display import (
    LoggingUserErrorDisplay,
    format_generic_error_message,
    format_operation,
)


@pytest.mark.parametrize("operation,expected", [
    ("save-record", "save record"),
    ("fetch_orders", "fetch orders"),
    ("", "performing this action"),
])
def test_format_operation(operation, expected):
    assert format_operation(operation) == expected


def test_generic_message_depends_on_retry():
    assert format_generic_error_message("save-record", True).endswith("Please try again.")
    assert "contact support" in format_generic_error_message("save-record", False)


class TestLoggingUserErrorDisplay:
    """Test the logging-backed display."""

    async def test_generic_error(self):
        display = LoggingUserErrorDisplay()

        await display.show_generic_error("save-record", can_retry=True)

        assert display.shown == [{
            "title": "Error",
            "message": "An error occurred while save record. Please try again.",
            "can_retry": True,
        }]

    async def test_network_error(self):
        display = LoggingUserErrorDisplay()

        await display.show_network_error("sync-orders")

        shown = display.shown[0]
        assert shown["title"] == "Network Error"
        assert "internet connection" in shown["message"]
        assert shown["can_retry"] is True

    async def test_authentication_error(self):
        display = LoggingUserErrorDisplay()

        await display.show_authentication_error("load-profile")

        shown = display.shown[0]
        assert shown["title"] == "Authentication Error"
        assert "sign in" in shown["message"]

    async def test_custom_error(self):
        display = LoggingUserErrorDisplay()

        await display.show_custom_error("Export finished with warnings", title="Export")
        await display.show_custom_error("")

        assert display.shown[0] == {"title": "Export", "message": "Export finished with warnings", "can_retry": False}
        assert display.shown[1]["message"] == "An unexpected error occurred."

    async def test_messages_are_logged(self, caplog):
        display = LoggingUserErrorDisplay()

        with caplog.at_level(logging.ERROR, logger="faultline.services.user_error_display"):
            await display.show_network_error("sync-orders")

        assert any(record.getMessage().startswith("Network Error:") for record in caplog.records)

    async def test_history_is_bounded(self):
        display = LoggingUserErrorDisplay(history_limit=3)

        for index in range(5):
            await display.show_custom_error(f"message {index}")

        assert [shown["message"] for shown in display.shown] == ["message 2", "message 3", "message 4"]
