"""
Unit tests for the error context model.
"""

import logging

import pytest
from pydantic import ValidationError

from faultline.models import (
    REDACTED,
    ErrorContext,
    NavigationState,
    NetworkState,
    PerformanceMetrics,
    find_sensitive_paths,
    is_sensitive_key,
)


CONTEXT_LOGGER = "faultline.models.error_context"


def _sensitive_warnings(caplog):
    return [record for record in caplog.records if record.name == CONTEXT_LOGGER and record.levelno == logging.WARNING]


class TestErrorContextValidation:
    """Test construction invariants."""

    def test_requires_error_event_id(self):
        with pytest.raises(ValidationError):
            ErrorContext()

    def test_rejects_blank_error_event_id(self):
        with pytest.raises(ValidationError):
            ErrorContext(error_event_id="  ")

    @pytest.mark.parametrize("cpu_usage", [-1, 100.5])
    def test_rejects_cpu_usage_outside_percentage(self, cpu_usage):
        with pytest.raises(ValidationError):
            ErrorContext(error_event_id="error-1", performance_metrics={"cpu_usage": cpu_usage})

    def test_rejects_negative_memory(self):
        with pytest.raises(ValidationError):
            PerformanceMetrics(memory_usage=-1)

    def test_rejects_empty_route(self):
        with pytest.raises(ValidationError):
            NavigationState(current_route="")

    def test_assignment_is_validated(self):
        context = ErrorContext(error_event_id="error-1")

        with pytest.raises(ValidationError):
            context.network_state = "offline"


class TestSensitiveDataScan:
    """Test warnings and redaction for secret-looking keys."""

    def test_password_warns_and_note_does_not(self, caplog):
        with caplog.at_level(logging.WARNING, logger=CONTEXT_LOGGER):
            ErrorContext(error_event_id="error-1", data_state={"password": "x", "note": "ok"})

        warnings = _sensitive_warnings(caplog)
        assert len(warnings) == 1
        assert "password" in warnings[0].getMessage()
        assert "note" not in warnings[0].getMessage()

    def test_sanitize_redacts_in_place(self):
        context = ErrorContext(error_event_id="error-1", data_state={"password": "x", "note": "ok"})

        redacted = context.sanitize_data_state()

        assert redacted == 1
        assert context.data_state == {"password": REDACTED, "note": "ok"}

    def test_sanitize_reaches_nested_mappings(self):
        context = ErrorContext(
            error_event_id="error-1",
            data_state={"user": {"name": "ada", "api_key": "k"}, "count": 3},
        )

        assert context.sanitize_data_state() == 1
        assert context.data_state["user"] == {"name": "ada", "api_key": REDACTED}

    def test_sanitize_without_data_state(self):
        assert ErrorContext(error_event_id="error-1").sanitize_data_state() == 0

    def test_add_data_state_warns_on_sensitive_key(self, caplog):
        context = ErrorContext(error_event_id="error-1")

        with caplog.at_level(logging.WARNING, logger=CONTEXT_LOGGER):
            context.add_data_state("page", 2)
            context.add_data_state("auth_token", "abc")

        warnings = _sensitive_warnings(caplog)
        assert len(warnings) == 1
        assert "auth_token" in warnings[0].getMessage()
        assert context.data_state == {"page": 2, "auth_token": "abc"}

    def test_scan_depth_is_bounded(self):
        data = {"a": {"b": {"token": 1, "c": {"secret": 2}}}}

        assert find_sensitive_paths(data) == ["a.b.token"]

    def test_scan_reaches_mappings_in_lists(self):
        data = {"users": [{"name": "ada", "password": "x"}], "tags": ["a", "b"]}

        assert find_sensitive_paths(data) == ["users[0].password"]

    def test_sanitize_reaches_mappings_in_lists(self):
        context = ErrorContext(error_event_id="error-1", data_state={"users": [{"password": "x"}, {"name": "bo"}]})

        assert context.sanitize_data_state() == 1
        assert context.data_state["users"] == [{"password": REDACTED}, {"name": "bo"}]

    def test_sanitize_survives_cyclic_data_state(self):
        context = ErrorContext(error_event_id="error-1", data_state={"token": "t", "items": []})
        context.data_state["self"] = context.data_state
        context.data_state["items"].append(context.data_state["items"])

        assert context.sanitize_data_state() == 1
        assert context.data_state["token"] == REDACTED
        assert find_sensitive_paths(context.data_state) == ["token"]

    def test_sanitize_depth_is_bounded(self):
        context = ErrorContext(error_event_id="error-1", data_state={"a": {"b": {"c": {"secret": 2}}}})

        assert context.sanitize_data_state() == 0
        assert context.data_state["a"]["b"]["c"] == {"secret": 2}

    @pytest.mark.parametrize("key,sensitive", [
        ("password", True),
        ("userPassword", True),
        ("SSN", True),
        ("credit_card", True),
        ("note", False),
        ("count", False),
    ])
    def test_is_sensitive_key(self, key, sensitive):
        assert is_sensitive_key(key) is sensitive


class TestErrorContextBehaviour:
    """Test helpers and serialization."""

    def test_factories(self):
        with_action = ErrorContext.with_user_action("error-1", "tap-save")
        with_route = ErrorContext.with_navigation("error-1", "/orders", "/home")

        assert with_action.is_during_user_interaction()
        assert with_route.navigation_state.current_route == "/orders"
        assert with_route.navigation_state.previous_route == "/home"

    @pytest.mark.parametrize("state,issues", [
        (NetworkState.CONNECTED, False),
        (NetworkState.LIMITED, True),
        (NetworkState.DISCONNECTED, True),
        (None, False),
    ])
    def test_network_issues(self, state, issues):
        assert ErrorContext(error_event_id="error-1", network_state=state).has_network_issues() is issues

    def test_performance_issues(self):
        busy = ErrorContext(error_event_id="error-1", performance_metrics={"cpu_usage": 95})
        idle = ErrorContext(error_event_id="error-1", performance_metrics={"cpu_usage": 5, "memory_usage": 1024})

        assert busy.has_performance_issues()
        assert not idle.has_performance_issues()

    def test_summary(self):
        context = ErrorContext(
            error_event_id="error-1",
            user_action="tap-save",
            navigation_state={"current_route": "/orders"},
            network_state=NetworkState.DISCONNECTED,
        )

        assert context.summary() == "Action: tap-save, Route: /orders, Network: disconnected"
        assert ErrorContext(error_event_id="error-1").summary() == "No significant context"

    def test_with_data_state_merges_into_copy(self):
        context = ErrorContext(error_event_id="error-1", data_state={"page": 1})

        merged = context.with_data_state({"filter": "open"})

        assert merged.data_state == {"page": 1, "filter": "open"}
        assert context.data_state == {"page": 1}
        assert merged.context_id == context.context_id

    def test_json_round_trip(self):
        context = ErrorContext(
            error_event_id="error-1",
            navigation_state={"current_route": "/orders"},
            data_state={"page": 1},
            network_state=NetworkState.LIMITED,
            performance_metrics={"memory_usage": 2048, "cpu_usage": 12.5},
        )

        assert ErrorContext.from_json(context.to_json()) == context

    def test_to_minimal_drops_bulky_fields(self):
        context = ErrorContext(
            error_event_id="error-1",
            data_state={"page": 1},
            performance_metrics={"cpu_usage": 12.5},
        )

        minimal = context.to_minimal()

        assert "data_state" not in minimal
        assert "performance_metrics" not in minimal
        assert minimal["error_event_id"] == "error-1"
