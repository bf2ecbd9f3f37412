"""
Unit tests for recovery policy presets.
"""

import pytest

from faultline.config import LoggingServiceConfig
from faultline.models import ErrorType, RecoveryAction, RecoveryActionType
from faultline.services.logging_service import LoggingService
from faultline.services.recovery_config import (
    OPERATION_RECOVERY_ACTIONS,
    configure_default_recovery_actions,
    configure_operation_recovery_actions,
    default_recovery_actions,
    get_environment_recovery_config,
    initialize_recovery_system,
    limit_retries,
)


@pytest.fixture
def service() -> LoggingService:
    return LoggingService(LoggingServiceConfig(environment="test", enable_local_persistence=False))


class TestEnvironmentRecoveryConfig:
    """Test per-environment recovery settings."""

    def test_presets(self):
        development = get_environment_recovery_config("development")
        production = get_environment_recovery_config("production")
        test = get_environment_recovery_config("test")

        assert development.enable_recovery_attempts and development.max_retry_attempts == 5
        assert production.enable_recovery_attempts and production.max_retry_attempts == 3
        assert not test.enable_recovery_attempts
        assert test.max_retry_attempts == 0

    def test_unknown_environment_uses_development(self):
        assert get_environment_recovery_config("staging") == get_environment_recovery_config("development")

    def test_lookup_is_case_insensitive(self):
        assert get_environment_recovery_config("PRODUCTION").max_retry_attempts == 3

    def test_returns_copy(self):
        config = get_environment_recovery_config("production")
        config.max_retry_attempts = 99

        assert get_environment_recovery_config("production").max_retry_attempts == 3


def test_default_actions_cover_every_category():
    actions = {action.error_type: action for action in default_recovery_actions()}

    assert set(actions) == set(ErrorType)
    assert actions[ErrorType.NETWORK].action_type == RecoveryActionType.RETRY
    assert actions[ErrorType.NETWORK].get_max_retries() == 3
    assert actions[ErrorType.NETWORK].get_retry_delay() == 2000
    assert actions[ErrorType.DATABASE].get_max_retries() == 2
    assert actions[ErrorType.AUTHENTICATION].action_type == RecoveryActionType.USER_PROMPT
    assert actions[ErrorType.UI].action_type == RecoveryActionType.FALLBACK
    assert actions[ErrorType.LOGIC].action_type == RecoveryActionType.FAIL_GRACEFULLY
    assert actions[ErrorType.STORAGE].action_type == RecoveryActionType.FALLBACK


def test_default_actions_are_fresh_instances():
    first = default_recovery_actions()[0]
    first.increment_retry()

    assert default_recovery_actions()[0].current_retries == 0


def test_configure_default_recovery_actions(service):
    assert configure_default_recovery_actions(service) == 6

    for error_type in ErrorType:
        assert service.get_recovery_action(error_type) is not None


class TestOperationRecoveryActions:
    """Test the operation catalogue."""

    def test_fills_empty_registry(self, service):
        applied = configure_operation_recovery_actions(service)

        assert applied == ["save-record", "user-login", "data-sync", "local-storage"]
        assert service.get_recovery_action(ErrorType.DATABASE).action_id == "save-record-recovery"
        assert service.get_recovery_action(ErrorType.NETWORK).get_retry_delay() == 5000

    def test_existing_policies_are_kept(self, service):
        configure_default_recovery_actions(service)

        assert configure_operation_recovery_actions(service) == []
        assert service.get_recovery_action(ErrorType.DATABASE).action_id == "database-auto-recovery"

    def test_catalogue_categories_match_builders(self):
        for error_type, build in OPERATION_RECOVERY_ACTIONS.values():
            action = build()
            assert isinstance(action, RecoveryAction)
            assert action.error_type == error_type


class TestInitializeRecoverySystem:
    """Test environment-driven setup."""

    def test_test_environment_registers_nothing(self, service):
        config = initialize_recovery_system(service, "test")

        assert not config.enable_recovery_attempts
        assert all(service.get_recovery_action(error_type) is None for error_type in ErrorType)

    def test_production_registers_defaults(self, service):
        config = initialize_recovery_system(service, "production")

        assert config.enable_recovery_attempts
        assert service.get_recovery_action(ErrorType.NETWORK).action_id == "network-auto-recovery"
        assert service.get_recovery_action(ErrorType.STORAGE) is not None

    def test_retry_cap_applies_to_catalogue(self, service):
        applied = configure_operation_recovery_actions(service, max_retry_attempts=3)

        assert "save-record" in applied
        assert service.get_recovery_action(ErrorType.DATABASE).get_max_retries() == 3
        assert service.get_recovery_action(ErrorType.NETWORK).get_max_retries() == 3
        assert service.get_recovery_action(ErrorType.NETWORK).get_retry_delay() == 5000

    def test_zero_cap_skips_retry_policies(self, service):
        registered = configure_default_recovery_actions(service, max_retry_attempts=0)

        assert registered == 4
        assert service.get_recovery_action(ErrorType.NETWORK) is None
        assert service.get_recovery_action(ErrorType.DATABASE) is None
        assert service.get_recovery_action(ErrorType.UI).action_type == RecoveryActionType.FALLBACK


class TestLimitRetries:
    """Test the environment retry cap."""

    def test_caps_larger_budget(self):
        action = RecoveryAction.create_retry("sync", ErrorType.NETWORK, max_retries=5, retry_delay=10)

        capped = limit_retries(action, 2)

        assert capped is not action
        assert capped.get_max_retries() == 2
        assert capped.get_retry_delay() == 10
        assert action.get_max_retries() == 5

    def test_smaller_budget_is_kept(self):
        action = RecoveryAction.create_retry("sync", ErrorType.NETWORK, max_retries=1)

        assert limit_retries(action, 3) is action
        assert limit_retries(action, None) is action

    def test_zero_cap_drops_retry_only(self):
        retry = RecoveryAction.create_retry("sync", ErrorType.NETWORK)
        fallback = RecoveryAction.create_fallback("ui", ErrorType.UI, "Show cached view", "Showing cached data.")

        assert limit_retries(retry, 0) is None
        assert limit_retries(fallback, 0) is fallback
