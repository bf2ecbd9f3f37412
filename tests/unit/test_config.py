"""
Unit tests for configuration management.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from faultline.config import (
    EnvironmentConfigs,
    LoggingServiceConfig,
    Settings,
    validate_service_config,
)


def test_settings_loads_from_environment():
    """Test that settings can be loaded from environment variables."""
    with patch.dict(os.environ, {
        'FAULTLINE_ENVIRONMENT': 'development',
        'FAULTLINE_LOG_LEVEL': 'DEBUG',
        'FAULTLINE_MAX_BUFFER_SIZE': '250',
        'FAULTLINE_MAX_RETENTION_DAYS': '3',
        'FAULTLINE_REDIS_URL': 'redis://localhost:6379/0',
        'FAULTLINE_INSTALL_GLOBAL_HANDLERS': 'false',
    }):
        settings = Settings(_env_file=None)

        assert settings.environment == 'development'
        assert settings.log_level == 'DEBUG'
        assert settings.max_buffer_size == 250
        assert settings.max_retention_days == 3
        assert settings.redis_url == 'redis://localhost:6379/0'
        assert settings.install_global_handlers is False


def test_settings_has_default_values():
    """Test that settings have appropriate default values."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.environment == 'production'
        assert settings.log_level == 'INFO'
        assert settings.max_buffer_size == 1000
        assert settings.max_retention_days == 7
        assert settings.enable_local_persistence is True
        assert settings.enable_console_logging is None
        assert settings.redis_url is None
        assert settings.configure_logging is True
        assert settings.storage_key_prefix == 'faultline'


def test_to_service_config_applies_overrides():
    """Test settings produce a service config with overrides winning."""
    settings = Settings(_env_file=None, environment='development', max_buffer_size=50)

    config = settings.to_service_config(component='checkout')

    assert config.environment == 'development'
    assert config.max_buffer_size == 50
    assert config.component == 'checkout'
    assert config.enable_console_logging is True


class TestLoggingServiceConfig:
    """Test the per-service configuration model."""

    def test_defaults(self):
        config = LoggingServiceConfig()

        assert config.max_buffer_size == 1000
        assert config.max_retention_days == 7
        assert config.enable_local_persistence is True
        assert config.environment == 'production'
        assert config.component == 'faultline'

    @pytest.mark.parametrize("environment,expected", [
        ("production", True),
        ("development", True),
        ("test", False),
    ])
    def test_console_logging_derived_from_environment(self, environment, expected):
        config = LoggingServiceConfig(environment=environment)

        assert config.enable_console_logging is expected

    def test_explicit_console_logging_wins(self):
        config = LoggingServiceConfig(environment='test', enable_console_logging=True)

        assert config.enable_console_logging is True

    @pytest.mark.parametrize("environment,expected", [
        ("development", True),
        ("dev", True),
        ("local", True),
        ("test", True),
        ("production", False),
        ("staging", False),
    ])
    def test_is_development_like(self, environment, expected):
        assert LoggingServiceConfig(environment=environment).is_development_like is expected

    def test_rejects_non_positive_buffer(self):
        with pytest.raises(ValidationError):
            LoggingServiceConfig(max_buffer_size=0)


class TestEnvironmentConfigs:
    """Test environment presets."""

    def test_test_preset_disables_persistence_and_console(self):
        config = EnvironmentConfigs.test()

        assert config.environment == 'test'
        assert config.enable_local_persistence is False
        assert config.enable_console_logging is False

    def test_unknown_environment_falls_back_to_production(self):
        config = EnvironmentConfigs.for_environment('staging')

        assert config.environment == 'production'
        assert config.max_buffer_size == 500


class TestValidateServiceConfig:
    """Test non-raising config validation."""

    def test_valid_config_has_no_errors(self):
        assert validate_service_config({
            'max_buffer_size': 1000,
            'max_retention_days': 7,
            'environment': 'production',
        }) == []

    def test_reports_every_problem(self):
        errors = validate_service_config({
            'max_buffer_size': 20000,
            'max_retention_days': 0,
            'environment': 'staging',
        })

        assert len(errors) == 3
        assert any('max_buffer_size' in error for error in errors)
        assert any('max_retention_days' in error for error in errors)
        assert any('environment' in error for error in errors)
