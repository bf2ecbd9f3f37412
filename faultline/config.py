"""
Application configuration management.

Settings are loaded from environment variables (prefix ``FAULTLINE_``) or a
``.env`` file. Services themselves never read the environment: they receive
an explicit :class:`LoggingServiceConfig`, which :meth:`Settings.to_service_config`
builds for the default wiring.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


VALID_ENVIRONMENTS = ("development", "production", "test")

# Environments in which debug-level events are recorded.
DEVELOPMENT_LIKE_ENVIRONMENTS = frozenset({"development", "dev", "local", "test"})


class LoggingServiceConfig(BaseModel):
    """Configuration for a single LoggingService instance."""

    max_buffer_size: int = Field(default=1000, gt=0)
    max_retention_days: int = Field(default=7, gt=0)
    enable_local_persistence: bool = True
    environment: str = "production"
    enable_console_logging: Optional[bool] = None
    component: str = "faultline"
    session_id: Optional[str] = None
    storage_key_prefix: str = "faultline"

    @model_validator(mode="after")
    def _derive_console_logging(self) -> "LoggingServiceConfig":
        # Console mirroring is noise in test runs unless asked for explicitly
        if self.enable_console_logging is None:
            self.enable_console_logging = self.environment != "test"
        return self

    @property
    def is_development_like(self) -> bool:
        """Whether debug events should be recorded."""
        return self.environment.lower() in DEVELOPMENT_LIKE_ENVIRONMENTS


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FAULTLINE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = "production"
    log_level: str = "INFO"
    configure_logging: bool = True

    # Buffering and retention
    max_buffer_size: int = 1000
    max_retention_days: int = 7
    enable_local_persistence: bool = True
    enable_console_logging: Optional[bool] = None

    # Persistence
    redis_url: Optional[str] = None
    storage_key_prefix: str = "faultline"

    # Global capture
    install_global_handlers: bool = True

    def to_service_config(self, **overrides) -> LoggingServiceConfig:
        """
        Build a LoggingServiceConfig from these settings.

        Args:
            **overrides: Fields that replace the settings-derived values

        Returns:
            Validated service configuration
        """
        values = {
            "max_buffer_size": self.max_buffer_size,
            "max_retention_days": self.max_retention_days,
            "enable_local_persistence": self.enable_local_persistence,
            "environment": self.environment,
            "enable_console_logging": self.enable_console_logging,
            "storage_key_prefix": self.storage_key_prefix,
        }
        values.update(overrides)
        return LoggingServiceConfig(**values)


class EnvironmentConfigs:
    """Preset service configurations per deployment environment."""

    @staticmethod
    def development() -> LoggingServiceConfig:
        return LoggingServiceConfig(
            max_buffer_size=2000,
            max_retention_days=14,
            enable_local_persistence=True,
            environment="development",
            enable_console_logging=True,
        )

    @staticmethod
    def production() -> LoggingServiceConfig:
        return LoggingServiceConfig(
            max_buffer_size=500,
            max_retention_days=7,
            enable_local_persistence=True,
            environment="production",
            enable_console_logging=True,
        )

    @staticmethod
    def test() -> LoggingServiceConfig:
        return LoggingServiceConfig(
            max_buffer_size=100,
            max_retention_days=1,
            enable_local_persistence=False,
            environment="test",
            enable_console_logging=False,
        )

    @classmethod
    def for_environment(cls, environment: str) -> LoggingServiceConfig:
        """Return the preset for ``environment``, defaulting to production."""
        presets = {
            "development": cls.development,
            "production": cls.production,
            "test": cls.test,
        }
        return presets.get(environment, cls.production)()


def validate_service_config(config: Dict) -> List[str]:
    """
    Check a raw configuration mapping against recommended bounds.

    Unlike constructing a LoggingServiceConfig this never raises; it reports
    every problem it finds so startup code can log them together.

    Args:
        config: Raw configuration values keyed by LoggingServiceConfig field

    Returns:
        List of problem descriptions (empty when the config is acceptable)
    """
    errors: List[str] = []

    max_buffer_size = config.get("max_buffer_size")
    if max_buffer_size is not None:
        if not isinstance(max_buffer_size, int) or max_buffer_size <= 0:
            errors.append("max_buffer_size must be a positive integer")
        elif max_buffer_size > 10000:
            errors.append("max_buffer_size is too large (max: 10000)")

    max_retention_days = config.get("max_retention_days")
    if max_retention_days is not None:
        if not isinstance(max_retention_days, int) or max_retention_days <= 0:
            errors.append("max_retention_days must be a positive integer")
        elif max_retention_days > 365:
            errors.append("max_retention_days is too large (max: 365)")

    environment = config.get("environment")
    if environment is not None and environment not in VALID_ENVIRONMENTS:
        errors.append(f"environment must be one of: {', '.join(VALID_ENVIRONMENTS)}")

    return errors


# Global settings instance
settings = Settings()
