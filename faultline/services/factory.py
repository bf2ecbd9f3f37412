"""
Convenience wiring for the error-handling pipeline.

Applications normally need one LoggingService, one UserErrorDisplay and one
ErrorHandler sharing that service. ``create_error_handling_system`` builds the
three from settings; ``ErrorHandlingSystem.start``/``shutdown`` connect and
release the persistence store at application startup and shutdown.
"""

from dataclasses import dataclass
from typing import Optional

from faultline.config import LoggingServiceConfig, Settings, settings as default_settings
from faultline.services.error_handler import ErrorHandler
from faultline.services.logging_service import LoggingService
from faultline.services.recovery_config import EnvironmentRecoveryConfig, initialize_recovery_system
from faultline.services.storage import KeyValueStore, RedisKeyValueStore, get_key_value_store
from faultline.services.user_error_display import LoggingUserErrorDisplay, UserErrorDisplay
from faultline.utils.logging import get_logger, setup_logging


logger = get_logger(__name__)


@dataclass
class ErrorHandlingSystem:
    """The wired pipeline components."""

    logging_service: LoggingService
    error_handler: ErrorHandler
    user_error_display: UserErrorDisplay
    recovery_config: EnvironmentRecoveryConfig
    store: Optional[KeyValueStore] = None

    async def start(self) -> int:
        """
        Connect the store and reload persisted events.

        Returns:
            Number of events loaded from the store
        """
        if isinstance(self.store, RedisKeyValueStore):
            await self.store.initialize()
        loaded = await self.logging_service.load_persisted_errors()
        logger.info(f"Error handling system started with {loaded} persisted events")
        return loaded

    async def shutdown(self) -> None:
        """Flush pending writes, release global hooks and close the store."""
        await self.error_handler.wait_for_background_tasks()
        await self.logging_service.flush_pending()
        self.error_handler.uninstall_global_handlers()
        if isinstance(self.store, RedisKeyValueStore):
            await self.store.close()
        logger.info("Error handling system shut down")


def create_error_handling_system(
    config: Optional[LoggingServiceConfig] = None,
    store: Optional[KeyValueStore] = None,
    display: Optional[UserErrorDisplay] = None,
    install_global_handlers: Optional[bool] = None,
    app_settings: Optional[Settings] = None,
    configure_logging: Optional[bool] = None,
) -> ErrorHandlingSystem:
    """
    Build a LoggingService, UserErrorDisplay and ErrorHandler.

    Args:
        config: Service configuration; derived from settings when omitted
        store: Persistence store; Redis when ``redis_url`` is configured,
            in-memory otherwise, none when persistence is disabled
        display: User surface; a LoggingUserErrorDisplay by default
        install_global_handlers: Override the ``install_global_handlers`` setting
        app_settings: Settings to read defaults from
        configure_logging: Override the ``configure_logging`` setting; when
            enabled the root logger is set up at ``log_level``

    Returns:
        ErrorHandlingSystem with recovery policies for the environment applied
    """
    app_settings = app_settings or default_settings
    if configure_logging is None:
        configure_logging = app_settings.configure_logging
    if configure_logging:
        setup_logging(app_settings.log_level)

    config = config or app_settings.to_service_config()

    if store is None and config.enable_local_persistence:
        store = get_key_value_store(app_settings.redis_url)

    logging_service = LoggingService(config, store=store)
    recovery_config = initialize_recovery_system(logging_service, config.environment)

    display = display or LoggingUserErrorDisplay()
    if install_global_handlers is None:
        install_global_handlers = app_settings.install_global_handlers

    error_handler = ErrorHandler(
        logging_service,
        user_error_display=display,
        install_global_handlers=install_global_handlers,
    )

    logger.info(
        f"Created error handling system for {config.environment} environment",
        extra={
            "persistence": type(store).__name__ if store is not None else "disabled",
            "global_handlers": error_handler.installed_channels,
        },
    )

    return ErrorHandlingSystem(
        logging_service=logging_service,
        error_handler=error_handler,
        user_error_display=display,
        recovery_config=recovery_config,
        store=store,
    )
