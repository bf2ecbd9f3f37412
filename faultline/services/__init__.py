"""Error logging, recovery and global capture services."""

from faultline.services.storage import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    get_key_value_store,
)
from faultline.services.context_collector import ContextCollector
from faultline.services.user_error_display import (
    LoggingUserErrorDisplay,
    UserErrorDisplay,
)
from faultline.services.logging_service import DEBUG_DISABLED_ID, LoggingService
from faultline.services.channels import (
    AsyncioLoopChannel,
    GlobalErrorChannel,
    SysExceptHookChannel,
    ThreadingExceptHookChannel,
)
from faultline.services.error_handler import (
    RECOVERABLE_ERROR_TYPES,
    ErrorBoundary,
    ErrorHandler,
    classify_error,
)
from faultline.services.recovery_config import (
    OPERATION_RECOVERY_ACTIONS,
    EnvironmentRecoveryConfig,
    configure_default_recovery_actions,
    configure_operation_recovery_actions,
    get_environment_recovery_config,
)
from faultline.services.factory import ErrorHandlingSystem, create_error_handling_system

__all__ = [
    'InMemoryKeyValueStore',
    'KeyValueStore',
    'RedisKeyValueStore',
    'get_key_value_store',
    'ContextCollector',
    'LoggingUserErrorDisplay',
    'UserErrorDisplay',
    'DEBUG_DISABLED_ID',
    'LoggingService',
    'AsyncioLoopChannel',
    'GlobalErrorChannel',
    'SysExceptHookChannel',
    'ThreadingExceptHookChannel',
    'RECOVERABLE_ERROR_TYPES',
    'ErrorBoundary',
    'ErrorHandler',
    'classify_error',
    'OPERATION_RECOVERY_ACTIONS',
    'EnvironmentRecoveryConfig',
    'configure_default_recovery_actions',
    'configure_operation_recovery_actions',
    'get_environment_recovery_config',
    'ErrorHandlingSystem',
    'create_error_handling_system',
]
