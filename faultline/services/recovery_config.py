"""
Recovery policy presets.

Provides the default RecoveryAction for each error category, a catalogue of
operation-specific policies, and per-environment recovery settings.
"""

from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from faultline.models import ErrorType, RecoveryAction
from faultline.services.logging_service import LoggingService
from faultline.utils.logging import get_logger


logger = get_logger(__name__)


class EnvironmentRecoveryConfig(BaseModel):
    """
    Recovery behaviour for one deployment environment.

    ``max_retry_attempts`` caps every Retry policy registered for the
    environment; 0 registers no Retry policies at all.
    """

    enable_recovery_attempts: bool = True
    max_retry_attempts: int = Field(default=3, ge=0)


ENVIRONMENT_RECOVERY_CONFIG: Dict[str, EnvironmentRecoveryConfig] = {
    "development": EnvironmentRecoveryConfig(
        enable_recovery_attempts=True,
        max_retry_attempts=5,
    ),
    "production": EnvironmentRecoveryConfig(
        enable_recovery_attempts=True,
        max_retry_attempts=3,
    ),
    # Retrying in tests would hide the failures under test
    "test": EnvironmentRecoveryConfig(
        enable_recovery_attempts=False,
        max_retry_attempts=0,
    ),
}


def get_environment_recovery_config(environment: str) -> EnvironmentRecoveryConfig:
    """Recovery settings for ``environment``; unknown names get the development preset."""
    config = ENVIRONMENT_RECOVERY_CONFIG.get(environment.lower())
    if config is None:
        config = ENVIRONMENT_RECOVERY_CONFIG["development"]
    return config.model_copy()


def default_recovery_actions() -> List[RecoveryAction]:
    """Fresh default policies, one per error category."""
    return [
        RecoveryAction.create_retry("network-auto-recovery", ErrorType.NETWORK, max_retries=3, retry_delay=2000),
        RecoveryAction.create_retry("database-auto-recovery", ErrorType.DATABASE, max_retries=2, retry_delay=1000),
        RecoveryAction.create_user_prompt(
            "auth-auto-recovery",
            ErrorType.AUTHENTICATION,
            "Your session has expired. Please sign in again to continue.",
        ),
        RecoveryAction.create_fallback(
            "ui-auto-recovery",
            ErrorType.UI,
            "Use default UI behavior",
            "Display issue detected. Using fallback interface.",
        ),
        RecoveryAction.create_fail_gracefully(
            "logic-auto-recovery",
            ErrorType.LOGIC,
            "An unexpected error occurred. Please try again or contact support if the problem persists.",
        ),
        RecoveryAction.create_fallback(
            "storage-auto-recovery",
            ErrorType.STORAGE,
            "Use in-memory storage as fallback",
            "Local storage unavailable. Data will be stored temporarily.",
        ),
    ]


def limit_retries(action: RecoveryAction, max_retry_attempts: Optional[int]) -> Optional[RecoveryAction]:
    """
    Apply an environment retry cap to a policy.

    Returns:
        The action, a capped copy of it, or None when the cap forbids retries
    """
    if max_retry_attempts is None or not action.is_retry_action():
        return action
    if max_retry_attempts == 0:
        return None
    if action.get_max_retries() <= max_retry_attempts:
        return action
    return action.clone(max_retries=max_retry_attempts)


def configure_default_recovery_actions(service: LoggingService, max_retry_attempts: Optional[int] = None) -> int:
    """
    Register the default policy for every error category.

    Args:
        service: Service to configure
        max_retry_attempts: Cap applied to Retry policies

    Returns:
        Number of actions registered
    """
    registered = 0
    for action in default_recovery_actions():
        action = limit_retries(action, max_retry_attempts)
        if action is None:
            continue
        service.configure_recovery_action(action.error_type, action)
        registered += 1

    logger.info(f"Configured {registered} default recovery actions")
    return registered


# Operation name -> (category, builder); builders return fresh actions so
# services never share retry state.
OPERATION_RECOVERY_ACTIONS: Dict[str, Tuple[ErrorType, Callable[[], RecoveryAction]]] = {
    "save-record": (
        ErrorType.DATABASE,
        lambda: RecoveryAction.create_retry("save-record-recovery", ErrorType.DATABASE, max_retries=5, retry_delay=1500),
    ),
    "delete-record": (
        ErrorType.DATABASE,
        lambda: RecoveryAction.create_user_prompt(
            "delete-record-recovery",
            ErrorType.DATABASE,
            "Failed to delete the record. This operation requires confirmation. Please try again.",
        ),
    ),
    "user-login": (
        ErrorType.AUTHENTICATION,
        lambda: RecoveryAction.create_fallback(
            "login-recovery",
            ErrorType.AUTHENTICATION,
            "Redirect to login screen",
            "Unable to sign in. Please check your credentials and try again.",
        ),
    ),
    "data-sync": (
        ErrorType.NETWORK,
        lambda: RecoveryAction.create_retry("sync-recovery", ErrorType.NETWORK, max_retries=5, retry_delay=5000),
    ),
    "local-storage": (
        ErrorType.STORAGE,
        lambda: RecoveryAction.create_fallback(
            "storage-recovery",
            ErrorType.STORAGE,
            "Use in-memory storage as fallback",
            "Local storage unavailable. Data will be stored temporarily.",
        ),
    ),
}


def configure_operation_recovery_actions(
    service: LoggingService,
    max_retry_attempts: Optional[int] = None,
) -> List[str]:
    """
    Fill categories that have no policy yet from the operation catalogue.

    The registry is keyed by category, so an operation policy only applies
    when nothing else claimed its category first.

    Returns:
        Operations whose policy was registered
    """
    applied = []
    for operation, (error_type, build) in OPERATION_RECOVERY_ACTIONS.items():
        if service.get_recovery_action(error_type) is not None:
            continue
        action = limit_retries(build(), max_retry_attempts)
        if action is None:
            continue
        service.configure_recovery_action(error_type, action)
        applied.append(operation)
    return applied


def initialize_recovery_system(service: LoggingService, environment: str) -> EnvironmentRecoveryConfig:
    """
    Apply the recovery presets appropriate for ``environment``.

    Returns:
        The environment's recovery settings
    """
    recovery_config = get_environment_recovery_config(environment)
    if not recovery_config.enable_recovery_attempts:
        logger.info(f"Recovery attempts disabled for {environment} environment")
        return recovery_config

    configure_default_recovery_actions(service, recovery_config.max_retry_attempts)
    configure_operation_recovery_actions(service, recovery_config.max_retry_attempts)
    return recovery_config
