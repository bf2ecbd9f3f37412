"""
Exception types raised by the error-event pipeline.

The pipeline is a terminal sink for failures: almost nothing in it raises.
These types exist for the few places that do (programmer contract checks,
storage adapters whose failures the logging service swallows, and
configuration problems detected at startup).
"""


class FaultlineError(Exception):
    """Base class for all faultline errors."""
    pass


class RecoveryActionContractError(FaultlineError):
    """Raised when a retry-only operation is called on a non-retry action."""
    pass


class StorageError(FaultlineError):
    """Raised by key-value store adapters when an operation fails."""
    pass


class ConfigurationError(FaultlineError):
    """Raised when service configuration is structurally invalid."""
    pass
