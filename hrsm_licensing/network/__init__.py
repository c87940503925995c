"""
Network: timeouts et retries des appels au service de validation distant.
"""
from .interfaces import (
    IRetryHandler,
    RetryConfig,
    RetryResult,
    TimeoutConfig,
    TimeoutType,
)
from .retry_handler import RetryHandler
from .timeout_manager import InvalidTimeoutError, TimeoutExceededError, TimeoutManager

__all__ = [
    # Interfaces
    "IRetryHandler",
    # Data classes
    "RetryConfig",
    "RetryResult",
    "TimeoutConfig",
    # Enums
    "TimeoutType",
    # Implementations
    "RetryHandler",
    "TimeoutManager",
    # Exceptions
    "InvalidTimeoutError",
    "TimeoutExceededError",
]
