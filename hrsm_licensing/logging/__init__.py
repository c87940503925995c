"""
Logging: logs JSON structurés avec masquage des secrets de licence.
"""
from .interfaces import (
    IStructuredLogger,
    ISensitiveMasker,
    LogConfig,
    LogEntry,
    LogLevel,
)
from .sensitive_masker import SensitiveMasker
from .structured_logger import (
    ContextualLogger,
    MissingRequiredFieldError,
    StructuredLogger,
)

__all__ = [
    # Interfaces
    "IStructuredLogger",
    "ISensitiveMasker",
    # Data classes
    "LogConfig",
    "LogEntry",
    # Enums
    "LogLevel",
    # Implementations
    "SensitiveMasker",
    "StructuredLogger",
    "ContextualLogger",
    # Exceptions
    "MissingRequiredFieldError",
]
