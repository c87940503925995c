"""
Core: configuration et cryptographie partagées par tous les composants.
"""
from .interfaces import (
    ComplianceSettings,
    EngineSettings,
    ICryptoProvider,
    IConfigLoader,
    RemoteSettings,
    RetrySettings,
)
from .config_loader import ConfigIntegrityError, ConfigLoader
from .crypto_provider import CryptoProvider, CryptoProviderError

__all__ = [
    # Interfaces
    "ICryptoProvider",
    "IConfigLoader",
    # Settings
    "EngineSettings",
    "RemoteSettings",
    "RetrySettings",
    "ComplianceSettings",
    # Implementations
    "ConfigLoader",
    "CryptoProvider",
    # Exceptions
    "ConfigIntegrityError",
    "CryptoProviderError",
]
