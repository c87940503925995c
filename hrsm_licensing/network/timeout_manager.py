"""
Network - Timeout Manager

Timeouts bornés des appels au service de validation distant. Un appel qui
dépasse son budget lève TimeoutExceededError (sous-classe de TimeoutError,
donc retryable par défaut).
"""

import asyncio
from typing import Awaitable, Dict, Optional, TypeVar

from .interfaces import TimeoutConfig, TimeoutType

T = TypeVar("T")


class TimeoutExceededError(TimeoutError):
    """Timeout dépassé."""

    def __init__(self, timeout_type: TimeoutType, timeout_value: float, endpoint: Optional[str] = None) -> None:
        self.timeout_type = timeout_type
        self.timeout_value = timeout_value
        self.endpoint = endpoint
        target = f" on {endpoint}" if endpoint else ""
        super().__init__(f"{timeout_type.value} timeout exceeded{target}: {timeout_value}s")


class InvalidTimeoutError(Exception):
    """Configuration timeout invalide."""

    pass


class TimeoutManager:
    """
    Gestion centralisée des timeouts, configurable par endpoint.

    Limites:
        connexion <= 10s, requête <= 30s
    """

    MAX_CONNECTION_TIMEOUT: float = 10.0
    MAX_REQUEST_TIMEOUT: float = 30.0

    def __init__(self, default_config: Optional[TimeoutConfig] = None) -> None:
        """
        Raises:
            InvalidTimeoutError: Si la configuration par défaut est hors bornes
        """
        self._default = default_config or TimeoutConfig()
        self._endpoint_configs: Dict[str, TimeoutConfig] = {}
        self._validate_config(self._default)

    def _validate_config(self, config: TimeoutConfig) -> None:
        if config.connection_timeout <= 0:
            raise InvalidTimeoutError("connection_timeout must be positive")
        if config.connection_timeout > self.MAX_CONNECTION_TIMEOUT:
            raise InvalidTimeoutError(
                f"connection_timeout ({config.connection_timeout}s) exceeds "
                f"maximum ({self.MAX_CONNECTION_TIMEOUT}s)"
            )
        if config.request_timeout <= 0:
            raise InvalidTimeoutError("request_timeout must be positive")
        if config.request_timeout > self.MAX_REQUEST_TIMEOUT:
            raise InvalidTimeoutError(
                f"request_timeout ({config.request_timeout}s) exceeds "
                f"maximum ({self.MAX_REQUEST_TIMEOUT}s)"
            )

    def set_endpoint_timeout(self, endpoint: str, config: TimeoutConfig) -> None:
        """Configure un timeout spécifique à un endpoint."""
        if not endpoint:
            raise InvalidTimeoutError("endpoint cannot be empty")
        self._validate_config(config)
        self._endpoint_configs[endpoint] = config

    def get_config(self, endpoint: Optional[str] = None) -> TimeoutConfig:
        """Configuration effective (endpoint ou défaut)."""
        if endpoint and endpoint in self._endpoint_configs:
            return self._endpoint_configs[endpoint]
        return self._default

    def get_timeout(self, timeout_type: TimeoutType, endpoint: Optional[str] = None) -> float:
        """Retourne la valeur du timeout en secondes."""
        config = self.get_config(endpoint)
        if timeout_type == TimeoutType.CONNECTION:
            return config.connection_timeout
        return config.request_timeout

    async def run(self, awaitable: Awaitable[T], endpoint: Optional[str] = None) -> T:
        """
        Attend awaitable dans le budget de requête de l'endpoint.

        Raises:
            TimeoutExceededError: Si le budget est dépassé (l'appel est annulé)
        """
        timeout = self.get_timeout(TimeoutType.REQUEST, endpoint)
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutExceededError(TimeoutType.REQUEST, timeout, endpoint)
