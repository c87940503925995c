"""
Network - Interfaces

Contrats des appels vers le service de validation distant :
timeouts bornés et retries avec backoff exponentiel borné.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class TimeoutType(Enum):
    """Types de timeout supportés."""

    CONNECTION = "connection"
    REQUEST = "request"


@dataclass(frozen=True)
class TimeoutConfig:
    """Configuration des timeouts (secondes)."""

    connection_timeout: float = 10.0
    request_timeout: float = 30.0


@dataclass(frozen=True)
class RetryConfig:
    """Configuration des retries."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_exceptions: tuple = field(
        default_factory=lambda: (ConnectionError, TimeoutError)
    )


@dataclass
class RetryResult:
    """Résultat d'une opération avec retry."""

    success: bool
    result: Optional[Any]
    attempts: int
    total_delay: float
    last_error: Optional[Exception]
    stopped_early: bool = False


class IRetryHandler(ABC):
    """Interface gestion retries."""

    @abstractmethod
    async def execute_with_retry(
        self,
        func: Callable[..., T],
        *args: Any,
        config: Optional[RetryConfig] = None,
        stop_when: Optional[Callable[[], bool]] = None,
        **kwargs: Any,
    ) -> RetryResult:
        """
        Exécute func avec retry et backoff exponentiel borné.

        Args:
            func: Fonction à exécuter (sync ou async)
            config: Configuration retry optionnelle
            stop_when: Prédicat évalué avant chaque nouvelle tentative ;
                True arrête les retries (échec terminal)

        Returns:
            RetryResult avec succès/échec et détails
        """
        pass

    @abstractmethod
    def calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """Délai backoff pour la tentative attempt (0-indexed)."""
        pass
