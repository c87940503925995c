"""
Network - Retry Handler

Retries vers le service de validation distant avec backoff exponentiel borné.
Le nombre de tentatives est toujours fini ; un prédicat d'arrêt permet de
rendre l'échec terminal (par exemple une fois la période de grâce écoulée).
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .interfaces import IRetryHandler, RetryConfig, RetryResult

T = TypeVar("T")


class RetryHandler(IRetryHandler):
    """
    Gestion retries avec backoff exponentiel.

    Backoff: delay = min(initial * (base ^ attempt), max_delay)
    """

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        """
        Args:
            default_config: Configuration par défaut (optionnel)
            sleep: Fonction d'attente (asyncio.sleep par défaut, remplaçable en test)
        """
        self._default_config = default_config or RetryConfig()
        self._sleep = sleep or asyncio.sleep
        self._retry_stats: Dict[str, int] = {
            "total_retries": 0,
            "successful_retries": 0,
            "failed_retries": 0,
        }

    async def execute_with_retry(
        self,
        func: Callable[..., T],
        *args: Any,
        config: Optional[RetryConfig] = None,
        stop_when: Optional[Callable[[], bool]] = None,
        **kwargs: Any,
    ) -> RetryResult:
        """
        Exécute func avec backoff exponentiel.

        Les exceptions non retryables arrêtent immédiatement la boucle et
        sont rendues dans last_error.

        Returns:
            RetryResult avec succès/échec et détails
        """
        retry_config = config or self._default_config
        last_error: Optional[Exception] = None
        total_delay: float = 0.0

        for attempt in range(retry_config.max_attempts):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result

                if attempt > 0:
                    self._retry_stats["successful_retries"] += 1

                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempt + 1,
                    total_delay=total_delay,
                    last_error=None,
                )

            except Exception as e:
                last_error = e

                if not self.is_retryable(e, retry_config):
                    return RetryResult(
                        success=False,
                        result=None,
                        attempts=attempt + 1,
                        total_delay=total_delay,
                        last_error=e,
                    )

                if attempt < retry_config.max_attempts - 1:
                    if stop_when is not None and stop_when():
                        self._retry_stats["failed_retries"] += 1
                        return RetryResult(
                            success=False,
                            result=None,
                            attempts=attempt + 1,
                            total_delay=total_delay,
                            last_error=e,
                            stopped_early=True,
                        )
                    self._retry_stats["total_retries"] += 1
                    delay = self.calculate_delay(attempt, retry_config)
                    total_delay += delay
                    await self._sleep(delay)

        self._retry_stats["failed_retries"] += 1

        return RetryResult(
            success=False,
            result=None,
            attempts=retry_config.max_attempts,
            total_delay=total_delay,
            last_error=last_error,
        )

    def calculate_delay(self, attempt: int, config: RetryConfig) -> float:
        """
        Calcule délai backoff exponentiel.

        - Attempt 0: initial_delay
        - Attempt 1: initial_delay * base
        - Attempt n: min(initial_delay * base^n, max_delay)
        """
        delay = config.initial_delay * (config.exponential_base**attempt)
        return min(delay, config.max_delay)

    def is_retryable(self, error: Exception, config: RetryConfig) -> bool:
        """True si l'erreur est dans retryable_exceptions."""
        return isinstance(error, config.retryable_exceptions)

    def get_retry_stats(self) -> Dict[str, int]:
        """Statistiques de retry pour monitoring."""
        return dict(self._retry_stats)
