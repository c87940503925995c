"""
Logging - Structured Logger

Logger JSON structuré utilisé par tous les composants du moteur.
"""

import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, List, Optional

from .interfaces import (
    ISensitiveMasker,
    IStructuredLogger,
    LogConfig,
    LogEntry,
    LogLevel,
)
from .sensitive_masker import SensitiveMasker


class MissingRequiredFieldError(Exception):
    """Champ obligatoire manquant dans une entrée de log."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Required field missing: {field_name}")


class StructuredLogger(IStructuredLogger):
    """
    Logger JSON structuré avec champs obligatoires.

    Les dernières entrées (LogConfig.max_entries) sont conservées en mémoire
    pour inspection ; la sortie JSON est déléguée à output_handler.

    Example:
        logger = StructuredLogger("hrsm.license_store")
        logger.info("License validated", tenant_id="t-1", module_key="payroll")
    """

    def __init__(
        self,
        name: str,
        config: Optional[LogConfig] = None,
        masker: Optional[ISensitiveMasker] = None,
        output_handler: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Args:
            name: Nom du logger (composant)
            config: Configuration optionnelle
            masker: Masker pour données sensibles
            output_handler: Destination des lignes JSON (stdout, fichier, tests)

        Raises:
            ValueError: Si name vide
        """
        if not name or not name.strip():
            raise ValueError("Logger name cannot be empty")

        self._name = name.strip()
        self._config = config or LogConfig()
        self._masker = masker or SensitiveMasker()
        self._output_handler = output_handler
        self._entries: Deque[LogEntry] = deque(maxlen=self._config.max_entries)

    @property
    def name(self) -> str:
        """Retourne le nom du logger."""
        return self._name

    def child(self, suffix: str) -> "StructuredLogger":
        """Logger dérivé partageant configuration, masker et sortie."""
        return StructuredLogger(
            f"{self._name}.{suffix}",
            config=self._config,
            masker=self._masker,
            output_handler=self._output_handler,
        )

    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        """
        Crée une entrée structurée.

        Processus:
            1. Filtre selon min_level
            2. Résout correlation_id (généré si absent) et tenant_id
            3. Masque les secrets dans extra
            4. Stocke puis émet la ligne JSON

        Raises:
            MissingRequiredFieldError: Si tenant_id ou message manquant
        """
        if LogLevel.get_priority(level) < LogLevel.get_priority(self._config.min_level):
            return None

        resolved_correlation = (
            correlation_id or self._config.default_correlation_id or str(uuid.uuid4())
        )

        resolved_tenant = tenant_id or self._config.default_tenant_id
        if not resolved_tenant:
            raise MissingRequiredFieldError("tenant_id")

        if not message:
            raise MissingRequiredFieldError("message")

        clean_extra = {}
        if extra and self._config.include_extra:
            clean_extra = self._masker.mask(dict(extra)) if self._config.mask_sensitive else dict(extra)

        entry = LogEntry(
            timestamp=self._generate_timestamp(),
            level=level,
            correlation_id=resolved_correlation,
            tenant_id=resolved_tenant,
            message=message,
            extra=clean_extra,
            logger_name=self._name,
        )

        self._entries.append(entry)
        if self._output_handler:
            self._output_handler(entry.to_json())

        return entry

    def _generate_timestamp(self) -> str:
        # 2024-12-04T14:30:00.123Z
        now = datetime.now(timezone.utc)
        return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau DEBUG."""
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau INFO."""
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau WARN."""
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau ERROR."""
        return self.log(LogLevel.ERROR, message, **extra)

    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau CRITICAL."""
        return self.log(LogLevel.CRITICAL, message, **extra)

    def get_entries(self) -> List[LogEntry]:
        """Retourne les entrées capturées (ordre d'émission)."""
        return list(self._entries)

    def get_entries_by_level(self, level: LogLevel) -> List[LogEntry]:
        """Filtre les entrées par niveau."""
        return [e for e in self._entries if e.level == level]

    def clear_entries(self) -> None:
        """Efface les entrées capturées."""
        self._entries.clear()

    def with_context(
        self,
        correlation_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> "ContextualLogger":
        """Logger avec correlation_id et tenant_id fixés."""
        return ContextualLogger(self, correlation_id=correlation_id, tenant_id=tenant_id)


class ContextualLogger:
    """Wrapper qui fixe correlation_id et tenant_id pour une opération."""

    def __init__(
        self,
        logger: StructuredLogger,
        correlation_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> None:
        self._logger = logger
        self._correlation_id = correlation_id or str(uuid.uuid4())
        self._tenant_id = tenant_id

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    def log(self, level: LogLevel, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log avec contexte."""
        return self._logger.log(
            level,
            message,
            correlation_id=self._correlation_id,
            tenant_id=self._tenant_id,
            **extra,
        )

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, message, **extra)

    def critical(self, message: str, **extra: Any) -> Optional[LogEntry]:
        return self.log(LogLevel.CRITICAL, message, **extra)
