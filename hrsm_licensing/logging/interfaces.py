"""
Logging - Interfaces

Logs JSON structurés du moteur de licences.

Chaque entrée porte timestamp (ISO 8601 UTC), level, correlation_id,
tenant_id et message ; les secrets de licence n'apparaissent jamais en clair.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """Niveaux de log, du moins au plus sévère."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def get_priority(cls, level: "LogLevel") -> int:
        """Retourne la priorité du niveau (plus haut = plus sévère)."""
        priorities = {
            cls.DEBUG: 0,
            cls.INFO: 1,
            cls.WARN: 2,
            cls.ERROR: 3,
            cls.CRITICAL: 4,
        }
        return priorities.get(level, 0)


@dataclass(frozen=True)
class LogEntry:
    """Entrée de log avec champs obligatoires."""

    timestamp: str
    level: LogLevel
    correlation_id: str
    tenant_id: str
    message: str
    extra: Dict[str, Any] = field(default_factory=dict)
    logger_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dictionnaire."""
        result = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "correlation_id": self.correlation_id,
            "tenant_id": self.tenant_id,
            "message": self.message,
        }
        if self.logger_name:
            result["logger"] = self.logger_name
        if self.extra:
            result["extra"] = self.extra
        return result

    def to_json(self) -> str:
        """Sérialise en JSON (valeurs non sérialisables converties en str)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


@dataclass
class LogConfig:
    """Configuration du logger structuré."""

    min_level: LogLevel = LogLevel.INFO
    include_extra: bool = True
    mask_sensitive: bool = True
    # Les opérations de plateforme (chargement registre) n'ont pas de tenant
    default_tenant_id: Optional[str] = "platform"
    default_correlation_id: Optional[str] = None
    max_entries: int = 1000


class IStructuredLogger(ABC):
    """Interface logger structuré."""

    @abstractmethod
    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        """
        Log structuré JSON.

        Returns:
            LogEntry créé ou None si filtré par niveau
        """
        pass

    @abstractmethod
    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau INFO."""
        pass

    @abstractmethod
    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau WARN."""
        pass

    @abstractmethod
    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau ERROR."""
        pass

    @abstractmethod
    def get_entries(self) -> List[LogEntry]:
        """Retourne les entrées de log capturées."""
        pass


class ISensitiveMasker(ABC):
    """Interface masquage des secrets de licence."""

    # Pas de motif "key" générique : module_key et license_key doivent rester lisibles
    SENSITIVE_PATTERNS: List[str] = [
        "password",
        "secret",
        "token",
        "signature",
        "api_key",
        "encryption_key",
        "private_key",
        "credential",
        "authorization",
        "ciphertext",
        "encrypted_payload",
    ]

    MASK_VALUE: str = "***MASKED***"

    @abstractmethod
    def mask(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Retourne une copie avec les valeurs sensibles masquées."""
        pass

    @abstractmethod
    def is_sensitive_key(self, key: str) -> bool:
        """True si la clé contient un motif sensible."""
        pass
