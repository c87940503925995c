"""
Audit - Interfaces

Journal append-only des événements de cycle de vie licences et modules.

Invariants:
    - Un événement est immuable une fois enregistré (haché SHA-384)
    - Les événements critiques ne sont jamais purgés par la rétention
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class AuditEventType(Enum):
    """Énumération fermée des types d'événements."""
    # Validation
    VALIDATION_SUCCESS = "VALIDATION_SUCCESS"
    VALIDATION_FAILURE = "VALIDATION_FAILURE"
    LICENSE_EXPIRED = "LICENSE_EXPIRED"

    # Quotas
    LIMIT_WARNING = "LIMIT_WARNING"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    USAGE_TRACKED = "USAGE_TRACKED"

    # Modules
    MODULE_ACTIVATED = "MODULE_ACTIVATED"
    MODULE_DEACTIVATED = "MODULE_DEACTIVATED"
    DEPENDENCY_VIOLATION = "DEPENDENCY_VIOLATION"

    # Cycle de vie licence
    LICENSE_CREATED = "LICENSE_CREATED"
    LICENSE_UPDATED = "LICENSE_UPDATED"

    # Abonnements
    SUBSCRIPTION_CREATED = "SUBSCRIPTION_CREATED"
    SUBSCRIPTION_UPGRADED = "SUBSCRIPTION_UPGRADED"
    SUBSCRIPTION_DOWNGRADED = "SUBSCRIPTION_DOWNGRADED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    TRIAL_STARTED = "TRIAL_STARTED"
    TRIAL_ENDED = "TRIAL_ENDED"

    # Mode hors ligne
    OFFLINE_GRACE_ENTERED = "OFFLINE_GRACE_ENTERED"
    OFFLINE_GRACE_EXPIRED = "OFFLINE_GRACE_EXPIRED"
    ONLINE_RESTORED = "ONLINE_RESTORED"


SUBSCRIPTION_EVENT_TYPES = frozenset({
    AuditEventType.SUBSCRIPTION_CREATED,
    AuditEventType.SUBSCRIPTION_UPGRADED,
    AuditEventType.SUBSCRIPTION_DOWNGRADED,
    AuditEventType.SUBSCRIPTION_EXPIRED,
    AuditEventType.SUBSCRIPTION_CANCELLED,
    AuditEventType.TRIAL_STARTED,
    AuditEventType.TRIAL_ENDED,
})


class AuditSeverity(Enum):
    """Sévérité d'un événement."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AuditEvent:
    """
    Événement d'audit immuable.

    module_key vaut None pour les événements qui concernent la licence
    entière plutôt qu'un module.
    """
    event_id: str
    tenant_id: str
    module_key: Optional[str]
    event_type: AuditEventType
    severity: AuditSeverity
    details: Mapping[str, Any]
    timestamp: datetime
    hash_value: Optional[str] = None


@dataclass(frozen=True)
class AuditQuery:
    """Filtres de requête ; les champs None ne filtrent pas."""
    tenant_id: Optional[str] = None
    module_key: Optional[str] = None
    event_type: Optional[AuditEventType] = None
    severity: Optional[AuditSeverity] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = 100
    skip: int = 0


@dataclass(frozen=True)
class PurgeResult:
    """Résultat d'une purge de rétention."""
    deleted_count: int
    retained_critical: int
    cutoff: datetime


class IAuditSink(ABC):
    """
    Interface du journal d'audit.

    Tous les composants écrivent ici ; aucune opération ne modifie un
    événement existant.
    """

    @abstractmethod
    def record(
        self,
        tenant_id: str,
        event_type: AuditEventType,
        module_key: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> AuditEvent:
        """
        Ajoute un événement.

        Args:
            tenant_id: Tenant concerné
            event_type: Type d'événement
            module_key: Module concerné (optionnel)
            severity: Sévérité (défaut selon le type)
            details: Contexte (raison, valeurs avant/après...)
            timestamp: Horodatage (maintenant par défaut)

        Returns:
            Événement haché et enregistré
        """
        pass

    @abstractmethod
    def query(self, query: Optional[AuditQuery] = None) -> List[AuditEvent]:
        """Filtre, trie par timestamp décroissant et pagine."""
        pass

    @abstractmethod
    def purge(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> PurgeResult:
        """Supprime les événements non critiques plus anciens que l'horizon."""
        pass
