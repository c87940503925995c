"""
Audit - Audit Sink Implementation

Journal append-only des événements licences/modules, avec requêtes filtrées,
statistiques et rétention.

Invariants:
    - Append sérialisé (sûr avec écrivains concurrents), lectures sur copie
    - Chaque événement est haché SHA-384 à l'enregistrement
    - Rétention: purge des événements non critiques au-delà de l'horizon
"""

import json
import threading
import uuid
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Optional

from .interfaces import (
    SUBSCRIPTION_EVENT_TYPES,
    AuditEvent,
    AuditEventType,
    AuditQuery,
    AuditSeverity,
    IAuditSink,
    PurgeResult,
)
from ..core.crypto_provider import CryptoProvider
from ..logging.structured_logger import StructuredLogger


class AuditSinkError(Exception):
    """Erreur enregistrement ou requête audit."""

    pass


class AuditSink(IAuditSink):
    """
    Journal d'audit en mémoire, construit une fois au démarrage et injecté
    dans chaque composant.

    Les écritures prennent un verrou ; les lectures copient la liste sans
    verrou (la copie d'une liste est atomique sous le GIL), de sorte qu'un
    lecteur ne bloque jamais un écrivain.

    Example:
        sink = AuditSink(crypto_provider)
        sink.record("tenant-1", AuditEventType.MODULE_ACTIVATED, module_key="payroll")
        sink.query(AuditQuery(tenant_id="tenant-1"))
    """

    DEFAULT_RETENTION_DAYS: int = 365
    MAX_QUERY_LIMIT: int = 1000

    DEFAULT_SEVERITIES: Dict[AuditEventType, AuditSeverity] = {
        AuditEventType.VALIDATION_FAILURE: AuditSeverity.WARNING,
        AuditEventType.LICENSE_EXPIRED: AuditSeverity.CRITICAL,
        AuditEventType.LIMIT_WARNING: AuditSeverity.WARNING,
        AuditEventType.LIMIT_EXCEEDED: AuditSeverity.CRITICAL,
        AuditEventType.DEPENDENCY_VIOLATION: AuditSeverity.ERROR,
        AuditEventType.OFFLINE_GRACE_ENTERED: AuditSeverity.WARNING,
        AuditEventType.OFFLINE_GRACE_EXPIRED: AuditSeverity.CRITICAL,
        AuditEventType.SUBSCRIPTION_EXPIRED: AuditSeverity.WARNING,
    }

    def __init__(
        self,
        crypto_provider: CryptoProvider,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        logger: Optional[StructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            crypto_provider: Fournisseur pour le hash d'immutabilité
            retention_days: Horizon de rétention par défaut
            logger: Logger structuré
            clock: Horloge UTC (injectable pour tests)
        """
        if retention_days < 1:
            raise AuditSinkError("retention_days doit être >= 1")
        self.crypto_provider = crypto_provider
        self.retention_days = retention_days
        self._logger = logger or StructuredLogger("hrsm.audit")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._events: List[AuditEvent] = []
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    # ──────────────────────────────────────────────────────────────────────
    # Écriture
    # ──────────────────────────────────────────────────────────────────────

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
        Ajoute un événement haché au journal.

        Raises:
            AuditSinkError: tenant_id vide ou type/sévérité invalides
        """
        if not tenant_id:
            raise AuditSinkError("tenant_id est obligatoire")
        if not isinstance(event_type, AuditEventType):
            raise AuditSinkError(f"Type événement invalide: {event_type}")
        if severity is not None and not isinstance(severity, AuditSeverity):
            raise AuditSinkError(f"Sévérité invalide: {severity}")

        resolved_severity = severity or self.DEFAULT_SEVERITIES.get(event_type, AuditSeverity.INFO)
        clean_details = self._sanitize_details(details or {})

        preliminary = AuditEvent(
            event_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            module_key=module_key,
            event_type=event_type,
            severity=resolved_severity,
            details=clean_details,
            timestamp=timestamp or self._clock(),
        )
        event = AuditEvent(
            event_id=preliminary.event_id,
            tenant_id=tenant_id,
            module_key=module_key,
            event_type=event_type,
            severity=resolved_severity,
            details=MappingProxyType(clean_details),
            timestamp=preliminary.timestamp,
            hash_value=self.compute_event_hash(preliminary),
        )

        with self._write_lock:
            self._events.append(event)

        if resolved_severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.warn(
                "Audit event recorded",
                tenant_id=tenant_id,
                event_type=event_type.value,
                severity=resolved_severity.value,
                module_key=module_key,
            )
        return event

    def log_validation_success(self, tenant_id: str, module_key: Optional[str] = None, **details: Any) -> AuditEvent:
        return self.record(tenant_id, AuditEventType.VALIDATION_SUCCESS, module_key, details=details)

    def log_validation_failure(
        self,
        tenant_id: str,
        reason: str,
        module_key: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.WARNING,
        **details: Any,
    ) -> AuditEvent:
        return self.record(
            tenant_id,
            AuditEventType.VALIDATION_FAILURE,
            module_key,
            severity=severity,
            details={"reason": reason, **details},
        )

    def log_license_expired(self, tenant_id: str, expires_at: datetime, **details: Any) -> AuditEvent:
        return self.record(tenant_id, AuditEventType.LICENSE_EXPIRED, details={"expiresAt": expires_at, **details})

    def log_limit_warning(
        self, tenant_id: str, module_key: Optional[str], limit_type: str, current: float, limit: float, percentage: float
    ) -> AuditEvent:
        return self.record(
            tenant_id,
            AuditEventType.LIMIT_WARNING,
            module_key,
            details={"limitType": limit_type, "currentUsage": current, "limit": limit, "percentage": percentage},
        )

    def log_limit_exceeded(
        self, tenant_id: str, module_key: Optional[str], limit_type: str, current: float, limit: float, percentage: float
    ) -> AuditEvent:
        return self.record(
            tenant_id,
            AuditEventType.LIMIT_EXCEEDED,
            module_key,
            details={"limitType": limit_type, "currentUsage": current, "limit": limit, "percentage": percentage},
        )

    def log_module_activated(self, tenant_id: str, module_key: str, **details: Any) -> AuditEvent:
        return self.record(tenant_id, AuditEventType.MODULE_ACTIVATED, module_key, details=details)

    def log_module_deactivated(self, tenant_id: str, module_key: str, **details: Any) -> AuditEvent:
        return self.record(tenant_id, AuditEventType.MODULE_DEACTIVATED, module_key, details=details)

    def log_dependency_violation(self, tenant_id: str, module_key: str, missing: Iterable[str], **details: Any) -> AuditEvent:
        return self.record(
            tenant_id,
            AuditEventType.DEPENDENCY_VIOLATION,
            module_key,
            details={"missingDependencies": list(missing), **details},
        )

    def log_usage_tracked(self, tenant_id: str, module_key: Optional[str], **usage: Any) -> AuditEvent:
        return self.record(tenant_id, AuditEventType.USAGE_TRACKED, module_key, details=usage)

    def log_subscription_event(
        self, tenant_id: str, event_type: AuditEventType, **details: Any
    ) -> AuditEvent:
        """
        Événement abonnement ou essai.

        Raises:
            AuditSinkError: Si event_type n'est pas un type abonnement/essai
        """
        if event_type not in SUBSCRIPTION_EVENT_TYPES:
            raise AuditSinkError(f"Type événement abonnement invalide: {event_type}")
        return self.record(tenant_id, event_type, details=details)

    # ──────────────────────────────────────────────────────────────────────
    # Lecture
    # ──────────────────────────────────────────────────────────────────────

    def query(self, query: Optional[AuditQuery] = None) -> List[AuditEvent]:
        """
        Filtre, trie par timestamp décroissant, pagine (limit/skip).

        Raises:
            AuditSinkError: limit/skip invalides
        """
        q = query or AuditQuery()
        if q.limit < 0 or q.skip < 0:
            raise AuditSinkError("limit et skip doivent être positifs")

        matched = self._sorted_desc(e for e in self._snapshot() if self._matches(e, q))
        limit = min(q.limit, self.MAX_QUERY_LIMIT)
        return matched[q.skip:q.skip + limit]

    def count(self, query: Optional[AuditQuery] = None) -> int:
        """Nombre d'événements correspondant aux filtres (sans pagination)."""
        q = query or AuditQuery()
        return sum(1 for e in self._snapshot() if self._matches(e, q))

    def statistics(
        self,
        tenant_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Totaux par type d'événement, sévérité et module."""
        q = AuditQuery(tenant_id=tenant_id, start_date=start_date, end_date=end_date)
        events = [e for e in self._snapshot() if self._matches(e, q)]
        return {
            "total": len(events),
            "by_event_type": dict(Counter(e.event_type.value for e in events)),
            "by_severity": dict(Counter(e.severity.value for e in events)),
            "by_module": dict(Counter(e.module_key for e in events if e.module_key)),
        }

    def recent_violations(self, tenant_id: Optional[str] = None, limit: int = 50) -> List[AuditEvent]:
        """Événements error/critical les plus récents."""
        violations = self._sorted_desc(
            e for e in self._snapshot()
            if e.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL)
            and (tenant_id is None or e.tenant_id == tenant_id)
        )
        return violations[:limit]

    def module_audit_trail(
        self, tenant_id: str, module_key: str, days: int = 30, now: Optional[datetime] = None
    ) -> List[AuditEvent]:
        """Historique d'un module pour un tenant sur les derniers jours."""
        start = (now or self._clock()) - timedelta(days=days)
        return self.query(
            AuditQuery(
                tenant_id=tenant_id,
                module_key=module_key,
                start_date=start,
                limit=self.MAX_QUERY_LIMIT,
            )
        )

    def verify_event(self, event: AuditEvent) -> bool:
        """True si le hash de l'événement correspond à son contenu."""
        if not event.hash_value:
            return False
        return self.crypto_provider.constant_time_equals(self.compute_event_hash(event), event.hash_value)

    def compute_event_hash(self, event: AuditEvent) -> str:
        """Hash SHA-384 de la représentation canonique."""
        canonical = {
            "event_id": event.event_id,
            "tenant_id": event.tenant_id,
            "module_key": event.module_key,
            "event_type": event.event_type.value,
            "severity": event.severity.value,
            "details": dict(event.details),
            "timestamp": event.timestamp.isoformat(),
        }
        data = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
        return self.crypto_provider.hash(data.encode("utf-8"))

    # ──────────────────────────────────────────────────────────────────────
    # Rétention
    # ──────────────────────────────────────────────────────────────────────

    def purge(self, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> PurgeResult:
        """
        Supprime les événements plus anciens que l'horizon, sauf critiques.

        Args:
            retention_days: Horizon (défaut: self.retention_days)
            now: Référence temporelle

        Returns:
            PurgeResult avec le nombre supprimé et la date de coupure
        """
        days = self.retention_days if retention_days is None else retention_days
        if days < 1:
            raise AuditSinkError("retention_days doit être >= 1")
        cutoff = (now or self._clock()) - timedelta(days=days)

        with self._write_lock:
            kept = [
                e for e in self._events
                if e.timestamp >= cutoff or e.severity == AuditSeverity.CRITICAL
            ]
            deleted = len(self._events) - len(kept)
            retained_critical = sum(
                1 for e in kept if e.timestamp < cutoff and e.severity == AuditSeverity.CRITICAL
            )
            self._events = kept

        self._logger.info(
            "Audit retention purge",
            deleted_count=deleted,
            retained_critical=retained_critical,
            cutoff=cutoff.isoformat(),
        )
        return PurgeResult(deleted_count=deleted, retained_critical=retained_critical, cutoff=cutoff)

    # ──────────────────────────────────────────────────────────────────────
    # Interne
    # ──────────────────────────────────────────────────────────────────────

    def _snapshot(self) -> List[AuditEvent]:
        return self._events[:]

    @staticmethod
    def _sorted_desc(events: Iterable[AuditEvent]) -> List[AuditEvent]:
        # A timestamp égal, l'événement ajouté en dernier sort en premier
        indexed = list(enumerate(events))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [event for _, event in indexed]

    @staticmethod
    def _matches(event: AuditEvent, q: AuditQuery) -> bool:
        if q.tenant_id is not None and event.tenant_id != q.tenant_id:
            return False
        if q.module_key is not None and event.module_key != q.module_key:
            return False
        if q.event_type is not None and event.event_type != q.event_type:
            return False
        if q.severity is not None and event.severity != q.severity:
            return False
        if q.start_date is not None and event.timestamp < q.start_date:
            return False
        if q.end_date is not None and event.timestamp > q.end_date:
            return False
        return True

    def _sanitize_details(self, details: Dict[str, Any], max_depth: int = 3) -> Dict[str, Any]:
        """Copie JSON-compatible des détails (taille et profondeur bornées)."""
        clean: Dict[str, Any] = {}
        for key, value in details.items():
            if not isinstance(key, str) or len(key) > 100:
                continue
            clean[key] = self._sanitize_value(value, max_depth)
        return clean

    def _sanitize_value(self, value: Any, max_depth: int) -> Any:
        if value is None or isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            return value[:1000]
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, dict):
            return self._sanitize_details(value, max_depth - 1) if max_depth > 0 else {}
        if isinstance(value, (list, tuple, set, frozenset)):
            items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
            return [self._sanitize_value(item, max_depth - 1) for item in list(items)[:50]]
        return str(value)[:1000]
