"""
Licensing - Interfaces

Enregistrements typés de licence et contrats des collaborateurs externes
(persistance, validation distante, métriques d'usage).

Invariants:
    - Les enregistrements sont immuables et validés à la construction
    - Une licence n'est modifiée que par le chemin de mise à jour du store
      (re-signature, re-chiffrement, nouveau hash, version + 1)
    - Les dates sont toujours timezone-aware (UTC)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple


class LicenseStatus(Enum):
    """Status d'une licence."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


def _require_aware(name: str, value: Optional[datetime]) -> None:
    if value is not None and value.tzinfo is None:
        raise ValueError(f"{name} doit être timezone-aware")


def _require_non_negative(name: str, value: Optional[int]) -> None:
    if value is not None and (isinstance(value, bool) or value < 0):
        raise ValueError(f"{name} doit être >= 0 ou None (illimité)")


@dataclass(frozen=True)
class LicenseFeatures:
    """
    Couverture contractuelle : modules licenciés et quotas globaux.

    None signifie "illimité" pour un quota.
    """

    modules: Tuple[str, ...] = ()
    max_users: Optional[int] = None
    max_storage: Optional[int] = None
    max_api_calls_per_month: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "modules", tuple(dict.fromkeys(self.modules)))
        _require_non_negative("max_users", self.max_users)
        _require_non_negative("max_storage", self.max_storage)
        _require_non_negative("max_api_calls_per_month", self.max_api_calls_per_month)

    def covers(self, module_key: str) -> bool:
        return module_key in self.modules

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modules": list(self.modules),
            "maxUsers": self.max_users,
            "maxStorage": self.max_storage,
            "maxAPICallsPerMonth": self.max_api_calls_per_month,
        }


@dataclass(frozen=True)
class LicenseIntegrity:
    """Métadonnées d'intégrité de la copie chiffrée au repos."""

    integrity_hash: str
    key_version: int
    last_integrity_check: Optional[datetime] = None
    tamper_detection: bool = False
    key_rotation_date: Optional[datetime] = None


@dataclass(frozen=True)
class OfflineSettings:
    """Fonctionnement hors ligne : activation, durée de grâce, échéance courante."""

    enabled: bool = True
    grace_hours: int = 72
    grace_deadline: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.grace_hours < 0:
            raise ValueError("grace_hours doit être >= 0")
        _require_aware("grace_deadline", self.grace_deadline)


@dataclass(frozen=True)
class Activation:
    """Machine activée sur la licence."""

    machine_id: str
    activated_at: datetime

    def __post_init__(self) -> None:
        if not self.machine_id:
            raise ValueError("machine_id obligatoire")
        _require_aware("activated_at", self.activated_at)


@dataclass(frozen=True)
class LicenseRecord:
    """
    Licence d'un tenant.

    Instances produites par LicenseStore (ou SignatureService.seal) ; le
    code métier ne construit pas de LicenseRecord signé à la main.
    """

    tenant_id: str
    license_number: str
    status: LicenseStatus
    issued_at: datetime
    expires_at: datetime
    features: LicenseFeatures = field(default_factory=LicenseFeatures)
    signature: str = ""
    integrity: Optional[LicenseIntegrity] = None
    offline: OfflineSettings = field(default_factory=OfflineSettings)
    max_activations: int = 1
    activations: Tuple[Activation, ...] = ()
    encrypted_payload: bytes = b""
    version: int = 0
    revocation_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id obligatoire")
        if not self.license_number:
            raise ValueError("license_number obligatoire")
        if not isinstance(self.status, LicenseStatus):
            raise ValueError(f"status invalide: {self.status!r}")
        _require_aware("issued_at", self.issued_at)
        _require_aware("expires_at", self.expires_at)
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at doit être postérieur à issued_at")
        if self.max_activations < 1:
            raise ValueError("max_activations doit être >= 1")
        if self.version < 0:
            raise ValueError("version doit être >= 0")
        object.__setattr__(self, "activations", tuple(self.activations))

    @property
    def tamper_detected(self) -> bool:
        return bool(self.integrity and self.integrity.tamper_detection)

    @property
    def machine_ids(self) -> FrozenSet[str]:
        return frozenset(a.machine_id for a in self.activations)

    def is_expired(self, at: datetime) -> bool:
        return at > self.expires_at

    def is_usable(self, at: datetime) -> bool:
        """Active, non altérée et non expirée à l'instant at."""
        return self.status == LicenseStatus.ACTIVE and not self.tamper_detected and not self.is_expired(at)


@dataclass(frozen=True)
class TenantConfig:
    """Configuration de modules d'un tenant (fournie par un collaborateur)."""

    tenant_id: str
    enabled_modules: FrozenSet[str] = frozenset()
    used_modules: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        if not self.tenant_id:
            raise ValueError("tenant_id obligatoire")
        object.__setattr__(self, "enabled_modules", frozenset(self.enabled_modules))
        object.__setattr__(self, "used_modules", frozenset(self.used_modules))

    @classmethod
    def of(cls, tenant_id: str, enabled: Iterable[str] = (), used: Iterable[str] = ()) -> "TenantConfig":
        return cls(tenant_id, frozenset(enabled), frozenset(used))


@dataclass(frozen=True)
class UsageStats:
    """Télémétrie d'usage d'un tenant."""

    current_users: int = 0
    current_storage: int = 0
    current_api_calls_this_month: int = 0
    module_usage: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("current_users", "current_storage", "current_api_calls_this_month"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} doit être >= 0")


@dataclass(frozen=True)
class RemoteValidationResult:
    """Réponse du service de validation distant."""

    valid: bool
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    claims: Mapping[str, Any] = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class ILicenseRepository(ABC):
    """
    Persistance des licences.

    save applique un contrôle de version optimiste : expected_version None
    signifie "création" (le tenant ne doit pas exister).
    """

    @abstractmethod
    def get(self, tenant_id: str) -> Optional[LicenseRecord]:
        pass

    @abstractmethod
    def save(self, record: LicenseRecord, expected_version: Optional[int]) -> None:
        """
        Raises:
            ConcurrentUpdateError: Version stockée différente de expected_version
        """
        pass

    @abstractmethod
    def tenants(self) -> List[str]:
        pass


class IRemoteLicenseValidator(ABC):
    """Service distant de confirmation de licence."""

    @abstractmethod
    async def validate(self, token: str, machine_id: Optional[str] = None) -> RemoteValidationResult:
        """
        Raises:
            ConnectionError: Service injoignable (transitoire, retryable)
            TimeoutError: Délai dépassé (retryable)
        """
        pass


class IUsageMetricsProvider(ABC):
    """Fournisseur de télémétrie d'usage."""

    @abstractmethod
    async def get_usage(self, tenant_id: str) -> UsageStats:
        pass
