"""
HRSM Licensing - Core Interfaces
Contrats et modèles de configuration du moteur de licences.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class RetrySettings(BaseModel):
    """Backoff borné vers le service de validation distant."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    exponential_base: float = Field(default=2.0, ge=1)


class RemoteSettings(BaseModel):
    """Service de validation distant (optionnel)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: Optional[str] = None
    connection_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    response_token_secret: Optional[str] = None
    retry: RetrySettings = Field(default_factory=RetrySettings)


class ComplianceSettings(BaseModel):
    """Seuils de conformité en pourcentage de la limite (jours pour l'expiration)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_warning: float = 80.0
    user_critical: float = 95.0
    storage_warning: float = 80.0
    storage_critical: float = 90.0
    api_warning: float = 85.0
    api_critical: float = 95.0
    expiry_warning_days: int = 30
    expiry_critical_days: int = 7

    @model_validator(mode="after")
    def _check_ordering(self) -> "ComplianceSettings":
        pairs = [
            ("user", self.user_warning, self.user_critical),
            ("storage", self.storage_warning, self.storage_critical),
            ("api", self.api_warning, self.api_critical),
        ]
        for name, warning, critical in pairs:
            if not 0 < warning <= critical:
                raise ValueError(f"{name}: seuil warning ({warning}) doit être > 0 et <= critical ({critical})")
        if self.expiry_critical_days > self.expiry_warning_days:
            raise ValueError("expiry_critical_days doit être <= expiry_warning_days")
        return self


class EngineSettings(BaseModel):
    """
    Configuration complète du moteur.

    Les secrets peuvent être surchargés par variables d'environnement
    (voir ConfigLoader).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    license_secret: str = Field(min_length=16)
    encryption_key: Optional[str] = None
    key_version: int = Field(default=1, ge=1)
    grace_hours: int = Field(default=72, ge=0)
    audit_retention_days: int = Field(default=365, ge=1)
    quota_policy: Literal["advisory", "enforce"] = "advisory"
    utilization_penalty: Literal["folded", "additive"] = "folded"
    catalog_path: Optional[str] = None
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IConfigLoader(ABC):
    """Charge la configuration moteur et le catalogue de modules."""

    @abstractmethod
    def load(self) -> EngineSettings:
        """
        Charge et valide la configuration moteur.

        Raises:
            ConfigIntegrityError: Fichier absent, YAML invalide ou champs invalides
        """
        pass

    @abstractmethod
    def load_catalog(self, path: str) -> List[Dict[str, Any]]:
        """Charge un catalogue de modules (liste de configs brutes)."""
        pass


class ICryptoProvider(ABC):
    """Opérations cryptographiques du moteur de licences."""

    @abstractmethod
    def hmac_sign(self, data: bytes, secret: bytes) -> bytes:
        """Calcule un HMAC-SHA256 de data avec secret."""
        pass

    @abstractmethod
    def hmac_verify(self, data: bytes, signature: bytes, secret: bytes) -> bool:
        """Vérifie un HMAC-SHA256 en temps constant."""
        pass

    @abstractmethod
    def hash(self, data: bytes) -> str:
        """
        Calcule hash SHA-384.

        Returns:
            Hash hex string (96 caractères)
        """
        pass

    @abstractmethod
    def encrypt(self, data: bytes) -> Tuple[bytes, int]:
        """Chiffre data avec la clé active. Retourne (ciphertext, key_version)."""
        pass

    @abstractmethod
    def decrypt(self, ciphertext: bytes, key_version: int) -> bytes:
        """Déchiffre ciphertext avec la clé de version key_version."""
        pass
