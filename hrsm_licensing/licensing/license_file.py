"""
Licensing - License File

Artefact de licence signé (JSON) : validation de structure, vérification de
signature, expiration, émission.

Invariants:
    - Ordre de parsing : JSON -> structure -> signature -> expiration
    - Un fichier structurellement invalide n'atteint jamais la vérification
      de signature
    - La signature couvre l'objet brut sans son champ "signature"
"""
import json
import math
import re
import secrets
import string
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError, field_validator, model_validator

from .errors import ExpiredLicenseError, SignatureMismatchError, ValidationStructureError
from .interfaces import LicenseFeatures
from .signature_service import SIGNATURE_FIELD, Secret, SignatureService
from ..registry.interfaces import PricingTier

LICENSE_KEY_PATTERN = re.compile(r"^HRMS-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
LICENSE_KEY_ALPHABET = string.ascii_uppercase + string.digits

# limite du fichier -> quota global de LicenseFeatures
FEATURE_LIMITS: Tuple[Tuple[str, str], ...] = (
    ("employees", "max_users"),
    ("storage", "max_storage"),
    ("apiCalls", "max_api_calls_per_month"),
)


class ModuleGrant(BaseModel):
    """Droit sur un module dans l'artefact."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    enabled: StrictBool
    tier: PricingTier
    limits: Dict[str, Optional[int]] = Field(default_factory=dict)

    @field_validator("limits", mode="before")
    @classmethod
    def _check_limits(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            raise ValueError("limits doit être un objet")
        for name, limit in value.items():
            if limit is None:
                continue
            if isinstance(limit, bool) or not isinstance(limit, int):
                raise ValueError(f"{name} limit doit être un entier")
            if limit < 0:
                raise ValueError(f"{name} limit doit être >= 0")
        return value


class LicenseArtifact(BaseModel):
    """Fichier de licence validé."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    license_key: str = Field(alias="licenseKey")
    company_id: str = Field(alias="companyId", min_length=1)
    company_name: str = Field(alias="companyName", min_length=1)
    issued_at: date = Field(alias="issuedAt")
    expires_at: date = Field(alias="expiresAt")
    modules: Dict[str, ModuleGrant]
    signature: str = Field(min_length=1)

    @field_validator("license_key")
    @classmethod
    def _check_license_key(cls, value: str) -> str:
        if not LICENSE_KEY_PATTERN.match(value):
            raise ValueError("invalid license key format (HRMS-XXXX-XXXX-XXXX)")
        return value

    @field_validator("issued_at", "expires_at", mode="before")
    @classmethod
    def _check_date_format(cls, value: Any) -> Any:
        if not isinstance(value, str) or not DATE_PATTERN.match(value):
            raise ValueError("date au format YYYY-MM-DD attendue")
        return value

    @model_validator(mode="after")
    def _check_period(self) -> "LicenseArtifact":
        if self.expires_at <= self.issued_at:
            raise ValueError("expiresAt doit être postérieur à issuedAt")
        return self

    @property
    def issued_datetime(self) -> datetime:
        return datetime.combine(self.issued_at, time.min, tzinfo=timezone.utc)

    @property
    def expires_datetime(self) -> datetime:
        return datetime.combine(self.expires_at, time.min, tzinfo=timezone.utc)

    def enabled_modules(self) -> List[str]:
        return [key for key, grant in self.modules.items() if grant.enabled]


@dataclass(frozen=True)
class StructureValidation:
    valid: bool
    errors: Tuple[str, ...] = ()


def _format_errors(error: ValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "licence"
        messages.append(f"{location}: {item['msg']}")
    return messages


def validate_license_structure(data: Any) -> StructureValidation:
    """Valide la structure sans lever ; toutes les erreurs sont rapportées."""
    if not isinstance(data, Mapping):
        return StructureValidation(False, ("licence: objet JSON attendu",))
    try:
        LicenseArtifact.model_validate(data)
    except ValidationError as e:
        return StructureValidation(False, tuple(_format_errors(e)))
    return StructureValidation(True)


def parse_license_file(
    content: Union[str, bytes, Mapping[str, Any]],
    secret: Secret,
    signature_service: SignatureService,
    now: Optional[datetime] = None,
) -> LicenseArtifact:
    """
    Parse et vérifie un fichier de licence.

    Raises:
        ValidationStructureError: JSON invalide ou structure invalide
        SignatureMismatchError: Signature différente de la valeur recalculée
        ExpiredLicenseError: expiresAt dépassé
    """
    if isinstance(content, Mapping):
        data = dict(content)
    else:
        try:
            data = json.loads(content)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationStructureError([f"JSON invalide: {e}"]) from e

    structure = validate_license_structure(data)
    if not structure.valid:
        raise ValidationStructureError(list(structure.errors))
    artifact = LicenseArtifact.model_validate(data)

    if not signature_service.verify(data, data[SIGNATURE_FIELD], secret):
        raise SignatureMismatchError(f"Signature invalide pour la licence {artifact.license_key}")

    current = now or datetime.now(timezone.utc)
    if is_license_expired(artifact, current):
        raise ExpiredLicenseError(artifact.expires_datetime)
    return artifact


def generate_license_key() -> str:
    """Clé HRMS-XXXX-XXXX-XXXX aléatoire (secrets)."""
    groups = ("".join(secrets.choice(LICENSE_KEY_ALPHABET) for _ in range(4)) for _ in range(3))
    return "HRMS-" + "-".join(groups)


def generate_license_file(
    company_id: str,
    company_name: str,
    modules: Mapping[str, Mapping[str, Any]],
    secret: Secret,
    signature_service: SignatureService,
    issued_at: Optional[date] = None,
    valid_days: int = 365,
    license_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Émet un fichier de licence signé.

    Args:
        modules: {key: {"enabled": bool, "tier": str, "limits": {...}}}

    Raises:
        ValidationStructureError: Paramètres produisant un fichier invalide
    """
    issued = issued_at or datetime.now(timezone.utc).date()
    data: Dict[str, Any] = {
        "licenseKey": license_key or generate_license_key(),
        "companyId": company_id,
        "companyName": company_name,
        "issuedAt": issued.isoformat(),
        "expiresAt": (issued + timedelta(days=valid_days)).isoformat(),
        "modules": {
            key: {
                "enabled": grant.get("enabled", True),
                "tier": grant.get("tier", PricingTier.STARTER.value),
                "limits": dict(grant.get("limits", {})),
            }
            for key, grant in modules.items()
        },
    }
    data[SIGNATURE_FIELD] = signature_service.sign(data, secret)

    structure = validate_license_structure(data)
    if not structure.valid:
        raise ValidationStructureError(list(structure.errors))
    return data


def days_until_expiration(artifact: LicenseArtifact, now: Optional[datetime] = None) -> int:
    """ceil((expiresAt - now) / 1 jour) ; négatif une fois expirée."""
    current = now or datetime.now(timezone.utc)
    return math.ceil((artifact.expires_datetime - current) / timedelta(days=1))


def is_license_expired(artifact: LicenseArtifact, now: Optional[datetime] = None) -> bool:
    current = now or datetime.now(timezone.utc)
    return current > artifact.expires_datetime


def features_from_artifact(artifact: LicenseArtifact) -> LicenseFeatures:
    """
    Couverture globale : modules activés et quotas maximaux.

    Pour chaque quota, on retient le maximum sur les modules activés qui le
    déclarent ; une valeur None (illimité) rend le quota illimité.
    """
    enabled = [(key, grant) for key, grant in artifact.modules.items() if grant.enabled]
    quotas: Dict[str, Optional[int]] = {}
    for limit_name, feature_name in FEATURE_LIMITS:
        declared = [grant.limits[limit_name] for _, grant in enabled if limit_name in grant.limits]
        if not declared or any(value is None for value in declared):
            quotas[feature_name] = None
        else:
            quotas[feature_name] = max(declared)
    return LicenseFeatures(modules=tuple(key for key, _ in enabled), **quotas)
