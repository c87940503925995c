"""
Licensing - Signature Service

Canonicalisation des payloads de licence, signature HMAC-SHA256 et
détection d'altération des copies chiffrées au repos.

Invariants:
    - Forme canonique déterministe : clés triées, séparateurs compacts,
      UTF-8, champ "signature" de premier niveau exclu
    - Comparaisons de signatures et de hash en temps constant
    - integrity_hash = SHA-384(ciphertext || key_version) ; toute différence
      rend la licence inutilisable
"""
import json
from dataclasses import replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Mapping, Union

from .errors import SignatureMismatchError, TamperDetectedError
from .interfaces import LicenseIntegrity, LicenseRecord
from ..core.crypto_provider import CryptoProvider, CryptoProviderError

Secret = Union[str, bytes]

SIGNATURE_FIELD = "signature"
HMAC_SHA256_BYTES = 32


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, bytes):
        return value.hex()
    raise TypeError(f"Type non sérialisable: {type(value).__name__}")


def _serialize(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def license_payload(record: LicenseRecord) -> Dict[str, Any]:
    """
    Contenu signé d'une licence.

    Exclus : signature, métadonnées d'intégrité, copie chiffrée, version et
    échéance de grâce courante (état d'exécution, pas contenu contractuel).
    """
    return {
        "tenantId": record.tenant_id,
        "licenseNumber": record.license_number,
        "status": record.status.value,
        "issuedAt": record.issued_at,
        "expiresAt": record.expires_at,
        "features": record.features.to_dict(),
        "maxActivations": record.max_activations,
        "activations": [
            {"machineId": a.machine_id, "activatedAt": a.activated_at} for a in record.activations
        ],
        "offline": {"enabled": record.offline.enabled, "graceHours": record.offline.grace_hours},
        "revocationReason": record.revocation_reason,
    }


class SignatureService:
    """
    Signe et vérifie les licences.

    Example:
        service = SignatureService(crypto_provider)
        signature = service.sign({"licenseKey": "HRMS-AB12-CD34-EF56"}, secret)
        service.verify({"licenseKey": "HRMS-AB12-CD34-EF56"}, signature, secret)  # True
    """

    def __init__(self, crypto_provider: CryptoProvider):
        self.crypto_provider = crypto_provider

    @staticmethod
    def canonicalize(payload: Mapping[str, Any]) -> bytes:
        """Octets canoniques du payload, sans son champ signature."""
        body = {key: value for key, value in payload.items() if key != SIGNATURE_FIELD}
        return _serialize(body)

    def sign(self, payload: Mapping[str, Any], secret: Secret) -> str:
        """HMAC-SHA256 hex du payload canonique."""
        return self.crypto_provider.hmac_sign(self.canonicalize(payload), secret).hex()

    def verify(self, payload: Mapping[str, Any], signature: Any, secret: Secret) -> bool:
        """
        Recalcule et compare en temps constant.

        Une signature non hexadécimale ou de mauvaise longueur vaut False.
        """
        if not isinstance(signature, str):
            return False
        try:
            raw = bytes.fromhex(signature)
        except ValueError:
            return False
        if len(raw) != HMAC_SHA256_BYTES:
            return False
        return self.crypto_provider.hmac_verify(self.canonicalize(payload), raw, secret)

    # ──────────────────────────────────────────────────────────────────────
    # Copies chiffrées au repos
    # ──────────────────────────────────────────────────────────────────────

    def integrity_hash(self, ciphertext: bytes, key_version: int) -> str:
        return self.crypto_provider.hash(ciphertext + str(key_version).encode("ascii"))

    def check_integrity(self, record: LicenseRecord) -> bool:
        """Recalcule le hash de la copie chiffrée et compare en temps constant."""
        if record.integrity is None or not record.encrypted_payload:
            return False
        expected = self.integrity_hash(record.encrypted_payload, record.integrity.key_version)
        return self.crypto_provider.constant_time_equals(expected, record.integrity.integrity_hash)

    def seal(self, record: LicenseRecord, secret: Secret, now: datetime) -> LicenseRecord:
        """
        Re-signe, re-chiffre, re-hache et incrémente la version.

        Fonction pure sur l'enregistrement : la persistance reste au
        repository.
        """
        payload = license_payload(record)
        signature = self.sign(payload, secret)
        ciphertext, key_version = self.crypto_provider.encrypt(_serialize({**payload, SIGNATURE_FIELD: signature}))
        integrity = LicenseIntegrity(
            integrity_hash=self.integrity_hash(ciphertext, key_version),
            key_version=key_version,
            last_integrity_check=now,
            tamper_detection=False,
            key_rotation_date=self.crypto_provider.key_rotation_date(key_version),
        )
        return replace(
            record,
            signature=signature,
            integrity=integrity,
            encrypted_payload=ciphertext,
            version=record.version + 1,
        )

    def open_cached_copy(self, record: LicenseRecord) -> Dict[str, Any]:
        """
        Déchiffre la copie au repos après contrôle d'intégrité.

        Raises:
            TamperDetectedError: Hash différent, déchiffrement impossible ou contenu illisible
        """
        if not self.check_integrity(record):
            raise TamperDetectedError(record.tenant_id)
        try:
            plaintext = self.crypto_provider.decrypt(record.encrypted_payload, record.integrity.key_version)
            cached = json.loads(plaintext.decode("utf-8"))
        except (CryptoProviderError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise TamperDetectedError(record.tenant_id) from e
        if not isinstance(cached, dict):
            raise TamperDetectedError(record.tenant_id)
        return cached

    def verify_sealed(self, record: LicenseRecord, secret: Secret) -> Dict[str, Any]:
        """
        Contrôle complet d'une licence persistée.

        Étapes:
            1. Intégrité de la copie chiffrée (TamperDetectedError)
            2. Signature de la copie chiffrée
            3. Signature de l'enregistrement et égalité avec la copie

        Returns:
            Payload de la copie chiffrée

        Raises:
            TamperDetectedError: Copie chiffrée altérée
            SignatureMismatchError: Signature invalide ou copie divergente
        """
        cached = self.open_cached_copy(record)
        cached_signature = cached.get(SIGNATURE_FIELD)
        if not self.verify(cached, cached_signature, secret):
            raise SignatureMismatchError("Signature de la copie chiffrée invalide", record.tenant_id)
        if not self.verify(license_payload(record), record.signature, secret):
            raise SignatureMismatchError("Signature de l'enregistrement invalide", record.tenant_id)
        if not self.crypto_provider.constant_time_equals(cached_signature, record.signature):
            raise SignatureMismatchError("Copie chiffrée divergente de l'enregistrement", record.tenant_id)
        return cached

