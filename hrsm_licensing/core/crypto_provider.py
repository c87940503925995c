"""
HRSM Licensing - Crypto Provider Implementation
HMAC des artefacts de licence, chiffrement des copies au repos, hash d'intégrité.
"""

import hashlib
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import constant_time, hashes, hmac

from .interfaces import ICryptoProvider

Secret = Union[str, bytes]


class CryptoProviderError(Exception):
    """Erreur opération cryptographique."""

    pass


def _as_bytes(value: Secret) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


class CryptoProvider(ICryptoProvider):
    """
    Implémentation des opérations cryptographiques.

    Les clés de chiffrement sont versionnées : une copie chiffrée reste
    lisible après rotation tant que l'ancienne version est conservée.

    Example:
        provider = CryptoProvider({1: Fernet.generate_key()})
        ciphertext, version = provider.encrypt(b"payload")
        provider.decrypt(ciphertext, version)
    """

    def __init__(
        self,
        encryption_keys: Optional[Dict[int, bytes]] = None,
        active_key_version: Optional[int] = None,
    ):
        """
        Args:
            encryption_keys: Clés Fernet par version (générée si absent)
            active_key_version: Version utilisée pour chiffrer (max par défaut)

        Raises:
            CryptoProviderError: Clé invalide ou version active inconnue
        """
        keys = encryption_keys or {1: Fernet.generate_key()}
        self._keys: Dict[int, Fernet] = {}
        for version, key in keys.items():
            try:
                self._keys[version] = Fernet(key)
            except (ValueError, TypeError) as e:
                raise CryptoProviderError(f"Clé de chiffrement invalide (version {version}): {e}")

        self._active_version = active_key_version or max(self._keys)
        if self._active_version not in self._keys:
            raise CryptoProviderError(f"Version de clé active inconnue: {self._active_version}")
        self._rotated_at: Dict[int, datetime] = {self._active_version: datetime.now(timezone.utc)}

    @property
    def active_key_version(self) -> int:
        """Version de la clé de chiffrement active."""
        return self._active_version

    def key_rotation_date(self, key_version: Optional[int] = None) -> datetime:
        """Date d'activation d'une version de clé (active par défaut)."""
        version = key_version or self._active_version
        return self._rotated_at.get(version, datetime.now(timezone.utc))

    def rotate_key(self, new_key: Optional[bytes] = None) -> int:
        """
        Active une nouvelle clé de chiffrement.

        Args:
            new_key: Clé Fernet (générée si absente)

        Returns:
            Nouvelle version active
        """
        version = max(self._keys) + 1
        try:
            self._keys[version] = Fernet(new_key or Fernet.generate_key())
        except (ValueError, TypeError) as e:
            raise CryptoProviderError(f"Clé de chiffrement invalide: {e}")
        self._active_version = version
        self._rotated_at[version] = datetime.now(timezone.utc)
        return version

    def hmac_sign(self, data: bytes, secret: Secret) -> bytes:
        """
        Calcule HMAC-SHA256.

        Args:
            data: Données canoniques
            secret: Secret partagé de l'autorité de licence

        Returns:
            MAC brut (32 octets)
        """
        if not secret:
            raise CryptoProviderError("Secret HMAC obligatoire")
        mac = hmac.HMAC(_as_bytes(secret), hashes.SHA256())
        mac.update(data)
        return mac.finalize()

    def hmac_verify(self, data: bytes, signature: bytes, secret: Secret) -> bool:
        """Vérifie un HMAC-SHA256 (comparaison en temps constant)."""
        if not secret:
            raise CryptoProviderError("Secret HMAC obligatoire")
        mac = hmac.HMAC(_as_bytes(secret), hashes.SHA256())
        mac.update(data)
        try:
            mac.verify(signature)
            return True
        except InvalidSignature:
            return False

    def hash(self, data: bytes) -> str:
        """
        Calcule hash SHA-384.

        Returns:
            Hash hex string (96 caractères)
        """
        digest = hashlib.sha384(data).hexdigest()
        return digest

    @staticmethod
    def constant_time_equals(left: Secret, right: Secret) -> bool:
        """Compare deux valeurs en temps constant."""
        return constant_time.bytes_eq(_as_bytes(left), _as_bytes(right))

    def encrypt(self, data: bytes) -> Tuple[bytes, int]:
        """Chiffre avec la clé active."""
        ciphertext = self._keys[self._active_version].encrypt(data)
        return ciphertext, self._active_version

    def decrypt(self, ciphertext: bytes, key_version: int) -> bytes:
        """
        Déchiffre une copie au repos.

        Raises:
            CryptoProviderError: Version inconnue ou ciphertext altéré
        """
        fernet = self._keys.get(key_version)
        if fernet is None:
            raise CryptoProviderError(f"Version de clé inconnue: {key_version}")
        try:
            return fernet.decrypt(ciphertext)
        except InvalidToken:
            raise CryptoProviderError("Déchiffrement impossible: données altérées ou clé incorrecte")
